"""Enrollment orchestration: enroll a lead, advance it under a per-enrollment lock, resume on timers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Optional

from ..workflow.channels import DeliveryChannels
from ..workflow.report import ExecutionReport, ExecutionStep, render_steps_table
from ..workflow.runner import resolve_resume_node, run_workflow
from ..workflow.schema import (
    DefinitionError,
    Lead,
    RecipientOverrides,
    WorkflowRecord,
    utcnow,
)
from ..workflow.send_window import DEFAULT_TIMEZONE
from ..workflow.store import WorkflowStore
from ..workflow.validation import build_linear_chain, validate_definition
from .locks import KeyedLock
from .scheduler import MAX_DELAY_MS, ResumeScheduler
from .schema import LIVE, Enrollment, EnrollmentSnapshot, EnrollmentStatus
from .store import EnrollmentStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class EnrollmentNotFoundError(LookupError):
    """Raised when an enrollment id does not exist."""


class WorkflowNotFoundError(LookupError):
    """Raised when a workflow id does not exist."""


class EnrollmentService:
    """Drives enrollments through their workflow's chain.

    Every invocation (initial enrollment, explicit advance, timer fire) runs
    under the enrollment's lock: read resume point, execute, append steps and
    update status in one transaction, then arm or cancel the resume timer.
    """

    def __init__(
        self,
        workflow_store: WorkflowStore,
        enrollment_store: EnrollmentStore,
        channels: DeliveryChannels,
        *,
        default_timezone: str = DEFAULT_TIMEZONE,
        timeout_seconds: float = 30.0,
        max_delay_ms: int = MAX_DELAY_MS,
        clock: Clock = utcnow,
    ):
        self.workflow_store = workflow_store
        self.enrollment_store = enrollment_store
        self.channels = channels
        self.default_timezone = default_timezone
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self.scheduler = ResumeScheduler(self._resume, max_delay_ms)
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> int:
        """Re-arm timers for every persisted paused enrollment. Overdue ones fire at once."""
        self.scheduler.start()
        now = self.clock()
        scheduled = self.enrollment_store.list_scheduled()
        for enrollment_id, due in scheduled:
            self.scheduler.arm(enrollment_id, _millis_until(due, now))
        if scheduled:
            logger.info("Re-armed %d paused enrollment(s) from the store", len(scheduled))
        return len(scheduled)

    async def stop(self) -> None:
        await self.scheduler.shutdown()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def enroll(
        self,
        workflow_id: str,
        lead: Lead,
        *,
        source: str = LIVE,
        overrides: Optional[RecipientOverrides] = None,
    ) -> tuple[Enrollment, ExecutionReport]:
        """Create an enrollment for a lead and run its first invocation.

        Raises WorkflowNotFoundError, or WorkflowDefinitionError when the
        stored definition does not validate.
        """
        workflow = self._load_workflow(workflow_id)
        validate_definition(workflow.definition)

        enrollment = Enrollment(
            workflow_id=workflow.id,
            source=source,
            lead=lead.normalized(),
            overrides=overrides or RecipientOverrides(),
        )
        self.enrollment_store.create(enrollment)
        logger.info("Enrolled lead in workflow %s as %s (%s)", workflow.id, enrollment.id, source)

        report = await self.advance(enrollment.id)
        return self.get(enrollment.id), report

    async def advance(
        self,
        enrollment_id: str,
        *,
        ignore_send_window: Optional[bool] = None,
        lead: Optional[Lead] = None,
    ) -> ExecutionReport:
        """Run the enrollment from its resume point.

        ``ignore_send_window`` defaults to the enrollment's source (manual
        tests bypass the window). ``lead`` fields, when given, are merged into
        the stored lead before running, so an operator can fix a missing
        contact and retry the failed node.
        """
        async with self._locks.hold(enrollment_id):
            return await self._advance_locked(enrollment_id, ignore_send_window, lead)

    async def delete(self, enrollment_id: str) -> bool:
        """Delete an enrollment and cancel its armed resume timer."""
        async with self._locks.hold(enrollment_id):
            self.scheduler.cancel(enrollment_id)
            deleted = self.enrollment_store.delete(enrollment_id)
        if deleted:
            logger.info("Deleted enrollment %s", enrollment_id)
        return deleted

    def get(self, enrollment_id: str) -> Enrollment:
        enrollment = self.enrollment_store.get(enrollment_id)
        if enrollment is None:
            raise EnrollmentNotFoundError(enrollment_id)
        return enrollment

    def list_for_workflow(self, workflow_id: str, limit: int = 50) -> list[Enrollment]:
        return self.enrollment_store.list_by_workflow(workflow_id, limit)

    def describe(self, enrollment_id: str) -> EnrollmentSnapshot:
        """Where an enrollment stands: current node, pause state and history."""
        enrollment = self.get(enrollment_id)
        snapshot = EnrollmentSnapshot(
            **enrollment.model_dump(),
            timer_armed=self.scheduler.is_armed(enrollment_id),
        )
        if enrollment.steps:
            last = enrollment.steps[-1]
            snapshot.current_node_id = last.node_id
            snapshot.current_node_type = last.node_type
            snapshot.paused = last.paused and enrollment.resume_at is not None
        return snapshot

    def report_markdown(self, enrollment_id: str) -> str:
        """Render an enrollment's full step history as a markdown report."""
        snapshot = self.describe(enrollment_id)
        workflow = self.workflow_store.load(snapshot.workflow_id)
        title = workflow.name if workflow else snapshot.workflow_id

        lines = [
            f"# Enrollment Report: {title}",
            "",
            f"**Enrollment ID:** `{snapshot.id}`",
            f"**Source:** {snapshot.source}",
            f"**Status:** {snapshot.status}",
            f"**Steps:** {len(snapshot.steps)}",
        ]
        if snapshot.paused:
            lines.append(f"**Paused at:** `{snapshot.current_node_id}` until {snapshot.resume_at.isoformat()}")
        elif snapshot.status == "failed":
            lines.append(f"**Failed at:** `{snapshot.current_node_id}`")
        lines.append("")
        lines.extend(render_steps_table(snapshot.steps))
        return "\n".join(lines)

    async def resume_due(self, now: Optional[datetime] = None) -> list[str]:
        """Advance every paused enrollment whose persisted due time has passed."""
        now = now or self.clock()
        due = self.enrollment_store.list_due(now)
        for enrollment_id in due:
            await self.scheduler.fire(enrollment_id)
        return due

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _resume(self, enrollment_id: str) -> Optional[ExecutionReport]:
        try:
            return await self.advance(enrollment_id)
        except EnrollmentNotFoundError:
            logger.info("Enrollment %s vanished before its resume fired", enrollment_id)
            return None

    def _load_workflow(self, workflow_id: str) -> WorkflowRecord:
        workflow = self.workflow_store.load(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def _advance_locked(
        self,
        enrollment_id: str,
        ignore_send_window: Optional[bool],
        lead: Optional[Lead],
    ) -> ExecutionReport:
        enrollment = self.get(enrollment_id)
        if lead is not None:
            merged = enrollment.lead.model_copy(update=lead.model_dump(exclude_none=True)).normalized()
            self.enrollment_store.update_lead(enrollment_id, merged)
            enrollment.lead = merged

        workflow = self._load_workflow(enrollment.workflow_id)
        chain = build_linear_chain(workflow.definition)
        now = self.clock()

        if isinstance(chain, DefinitionError):
            logger.warning("Workflow %s no longer validates: %s", workflow.id, chain.message)
            self._record(enrollment, [], "failed", now, None)
            return ExecutionReport(status="failed", error=chain, completed_at=utcnow())

        point = resolve_resume_node(chain, enrollment.steps)
        if point.complete:
            self._record(enrollment, [], "success", enrollment.completed_at or now, None)
            return ExecutionReport(status="success", completed_at=utcnow())

        if ignore_send_window is None:
            ignore_send_window = enrollment.ignores_send_window

        logger.info("Advancing enrollment %s from node %s", enrollment_id, point.node_id)
        report = await run_workflow(
            chain,
            self.channels,
            lead=enrollment.lead,
            overrides=enrollment.overrides,
            start_node_id=point.node_id,
            pause_at_wait=True,
            ignore_send_window=ignore_send_window,
            now=now,
            resume_at=point.resume_at,
            default_timezone=self.default_timezone,
            timeout_seconds=self.timeout_seconds,
            send_window=workflow.definition.settings.send_window,
        )

        steps = report.steps
        if _is_pending_replay(enrollment, report):
            # Still waiting: conceptually the same paused step, not a new one
            steps = []

        if report.status == "failed":
            self._record(enrollment, steps, "failed", now, None)
            failed_node = report.error.node_id if report.error else None
            logger.info("Enrollment %s failed at node %s", enrollment_id, failed_node)
        elif report.paused:
            resume_at = report.resume_at.astimezone(timezone.utc) if report.resume_at else now
            self._record(enrollment, steps, "in-progress", None, resume_at)
            delay = self.scheduler.arm(enrollment_id, _millis_until(resume_at, self.clock()))
            logger.info(
                "Enrollment %s paused at %s until %s (timer %d ms)",
                enrollment_id,
                report.paused_node_id,
                resume_at.isoformat(),
                delay,
            )
        else:
            self._record(enrollment, steps, "success", now, None)
            logger.info("Enrollment %s completed", enrollment_id)

        return report

    def _record(
        self,
        enrollment: Enrollment,
        steps: list[ExecutionStep],
        status: EnrollmentStatus,
        completed_at: Optional[datetime],
        resume_at: Optional[datetime],
    ) -> None:
        self.enrollment_store.record_invocation(enrollment.id, steps, status, completed_at, resume_at)
        if resume_at is None:
            self.scheduler.cancel(enrollment.id)


def _is_pending_replay(enrollment: Enrollment, report: ExecutionReport) -> bool:
    if not (report.paused and len(report.steps) == 1 and enrollment.steps):
        return False
    last = enrollment.steps[-1]
    return last.paused and last.node_id == report.steps[0].node_id


def _millis_until(due: datetime, now: datetime) -> float:
    if due.tzinfo is None:
        due = due.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (due - now).total_seconds() * 1000
