"""Execution runner: walks a linear chain from a resume point until pause, failure or completion."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from .channels import DeliveryChannels
from .interpreter import ExecutionContext, execute_node
from .report import ExecutionReport, ExecutionStep
from .schema import (
    DefinitionError,
    Lead,
    LinearChain,
    RecipientOverrides,
    SendWindow,
    WorkflowDefinition,
    utcnow,
)
from .send_window import DEFAULT_TIMEZONE
from .validation import build_linear_chain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResumePoint:
    """Where the next invocation starts. ``node_id`` is None when the chain is complete."""

    node_id: Optional[str]
    resume_at: Optional[datetime] = None

    @property
    def complete(self) -> bool:
        return self.node_id is None


def parse_resume_at(step: ExecutionStep) -> datetime | None:
    value = step.output.get("resumeAt")
    if not value:
        return None
    return datetime.fromisoformat(value) if isinstance(value, str) else value


def resolve_resume_node(chain: LinearChain, steps: Sequence[ExecutionStep]) -> ResumePoint:
    """Derive the resume point from an enrollment's step history.

    - no history: start at the trigger
    - last step failed: retry that same node
    - last step paused at a wait: replay that wait (carrying its due time)
    - otherwise: the node after the last successful step
    """
    if not steps:
        return ResumePoint(chain.nodes[0].id)

    last = steps[-1]
    if last.status == "failed":
        return ResumePoint(last.node_id)
    if last.paused:
        return ResumePoint(last.node_id, parse_resume_at(last))

    for step in reversed(steps):
        if step.status == "success" and chain.index_of(step.node_id) >= 0:
            following = chain.node_after(step.node_id)
            return ResumePoint(following.id if following else None)

    # History refers only to nodes no longer in the chain
    return ResumePoint(chain.nodes[0].id)


async def run_chain(
    chain: LinearChain,
    context: ExecutionContext,
    start_node_id: str | None = None,
) -> ExecutionReport:
    """Run nodes in chain order from ``start_node_id`` (default: the trigger).

    Stops on the first failed step (status "failed") or on a paused wait
    (status "success", ``paused`` set). Never blocks on real time.
    """
    report = ExecutionReport()
    start_index = 0
    if start_node_id is not None:
        start_index = chain.index_of(start_node_id)
        if start_index < 0:
            report.status = "failed"
            report.error = DefinitionError(message=f"Start node not found in workflow: {start_node_id}")
            report.completed_at = utcnow()
            return report

    for node in chain.nodes[start_index:]:
        step = await execute_node(node, context)
        report.steps.append(step)

        if step.status == "failed":
            report.status = "failed"
            report.error = DefinitionError(
                node_id=node.id, message=str(step.output.get("error", "Node failed"))
            )
            break

        if step.paused:
            report.paused = True
            report.paused_node_id = node.id
            report.resume_at = parse_resume_at(step)
            break

    report.completed_at = utcnow()
    logger.debug(
        "Run %s finished: status=%s paused=%s steps=%d",
        report.execution_id,
        report.status,
        report.paused,
        len(report.steps),
    )
    return report


async def run_workflow(
    definition: WorkflowDefinition | LinearChain | dict,
    channels: DeliveryChannels,
    *,
    lead: Lead | None = None,
    overrides: RecipientOverrides | None = None,
    start_node_id: str | None = None,
    pause_at_wait: bool = True,
    ignore_send_window: bool = False,
    now: datetime | None = None,
    resume_at: datetime | None = None,
    default_timezone: str = DEFAULT_TIMEZONE,
    timeout_seconds: float = 30.0,
    send_window: SendWindow | None = None,
) -> ExecutionReport:
    """Validate (if needed) and run a workflow once.

    An invalid definition produces a failed report carrying the validation
    error instead of raising. When a prebuilt chain is passed, ``send_window``
    supplies the workflow settings the chain no longer carries.
    """
    if isinstance(definition, LinearChain):
        chain = definition
    else:
        result = build_linear_chain(definition)
        if isinstance(result, DefinitionError):
            return ExecutionReport(status="failed", error=result, completed_at=utcnow())
        chain = result
        if isinstance(definition, dict):
            definition = WorkflowDefinition.model_validate(definition)
        send_window = definition.settings.send_window

    context = ExecutionContext(
        channels=channels,
        lead=(lead or Lead()).normalized(),
        overrides=overrides or RecipientOverrides(),
        pause_at_wait=pause_at_wait,
        ignore_send_window=ignore_send_window,
        send_window=send_window,
        default_timezone=default_timezone,
        timeout_seconds=timeout_seconds,
        now=now or utcnow(),
        replay_node_id=start_node_id if resume_at is not None else None,
        resume_at=resume_at,
    )
    return await run_chain(chain, context, start_node_id)
