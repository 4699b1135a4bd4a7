"""SQLite-backed enrollment store: append-only step log plus status and due time."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from ..workflow.report import ExecutionStep
from ..workflow.schema import Lead, RecipientOverrides
from .database import init_db
from .schema import Enrollment, EnrollmentStatus


class EnrollmentStore:
    """Owns enrollment records. Steps are only ever appended, never rewritten."""

    def __init__(self, db_path: Path):
        self._conn = init_db(db_path)
        self._lock = threading.Lock()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def create(self, enrollment: Enrollment) -> Enrollment:
        """Persist a new enrollment (and any steps it already carries)."""
        with self._lock, self._conn:
            self._conn.execute(
                """INSERT INTO enrollments
                   (id, workflow_id, source, lead, overrides, status, created_at, completed_at, resume_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    enrollment.id,
                    enrollment.workflow_id,
                    enrollment.source,
                    enrollment.lead.model_dump_json(by_alias=True, exclude_none=True),
                    enrollment.overrides.model_dump_json(by_alias=True, exclude_none=True),
                    enrollment.status,
                    enrollment.created_at.isoformat(),
                    _iso(enrollment.completed_at),
                    _iso(enrollment.resume_at),
                ),
            )
            self._insert_steps(enrollment.id, enrollment.steps)
        return enrollment

    def get(self, enrollment_id: str) -> Optional[Enrollment]:
        """Load an enrollment with its full step history."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM enrollments WHERE id = ?", (enrollment_id,)
            ).fetchone()
            if row is None:
                return None
            steps = self._load_steps(enrollment_id)
        return _row_to_enrollment(row, steps)

    def list_by_workflow(self, workflow_id: str, limit: int = 50) -> list[Enrollment]:
        """List a workflow's enrollments, most recent first."""
        with self._lock:
            rows = self._conn.execute(
                """SELECT * FROM enrollments WHERE workflow_id = ?
                   ORDER BY created_at DESC LIMIT ?""",
                (workflow_id, limit),
            ).fetchall()
            return [_row_to_enrollment(row, self._load_steps(row["id"])) for row in rows]

    def record_invocation(
        self,
        enrollment_id: str,
        steps: Sequence[ExecutionStep],
        status: EnrollmentStatus,
        completed_at: Optional[datetime],
        resume_at: Optional[datetime],
    ) -> None:
        """Append one invocation's steps and update status and due time atomically."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """UPDATE enrollments SET status = ?, completed_at = ?, resume_at = ?
                   WHERE id = ?""",
                (status, _iso(completed_at), _iso(resume_at), enrollment_id),
            )
            if cursor.rowcount == 0:
                raise KeyError(enrollment_id)
            self._insert_steps(enrollment_id, steps)

    def update_lead(self, enrollment_id: str, lead: Lead) -> bool:
        """Replace the lead identity, e.g. after an operator adds a missing phone number."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE enrollments SET lead = ? WHERE id = ?",
                (lead.model_dump_json(by_alias=True, exclude_none=True), enrollment_id),
            )
        return cursor.rowcount > 0

    def delete(self, enrollment_id: str) -> bool:
        """Delete an enrollment and its steps."""
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM enrollments WHERE id = ?", (enrollment_id,))
        return cursor.rowcount > 0

    def list_scheduled(self) -> list[tuple[str, datetime]]:
        """All paused enrollments with their persisted due time, earliest first."""
        with self._lock:
            rows = self._conn.execute(
                """SELECT id, resume_at FROM enrollments
                   WHERE resume_at IS NOT NULL ORDER BY resume_at"""
            ).fetchall()
        return [(row["id"], datetime.fromisoformat(row["resume_at"])) for row in rows]

    def list_due(self, now: datetime) -> list[str]:
        """Ids of paused enrollments whose due time is at or before ``now``."""
        return [enrollment_id for enrollment_id, due in self.list_scheduled() if due <= now]

    def _insert_steps(self, enrollment_id: str, steps: Sequence[ExecutionStep]) -> None:
        if not steps:
            return
        row = self._conn.execute(
            "SELECT COALESCE(MAX(seq), 0) FROM enrollment_steps WHERE enrollment_id = ?",
            (enrollment_id,),
        ).fetchone()
        start = row[0] + 1
        self._conn.executemany(
            """INSERT INTO enrollment_steps
               (enrollment_id, seq, node_id, node_type, status, output, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    enrollment_id,
                    start + offset,
                    step.node_id,
                    step.node_type,
                    step.status,
                    json.dumps(step.output, default=str),
                    step.created_at.isoformat(),
                )
                for offset, step in enumerate(steps)
            ],
        )

    def _load_steps(self, enrollment_id: str) -> list[ExecutionStep]:
        rows = self._conn.execute(
            "SELECT * FROM enrollment_steps WHERE enrollment_id = ? ORDER BY seq",
            (enrollment_id,),
        ).fetchall()
        return [
            ExecutionStep(
                node_id=row["node_id"],
                node_type=row["node_type"],
                status=row["status"],
                output=json.loads(row["output"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _row_to_enrollment(row: sqlite3.Row, steps: list[ExecutionStep]) -> Enrollment:
    return Enrollment(
        id=row["id"],
        workflow_id=row["workflow_id"],
        source=row["source"],
        lead=Lead.model_validate_json(row["lead"]),
        overrides=RecipientOverrides.model_validate_json(row["overrides"]),
        status=row["status"],
        steps=steps,
        created_at=row["created_at"],
        completed_at=row["completed_at"],
        resume_at=row["resume_at"],
    )
