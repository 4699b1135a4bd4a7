"""Pydantic models for enrollments: one lead's progress through one workflow."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from ..workflow.report import ExecutionStep
from ..workflow.schema import CamelModel, Lead, RecipientOverrides, utcnow

EnrollmentStatus = Literal["in-progress", "success", "failed"]

MANUAL_TEST = "manual_test"
LIVE = "live"


class Enrollment(CamelModel):
    """The durable execution record for one lead in one workflow."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    source: str = LIVE
    lead: Lead = Field(default_factory=Lead)
    overrides: RecipientOverrides = Field(default_factory=RecipientOverrides)
    status: EnrollmentStatus = "in-progress"
    steps: list[ExecutionStep] = []
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    # Next due time while paused at a wait; the source of truth for resumes
    resume_at: Optional[datetime] = None

    @property
    def ignores_send_window(self) -> bool:
        """Manual tests bypass the send window, live runs respect it."""
        return self.source == MANUAL_TEST


class EnrollmentSnapshot(Enrollment):
    """An enrollment plus where it currently stands, for operator debugging."""

    current_node_id: Optional[str] = None
    current_node_type: Optional[str] = None
    paused: bool = False
    timer_armed: bool = False
