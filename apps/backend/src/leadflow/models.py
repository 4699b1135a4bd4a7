"""API models for LeadFlow."""

from typing import Optional

from pydantic import Field

from .enrollment.schema import LIVE
from .workflow.schema import (
    CamelModel,
    Lead,
    RecipientOverrides,
    WorkflowDefinition,
    WorkflowStatus,
)


class WorkflowCreateRequest(CamelModel):
    """Request to create a workflow."""

    name: str = Field(..., description="Human readable workflow name")
    description: Optional[str] = None
    status: WorkflowStatus = Field(
        "draft",
        description="Draft workflows may be saved with an invalid definition",
    )
    definition: WorkflowDefinition = Field(default_factory=WorkflowDefinition)


class WorkflowUpdateRequest(CamelModel):
    """Partial update of a workflow; omitted fields keep their current value."""

    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[WorkflowStatus] = None
    definition: Optional[WorkflowDefinition] = None


class EnrollRequest(CamelModel):
    """Enroll one lead into a workflow."""

    lead: Lead = Field(default_factory=Lead)
    source: str = Field(
        LIVE,
        description="'live' respects the send window, 'manual_test' bypasses it",
    )
    overrides: RecipientOverrides = Field(default_factory=RecipientOverrides)


class PreviewRequest(CamelModel):
    """Instant, non-persisted run of a workflow against a sample lead."""

    lead: Lead = Field(default_factory=Lead)
    overrides: RecipientOverrides = Field(default_factory=RecipientOverrides)


class AdvanceRequest(CamelModel):
    """Explicit advance of an enrollment from its resume point."""

    ignore_send_window: Optional[bool] = Field(
        None,
        description="Defaults to the enrollment source (manual tests bypass the window)",
    )
    lead: Optional[Lead] = Field(
        None,
        description="Lead fields merged into the stored lead before running",
    )


class HealthResponse(CamelModel):
    """Health check response."""

    status: str
    service: str = "LeadFlow Backend"
    connector_mode: str = "simulator"
    armed_timers: int = 0
