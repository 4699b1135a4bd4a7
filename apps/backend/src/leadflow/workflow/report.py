"""Execution step and report models with markdown rendering."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import Field

from .schema import CamelModel, DefinitionError, utcnow

StepStatus = Literal["success", "failed"]


class ExecutionStep(CamelModel):
    """The interpreter result for one node during one run."""

    node_id: str
    node_type: str
    status: StepStatus
    output: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def paused(self) -> bool:
        return bool(self.output.get("paused"))

    @property
    def skipped(self) -> bool:
        return bool(self.output.get("skipped"))


class ExecutionReport(CamelModel):
    """Summary of one Runner invocation."""

    execution_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: StepStatus = "success"
    steps: list[ExecutionStep] = []
    error: Optional[DefinitionError] = None
    paused: bool = False
    paused_node_id: Optional[str] = None
    resume_at: Optional[datetime] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def to_markdown(self, title: str = "Workflow Execution") -> str:
        lines = [
            f"# Execution Report: {title}",
            "",
            f"**Execution ID:** `{self.execution_id}`",
            f"**Status:** {self.status}",
            f"**Steps:** {len(self.steps)}",
        ]
        if self.paused:
            lines.append(f"**Paused at:** `{self.paused_node_id}` until {self.resume_at}")
        lines.append("")

        if self.error:
            lines.append("## Error")
            where = f" (node `{self.error.node_id}`)" if self.error.node_id else ""
            lines.append(f"- {self.error.message}{where}")
            lines.append("")

        lines.extend(render_steps_table(self.steps))

        lines.append("")
        if self.completed_at:
            duration = (self.completed_at - self.started_at).total_seconds()
            lines.append(f"**Duration:** {duration:.2f}s")

        return "\n".join(lines)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def render_steps_table(steps: list[ExecutionStep]) -> list[str]:
    lines = [
        "## Steps",
        "",
        "| # | Node | Type | Status | Detail |",
        "|---|------|------|--------|--------|",
    ]
    for i, step in enumerate(steps, 1):
        if step.status == "failed":
            status = "FAIL"
            detail = str(step.output.get("error", ""))
        elif step.skipped:
            status = "SKIP"
            detail = str(step.output.get("reason", ""))
        elif step.paused:
            status = "PAUSE"
            detail = f"{step.output.get('amount')} {step.output.get('unit')} until {step.output.get('resumeAt')}"
        else:
            status = "OK"
            detail = ", ".join(
                f"{k}={v}" for k, v in step.output.items() if k not in ("status", "raw")
            )
        lines.append(f"| {i} | `{step.node_id}` | {step.node_type} | {status} | {detail} |")
    return lines
