"""Node interpreter: executes one validated node and returns its execution step."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from ..simulator.failures import RecipientError, ServiceError
from .channels import DeliveryChannels
from .report import ExecutionStep
from .schema import (
    ACTION_TYPES,
    AgentHandoffConfig,
    Channel,
    ChainNode,
    EmailConfig,
    Lead,
    RecipientOverrides,
    SendWindow,
    SmsConfig,
    TriggerConfig,
    WaitConfig,
)
from .send_window import DEFAULT_TIMEZONE, is_within_send_window

logger = logging.getLogger(__name__)

LEAD_EMAIL_TOKENS = frozenset(
    {"{{lead.email}}", "{{ lead.email }}", "{{lead_email}}", "{{ lead_email }}", "lead.email", "lead_email"}
)
LEAD_PHONE_TOKENS = frozenset(
    {"{{lead.phone}}", "{{ lead.phone }}", "{{lead_phone}}", "{{ lead_phone }}", "lead.phone", "lead_phone"}
)

_LEAD_TOKEN = re.compile(r"\{\{\s*lead[._](name|email|phone)\s*\}\}", re.IGNORECASE)

WAIT_UNIT_SECONDS = {"minutes": 60, "hours": 60 * 60, "days": 24 * 60 * 60}


@dataclass
class ExecutionContext:
    """Everything one run needs besides the node itself."""

    channels: DeliveryChannels
    lead: Lead = field(default_factory=Lead)
    overrides: RecipientOverrides = field(default_factory=RecipientOverrides)
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    pause_at_wait: bool = True
    ignore_send_window: bool = False
    send_window: Optional[SendWindow] = None
    default_timezone: str = DEFAULT_TIMEZONE
    timeout_seconds: float = 30.0
    last_delivery_channel: Optional[Channel] = None
    # Set when replaying a wait that paused earlier in this enrollment
    replay_node_id: Optional[str] = None
    resume_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.now.tzinfo is None:
            self.now = self.now.replace(tzinfo=timezone.utc)
        if self.last_delivery_channel is None:
            self.last_delivery_channel = self.lead.channel


def wait_duration(amount: int, unit: str) -> timedelta:
    return timedelta(seconds=amount * WAIT_UNIT_SECONDS[unit])


def render_lead_tokens(text: str, lead: Lead) -> str:
    """Substitute {{lead.name}}, {{lead.email}} and {{lead.phone}} in message text."""

    def _replace(match: re.Match) -> str:
        return getattr(lead, match.group(1).lower()) or ""

    return _LEAD_TOKEN.sub(_replace, text)


def resolve_email_recipient(configured: str | None, context: ExecutionContext) -> str:
    override = (context.overrides.email_to_override or "").strip()
    if override:
        return override
    raw = (configured or "").strip()
    if not raw or raw.lower() in LEAD_EMAIL_TOKENS:
        return (context.lead.email or "").strip()
    return raw


def resolve_sms_recipient(configured: str | None, context: ExecutionContext) -> str:
    override = (context.overrides.sms_to_override or "").strip()
    if override:
        return override
    raw = (configured or "").strip()
    if not raw or raw.lower() in LEAD_PHONE_TOKENS:
        return (context.lead.phone or "").strip()
    return raw


def resolve_handoff_channel(context: ExecutionContext) -> Channel:
    """Pick the channel the agent should answer on."""
    if context.lead.channel in ("SMS", "EMAIL"):
        return context.lead.channel
    if context.last_delivery_channel in ("SMS", "EMAIL"):
        return context.last_delivery_channel
    if context.lead.email and not context.lead.phone:
        return "EMAIL"
    return "SMS"


async def _call(context: ExecutionContext, fn: Callable[..., Awaitable[dict]], **kwargs) -> dict:
    """Invoke a collaborator with the per-call timeout."""
    try:
        result = await asyncio.wait_for(fn(**kwargs), timeout=context.timeout_seconds)
    except asyncio.TimeoutError:
        raise ServiceError(
            f"Delivery call timed out after {context.timeout_seconds:g}s", "timeout"
        ) from None
    return dict(result or {})


def _step(node: ChainNode, output: dict[str, Any] | None = None, status: str = "success") -> ExecutionStep:
    return ExecutionStep(node_id=node.id, node_type=node.type, status=status, output=output or {})


def _wait_step(node: ChainNode, config: WaitConfig, context: ExecutionContext) -> ExecutionStep:
    output: dict[str, Any] = {"amount": config.amount, "unit": config.unit}
    if not context.pause_at_wait:
        return _step(node, output)

    if context.replay_node_id == node.id and context.resume_at is not None:
        if context.now >= context.resume_at:
            return _step(node, {**output, "resumed": True, "resumeAt": context.resume_at.isoformat()})
        resume_at = context.resume_at
    else:
        resume_at = context.now + wait_duration(config.amount, config.unit)

    return _step(
        node,
        {**output, "paused": True, "resumeAt": resume_at.isoformat(), "reason": "Wait step reached"},
    )


async def _email_step(node: ChainNode, config: EmailConfig, context: ExecutionContext) -> ExecutionStep:
    to = resolve_email_recipient(config.to, context)
    if not to:
        raise RecipientError("Email recipient missing. Set 'to' or provide a lead email.")
    result = await _call(
        context,
        context.channels.send_email,
        to=to,
        subject=render_lead_tokens(config.subject, context.lead),
        body=render_lead_tokens(config.body, context.lead),
    )
    context.last_delivery_channel = "EMAIL"
    return _step(node, {"to": to, **result})


async def _sms_step(node: ChainNode, config: SmsConfig, context: ExecutionContext) -> ExecutionStep:
    to = resolve_sms_recipient(config.to, context)
    if not to:
        raise RecipientError("SMS recipient missing. Set 'to' or provide a lead phone number.")
    result = await _call(
        context,
        context.channels.send_sms,
        to=to,
        message=render_lead_tokens(config.message, context.lead),
    )
    context.last_delivery_channel = "SMS"
    return _step(node, {"to": to, **result})


async def _agent_step(node: ChainNode, config: AgentHandoffConfig, context: ExecutionContext) -> ExecutionStep:
    if context.channels.handoff_to_agent is None:
        raise ServiceError("Agent handoff is not configured.", "handoff_unavailable")
    lead = context.lead.model_copy(update={"channel": resolve_handoff_channel(context)})
    result = await _call(
        context,
        context.channels.handoff_to_agent,
        agent_id=config.agent_id,
        notes=config.notes,
        lead=lead.model_dump(by_alias=True, exclude_none=True),
    )
    return _step(node, {"agentId": config.agent_id, **result})


async def execute_node(node: ChainNode, context: ExecutionContext) -> ExecutionStep:
    """Execute a single node and return exactly one step.

    Action nodes outside the send window are recorded as skipped successes.
    Any collaborator error or timeout becomes a failed step; nothing is raised.
    """
    config = node.config

    if isinstance(config, TriggerConfig):
        return _step(node)

    if (
        node.type in ACTION_TYPES
        and not context.ignore_send_window
        and not is_within_send_window(context.send_window, context.now, context.default_timezone)
    ):
        window = context.send_window.model_dump(by_alias=True) if context.send_window else None
        return _step(node, {"skipped": True, "reason": "Outside configured send window", "sendWindow": window})

    if isinstance(config, WaitConfig):
        return _wait_step(node, config, context)

    try:
        if isinstance(config, EmailConfig):
            return await _email_step(node, config, context)
        if isinstance(config, SmsConfig):
            return await _sms_step(node, config, context)
        if isinstance(config, AgentHandoffConfig):
            return await _agent_step(node, config, context)
        raise ServiceError(f"Unsupported node type: {node.type}", "unsupported_node")
    except ServiceError as e:
        logger.info("Node %s (%s) failed: %s", node.id, node.type, e)
        return _step(node, {"error": str(e), "errorType": e.error_type}, status="failed")
    except Exception as e:
        logger.warning("Node %s (%s) raised %s: %s", node.id, node.type, type(e).__name__, e)
        message = str(e) or type(e).__name__
        return _step(node, {"error": message, "errorType": "delivery_failed"}, status="failed")
