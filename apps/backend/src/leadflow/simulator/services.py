"""Simulated delivery backends used when no real channel credentials are configured."""

from __future__ import annotations

import uuid
from typing import Any

from .failures import DeliveryAction, FailureConfig
from .state import Outbox, OutboundMessage


class BaseService:
    """Shared init and outbox recording for all simulated services."""

    channel: str = ""

    def __init__(self, outbox: Outbox, failure_config: FailureConfig | None = None):
        self.outbox = outbox
        self.failure_config = failure_config

    def _check_failure(self, action: DeliveryAction) -> None:
        if self.failure_config is not None:
            self.failure_config.check(action)

    def _record(self, to: str, body: str, subject: str | None = None, **extra: Any) -> OutboundMessage:
        message = OutboundMessage(
            provider_message_id=f"sim-{self.channel}-{uuid.uuid4().hex[:10]}",
            channel=self.channel,
            to=to,
            subject=subject,
            body=body,
            metadata=extra,
        )
        self.outbox.messages.append(message)
        return message


class SimulatedSmsService(BaseService):
    channel = "sms"

    async def send_sms(self, *, to: str, message: str) -> dict:
        self._check_failure("send_sms")
        sent = self._record(to, message)
        return {"provider": "simulator", "providerMessageId": sent.provider_message_id, "status": "sent"}


class SimulatedEmailService(BaseService):
    channel = "email"

    async def send_email(self, *, to: str, subject: str, body: str) -> dict:
        self._check_failure("send_email")
        sent = self._record(to, body, subject=subject)
        return {"provider": "simulator", "providerMessageId": sent.provider_message_id, "status": "sent"}


class SimulatedAgentService(BaseService):
    """Stands in for the AI reply generator: replies with a canned message."""

    channel = "agent"

    async def handoff_to_agent(self, *, agent_id: str, notes: str | None, lead: dict) -> dict:
        self._check_failure("handoff_to_agent")
        name = lead.get("name") or "there"
        reply = f"Hi {name}, thanks for your interest! How can we help you today?"
        delivered = self._record(
            lead.get("phone") or lead.get("email") or "",
            reply,
            agent_id=agent_id,
            channel=lead.get("channel"),
            notes=notes,
        )
        return {
            "agentId": agent_id,
            "channel": lead.get("channel"),
            "suggestedReply": reply,
            "delivery": {"provider": "simulator", "providerMessageId": delivered.provider_message_id},
        }
