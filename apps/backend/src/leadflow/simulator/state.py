"""Outbox state shared by the simulated delivery services."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class OutboundMessage(BaseModel):
    """A single message accepted by a simulated channel."""

    provider_message_id: str
    channel: str  # "sms" | "email" | "agent"
    to: str
    subject: Optional[str] = None
    body: str
    metadata: dict[str, Any] = {}
    sent_at: datetime = Field(default_factory=datetime.now)


class Outbox(BaseModel):
    """Everything the simulator has "delivered", in order."""

    messages: list[OutboundMessage] = []

    def for_channel(self, channel: str) -> list[OutboundMessage]:
        return [m for m in self.messages if m.channel == channel]
