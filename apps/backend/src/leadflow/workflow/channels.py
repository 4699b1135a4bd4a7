"""Delivery collaborator contract shared by the interpreter, simulator and connectors."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

SendEmailFn = Callable[..., Awaitable[dict[str, Any]]]
SendSmsFn = Callable[..., Awaitable[dict[str, Any]]]
AgentHandoffFn = Callable[..., Awaitable[dict[str, Any]]]


@dataclass
class DeliveryChannels:
    """The side-effecting collaborators injected into the interpreter.

    All three are async callables invoked with keyword arguments:

        await send_email(to=..., subject=..., body=...)
        await send_sms(to=..., message=...)
        await handoff_to_agent(agent_id=..., notes=..., lead={...})

    and raise on failure.
    """

    send_email: SendEmailFn
    send_sms: SendSmsFn
    handoff_to_agent: Optional[AgentHandoffFn] = None
