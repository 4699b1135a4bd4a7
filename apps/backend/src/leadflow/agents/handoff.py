"""Agent handoff: let an AI agent write the next message to a lead and deliver it."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from ..simulator.failures import RecipientError, ServiceError
from ..workflow.channels import SendEmailFn, SendSmsFn
from .base import AGENTS_DIR, load_agent_profile, run_agent

logger = logging.getLogger(__name__)

ReplyGenerator = Callable[[str, str], Awaitable[str]]

EMAIL_SUBJECT = "Following up on your inquiry"


async def generate_reply(prompt: str, system_prompt: str) -> str:
    """Collect the agent's text output into a single reply."""
    chunks: list[str] = []
    async for event in run_agent(prompt=prompt, system_prompt=system_prompt):
        if event["type"] == "text":
            chunks.append(event["content"])
        elif event["type"] == "error":
            raise ServiceError(f"Agent failed: {event['content']}", "agent_error")
    return "\n".join(chunks).strip()


def build_handoff_prompt(notes: str | None, lead: dict[str, Any], channel: str) -> str:
    lines = [f"Write the next {channel} message to this lead."]
    if lead.get("name"):
        lines.append(f"Lead name: {lead['name']}")
    if lead.get("lastMessage"):
        lines.append(f"Their last message: {lead['lastMessage']}")
    if notes:
        lines.append(f"Notes from the workflow author: {notes}")
    if channel == "SMS":
        lines.append("Keep it under 320 characters.")
    return "\n".join(lines)


class AgentHandoff:
    """The ``handoff_to_agent`` collaborator backed by a language model.

    The reply is delivered over the lead's resolved channel with the same
    send callables the workflow's own email/SMS nodes use.
    """

    def __init__(
        self,
        send_email: SendEmailFn,
        send_sms: SendSmsFn,
        agents_dir: Path = AGENTS_DIR,
        generate: ReplyGenerator = generate_reply,
    ):
        self.send_email = send_email
        self.send_sms = send_sms
        self.agents_dir = agents_dir
        self.generate = generate

    async def __call__(self, *, agent_id: str, notes: str | None, lead: dict[str, Any]) -> dict:
        channel = lead.get("channel") or "SMS"
        system_prompt = load_agent_profile(agent_id, self.agents_dir)
        reply = await self.generate(build_handoff_prompt(notes, lead, channel), system_prompt)
        if not reply:
            raise ServiceError(f"Agent {agent_id} produced no reply", "empty_reply")

        if channel == "EMAIL":
            to = lead.get("email")
            if not to:
                raise RecipientError("Agent handoff over email needs a lead email.")
            delivery = await self.send_email(to=to, subject=EMAIL_SUBJECT, body=reply)
        else:
            to = lead.get("phone")
            if not to:
                raise RecipientError("Agent handoff over SMS needs a lead phone number.")
            delivery = await self.send_sms(to=to, message=reply)

        logger.info("Agent %s replied to lead over %s", agent_id, channel)
        return {"agentId": agent_id, "channel": channel, "suggestedReply": reply, "delivery": delivery}
