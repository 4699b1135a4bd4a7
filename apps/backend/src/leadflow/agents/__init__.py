"""LeadFlow AI agents: reply generation for workflow agent handoffs."""

from .handoff import AgentHandoff, generate_reply

__all__ = ["AgentHandoff", "generate_reply"]
