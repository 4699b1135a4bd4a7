"""Base agent using Claude Agent SDK for LeadFlow reply generation."""

from pathlib import Path
from typing import Any, AsyncGenerator, Optional

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ResultMessage,
    TextBlock,
    query,
)

from ..config import get_settings

AGENTS_DIR = Path(__file__).resolve().parents[3] / "agents"

DEFAULT_AGENT_PROMPT = """\
You are a friendly sales assistant following up with a lead on behalf of the
business. Write one short, natural reply (max 3 sentences) that moves the
conversation forward. Reply with the message text only, no preamble.
"""


def load_agent_profile(agent_id: str, agents_dir: Path = AGENTS_DIR) -> str:
    """Load the system prompt for an agent.

    Profiles live at ``{agents_dir}/{agent_id}.md``; a ``default.md`` in the
    same directory, or the built-in prompt, is used when the agent has none.
    """
    for candidate in (agents_dir / f"{agent_id}.md", agents_dir / "default.md"):
        if candidate.is_file():
            return candidate.read_text()
    return DEFAULT_AGENT_PROMPT


async def run_agent(
    prompt: str,
    system_prompt: str,
    max_turns: int = 1,
    allowed_tools: Optional[list[str]] = None,
) -> AsyncGenerator[dict[str, Any], None]:
    """Run a Claude Agent SDK agent and yield messages as they arrive.

    Yields dicts with:
      - type: "text" | "result" | "error"
      - content: the relevant payload
    """
    settings = get_settings()

    options = ClaudeAgentOptions(
        model=settings.default_model,
        system_prompt=system_prompt,
        allowed_tools=allowed_tools or [],
        max_turns=max_turns,
        env={"ANTHROPIC_API_KEY": settings.anthropic_api_key} if settings.anthropic_api_key else {},
    )

    try:
        async for message in query(prompt=prompt, options=options):
            if isinstance(message, AssistantMessage):
                for block in message.content:
                    if isinstance(block, TextBlock):
                        yield {"type": "text", "content": block.text}
            elif isinstance(message, ResultMessage):
                yield {
                    "type": "result",
                    "content": {
                        "subtype": message.subtype,
                        "cost_usd": message.total_cost_usd,
                        "session_id": message.session_id,
                    },
                }
    except Exception as e:
        yield {"type": "error", "content": str(e)}
