"""Pydantic models defining the workflow graph and its validated linear chain."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MANUAL_TRIGGER = "manual-trigger"
VOICEMAIL_TRIGGER = "voicemail-trigger"
SEND_EMAIL = "send-email"
SEND_SMS = "send-sms"
WAIT = "wait"
AGENT_HANDOFF = "agent-handoff"

TRIGGER_TYPES = frozenset({MANUAL_TRIGGER, VOICEMAIL_TRIGGER})
# Node types gated by the send window
ACTION_TYPES = frozenset({SEND_EMAIL, SEND_SMS, AGENT_HANDOFF})
NODE_TYPES = TRIGGER_TYPES | ACTION_TYPES | {WAIT}

WaitUnit = Literal["minutes", "hours", "days"]
WorkflowStatus = Literal["draft", "active", "inactive"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model serialising to the camelCase JSON used by the builder UI."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NodePosition(BaseModel):
    """Canvas position; has no runtime meaning."""

    x: float = 0
    y: float = 0


class WorkflowNode(CamelModel):
    """A single step in the authored workflow graph."""

    id: str
    type: str  # see NODE_TYPES; unknown types are rejected by the validator
    position: NodePosition = Field(default_factory=NodePosition)
    data: dict[str, Any] = {}


class WorkflowEdge(CamelModel):
    """A directed edge between two workflow nodes."""

    id: str = ""
    source: str
    target: str


class SendWindow(CamelModel):
    """Time-of-day/day-of-week range in which action nodes may fire."""

    enabled: bool = False
    start_time: str = "09:00"
    end_time: str = "17:00"
    # 0 = Sunday ... 6 = Saturday; an empty list means every day
    allowed_days: list[int] = Field(
        default_factory=lambda: [1, 2, 3, 4, 5],
        validation_alias=AliasChoices("allowedDays", "allowed_days", "days"),
    )
    timezone: Optional[str] = None


class WorkflowSettings(CamelModel):
    send_window: Optional[SendWindow] = None


class WorkflowDefinition(CamelModel):
    """The authored graph: nodes, edges and settings."""

    nodes: list[WorkflowNode] = []
    edges: list[WorkflowEdge] = []
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)


class WorkflowRecord(CamelModel):
    """A stored, versioned workflow."""

    id: str
    name: str
    description: Optional[str] = None
    status: WorkflowStatus = "draft"
    definition: WorkflowDefinition = Field(default_factory=WorkflowDefinition)
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ----------------------------------------------------------------------
# Typed node configuration produced by validation
# ----------------------------------------------------------------------


class TriggerConfig(CamelModel):
    kind: Literal["trigger"] = "trigger"


class EmailConfig(CamelModel):
    kind: Literal["email"] = "email"
    subject: str
    body: str
    to: Optional[str] = None


class SmsConfig(CamelModel):
    kind: Literal["sms"] = "sms"
    message: str
    to: Optional[str] = None


class WaitConfig(CamelModel):
    kind: Literal["wait"] = "wait"
    amount: int
    unit: WaitUnit


class AgentHandoffConfig(CamelModel):
    kind: Literal["agent"] = "agent"
    agent_id: str
    notes: Optional[str] = None


NodeConfig = Union[TriggerConfig, EmailConfig, SmsConfig, WaitConfig, AgentHandoffConfig]


class ChainNode(CamelModel):
    """A validated node: its type plus the typed configuration for that type."""

    id: str
    type: str
    config: NodeConfig = Field(discriminator="kind")


class LinearChain(CamelModel):
    """The validated workflow as an ordered list, trigger first."""

    trigger: ChainNode
    nodes: list[ChainNode]

    def index_of(self, node_id: str) -> int:
        for index, node in enumerate(self.nodes):
            if node.id == node_id:
                return index
        return -1

    def node_after(self, node_id: str) -> ChainNode | None:
        index = self.index_of(node_id)
        if index < 0 or index + 1 >= len(self.nodes):
            return None
        return self.nodes[index + 1]

    def get(self, node_id: str) -> ChainNode | None:
        index = self.index_of(node_id)
        return self.nodes[index] if index >= 0 else None


class DefinitionError(CamelModel):
    """A structural or configuration error in a workflow definition."""

    message: str
    node_id: Optional[str] = None


class WorkflowDefinitionError(ValueError):
    """Raised when a definition cannot be turned into a linear chain."""

    def __init__(self, error: DefinitionError):
        self.error = error
        super().__init__(error.message)

    @property
    def node_id(self) -> str | None:
        return self.error.node_id


# ----------------------------------------------------------------------
# Lead identity and recipient overrides
# ----------------------------------------------------------------------

Channel = Literal["SMS", "EMAIL"]


class Lead(CamelModel):
    """The person a workflow run is addressed to."""

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    contact_id: Optional[str] = None
    conversation_id: Optional[str] = None
    channel: Optional[Channel] = None
    last_message: Optional[str] = None

    def normalized(self) -> "Lead":
        """Trim all fields, lower-case the email and drop empty values."""

        def clean(value: Optional[str]) -> Optional[str]:
            if value is None:
                return None
            value = value.strip()
            return value or None

        email = clean(self.email)
        return self.model_copy(
            update={
                "name": clean(self.name),
                "email": email.lower() if email else None,
                "phone": clean(self.phone),
                "contact_id": clean(self.contact_id),
                "conversation_id": clean(self.conversation_id),
                "last_message": clean(self.last_message),
            }
        )


class RecipientOverrides(CamelModel):
    """Explicit recipients that win over anything configured on the nodes."""

    email_to_override: Optional[str] = None
    sms_to_override: Optional[str] = None
