"""Structural and per-node validation that reduces a workflow graph to a linear chain."""

from __future__ import annotations

from typing import Any

import pydantic

from .schema import (
    AGENT_HANDOFF,
    SEND_EMAIL,
    SEND_SMS,
    TRIGGER_TYPES,
    WAIT,
    AgentHandoffConfig,
    ChainNode,
    DefinitionError,
    EmailConfig,
    LinearChain,
    NodeConfig,
    SmsConfig,
    TriggerConfig,
    WaitConfig,
    WorkflowDefinition,
    WorkflowDefinitionError,
    WorkflowNode,
)

WAIT_UNITS = ("minutes", "hours", "days")


def _non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _positive_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        # JSON numbers from the builder arrive as 2.0
        return value.is_integer() and value > 0
    return isinstance(value, int) and value > 0


def _optional_string(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _node_config(node: WorkflowNode) -> NodeConfig | DefinitionError:
    """Check the required fields for the node type and build its typed config."""
    data = node.data or {}

    if node.type in TRIGGER_TYPES:
        return TriggerConfig()

    if node.type == SEND_EMAIL:
        if not _non_empty_string(data.get("subject")):
            return DefinitionError(node_id=node.id, message="Email: 'subject' is required.")
        if not _non_empty_string(data.get("body")):
            return DefinitionError(node_id=node.id, message="Email: 'body' is required.")
        return EmailConfig(subject=data["subject"], body=data["body"], to=_optional_string(data.get("to")))

    if node.type == SEND_SMS:
        if not _non_empty_string(data.get("message")):
            return DefinitionError(node_id=node.id, message="SMS: 'message' is required.")
        return SmsConfig(message=data["message"], to=_optional_string(data.get("to")))

    if node.type == WAIT:
        if not _positive_int(data.get("amount")):
            return DefinitionError(node_id=node.id, message="Wait: 'amount' must be a positive integer.")
        if data.get("unit") not in WAIT_UNITS:
            return DefinitionError(node_id=node.id, message="Wait: 'unit' must be minutes, hours or days.")
        return WaitConfig(amount=int(data["amount"]), unit=data["unit"])

    if node.type == AGENT_HANDOFF:
        if not _non_empty_string(data.get("agentId")):
            return DefinitionError(node_id=node.id, message="Agent: 'agentId' is required.")
        return AgentHandoffConfig(agent_id=data["agentId"], notes=_optional_string(data.get("notes")))

    return DefinitionError(node_id=node.id, message=f"Unknown node type: {node.type}")


def build_linear_chain(definition: WorkflowDefinition | dict) -> LinearChain | DefinitionError:
    """Validate a workflow definition and return its linear chain, or the first error.

    The graph must have exactly one trigger, every other node exactly one
    incoming edge, every node at most one outgoing edge, and a walk from the
    trigger must visit every node exactly once.
    """
    if not isinstance(definition, WorkflowDefinition):
        try:
            definition = WorkflowDefinition.model_validate(definition)
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            return DefinitionError(message=f"Definition must contain nodes and edges ({location}: {first['msg']}).")

    nodes = definition.nodes
    by_id: dict[str, WorkflowNode] = {}
    for node in nodes:
        if not node.id.strip():
            return DefinitionError(message="Every node must have a valid 'id'.")
        if node.id in by_id:
            return DefinitionError(node_id=node.id, message="Node ids must be unique.")
        by_id[node.id] = node

    triggers = [node for node in nodes if node.type in TRIGGER_TYPES]
    if len(triggers) != 1:
        return DefinitionError(
            message="Workflow must have exactly 1 trigger (manual-trigger or voicemail-trigger)."
        )
    trigger = triggers[0]

    outgoing: dict[str, str] = {}
    incoming_count = {node.id: 0 for node in nodes}
    for edge in definition.edges:
        if not edge.source or not edge.target:
            return DefinitionError(message="Every edge must have a 'source' and a 'target'.")
        if edge.source not in by_id:
            return DefinitionError(node_id=edge.source, message="Edge source node does not exist.")
        if edge.target not in by_id:
            return DefinitionError(node_id=edge.target, message="Edge target node does not exist.")
        if edge.source in outgoing:
            return DefinitionError(node_id=edge.source, message="A node may have at most 1 outgoing edge.")
        outgoing[edge.source] = edge.target
        incoming_count[edge.target] += 1

    for node in nodes:
        count = incoming_count[node.id]
        if node.id == trigger.id:
            if count != 0:
                return DefinitionError(node_id=node.id, message="The trigger may not have incoming edges.")
        elif count != 1:
            return DefinitionError(
                node_id=node.id,
                message="Every non-trigger node must have exactly 1 incoming edge.",
            )

    visited: set[str] = set()
    ordered: list[WorkflowNode] = []
    current: str | None = trigger.id
    while current is not None:
        if current in visited:
            return DefinitionError(node_id=current, message="Cycle detected in workflow.")
        visited.add(current)
        ordered.append(by_id[current])
        current = outgoing.get(current)

    if len(visited) != len(nodes):
        unreachable = next(node for node in nodes if node.id not in visited)
        return DefinitionError(
            node_id=unreachable.id,
            message="Workflow is not linear or contains unreachable nodes.",
        )

    chain: list[ChainNode] = []
    for node in ordered:
        config = _node_config(node)
        if isinstance(config, DefinitionError):
            return config
        chain.append(ChainNode(id=node.id, type=node.type, config=config))

    return LinearChain(trigger=chain[0], nodes=chain)


def validate_definition(definition: WorkflowDefinition | dict) -> LinearChain:
    """Like build_linear_chain, but raises WorkflowDefinitionError on invalid input."""
    result = build_linear_chain(definition)
    if isinstance(result, DefinitionError):
        raise WorkflowDefinitionError(result)
    return result
