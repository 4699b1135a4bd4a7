"""Connector package: real delivery connectors with transparent simulator fallback.

Usage:
    from leadflow.connectors import create_delivery_layer, close_delivery_layer

    layer = create_delivery_layer(settings)
    try:
        ...  # pass layer.channels to the enrollment service
    finally:
        await close_delivery_layer(layer)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

import httpx

from ..agents import AgentHandoff
from ..simulator import create_simulator
from ..simulator.failures import FailureConfig
from ..simulator.state import Outbox
from ..workflow.channels import DeliveryChannels
from .base import BaseConnector
from .registry import ConnectorRegistry

if TYPE_CHECKING:
    from ..config import Settings

# Import all built-in connectors to trigger @register decoration
from . import mailgun, twilio  # noqa: E402, F401

logger = logging.getLogger(__name__)


@dataclass
class DeliveryLayer:
    """Delivery callables plus the resources behind them."""

    channels: DeliveryChannels
    outbox: Outbox
    connectors: dict[str, BaseConnector] = field(default_factory=dict)
    http_client: Optional[httpx.AsyncClient] = None


def create_delivery_layer(
    settings: Settings,
    failure_config: FailureConfig | None = None,
) -> DeliveryLayer:
    """Create delivery channels with hybrid real+simulator routing.

    Modes (controlled by settings.connector_mode):
      "simulator"  always uses the in-memory outbox (default)
      "hybrid"     uses the real connector per channel when credentials are
                   set, falls back to the simulator otherwise
      "real"       same routing as hybrid; check ``layer.connectors`` to
                   verify every channel is real

    Outside simulator mode the agent handoff generates its reply with the
    language model and delivers it through the same routed channels.
    """
    outbox, sim_channels = create_simulator(failure_config)

    if settings.connector_mode == "simulator":
        return DeliveryLayer(channels=sim_channels, outbox=outbox)

    http_client = httpx.AsyncClient(timeout=settings.side_effect_timeout_seconds)
    registry = ConnectorRegistry(settings, http_client)

    connectors: dict[str, BaseConnector] = {}
    for channel in registry.list_available():
        connector = registry.get(channel)
        if connector is not None:
            connectors[channel] = connector

    send_sms = connectors["sms"].send_sms if "sms" in connectors else sim_channels.send_sms
    send_email = connectors["email"].send_email if "email" in connectors else sim_channels.send_email

    missing = sorted({"sms", "email"} - set(connectors))
    if missing:
        logger.warning(
            "Connector mode %s: no credentials for %s, using simulator",
            settings.connector_mode,
            ", ".join(missing),
        )

    channels = DeliveryChannels(
        send_email=send_email,
        send_sms=send_sms,
        handoff_to_agent=AgentHandoff(send_email=send_email, send_sms=send_sms),
    )
    return DeliveryLayer(
        channels=channels,
        outbox=outbox,
        connectors=connectors,
        http_client=http_client,
    )


async def close_delivery_layer(layer: DeliveryLayer) -> None:
    """Close the shared AsyncClient created by create_delivery_layer."""
    if layer.http_client is not None:
        await layer.http_client.aclose()
