"""Connector registry: maps channel names to connector classes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Type

import httpx

from .base import BaseConnector

if TYPE_CHECKING:
    from ..config import Settings


# Built-in connector classes keyed by channel, populated via @register
_BUILTIN_REGISTRY: dict[str, Type[BaseConnector]] = {}


def register(cls: Type[BaseConnector]) -> Type[BaseConnector]:
    """Class decorator that registers a connector in the built-in registry."""
    _BUILTIN_REGISTRY[cls.channel] = cls
    return cls


class ConnectorRegistry:
    """Instantiates configured connectors for a delivery layer."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._http = http_client
        # Cache instances keyed by channel for the lifetime of this registry
        self._cache: dict[str, BaseConnector] = {}

    def get(self, channel: str) -> BaseConnector | None:
        """Return a live connector instance, or None if unknown or not configured."""
        if channel in self._cache:
            return self._cache[channel]

        cls = _BUILTIN_REGISTRY.get(channel)
        if cls is None or not cls.is_configured(self._settings):
            return None

        instance = cls.from_settings(self._settings, self._http)
        self._cache[channel] = instance
        return instance

    def list_available(self) -> list[str]:
        """Return channel names for all registered connectors."""
        return sorted(_BUILTIN_REGISTRY)
