"""Base interface for all real delivery connectors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, NoReturn

import httpx

from ..simulator.failures import ServiceError

if TYPE_CHECKING:
    from ..config import Settings


class BaseConnector(ABC):
    """Abstract base for real channel connectors.

    Interface contract: each connector exposes the async delivery callable for
    its channel, invoked with keyword arguments and returning a dict with at
    least ``provider`` and ``providerMessageId``:

        async def send_sms(self, *, to: str, message: str) -> dict: ...
        async def send_email(self, *, to: str, subject: str, body: str) -> dict: ...
    """

    channel: str = ""
    provider: str = ""

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self.http = http_client

    def _fail(self, message: str, error_type: str = "connector_error") -> NoReturn:
        """Raise a ServiceError with the given error type."""
        raise ServiceError(message, error_type)

    async def _post(self, url: str, **kwargs) -> dict:
        """POST and return the JSON body, mapping transport and HTTP errors to ServiceError."""
        try:
            resp = await self.http.post(url, **kwargs)
        except httpx.TimeoutException:
            self._fail(f"{self.provider} request timed out", "timeout")
        except httpx.HTTPError as e:
            self._fail(f"{self.provider} request failed: {e}", "connector_error")

        try:
            data = resp.json()
        except ValueError:
            data = {"message": resp.text}

        if resp.status_code == 429:
            self._fail(f"{self.provider} rate limit hit", "rate_limit")
        if resp.status_code in (401, 403):
            self._fail(f"{self.provider} rejected the credentials", "permission_denied")
        if resp.status_code >= 400:
            detail = data.get("message") or data.get("error") or resp.reason_phrase
            self._fail(f"{self.provider} API error {resp.status_code}: {detail}", "connector_error")
        return data

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> BaseConnector:
        """Construct this connector from application Settings."""
        ...

    @classmethod
    @abstractmethod
    def is_configured(cls, settings: Settings) -> bool:
        """Return True if all required credentials are present in settings."""
        ...
