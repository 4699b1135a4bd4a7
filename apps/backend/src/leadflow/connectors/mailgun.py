"""Mailgun Messages API connector (email)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from .base import BaseConnector
from .registry import register

if TYPE_CHECKING:
    from ..config import Settings


@register
class MailgunEmailConnector(BaseConnector):
    """Real email connector using the Mailgun Messages API.

    Required settings: MAILGUN_API_KEY, MAILGUN_DOMAIN. MAILGUN_FROM defaults
    to no-reply@<domain>; MAILGUN_BASE_URL selects the EU region if needed.
    """

    channel = "email"
    provider = "mailgun"

    def __init__(
        self,
        api_key: str,
        domain: str,
        sender: str,
        http_client: httpx.AsyncClient,
        base_url: str = "https://api.mailgun.net",
    ) -> None:
        super().__init__(http_client)
        self._auth = ("api", api_key)
        self._url = f"{base_url.rstrip('/')}/v3/{domain}/messages"
        self._sender = sender

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> MailgunEmailConnector:
        domain = settings.mailgun_domain or ""
        return cls(
            settings.mailgun_api_key or "",
            domain,
            settings.mailgun_from or f"no-reply@{domain}",
            http_client,
            base_url=settings.mailgun_base_url,
        )

    @classmethod
    def is_configured(cls, settings: Settings) -> bool:
        return bool(settings.mailgun_api_key and settings.mailgun_domain)

    async def send_email(self, *, to: str, subject: str, body: str) -> dict:
        """Queue one plain-text email and return Mailgun's message id."""
        data = await self._post(
            self._url,
            data={"from": self._sender, "to": to, "subject": subject, "text": body},
            auth=self._auth,
        )
        return {
            "provider": self.provider,
            "providerMessageId": data.get("id"),
            "status": "queued",
        }
