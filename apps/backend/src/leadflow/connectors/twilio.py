"""Twilio Programmable Messaging connector (SMS)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from .base import BaseConnector
from .registry import register

if TYPE_CHECKING:
    from ..config import Settings

_TWILIO_API = "https://api.twilio.com/2010-04-01"


@register
class TwilioSmsConnector(BaseConnector):
    """Real SMS connector using the Twilio REST Messages API.

    Required settings: TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and either
    TWILIO_FROM_NUMBER or TWILIO_MESSAGING_SERVICE_SID (which wins when both
    are set).
    """

    channel = "sms"
    provider = "twilio"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        http_client: httpx.AsyncClient,
        from_number: str | None = None,
        messaging_service_sid: str | None = None,
    ) -> None:
        super().__init__(http_client)
        self._account_sid = account_sid
        self._auth = (account_sid, auth_token)
        self._from_number = from_number
        self._messaging_service_sid = messaging_service_sid

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> TwilioSmsConnector:
        return cls(
            settings.twilio_account_sid or "",
            settings.twilio_auth_token or "",
            http_client,
            from_number=settings.twilio_from_number,
            messaging_service_sid=settings.twilio_messaging_service_sid,
        )

    @classmethod
    def is_configured(cls, settings: Settings) -> bool:
        return bool(
            settings.twilio_account_sid
            and settings.twilio_auth_token
            and (settings.twilio_from_number or settings.twilio_messaging_service_sid)
        )

    async def send_sms(self, *, to: str, message: str) -> dict:
        """Send one SMS and return Twilio's message sid and status."""
        form = {"To": to, "Body": message}
        if self._messaging_service_sid:
            form["MessagingServiceSid"] = self._messaging_service_sid
        else:
            form["From"] = self._from_number or ""

        data = await self._post(
            f"{_TWILIO_API}/Accounts/{self._account_sid}/Messages.json",
            data=form,
            auth=self._auth,
        )
        return {
            "provider": self.provider,
            "providerMessageId": data.get("sid"),
            "status": data.get("status"),
            "from": data.get("from"),
            "messagingServiceSid": data.get("messaging_service_sid"),
        }
