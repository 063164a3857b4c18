"""
WhatsApp Cloud API client.

Sends plain text messages. Failures surface as ExternalServiceError; the
notification dispatcher decides what a failure means for its caller.
"""
from typing import Any, Dict, Optional

import httpx
import structlog

from membership_system.config import Settings, get_settings
from membership_system.core.exceptions import ExternalServiceError

logger = structlog.get_logger(__name__)


class WhatsAppClient:
    """Thin async wrapper around ``POST /{phone_number_id}/messages``."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.http_client = http_client

    @property
    def enabled(self) -> bool:
        return self.settings.whatsapp_enabled

    @property
    def messages_url(self) -> str:
        base = self.settings.whatsapp_api_url.rstrip("/")
        return f"{base}/{self.settings.whatsapp_phone_number_id}/messages"

    async def _post(self, payload: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.post(self.messages_url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self.settings.gateway_timeout_seconds) as client:
            return await client.post(self.messages_url, json=payload, headers=headers)

    async def send_text(self, phone_number: str, message: str) -> str:
        """
        Send a text message.

        Args:
            phone_number: Normalised number, e.g. +6281234567890
            message: Message body

        Returns:
            str: Provider message id

        Raises:
            ExternalServiceError: Not configured, transport failure, non-2xx
                or a response without a message id
        """
        if not self.enabled:
            raise ExternalServiceError("WhatsApp API not configured")

        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": phone_number.lstrip("+"),
            "type": "text",
            "text": {"preview_url": False, "body": message},
        }
        headers = {
            "Authorization": f"Bearer {self.settings.whatsapp_access_token}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._post(payload, headers)
        except httpx.HTTPError as e:
            logger.error("whatsapp_transport_error", error=str(e))
            raise ExternalServiceError(f"WhatsApp API unreachable: {e}")

        if not response.is_success:
            logger.error(
                "whatsapp_api_error",
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ExternalServiceError(
                f"WhatsApp API error: {response.status_code} {response.reason_phrase}"
            )

        try:
            message_id = str(response.json()["messages"][0]["id"])
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error("whatsapp_malformed_response", error=str(e))
            raise ExternalServiceError("WhatsApp API returned an unexpected response")

        return message_id
