"""
Channel send - WhatsApp Cloud API
Sends a text message on behalf of a workspace's channel account and returns the provider message id.
Any failure raises ChannelSendError; nothing is persisted here.
"""

from typing import Optional

import httpx

from ..core import config
from ..core.errors import ChannelSendError, ConfigurationError
from ..core.schema import ChannelAccount
from ..util.logging import logger


class WhatsAppChannel:
    """Thin async client for the Graph API messages endpoint."""

    def __init__(self, base_url: str = None, api_version: str = None, timeout: float = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or config.WHATSAPP_GRAPH_BASE_URL).rstrip("/")
        self.api_version = api_version or config.WHATSAPP_GRAPH_API_VERSION
        self.timeout = timeout or config.CHANNEL_SEND_TIMEOUT_SEC
        self._transport = transport

    def _url(self, account: ChannelAccount) -> str:
        return f"{self.base_url}/{self.api_version}/{account.phone_number_id}/messages"

    async def send_text(self, account: Optional[ChannelAccount], to: str, text: str,
                        conversation_id: str = "") -> str:
        """Send `text` to `to`; returns the provider message id."""
        if account is None or not account.phone_number_id or not account.access_token:
            raise ConfigurationError("Missing channel credentials for conversation")

        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"body": text},
        }
        headers = {
            "Authorization": f"Bearer {account.access_token}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self._url(account), json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.log_channel_send(conversation_id, to, None, status="failed", error=e.response.text)
            raise ChannelSendError(
                f"Channel API returned {e.response.status_code}", status_code=e.response.status_code
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.log_channel_send(conversation_id, to, None, status="failed", error=str(e))
            raise ChannelSendError(f"Channel send failed: {e}") from e

        messages = data.get("messages") or []
        provider_message_id = messages[0].get("id") if messages else None
        logger.log_channel_send(conversation_id, to, provider_message_id)
        return provider_message_id


# Global channel instance
channel = WhatsAppChannel()
