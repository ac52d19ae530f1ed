"""
WhatsApp channel send tests using httpx.MockTransport.
"""

import asyncio
import json

import httpx
import pytest

from commerce_governor.agents.channel import WhatsAppChannel
from commerce_governor.core.errors import ChannelSendError, ConfigurationError
from commerce_governor.core.schema import ChannelAccount

ACCOUNT = ChannelAccount(id="acct-1", phone_number_id="pn-123", access_token="secret-token")


def make_channel(handler):
    return WhatsAppChannel(base_url="https://graph.test", api_version="v18.0",
                           transport=httpx.MockTransport(handler))


class TestSendText:
    def test_payload_and_message_id(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"messages": [{"id": "wamid.ABC"}]})

        message_id = asyncio.run(make_channel(handler).send_text(ACCOUNT, "15550001111", "Hi!", "conv-1"))

        assert message_id == "wamid.ABC"
        assert seen["url"] == "https://graph.test/v18.0/pn-123/messages"
        assert seen["auth"] == "Bearer secret-token"
        assert seen["body"] == {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": "15550001111",
            "type": "text",
            "text": {"body": "Hi!"},
        }

    def test_error_status_raises(self):
        channel = make_channel(lambda request: httpx.Response(400, json={"error": {"message": "bad"}}))
        with pytest.raises(ChannelSendError) as exc:
            asyncio.run(channel.send_text(ACCOUNT, "15550001111", "Hi!"))
        assert exc.value.status_code == 400

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ChannelSendError):
            asyncio.run(make_channel(handler).send_text(ACCOUNT, "15550001111", "Hi!"))

    def test_missing_credentials(self):
        channel = make_channel(lambda request: httpx.Response(200, json={}))
        with pytest.raises(ConfigurationError):
            asyncio.run(channel.send_text(None, "15550001111", "Hi!"))
        with pytest.raises(ConfigurationError):
            asyncio.run(channel.send_text(ChannelAccount("a", "pn", ""), "15550001111", "Hi!"))
