"""
Tests for structured logging helpers
"""

import logging

from commerce_governor.util.logging import StructuredLogger, sanitize_payload


class TestSanitizePayload:
    def test_redacts_sensitive_fields(self):
        payload = {"access_token": "abc", "nested": {"password": "pw", "query": "shoes"}}
        assert sanitize_payload(payload) == {
            "access_token": "[REDACTED]",
            "nested": {"password": "[REDACTED]", "query": "shoes"},
        }

    def test_reveal_sensitive(self):
        assert sanitize_payload({"token": "abc"}, reveal_sensitive=True) == {"token": "abc"}

    def test_truncates_long_strings(self):
        result = sanitize_payload({"items": ["x" * 150]})
        assert result["items"][0] == "x" * 100 + "..."

    def test_custom_sensitive_fields(self):
        assert sanitize_payload({"phone": "1555"}, sensitive_fields=["phone"]) == {"phone": "[REDACTED]"}


class TestStructuredLogger:
    def test_channel_send_masks_phone(self, caplog):
        log = StructuredLogger("commerce_governor.test")
        with caplog.at_level(logging.INFO, logger="commerce_governor.test"):
            log.log_channel_send("conv-1", "15550001111", "wamid.1")
        assert "***1111" in caplog.text
        assert "15550001111" not in caplog.text

    def test_tool_call_arguments_sanitized(self, caplog):
        log = StructuredLogger("commerce_governor.test")
        with caplog.at_level(logging.INFO, logger="commerce_governor.test"):
            log.log_tool_call("add_to_cart", "conv-1", {"product_id": "p1", "token": "t"}, {"error": "Product not found"})
        assert "Operation: tool.add_to_cart, Status: failed" in caplog.text
        assert "[REDACTED]" in caplog.text
