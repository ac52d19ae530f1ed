"""
Shared fixtures: a temporary database per test, a seeded workspace and fake collaborators.
"""

from datetime import datetime, timezone

import pytest

from commerce_governor.agents.completion import CompletionResponse, ToolCall
from commerce_governor.core import config, dao
from commerce_governor.core.db import init_db
from commerce_governor.core.errors import ChannelSendError
from commerce_governor.core.schema import WorkspaceAutomationSettings
from commerce_governor.rules.loader import invalidate_rules

WORKSPACE_ID = "ws-1"
CONVERSATION_ID = "conv-1"
CUSTOMER_PHONE = "15550001111"


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the store at a fresh SQLite file."""
    db_path = tmp_path / "commerce_test.db"
    monkeypatch.setattr(config, "DB_PATH", str(db_path))
    init_db()
    invalidate_rules()
    yield str(db_path)
    invalidate_rules()


@pytest.fixture
def workspace(temp_db):
    """Workspace with hitl settings, a channel account, one conversation and a small catalog."""
    dao.create_workspace(WORKSPACE_ID, "Acme Shoes")
    dao.save_settings(WorkspaceAutomationSettings(
        workspace_id=WORKSPACE_ID,
        mode="hitl",
        confidence_threshold=80,
        ai_voice="Friendly and upbeat",
        do_list=["Offer sizes"],
        dont_list=["Promise delivery dates"],
        compliance_notes="Returns accepted within 30 days.",
    ))
    dao.create_account("acct-1", WORKSPACE_ID, "pn-123", "secret-token")
    dao.create_conversation(CONVERSATION_ID, WORKSPACE_ID, CUSTOMER_PHONE, "Dana", whatsapp_account_id="acct-1")
    dao.create_product(WORKSPACE_ID, "Trail Runner", 120.0, product_id="p-trail", sku="TR-01",
                       description="Lightweight running shoe for trails", category="shoes", stock_quantity=3)
    dao.create_product(WORKSPACE_ID, "Road Runner", 90.0, product_id="p-road", sku="RR-01",
                       description="Cushioned running shoe", category="shoes", stock_quantity=10)
    dao.create_product(WORKSPACE_ID, "Running Socks", 12.5, product_id="p-socks", sku="SK-01",
                       description="Breathable socks", category="accessories", stock_quantity=None)
    return WORKSPACE_ID


def set_mode(mode: str, threshold: float = 80, quiet_hours=None, compliance_notes: str = None):
    settings = dao.get_settings(WORKSPACE_ID)
    settings.mode = mode
    settings.confidence_threshold = threshold
    if quiet_hours is not None:
        settings.quiet_hours = quiet_hours
    if compliance_notes is not None:
        settings.compliance_notes = compliance_notes
    dao.save_settings(settings)


class FakeCompletion:
    """Scripted completion service; records every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def complete(self, messages, tools=None):
        self.calls.append({"messages": messages, "tools": tools})
        if not self.responses:
            return CompletionResponse(content="Happy to help!")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            return CompletionResponse(content=response)
        return response


class FakeSentiment:
    def __init__(self, score: float = 0.0):
        self.score = score
        self.calls = []

    async def estimate(self, text):
        self.calls.append(text)
        return self.score


class FakeChannel:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_text(self, account, to, text, conversation_id=""):
        if self.fail:
            raise ChannelSendError("Channel API returned 500", status_code=500)
        self.sent.append({"account": account, "to": to, "text": text})
        return f"wamid.{len(self.sent)}"


def tool_call_response(name, arguments=None, content=""):
    return CompletionResponse(content=content, tool_calls=[ToolCall(id=f"call_{name}", name=name,
                                                                     arguments=arguments or {})])


def fixed_clock(hour: int, minute: int = 0, day: int = 6):
    """Clock pinned to 2024-05-<day> (May 6, 2024 is a Monday) in UTC."""
    moment = datetime(2024, 5, day, hour, minute, tzinfo=timezone.utc)
    return lambda: moment
