"""
API endpoint tests
"""

import pytest
from fastapi.testclient import TestClient

from conftest import CONVERSATION_ID, WORKSPACE_ID, FakeChannel, FakeCompletion, FakeSentiment, set_mode
from commerce_governor.agents.orchestrator import OrchestrationEngine, get_engine
from commerce_governor.agents.tools import ToolRouter
from commerce_governor.api.main import app, get_approval_workflow
from commerce_governor.core import config, dao
from commerce_governor.core.approval import ACTION_SEND_MESSAGE, ApprovalWorkflow
from commerce_governor.core.errors import CompletionServiceError
from commerce_governor.core.schema import BusinessHoursConfig
from commerce_governor.rules.loader import RulesLoader


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def client(workspace, channel):
    """TestClient with the engine and approval workflow wired to fakes."""
    workflow = ApprovalWorkflow(sender=channel)
    app.dependency_overrides[get_approval_workflow] = lambda: workflow
    app.dependency_overrides[get_engine] = lambda: OrchestrationEngine(
        completion=FakeCompletion("The Road Runner is $90."),
        sentiment=FakeSentiment(0.1),
        tools=ToolRouter(),
        channel=channel,
        approvals=workflow,
        rules=RulesLoader(ttl_seconds=0),
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def inbound(client, message="How much is the road runner?"):
    return client.post("/messages/inbound", json={
        "conversation_id": CONVERSATION_ID,
        "workspace_id": WORKSPACE_ID,
        "customer_message": message,
    })


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["db_health"] is True
        assert response.json()["version"] == config.VERSION


class TestInbound:
    def test_auto_send(self, client, channel):
        set_mode("auto")
        response = inbound(client)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["requires_approval"] is False
        assert data["message"] == "The Road Runner is $90."
        assert len(channel.sent) == 1

    def test_hitl_low_confidence_returns_approval(self, client, channel):
        set_mode("hitl", threshold=95)
        data = inbound(client).json()
        assert data["requires_approval"] is True
        assert data["approval_id"]
        assert channel.sent == []

    def test_manual_mode(self, client):
        set_mode("manual")
        data = inbound(client).json()
        assert data == {"requires_approval": False, "confidence": 0.0, "success": True, "mode": "manual"}

    def test_empty_message_rejected(self, client):
        assert inbound(client, "   ").status_code == 422

    def test_busy_conversation(self, client):
        set_mode("auto")
        assert dao.try_acquire_conversation_lock(CONVERSATION_ID, "other-worker", 120)
        response = inbound(client)
        assert response.status_code == 409

    def test_lock_released_after_invocation(self, client):
        set_mode("auto")
        inbound(client)
        assert inbound(client).status_code == 200

    def test_upstream_failure_maps_to_502(self, client, channel):
        set_mode("auto")
        app.dependency_overrides[get_engine] = lambda: OrchestrationEngine(
            completion=FakeCompletion(CompletionServiceError("model down")),
            sentiment=FakeSentiment(0.0), tools=ToolRouter(), channel=channel,
            rules=RulesLoader(ttl_seconds=0),
        )
        response = inbound(client)
        assert response.status_code == 502
        assert response.json() == {"error": "model down", "message": config.FALLBACK_CUSTOMER_MESSAGE}
        # Lock released on failure
        assert dao.try_acquire_conversation_lock(CONVERSATION_ID, "next", 120)

    def test_missing_settings_maps_to_422(self, client):
        response = client.post("/messages/inbound", json={
            "conversation_id": CONVERSATION_ID, "workspace_id": "ws-unknown", "customer_message": "hi",
        })
        assert response.status_code == 422
        assert "error" in response.json()


class TestOutOfHours:
    @pytest.mark.parametrize("behavior,expected", [
        ("queue", {"success": True, "queued": True}),
        ("auto_reply", {"success": True, "queued": True, "message": config.OUT_OF_HOURS_MESSAGE}),
        ("disable", {"success": False, "queued": False}),
    ])
    def test_closed_business(self, client, channel, behavior, expected):
        set_mode("auto")
        dao.save_business_hours(WORKSPACE_ID, BusinessHoursConfig(
            timezone="UTC", schedule=[], enabled=True, out_of_hours_behavior=behavior,
        ))
        data = inbound(client).json()
        for key, value in expected.items():
            assert data[key] == value
        assert channel.sent == []

    def test_business_hours_round_trip(self, client):
        assert client.get(f"/workspaces/{WORKSPACE_ID}/business-hours").json()["timezone"] == "America/New_York"

        body = {
            "timezone": "Europe/London",
            "schedule": [{"day": "saturday", "enabled": True, "start": "10:00", "end": "14:00"}],
            "holidays": ["2024-12-25"],
            "out_of_hours_behavior": "auto_reply",
            "enabled": True,
        }
        response = client.put(f"/workspaces/{WORKSPACE_ID}/business-hours", json=body)
        assert response.status_code == 200
        assert client.get(f"/workspaces/{WORKSPACE_ID}/business-hours").json()["holidays"] == ["2024-12-25"]

        status = client.get(f"/workspaces/{WORKSPACE_ID}/business-hours/status").json()
        assert status["timezone"] == "Europe/London"
        assert status["out_of_hours_behavior"] == "auto_reply"

    def test_business_hours_validation(self, client):
        response = client.put(f"/workspaces/{WORKSPACE_ID}/business-hours", json={
            "timezone": "Mars/Olympus", "schedule": [], "holidays": [],
            "out_of_hours_behavior": "queue", "enabled": True,
        })
        assert response.status_code == 422


class TestApprovals:
    def _pending(self):
        return dao.insert_approval(CONVERSATION_ID, WORKSPACE_ID, ACTION_SEND_MESSAGE,
                                   {"message": "Draft reply", "fallback_message": None}, "low confidence", 0.6)

    def test_list_pending(self, client):
        approval = self._pending()
        data = client.get(f"/workspaces/{WORKSPACE_ID}/approvals").json()
        assert [a["id"] for a in data["approvals"]] == [approval.id]

    def test_approve(self, client, channel):
        approval = self._pending()
        response = client.post(f"/approvals/{approval.id}/decision", json={"approved": True},
                               headers={"X-User-Id": "agent-7"})
        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert channel.sent[0]["text"] == "Draft reply"
        assert dao.get_approval(approval.id).reviewed_by == "agent-7"

    def test_reject_without_reason_is_conflict(self, client):
        approval = self._pending()
        response = client.post(f"/approvals/{approval.id}/decision", json={"approved": False})
        assert response.status_code == 409

    def test_reject(self, client, channel):
        approval = self._pending()
        response = client.post(f"/approvals/{approval.id}/decision",
                               json={"approved": False, "rejection_reason": "Off brand"})
        assert response.json()["status"] == "rejected"
        assert channel.sent == []

    def test_unknown_approval(self, client):
        assert client.post("/approvals/nope/decision", json={"approved": True}).status_code == 404


class TestSettings:
    def test_get_settings(self, client):
        data = client.get(f"/workspaces/{WORKSPACE_ID}/settings").json()
        assert data["mode"] == "hitl"
        assert data["confidence_threshold"] == 80

    def test_unknown_workspace(self, client):
        assert client.get("/workspaces/nope/settings").status_code == 404

    def test_switch_to_auto_supersedes(self, client):
        for _ in range(2):
            dao.insert_approval(CONVERSATION_ID, WORKSPACE_ID, ACTION_SEND_MESSAGE, {"message": "x"}, "r", 0.5)

        response = client.put(f"/workspaces/{WORKSPACE_ID}/settings", json={"mode": "auto"})

        assert response.status_code == 200
        assert response.json()["superseded_approvals"] == 2
        assert client.get(f"/workspaces/{WORKSPACE_ID}/approvals").json()["approvals"] == []

    def test_invalid_values(self, client):
        assert client.put(f"/workspaces/{WORKSPACE_ID}/settings", json={"mode": "turbo"}).status_code == 422
        assert client.put(f"/workspaces/{WORKSPACE_ID}/settings",
                          json={"confidence_threshold": 101}).status_code == 422
        assert client.put(f"/workspaces/{WORKSPACE_ID}/settings", json={
            "quiet_hours": [{"start": "25:00", "end": "07:00", "timezone": "UTC"}],
        }).status_code == 422


class TestRules:
    def test_replace_guardrails_takes_effect(self, client, channel):
        set_mode("auto")
        response = client.put(f"/workspaces/{WORKSPACE_ID}/rules/guardrails", json={"rules": [{
            "name": "no prices", "type": "pattern", "condition": {"pattern": r"\$\d+"}, "enforcement": "block",
        }]})
        assert response.json() == {"success": True, "workspace_id": WORKSPACE_ID, "kind": "guardrails", "count": 1}

        data = inbound(client).json()
        assert data["requires_approval"] is True
        assert channel.sent == []

    def test_invalid_rule_rejected(self, client):
        response = client.put(f"/workspaces/{WORKSPACE_ID}/rules/guardrails", json={"rules": [{
            "name": "bad", "type": "mood", "condition": {},
        }]})
        assert response.status_code == 422

    def test_replace_escalation_and_compliance(self, client):
        response = client.put(f"/workspaces/{WORKSPACE_ID}/rules/escalation", json={"rules": [
            {"name": "angry", "triggers": {"sentimentThreshold": -0.5}},
        ]})
        assert response.json()["count"] == 1

        response = client.put(f"/workspaces/{WORKSPACE_ID}/rules/compliance", json={"rules": [
            {"name": "refunds", "check_type": "refund_policy", "trigger_conditions": {"keywords": ["refund"]},
             "validation": {"requiredKeywords": ["30 days"]}, "enforcement": "required"},
        ]})
        assert response.json()["count"] == 1
        assert len(dao.get_compliance_checks(WORKSPACE_ID)) == 1


class TestActionLog:
    def test_entries_and_limit_bounds(self, client):
        set_mode("auto")
        inbound(client)

        data = client.get(f"/workspaces/{WORKSPACE_ID}/action-log").json()
        assert data["count"] == 1
        assert data["entries"][0]["execution_method"] == "auto_send"

        filtered = client.get(f"/workspaces/{WORKSPACE_ID}/action-log",
                              params={"conversation_id": "other"}).json()
        assert filtered["count"] == 0

        assert client.get(f"/workspaces/{WORKSPACE_ID}/action-log", params={"limit": 0}).status_code == 400
        assert client.get(f"/workspaces/{WORKSPACE_ID}/action-log", params={"limit": 1001}).status_code == 400
