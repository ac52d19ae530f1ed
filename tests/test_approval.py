"""
Approval workflow tests - approve, reject, supersede.
"""

import asyncio

import pytest

from conftest import CONVERSATION_ID, CUSTOMER_PHONE, WORKSPACE_ID, FakeChannel
from commerce_governor.core import dao, settings_service
from commerce_governor.core.approval import ACTION_ADD_TO_CART, ACTION_SEND_MESSAGE, ApprovalWorkflow
from commerce_governor.core.errors import ApprovalStateError, ChannelSendError


def pending_message(workflow, message="Our trail shoes run small.", fallback="Let me check with the team."):
    return workflow.create(CONVERSATION_ID, WORKSPACE_ID, ACTION_SEND_MESSAGE,
                           {"message": message, "fallback_message": fallback}, "Confidence 70 below 80", 0.7)


class SlowChannel(FakeChannel):
    """Yields to the event loop before sending, and can run a side effect mid-send."""

    def __init__(self, during_send=None, fail=False):
        super().__init__(fail=fail)
        self.during_send = during_send

    async def send_text(self, account, to, text, conversation_id=""):
        await asyncio.sleep(0)
        if self.during_send:
            self.during_send()
        return await super().send_text(account, to, text, conversation_id)


class TestApprove:
    def test_approve_sends_and_records(self, workspace):
        channel = FakeChannel()
        workflow = ApprovalWorkflow(sender=channel)
        approval = pending_message(workflow)

        result = asyncio.run(workflow.approve(approval.id, reviewer="agent-7"))

        assert result["status"] == "approved"
        assert result["provider_message_id"] == "wamid.1"
        assert channel.sent[0]["to"] == CUSTOMER_PHONE
        assert channel.sent[0]["text"] == "Our trail shoes run small."
        assert channel.sent[0]["account"].phone_number_id == "pn-123"

        stored = dao.get_approval(approval.id)
        assert stored.status == "approved"
        assert stored.reviewed_by == "agent-7"
        assert dao.get_conversation_preview(CONVERSATION_ID) == "Our trail shoes run small."
        assert dao.count_messages(CONVERSATION_ID, "outbound") == 1

        log = dao.list_action_log(WORKSPACE_ID)[0]
        assert log.execution_method == "approved"
        assert log.result == "success"

    def test_approve_with_fallback(self, workspace):
        channel = FakeChannel()
        workflow = ApprovalWorkflow(sender=channel)
        approval = pending_message(workflow)

        result = asyncio.run(workflow.approve(approval.id, use_fallback=True))
        assert result["used_fallback"]
        assert channel.sent[0]["text"] == "Let me check with the team."

    def test_send_failure_keeps_approval_pending(self, workspace):
        workflow = ApprovalWorkflow(sender=FakeChannel(fail=True))
        approval = pending_message(workflow)

        with pytest.raises(ChannelSendError):
            asyncio.run(workflow.approve(approval.id))

        assert dao.get_approval(approval.id).status == "pending"
        assert dao.count_messages(CONVERSATION_ID) == 0
        assert dao.list_action_log(WORKSPACE_ID)[0].result == "failed"

    def test_add_to_cart_approval(self, workspace):
        workflow = ApprovalWorkflow(sender=FakeChannel())
        approval = workflow.create(CONVERSATION_ID, WORKSPACE_ID, ACTION_ADD_TO_CART,
                                   {"product_id": "p-road", "title": "Road Runner", "price": 90.0, "quantity": 2},
                                   "Large quantity", 0.6)

        result = asyncio.run(workflow.approve(approval.id))
        assert result["cart_total"] == 180.0
        assert dao.get_cart(CONVERSATION_ID)[0]["product_id"] == "p-road"

    def test_not_found_and_not_pending(self, workspace):
        workflow = ApprovalWorkflow(sender=FakeChannel())
        with pytest.raises(ApprovalStateError) as exc:
            asyncio.run(workflow.approve("missing"))
        assert exc.value.not_found

        approval = pending_message(workflow)
        asyncio.run(workflow.approve(approval.id))
        with pytest.raises(ApprovalStateError) as exc:
            asyncio.run(workflow.approve(approval.id))
        assert not exc.value.not_found


class TestReject:
    def test_reject_requires_reason(self, workspace):
        workflow = ApprovalWorkflow(sender=FakeChannel())
        approval = pending_message(workflow)
        with pytest.raises(ApprovalStateError):
            workflow.reject(approval.id, reviewer="agent-7", reason="  ")
        assert dao.get_approval(approval.id).status == "pending"

    def test_reject_sends_nothing(self, workspace):
        channel = FakeChannel()
        workflow = ApprovalWorkflow(sender=channel)
        approval = pending_message(workflow)

        result = workflow.reject(approval.id, reviewer="agent-7", reason="Wrong sizing info")

        assert result["status"] == "rejected"
        assert channel.sent == []
        stored = dao.get_approval(approval.id)
        assert stored.rejection_reason == "Wrong sizing info"
        assert dao.list_action_log(WORKSPACE_ID)[0].result == "rejected"


class TestSupersede:
    def test_supersede_only_pending(self, workspace):
        workflow = ApprovalWorkflow(sender=FakeChannel())
        first, second = pending_message(workflow), pending_message(workflow)
        workflow.reject(first.id, reason="no")

        assert workflow.supersede_pending(WORKSPACE_ID) == 1
        assert dao.get_approval(second.id).status == "superseded"
        assert dao.get_approval(first.id).status == "rejected"
        assert dao.list_approvals(WORKSPACE_ID) == []


class TestApproveRaces:
    def test_concurrent_approve_sends_once(self, workspace):
        channel = SlowChannel()
        workflow = ApprovalWorkflow(sender=channel)
        approval = pending_message(workflow)

        async def both():
            return await asyncio.gather(workflow.approve(approval.id), workflow.approve(approval.id),
                                        return_exceptions=True)

        results = asyncio.run(both())

        assert len(channel.sent) == 1
        assert dao.count_messages(CONVERSATION_ID, "outbound") == 1
        assert sum(isinstance(r, dict) and r["status"] == "approved" for r in results) == 1
        errors = [r for r in results if isinstance(r, ApprovalStateError)]
        assert len(errors) == 1
        assert not errors[0].not_found
        assert dao.get_approval(approval.id).status == "approved"

    def test_switch_to_auto_during_send(self, workspace):
        channel = SlowChannel(during_send=lambda: settings_service.update_settings(WORKSPACE_ID, {"mode": "auto"}))
        workflow = ApprovalWorkflow(sender=channel)
        approval = pending_message(workflow)
        waiting = pending_message(workflow, message="Second draft")

        result = asyncio.run(workflow.approve(approval.id, reviewer="agent-7"))

        # The claimed row is not superseded under the running send; everything else is
        assert result["status"] == "approved"
        assert dao.get_approval(approval.id).status == "approved"
        assert dao.get_approval(waiting.id).status == "superseded"
        assert len(channel.sent) == 1
        assert dao.list_approvals(WORKSPACE_ID) == []

    def test_failed_send_after_switch_to_auto_is_superseded(self, workspace):
        channel = SlowChannel(during_send=lambda: settings_service.update_settings(WORKSPACE_ID, {"mode": "auto"}),
                              fail=True)
        workflow = ApprovalWorkflow(sender=channel)
        approval = pending_message(workflow)

        with pytest.raises(ChannelSendError):
            asyncio.run(workflow.approve(approval.id))

        assert dao.get_approval(approval.id).status == "superseded"
        assert dao.list_approvals(WORKSPACE_ID) == []

    def test_reject_while_approving_is_refused(self, workspace):
        workflow = ApprovalWorkflow(sender=FakeChannel())
        approval = pending_message(workflow)
        assert dao.claim_approval(approval.id, reviewed_by="agent-7")

        with pytest.raises(ApprovalStateError):
            workflow.reject(approval.id, reason="too late")
        assert dao.get_approval(approval.id).status == "approving"

    def test_missing_fallback_releases_claim(self, workspace):
        workflow = ApprovalWorkflow(sender=FakeChannel())
        approval = pending_message(workflow, fallback="")

        with pytest.raises(ApprovalStateError):
            asyncio.run(workflow.approve(approval.id, use_fallback=True))
        assert dao.get_approval(approval.id).status == "pending"
