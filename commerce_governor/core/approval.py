"""
Approval state machine - human disposition of governance-gated actions.

pending -> approving  (claimed by one reviewer while the payload executes)
approving -> approved (payload executed)
approving -> pending  (execution failed; superseded instead if the workspace is now in auto mode)
pending -> rejected   (reason required, nothing sent)
pending -> superseded (workspace switched to auto mode, nothing executed)

There is no timeout transition.
"""

from typing import Any, Dict, Optional

from . import dao
from .errors import ApprovalStateError, ChannelSendError, ConfigurationError
from .schema import (
    APPROVAL_APPROVED, APPROVAL_APPROVING, APPROVAL_PENDING, APPROVAL_REJECTED, APPROVAL_SUPERSEDED,
    ActionLogEntry, PendingApproval,
)
from ..util.logging import logger

ACTION_SEND_MESSAGE = "send_message"
ACTION_ADD_TO_CART = "add_to_cart"


class ApprovalWorkflow:
    """Creates approvals and applies human decisions to them.

    `sender` must provide `async send_text(account, to, text, conversation_id)`.
    """

    def __init__(self, sender=None):
        self._sender = sender

    @property
    def sender(self):
        if self._sender is None:
            from ..agents.channel import channel
            self._sender = channel
        return self._sender

    def create(self, conversation_id: str, workspace_id: str, action_type: str, action_payload: Dict[str, Any],
               ai_reasoning: str, confidence_score: float) -> PendingApproval:
        approval = dao.insert_approval(
            conversation_id, workspace_id, action_type, action_payload, ai_reasoning, confidence_score
        )
        logger.log_approval_transition(approval.id, "none", APPROVAL_PENDING, reason=ai_reasoning)
        return approval

    def _get_pending(self, approval_id: str) -> PendingApproval:
        approval = dao.get_approval(approval_id)
        if approval is None:
            raise ApprovalStateError(f"Approval {approval_id} not found", not_found=True)
        if approval.status != APPROVAL_PENDING:
            raise ApprovalStateError(f"Approval {approval_id} is already {approval.status}")
        return approval

    def _mode_of(self, workspace_id: str) -> Optional[str]:
        settings = dao.get_settings(workspace_id)
        return settings.mode if settings else None

    def _log(self, approval: PendingApproval, result: str, payload: Dict[str, Any], error: str = None):
        dao.append_action_log(ActionLogEntry(
            workspace_id=approval.workspace_id,
            conversation_id=approval.conversation_id,
            action_type=approval.action_type,
            action_payload=payload,
            confidence_score=approval.confidence_score,
            automation_mode=self._mode_of(approval.workspace_id),
            execution_method="approved",
            result=result,
            error_message=error,
        ))

    async def _send_message(self, approval: PendingApproval, use_fallback: bool) -> Dict[str, Any]:
        payload = approval.action_payload
        if use_fallback:
            text = payload.get("fallback_message")
            if not text:
                raise ApprovalStateError(f"Approval {approval.id} has no fallback message")
        else:
            text = payload.get("message")
        if not text:
            raise ApprovalStateError(f"Approval {approval.id} has no message to send")

        conversation = dao.get_conversation(approval.conversation_id)
        if conversation is None:
            raise ConfigurationError(f"Conversation {approval.conversation_id} not found")

        provider_message_id = await self.sender.send_text(
            conversation.account, conversation.customer_phone, text, conversation_id=conversation.id
        )
        dao.add_message(conversation.id, "outbound", text, is_ai_generated=True,
                        provider_message_id=provider_message_id)
        dao.update_conversation_preview(conversation.id, text)
        return {"message": text, "provider_message_id": provider_message_id, "used_fallback": use_fallback}

    def _add_to_cart(self, approval: PendingApproval) -> Dict[str, Any]:
        line = dict(approval.action_payload)
        if not line.get("product_id") or "price" not in line:
            raise ApprovalStateError(f"Approval {approval.id} has an invalid cart line")
        line.setdefault("quantity", 1)

        items = dao.get_cart(approval.conversation_id) + [line]
        total = dao.save_cart(approval.conversation_id, items, interaction_type="shopping")
        return {"cart_total": total, "item_count": len(items)}

    async def approve(self, approval_id: str, reviewer: str = None, use_fallback: bool = False) -> Dict[str, Any]:
        """Claim the approval, execute the stored action, then mark it approved.

        The claim moves the row to approving so no concurrent approve, reject or
        mode switch can act on it while the payload executes.
        """
        approval = self._get_pending(approval_id)
        if not dao.claim_approval(approval.id, reviewed_by=reviewer):
            raise ApprovalStateError(f"Approval {approval_id} is no longer pending")
        logger.log_approval_transition(approval.id, APPROVAL_PENDING, APPROVAL_APPROVING, reviewer or "unknown")

        try:
            if approval.action_type == ACTION_SEND_MESSAGE:
                outcome = await self._send_message(approval, use_fallback)
            elif approval.action_type == ACTION_ADD_TO_CART:
                outcome = self._add_to_cart(approval)
            else:
                raise ApprovalStateError(f"Unsupported action type: {approval.action_type}")
        except (ChannelSendError, ConfigurationError) as e:
            status = dao.release_approval(approval.id)
            self._log(approval, "failed", approval.action_payload, error=e.message)
            logger.log_approval_transition(approval.id, APPROVAL_APPROVING, status, reviewer or "unknown",
                                           reason=f"execution failed: {e.message}")
            raise
        except Exception:
            status = dao.release_approval(approval.id)
            logger.log_approval_transition(approval.id, APPROVAL_APPROVING, status, reviewer or "unknown",
                                           reason="payload could not be executed")
            raise

        dao.finish_approval(approval.id)
        self._log(approval, "success", {**approval.action_payload, **outcome})
        logger.log_approval_transition(approval.id, APPROVAL_APPROVING, APPROVAL_APPROVED, reviewer or "unknown")
        return {"success": True, "approval_id": approval.id, "status": APPROVAL_APPROVED, **outcome}

    def reject(self, approval_id: str, reviewer: str = None, reason: str = None) -> Dict[str, Any]:
        """Reject without executing. A reason is mandatory."""
        if not reason or not reason.strip():
            raise ApprovalStateError("A rejection reason is required")

        approval = self._get_pending(approval_id)
        if not dao.resolve_approval(approval.id, APPROVAL_REJECTED, reviewed_by=reviewer, rejection_reason=reason):
            raise ApprovalStateError(f"Approval {approval_id} is no longer pending")

        self._log(approval, "rejected", {**approval.action_payload, "rejection_reason": reason})
        logger.log_approval_transition(approval.id, APPROVAL_PENDING, APPROVAL_REJECTED, reviewer or "unknown", reason)
        return {"success": True, "approval_id": approval.id, "status": APPROVAL_REJECTED}

    def supersede_pending(self, workspace_id: str, conn=None) -> int:
        """Bulk-mark every pending approval of the workspace superseded."""
        count = dao.supersede_pending(workspace_id, conn=conn)
        if count:
            logger.log_operation("approval.supersede", APPROVAL_SUPERSEDED, {
                "workspace_id": workspace_id,
                "count": count,
            })
        return count


# Global workflow instance
approval_workflow = ApprovalWorkflow()


async def approve(approval_id: str, reviewer: str = None, use_fallback: bool = False) -> Dict[str, Any]:
    return await approval_workflow.approve(approval_id, reviewer, use_fallback)


def reject(approval_id: str, reviewer: str = None, reason: str = None) -> Dict[str, Any]:
    return approval_workflow.reject(approval_id, reviewer, reason)


def supersede_pending(workspace_id: str) -> int:
    return approval_workflow.supersede_pending(workspace_id)
