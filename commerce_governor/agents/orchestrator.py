"""
Orchestration engine - one inbound customer message in, one governed outcome out.

Flow:
1. Load settings, history, conversation and workspace concurrently (any failure is fatal)
2. Quiet hours -> canned acknowledgement, queued
3. Manual mode -> inert, nothing happens
4. Build the layered system prompt
5. Tool-calling loop: one model turn, sequential tool execution, one follow-up turn
6. Sentiment of the customer's message
7. Compliance-note injection and confidence scoring
8. Rule evaluation and the governance verdict
9. Auto-send, or a pending approval for a human

The engine holds no per-conversation state between invocations.
"""

import asyncio
import json
import sqlite3
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..core import config, dao
from ..core.approval import ACTION_SEND_MESSAGE, ApprovalWorkflow, approval_workflow
from ..core.errors import CompletionServiceError, ConfigurationError, GovernorError
from ..core.schema import MODE_MANUAL, ActionLogEntry, Conversation, Message
from ..core.time_gate import in_quiet_hours
from ..rules import compliance, escalation, guardrails
from ..rules.loader import RulesLoader, rules_loader
from ..rules.types import ConversationFacts
from ..util.logging import logger
from .channel import WhatsAppChannel, channel as default_channel
from .completion import CompletionService, assistant_tool_turn, tool_result_message
from .governance import (
    GovernanceDecision, GovernanceInput, GovernanceVerdict, compute_confidence, decide, inject_compliance,
)
from .prompts import build_system_prompt
from .sentiment import SentimentEstimator
from .tools import ToolContext, ToolRouter


@dataclass
class OrchestrationResult:
    """Outcome returned to message ingress."""
    requires_approval: bool = False
    confidence: float = 0.0
    message: Optional[str] = None
    approval_id: Optional[str] = None
    success: Optional[bool] = None
    queued: Optional[bool] = None
    verdict: Optional[str] = None
    mode: Optional[str] = None
    sentiment: Optional[float] = None
    violations: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def _minutes_since(iso_ts: Optional[str], now: datetime) -> Optional[float]:
    if not iso_ts:
        return None
    try:
        ts = datetime.fromisoformat(iso_ts)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return max(0.0, (now - ts).total_seconds() / 60)


class OrchestrationEngine:
    """
    Drives one inbound message through prompt, tools, rules and governance.

    All collaborators are injectable; defaults talk to Ollama, the WhatsApp Cloud API
    and the local store.
    """

    def __init__(self, completion: CompletionService = None, sentiment: SentimentEstimator = None,
                 tools: ToolRouter = None, channel: WhatsAppChannel = None,
                 approvals: ApprovalWorkflow = None, rules: RulesLoader = None,
                 clock: Callable[[], datetime] = None):
        self.completion = completion or CompletionService()
        self.sentiment = sentiment or SentimentEstimator()
        self.tools = tools or ToolRouter()
        self.channel = channel or default_channel
        self.approvals = approvals or approval_workflow
        self.rules = rules or rules_loader
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _load_context(self, conversation_id: str, workspace_id: str):
        try:
            settings, history, conversation, workspace = await asyncio.gather(
                asyncio.to_thread(dao.get_settings, workspace_id),
                asyncio.to_thread(dao.get_recent_messages, conversation_id, config.get_history_limit()),
                asyncio.to_thread(dao.get_conversation, conversation_id),
                asyncio.to_thread(dao.get_workspace, workspace_id),
            )
        except sqlite3.Error as e:
            raise GovernorError(f"Failed to load conversation context: {e}") from e

        if settings is None:
            raise ConfigurationError(f"No automation settings for workspace {workspace_id}")
        if conversation is None or conversation.workspace_id != workspace_id:
            raise ConfigurationError(f"Conversation {conversation_id} not found in workspace {workspace_id}")
        if workspace is None:
            raise ConfigurationError(f"Workspace {workspace_id} not found")
        return settings, history, conversation, workspace

    def _build_messages(self, system_prompt: str, history: List[Message], customer_message: str) -> List[Dict[str, Any]]:
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in history)

        # Ingress may already have stored this message as the last history entry
        last = history[-1] if history else None
        if not (last and last.direction == "inbound" and last.content == customer_message):
            messages.append({"role": "user", "content": customer_message})
        return messages

    async def _run_tool_loop(self, messages: List[Dict[str, Any]], ctx: ToolContext):
        """One model turn, its tool calls in order, then one follow-up turn."""
        response = await self.completion.complete(messages, self.tools.schema())
        if not response.tool_calls:
            return response.content, []

        follow_up = messages + [assistant_tool_turn(response)]
        tool_results = []
        for call in response.tool_calls:
            result = await self.tools.call_tool(call.name, call.arguments, ctx)
            tool_results.append(result)
            follow_up.append(tool_result_message(call, json.dumps(result, default=str)))

        final = await self.completion.complete(follow_up)
        return final.content, tool_results

    async def _facts(self, conversation: Conversation, customer_message: str, sentiment: float,
                     confidence: float, tools_ran: bool) -> ConversationFacts:
        cart_total = conversation.cart_total
        if tools_ran:
            items = await asyncio.to_thread(dao.get_cart, conversation.id)
            cart_total = round(sum(float(i["price"]) * int(i["quantity"]) for i in items), 2)
        return ConversationFacts(
            customer_message=customer_message,
            sentiment=sentiment,
            confidence=confidence,
            cart_total=cart_total,
            message_count=conversation.message_count,
            minutes_since_reply=_minutes_since(conversation.last_outbound_at, self._clock()),
        )

    async def handle_inbound_message(self, conversation_id: str, customer_message: str,
                                     workspace_id: str) -> OrchestrationResult:
        settings, history, conversation, workspace = await self._load_context(conversation_id, workspace_id)
        logger.log_orchestration_step("context_loaded", conversation_id, {
            "mode": settings.mode,
            "history": len(history),
        })

        # Quiet hours win over every mode
        if in_quiet_hours(settings.quiet_hours, self._clock()):
            decision = decide(GovernanceInput(
                mode=settings.mode, confidence=0, threshold=settings.threshold_percent, sentiment=0.0,
                quiet_hours=True,
            ))
            logger.log_orchestration_step("quiet_hours", conversation_id, {"reason": decision.reason})
            return OrchestrationResult(
                success=True, queued=True, message=config.QUIET_HOURS_MESSAGE,
                verdict=decision.verdict.value, mode=settings.mode,
            )

        if settings.mode == MODE_MANUAL:
            logger.log_orchestration_step("manual_mode", conversation_id)
            return OrchestrationResult(success=True, mode=MODE_MANUAL)

        if conversation.account is None:
            raise ConfigurationError(f"Conversation {conversation_id} has no channel credentials")

        product_count = await asyncio.to_thread(dao.count_products, workspace_id)
        system_prompt = build_system_prompt(workspace, settings, conversation, product_count)
        messages = self._build_messages(system_prompt, history, customer_message)

        ctx = ToolContext(workspace_id, conversation_id, conversation.customer_phone)
        candidate, tool_results = await self._run_tool_loop(messages, ctx)
        if not candidate or not candidate.strip():
            raise CompletionServiceError("Completion service returned an empty response")
        logger.log_orchestration_step("candidate_ready", conversation_id, {"tool_calls": len(tool_results)})

        sentiment = await self.sentiment.estimate(customer_message)
        candidate = inject_compliance(candidate, settings.compliance_notes)
        confidence = compute_confidence(candidate, tool_results)

        facts = await self._facts(conversation, customer_message, sentiment, confidence, bool(tool_results))
        rule_set = await asyncio.to_thread(self.rules.load, workspace_id)
        violations = guardrails.evaluate(candidate, facts, rule_set.guardrails)
        escalation_match = escalation.match(facts, rule_set.escalation_policies)
        compliance_result = compliance.validate(candidate, facts, rule_set.compliance_checks)

        decision = decide(GovernanceInput(
            mode=settings.mode,
            confidence=confidence,
            threshold=settings.threshold_percent,
            sentiment=sentiment,
            violations=violations,
            escalation=escalation_match,
            compliance=compliance_result,
        ))
        logger.log_governance_decision(conversation_id, decision.verdict.value, settings.mode, confidence,
                                       sentiment, decision.reason)

        if escalation_match and escalation_match.policy.behavior.send_notification:
            await self._notify_escalation(workspace_id, conversation_id, escalation_match, confidence, settings.mode)

        base = dict(
            confidence=confidence, sentiment=sentiment, mode=settings.mode,
            verdict=decision.verdict.value, violations=[v.to_dict() for v in violations],
        )

        if decision.verdict == GovernanceVerdict.AUTO_SEND:
            await self._auto_send(conversation, candidate, confidence, settings.mode)
            return OrchestrationResult(success=True, requires_approval=False, message=candidate, **base)

        approval_id = await self._enqueue_approval(
            conversation, candidate, confidence, settings.mode, decision, violations, escalation_match,
            compliance_result, sentiment,
        )
        return OrchestrationResult(success=True, requires_approval=True, message=candidate,
                                   approval_id=approval_id, **base)

    async def _auto_send(self, conversation: Conversation, text: str, confidence: float, mode: str):
        # Send first; nothing is persisted if the channel fails
        provider_message_id = await self.channel.send_text(
            conversation.account, conversation.customer_phone, text, conversation_id=conversation.id
        )
        await asyncio.to_thread(dao.add_message, conversation.id, "outbound", text, is_ai_generated=True,
                                provider_message_id=provider_message_id)
        await asyncio.to_thread(dao.update_conversation_preview, conversation.id, text)
        await asyncio.to_thread(dao.append_action_log, ActionLogEntry(
            workspace_id=conversation.workspace_id,
            conversation_id=conversation.id,
            action_type=ACTION_SEND_MESSAGE,
            action_payload={"message": text, "provider_message_id": provider_message_id},
            confidence_score=confidence / 100,
            automation_mode=mode,
            execution_method="auto_send",
            result="success",
        ))
        logger.log_orchestration_step("auto_sent", conversation.id, {"provider_message_id": provider_message_id})

    async def _enqueue_approval(self, conversation: Conversation, candidate: str, confidence: float, mode: str,
                                decision: GovernanceDecision, violations, escalation_match, compliance_result,
                                sentiment: float) -> str:
        payload = {
            "message": candidate,
            "fallback_message": guardrails.first_fallback(violations),
            "violations": [v.to_dict() for v in violations],
            "compliance": compliance_result.to_dict(),
            "escalation": {
                "policy_id": escalation_match.policy.id,
                "policy_name": escalation_match.policy.name,
                "matched_triggers": escalation_match.matched_triggers,
            } if escalation_match else None,
            "sentiment": sentiment,
            "forced_escalation": decision.forced_escalation,
        }
        approval = await asyncio.to_thread(
            self.approvals.create, conversation.id, conversation.workspace_id, ACTION_SEND_MESSAGE, payload,
            decision.reason, confidence / 100,
        )
        await asyncio.to_thread(dao.append_action_log, ActionLogEntry(
            workspace_id=conversation.workspace_id,
            conversation_id=conversation.id,
            action_type=ACTION_SEND_MESSAGE,
            action_payload={"approval_id": approval.id, "message": candidate, "reason": decision.reason},
            confidence_score=confidence / 100,
            automation_mode=mode,
            execution_method="approval_required",
            result="pending_approval",
        ))
        logger.log_orchestration_step("approval_enqueued", conversation.id, {"approval_id": approval.id})
        return approval.id

    async def _notify_escalation(self, workspace_id: str, conversation_id: str, match, confidence: float, mode: str):
        routing = match.policy.routing
        await asyncio.to_thread(dao.append_action_log, ActionLogEntry(
            workspace_id=workspace_id,
            conversation_id=conversation_id,
            action_type="escalation_notification",
            action_payload={
                "policy_id": match.policy.id,
                "policy_name": match.policy.name,
                "matched_triggers": match.matched_triggers,
                "notification_type": routing.notification_type,
                "notify_emails": routing.notify_emails,
            },
            confidence_score=confidence / 100,
            automation_mode=mode,
            execution_method="system",
            result="success",
        ))
        logger.log_operation("escalation.notification", "queued", {
            "policy_id": match.policy.id,
            "notification_type": routing.notification_type,
            "recipients": len(routing.notify_emails),
        })


_engine: Optional[OrchestrationEngine] = None


def get_engine() -> OrchestrationEngine:
    """Shared engine instance, created on first use."""
    global _engine
    if _engine is None:
        _engine = OrchestrationEngine()
    return _engine


async def handle_inbound_message(conversation_id: str, customer_message: str, workspace_id: str) -> OrchestrationResult:
    return await get_engine().handle_inbound_message(conversation_id, customer_message, workspace_id)
