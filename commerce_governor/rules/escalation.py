"""
Escalation policy matching
Policies are tried by ascending priority; the first whose configured triggers match under
its match mode wins.
"""

from typing import Dict, List, Optional

from ..util.logging import logger
from .types import ConversationFacts, EscalationMatch, EscalationPolicy, EscalationTriggers


def _trigger_results(triggers: EscalationTriggers, facts: ConversationFacts) -> Dict[str, bool]:
    """Outcome of every configured trigger, keyed by trigger name."""
    results = {}

    if triggers.sentiment_threshold is not None:
        results["sentiment_threshold"] = facts.sentiment < float(triggers.sentiment_threshold)

    if triggers.confidence_threshold is not None:
        threshold = float(triggers.confidence_threshold)
        if threshold <= 1:
            threshold *= 100
        results["confidence_threshold"] = facts.confidence < threshold

    if triggers.cart_value_min is not None:
        results["cart_value_min"] = facts.cart_total >= float(triggers.cart_value_min)

    if triggers.message_count_min is not None:
        results["message_count_min"] = facts.message_count >= int(triggers.message_count_min)

    if triggers.time_since_reply_min is not None:
        results["time_since_reply_min"] = (
            facts.minutes_since_reply is not None
            and facts.minutes_since_reply >= float(triggers.time_since_reply_min)
        )

    if triggers.keywords:
        message = (facts.customer_message or "").lower()
        results["keywords"] = any(k.lower() in message for k in triggers.keywords)

    return results


def policy_matches(policy: EscalationPolicy, facts: ConversationFacts) -> Optional[List[str]]:
    """Matched trigger names, or None when the policy does not match."""
    results = _trigger_results(policy.triggers, facts)
    if not results:
        return None

    matched = [name for name, hit in results.items() if hit]
    if policy.behavior.match_mode == "all":
        return matched if len(matched) == len(results) else None
    return matched or None


def match(facts: ConversationFacts, policies: List[EscalationPolicy]) -> Optional[EscalationMatch]:
    """Return the first matching enabled policy by priority, or None."""
    for policy in sorted(policies, key=lambda p: p.priority):
        if not policy.enabled:
            continue
        matched = policy_matches(policy, facts)
        if matched:
            logger.log_escalation_match(policy.id, policy.name, matched)
            return EscalationMatch(policy=policy, matched_triggers=matched)
    return None
