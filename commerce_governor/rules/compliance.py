"""
Compliance validation
A check runs only when its trigger keywords or topics appear in the customer's last message.
Failed `required` checks fail the whole evaluation; `recommended` failures only add suggestions.
"""

import re
from typing import List, Optional

from ..util.logging import logger
from .types import ENFORCEMENT_REQUIRED, ComplianceCheck, ComplianceResult, ConversationFacts


def is_triggered(check: ComplianceCheck, customer_message: str) -> bool:
    terms = check.trigger_conditions.keywords + check.trigger_conditions.topics
    if not terms:
        return False
    message = (customer_message or "").lower()
    return any(term.lower() in message for term in terms)


def _failure_reason(check: ComplianceCheck, response: str) -> Optional[str]:
    """Why the response fails this check, or None when it passes."""
    text = (response or "").lower()
    validation = check.validation

    missing = [k for k in validation.required_keywords if k.lower() not in text]
    if missing:
        return f"missing required keywords: {', '.join(missing)}"

    if validation.required_phrases and not any(p.lower() in text for p in validation.required_phrases):
        return "none of the required phrases present"

    if validation.pattern:
        if not re.search(validation.pattern, response or "", re.IGNORECASE):
            return "required pattern not found"

    if check.check_type == "disclosure" and check.compliance_text:
        if check.compliance_text.lower() not in text:
            return "disclosure text not included"

    return None


def validate(candidate_response: str, facts: ConversationFacts, checks: List[ComplianceCheck]) -> ComplianceResult:
    """Run every triggered, enabled check against the candidate response."""
    result = ComplianceResult()

    for check in sorted(checks, key=lambda c: c.priority):
        if not check.enabled or not is_triggered(check, facts.customer_message):
            continue

        result.checks_run.append(check.id)
        try:
            reason = _failure_reason(check, candidate_response)
        except re.error as e:
            logger.warning(f"Skipping compliance check {check.id} ({check.name}): invalid pattern: {e}")
            continue

        if reason is None:
            continue

        result.checks_failed.append(check.id)
        result.suggestions.append(check.compliance_text or f"{check.name}: {reason}")
        if check.enforcement == ENFORCEMENT_REQUIRED:
            result.passed = False
            result.required_failed.append(check.id)

        logger.log_operation("compliance.check_failed", check.enforcement, {
            "check_id": check.id,
            "check_type": check.check_type,
            "reason": reason,
        })

    return result
