"""
Rule evaluation: guardrails, escalation policies and compliance checks.
"""

from . import compliance, escalation, guardrails
from .types import (
    ComplianceCheck, ComplianceResult, ConversationFacts, EscalationMatch, EscalationPolicy,
    GuardrailRule, RuleSet, Violation,
)

__all__ = [
    "compliance",
    "escalation",
    "guardrails",
    "ComplianceCheck",
    "ComplianceResult",
    "ConversationFacts",
    "EscalationMatch",
    "EscalationPolicy",
    "GuardrailRule",
    "RuleSet",
    "Violation",
]
