"""
Governance decision layer
Confidence scoring, compliance-note injection and the verdict state machine that decides
whether a candidate response is sent automatically or waits for a human.

Hard rules (blocking guardrail, failed required compliance check) are applied in decide()
before any mode logic, so no mode can auto-send a response that breaks one.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..core import config
from ..core.schema import MODE_AUTO, MODE_HITL
from ..rules.guardrails import has_blocking
from ..rules.types import ComplianceResult, EscalationMatch, Violation
from .tools import tool_succeeded

BASELINE_CONFIDENCE = 75
HEDGING_CONFIDENCE = 60
DETAILED_CONFIDENCE = 85
DETAILED_MIN_LENGTH = 200
TOOL_BONUS = 10
TOOL_BONUS_CAP = 90

HEDGING_MARKERS = ["not sure", "might", "possibly", "maybe", "perhaps", "not certain"]
_HEDGING = re.compile(r"\b(?:" + "|".join(re.escape(m) for m in HEDGING_MARKERS) + r")\b", re.IGNORECASE)

COMPLIANCE_KEYWORDS = [
    "refund", "return", "warranty", "exchange", "cancel",
    "money back", "guarantee", "policy", "terms", "conditions",
]


def compute_confidence(response: str, tool_results: List[Any] = None) -> int:
    """Heuristic confidence on a 0-100 scale.

    One tier applies (hedging, else detailed, else baseline), then the tool bonus.
    """
    text = response or ""
    if _HEDGING.search(text):
        score = HEDGING_CONFIDENCE
    elif len(text) > DETAILED_MIN_LENGTH:
        score = DETAILED_CONFIDENCE
    else:
        score = BASELINE_CONFIDENCE

    if any(tool_succeeded(r) for r in tool_results or []):
        score = min(score + TOOL_BONUS, TOOL_BONUS_CAP)
    return score


def should_inject_compliance(response: str) -> bool:
    lowered = (response or "").lower()
    return any(keyword in lowered for keyword in COMPLIANCE_KEYWORDS)


def inject_compliance(response: str, compliance_notes: str) -> str:
    """Append the workspace compliance notes verbatim when the response touches policy topics."""
    if compliance_notes and compliance_notes.strip() and should_inject_compliance(response):
        return f"{response}\n\n{compliance_notes.strip()}"
    return response


class GovernanceVerdict(Enum):
    AUTO_SEND = "AUTO_SEND"
    REQUIRE_APPROVAL = "REQUIRE_APPROVAL"
    SUPPRESSED = "SUPPRESSED"


@dataclass
class GovernanceInput:
    mode: str
    confidence: float  # 0-100
    threshold: float  # 0-100
    sentiment: float
    quiet_hours: bool = False
    violations: List[Violation] = field(default_factory=list)
    escalation: Optional[EscalationMatch] = None
    compliance: ComplianceResult = field(default_factory=ComplianceResult)


@dataclass
class GovernanceDecision:
    verdict: GovernanceVerdict
    reason: str
    forced_escalation: bool = False
    hard_block: bool = False

    @property
    def requires_approval(self) -> bool:
        return self.verdict == GovernanceVerdict.REQUIRE_APPROVAL


def is_forced_escalation(sentiment: float) -> bool:
    return sentiment < config.FORCED_ESCALATION_SENTIMENT


def _hitl_transition(inputs: GovernanceInput) -> GovernanceDecision:
    if inputs.confidence < inputs.threshold:
        return GovernanceDecision(
            GovernanceVerdict.REQUIRE_APPROVAL,
            f"Confidence {inputs.confidence:g} below threshold {inputs.threshold:g}",
        )
    return GovernanceDecision(GovernanceVerdict.AUTO_SEND, f"Confidence {inputs.confidence:g} meets threshold")


def _auto_transition(inputs: GovernanceInput) -> GovernanceDecision:
    return GovernanceDecision(GovernanceVerdict.AUTO_SEND, "Auto mode")


MODE_TRANSITIONS: Dict[str, Callable[[GovernanceInput], GovernanceDecision]] = {
    MODE_HITL: _hitl_transition,
    MODE_AUTO: _auto_transition,
}


def decide(inputs: GovernanceInput) -> GovernanceDecision:
    """Governance verdict for one candidate response."""
    if inputs.quiet_hours:
        return GovernanceDecision(GovernanceVerdict.SUPPRESSED, "Quiet hours active")

    transition = MODE_TRANSITIONS.get(inputs.mode)
    if transition is None:
        raise ValueError(f"Mode '{inputs.mode}' is not governed")

    forced = is_forced_escalation(inputs.sentiment)

    blocking = [v for v in inputs.violations if has_blocking([v])]
    if blocking or not inputs.compliance.passed:
        reasons = [f"Guardrail '{v.rule_name}': {v.reason}" for v in blocking]
        if not inputs.compliance.passed:
            reasons.append(f"Required compliance checks failed: {', '.join(inputs.compliance.required_failed)}")
        return GovernanceDecision(
            GovernanceVerdict.REQUIRE_APPROVAL, "; ".join(reasons), forced_escalation=forced, hard_block=True
        )

    if forced:
        return GovernanceDecision(
            GovernanceVerdict.REQUIRE_APPROVAL,
            f"Forced escalation: sentiment {inputs.sentiment:.2f} below {config.FORCED_ESCALATION_SENTIMENT}",
            forced_escalation=True,
        )

    if inputs.escalation and inputs.escalation.policy.behavior.pause_automation:
        return GovernanceDecision(
            GovernanceVerdict.REQUIRE_APPROVAL,
            f"Escalation policy '{inputs.escalation.policy.name}' matched: "
            f"{', '.join(inputs.escalation.matched_triggers)}",
        )

    return transition(inputs)
