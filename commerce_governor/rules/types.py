"""
Rule Evaluation - typed rule payloads
Each rule family is a tagged union: the discriminant (rule type / check type) selects the
condition class, so every evaluator handles a closed set of shapes.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Union


def _pick(data: Dict[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    """Read a key stored either in snake_case or camelCase."""
    if snake in data:
        return data[snake]
    return data.get(camel, default)


# Guardrail conditions

@dataclass
class KeywordCondition:
    keywords: List[str] = field(default_factory=list)
    match_mode: str = "any"  # any | all
    case_sensitive: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'KeywordCondition':
        return cls(
            keywords=[str(k) for k in data.get("keywords") or []],
            match_mode=_pick(data, "match_mode", "matchMode", "any"),
            case_sensitive=bool(_pick(data, "case_sensitive", "caseSensitive", False)),
        )


@dataclass
class LengthCondition:
    min: Optional[int] = None
    max: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LengthCondition':
        return cls(min=data.get("min"), max=data.get("max"))


@dataclass
class PatternCondition:
    regex: str = ""
    flags: str = ""  # any of "i", "m", "s"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PatternCondition':
        return cls(regex=data.get("regex") or data.get("pattern") or "", flags=data.get("flags") or "")


@dataclass
class SentimentCondition:
    max_negative: float = -0.5

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SentimentCondition':
        return cls(max_negative=float(_pick(data, "max_negative", "maxNegative", -0.5)))


@dataclass
class TopicCondition:
    topics: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TopicCondition':
        return cls(topics=[str(t) for t in data.get("topics") or data.get("keywords") or []])


GuardrailCondition = Union[KeywordCondition, LengthCondition, PatternCondition, SentimentCondition, TopicCondition]

GUARDRAIL_CONDITIONS = {
    "keyword": KeywordCondition,
    "length": LengthCondition,
    "pattern": PatternCondition,
    "sentiment": SentimentCondition,
    "topic": TopicCondition,
}

ENFORCEMENT_WARN = "warn"
ENFORCEMENT_BLOCK = "block"


@dataclass
class GuardrailRule:
    id: str
    name: str
    rule_type: str
    condition: GuardrailCondition
    enforcement: str = ENFORCEMENT_WARN
    fallback_message: Optional[str] = None
    priority: int = 0
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GuardrailRule':
        rule_type = _pick(data, "rule_type", "type")
        if rule_type not in GUARDRAIL_CONDITIONS:
            raise ValueError(f"Unknown guardrail type: {rule_type}")
        condition = data.get("condition") or {}
        if not isinstance(condition, GUARDRAIL_CONDITIONS[rule_type]):
            condition = GUARDRAIL_CONDITIONS[rule_type].from_dict(condition)
        enforcement = data.get("enforcement", ENFORCEMENT_WARN)
        if enforcement not in (ENFORCEMENT_WARN, ENFORCEMENT_BLOCK):
            raise ValueError(f"Unknown guardrail enforcement: {enforcement}")
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            rule_type=rule_type,
            condition=condition,
            enforcement=enforcement,
            fallback_message=_pick(data, "fallback_message", "fallbackMessage"),
            priority=int(data.get("priority", 0)),
            enabled=bool(data.get("enabled", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Violation:
    rule_id: str
    rule_name: str
    severity: str  # high | medium
    enforcement: str
    fallback_message: Optional[str]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Escalation policies

@dataclass
class EscalationTriggers:
    sentiment_threshold: Optional[float] = None
    confidence_threshold: Optional[float] = None
    cart_value_min: Optional[float] = None
    message_count_min: Optional[int] = None
    time_since_reply_min: Optional[float] = None  # minutes
    keywords: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EscalationTriggers':
        return cls(
            sentiment_threshold=_pick(data, "sentiment_threshold", "sentimentThreshold"),
            confidence_threshold=_pick(data, "confidence_threshold", "confidenceThreshold"),
            cart_value_min=_pick(data, "cart_value_min", "cartValueMin"),
            message_count_min=_pick(data, "message_count_min", "messageCountMin"),
            time_since_reply_min=_pick(data, "time_since_reply_min", "timeSinceReplyMin"),
            keywords=[str(k) for k in data.get("keywords") or []],
        )

    def is_empty(self) -> bool:
        return (
            self.sentiment_threshold is None
            and self.confidence_threshold is None
            and self.cart_value_min is None
            and self.message_count_min is None
            and self.time_since_reply_min is None
            and not self.keywords
        )


@dataclass
class EscalationRouting:
    notification_type: str = "dashboard"
    notify_emails: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EscalationRouting':
        return cls(
            notification_type=_pick(data, "notification_type", "notificationType", "dashboard"),
            notify_emails=list(_pick(data, "notify_emails", "notifyEmails") or []),
        )


@dataclass
class EscalationBehavior:
    pause_automation: bool = True
    send_notification: bool = True
    match_mode: str = "any"  # any | all

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EscalationBehavior':
        return cls(
            pause_automation=bool(_pick(data, "pause_automation", "pauseAutomation", True)),
            send_notification=bool(_pick(data, "send_notification", "sendNotification", True)),
            match_mode=_pick(data, "match_mode", "matchMode", "any"),
        )


@dataclass
class EscalationPolicy:
    id: str
    name: str
    triggers: EscalationTriggers
    routing: EscalationRouting = field(default_factory=EscalationRouting)
    behavior: EscalationBehavior = field(default_factory=EscalationBehavior)
    priority: int = 0
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EscalationPolicy':
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            triggers=EscalationTriggers.from_dict(data.get("triggers") or {}),
            routing=EscalationRouting.from_dict(data.get("routing") or {}),
            behavior=EscalationBehavior.from_dict(data.get("behavior") or {}),
            priority=int(data.get("priority", 0)),
            enabled=bool(data.get("enabled", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EscalationMatch:
    policy: EscalationPolicy
    matched_triggers: List[str]


# Compliance checks

CHECK_TYPES = ("disclosure", "consent", "data_handling", "refund_policy", "custom")
ENFORCEMENT_REQUIRED = "required"
ENFORCEMENT_RECOMMENDED = "recommended"


@dataclass
class ComplianceValidation:
    required_keywords: List[str] = field(default_factory=list)
    required_phrases: List[str] = field(default_factory=list)
    pattern: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ComplianceValidation':
        return cls(
            required_keywords=list(_pick(data, "required_keywords", "requiredKeywords") or []),
            required_phrases=list(_pick(data, "required_phrases", "requiredPhrases") or []),
            pattern=data.get("pattern"),
        )


@dataclass
class ComplianceTriggers:
    keywords: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ComplianceTriggers':
        return cls(keywords=list(data.get("keywords") or []), topics=list(data.get("topics") or []))


@dataclass
class ComplianceCheck:
    id: str
    name: str
    check_type: str
    validation: ComplianceValidation = field(default_factory=ComplianceValidation)
    trigger_conditions: ComplianceTriggers = field(default_factory=ComplianceTriggers)
    enforcement: str = ENFORCEMENT_RECOMMENDED
    compliance_text: Optional[str] = None
    priority: int = 0
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ComplianceCheck':
        check_type = _pick(data, "check_type", "checkType", "custom")
        if check_type not in CHECK_TYPES:
            raise ValueError(f"Unknown compliance check type: {check_type}")
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            check_type=check_type,
            validation=ComplianceValidation.from_dict(data.get("validation") or {}),
            trigger_conditions=ComplianceTriggers.from_dict(
                _pick(data, "trigger_conditions", "triggerConditions") or {}
            ),
            enforcement=data.get("enforcement", ENFORCEMENT_RECOMMENDED),
            compliance_text=_pick(data, "compliance_text", "complianceText"),
            priority=int(data.get("priority", 0)),
            enabled=bool(data.get("enabled", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ComplianceResult:
    passed: bool = True
    suggestions: List[str] = field(default_factory=list)
    checks_failed: List[str] = field(default_factory=list)
    # Subset of checks_failed with required enforcement; only these block
    required_failed: List[str] = field(default_factory=list)
    checks_run: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Shared inputs

@dataclass
class ConversationFacts:
    """Live facts the rule engines evaluate against."""
    customer_message: str = ""
    sentiment: float = 0.0
    confidence: float = 0.0  # 0-100
    cart_total: float = 0.0
    message_count: int = 0
    minutes_since_reply: Optional[float] = None  # None when nothing was sent yet


@dataclass
class RuleSet:
    guardrails: List[GuardrailRule] = field(default_factory=list)
    escalation_policies: List[EscalationPolicy] = field(default_factory=list)
    compliance_checks: List[ComplianceCheck] = field(default_factory=list)
