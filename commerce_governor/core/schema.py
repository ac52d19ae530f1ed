"""
Domain records for the governance engine.
Settings, time-gate configuration, conversation snapshots, approvals and audit entries.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

MODE_MANUAL = "manual"
MODE_HITL = "hitl"
MODE_AUTO = "auto"
AUTOMATION_MODES = (MODE_MANUAL, MODE_HITL, MODE_AUTO)

APPROVAL_PENDING = "pending"
APPROVAL_APPROVING = "approving"  # claimed by a reviewer, payload executing
APPROVAL_APPROVED = "approved"
APPROVAL_REJECTED = "rejected"
APPROVAL_SUPERSEDED = "superseded"
APPROVAL_STATUSES = (APPROVAL_PENDING, APPROVAL_APPROVING, APPROVAL_APPROVED, APPROVAL_REJECTED, APPROVAL_SUPERSEDED)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
OUT_OF_HOURS_BEHAVIORS = ("queue", "auto_reply", "disable")


@dataclass
class QuietHoursPeriod:
    enabled: bool = True
    start: str = "22:00"
    end: str = "07:00"
    timezone: str = "UTC"
    days: List[str] = field(default_factory=list)  # empty = every day

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QuietHoursPeriod':
        return cls(
            enabled=bool(data.get("enabled", True)),
            start=data.get("start", "22:00"),
            end=data.get("end", "07:00"),
            timezone=data.get("timezone") or "UTC",
            days=[str(d).lower() for d in data.get("days") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WorkspaceAutomationSettings:
    workspace_id: str
    mode: str = MODE_MANUAL
    confidence_threshold: float = 80.0
    ai_voice: str = ""
    do_list: List[str] = field(default_factory=list)
    dont_list: List[str] = field(default_factory=list)
    escalation_rules: str = ""  # advisory prose, never evaluated
    quiet_hours: List[QuietHoursPeriod] = field(default_factory=list)
    compliance_notes: str = ""

    @property
    def threshold_percent(self) -> float:
        """Threshold on the 0-100 scale; fractions (<= 1) are scaled up."""
        if self.confidence_threshold <= 1:
            return self.confidence_threshold * 100
        return self.confidence_threshold

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["quiet_hours"] = [p.to_dict() for p in self.quiet_hours]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkspaceAutomationSettings':
        data = dict(data)
        data["quiet_hours"] = [
            p if isinstance(p, QuietHoursPeriod) else QuietHoursPeriod.from_dict(p)
            for p in data.get("quiet_hours") or []
        ]
        return cls(**data)


@dataclass
class DaySchedule:
    day: str
    enabled: bool = True
    start: str = "09:00"
    end: str = "17:00"


@dataclass
class BusinessHoursConfig:
    timezone: str = "America/New_York"
    schedule: List[DaySchedule] = field(default_factory=list)
    holidays: List[str] = field(default_factory=list)  # YYYY-MM-DD, local
    out_of_hours_behavior: str = "queue"
    enabled: bool = False

    def day(self, name: str) -> Optional[DaySchedule]:
        for entry in self.schedule:
            if entry.day == name:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BusinessHoursConfig':
        return cls(
            timezone=data.get("timezone") or "America/New_York",
            schedule=[
                DaySchedule(
                    day=str(d.get("day", "")).lower(),
                    enabled=bool(d.get("enabled", True)),
                    start=d.get("start", "09:00"),
                    end=d.get("end", "17:00"),
                )
                for d in data.get("schedule") or []
            ],
            holidays=list(data.get("holidays") or []),
            out_of_hours_behavior=data.get("out_of_hours_behavior", "queue"),
            enabled=bool(data.get("enabled", False)),
        )


def default_business_hours() -> BusinessHoursConfig:
    """Monday to Friday, 09:00-17:00 Eastern."""
    return BusinessHoursConfig(
        schedule=[
            DaySchedule(day=day, enabled=day not in ("saturday", "sunday"))
            for day in WEEKDAYS
        ]
    )


@dataclass
class Workspace:
    id: str
    business_name: str


@dataclass
class ChannelAccount:
    id: str
    phone_number_id: str
    access_token: str
    display_phone_number: Optional[str] = None


@dataclass
class Conversation:
    id: str
    workspace_id: str
    customer_phone: str
    customer_name: Optional[str] = None
    cart_items: List[Dict[str, Any]] = field(default_factory=list)
    cart_total: float = 0.0
    message_count: int = 0
    last_outbound_at: Optional[str] = None
    account: Optional[ChannelAccount] = None


@dataclass
class Message:
    id: int
    conversation_id: str
    direction: str  # 'inbound' | 'outbound'
    content: str
    is_ai_generated: bool
    created_at: str

    @property
    def role(self) -> str:
        return "user" if self.direction == "inbound" else "assistant"


@dataclass
class PendingApproval:
    id: str
    conversation_id: str
    workspace_id: str
    action_type: str  # 'send_message', 'add_to_cart'
    action_payload: Dict[str, Any]
    ai_reasoning: str
    confidence_score: float  # fraction, 0-1
    status: str
    created_at: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    rejection_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ActionLogEntry:
    workspace_id: str
    action_type: str  # 'send_message', 'mode_switch', 'escalation_notification', ...
    action_payload: Dict[str, Any]
    conversation_id: Optional[str] = None
    confidence_score: Optional[float] = None
    automation_mode: Optional[str] = None
    execution_method: Optional[str] = None  # 'auto_send', 'approved', 'manual', 'system'
    result: Optional[str] = None  # 'success', 'failed', 'pending_approval', 'rejected'
    error_message: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
