"""
Request and response models for the ingress and operator API.
"""

import re
from typing import Any, Dict, List, Optional

import pytz
from pydantic import BaseModel, Field, field_validator

from ..core.schema import AUTOMATION_MODES, OUT_OF_HOURS_BEHAVIORS, WEEKDAYS
from ..rules.types import CHECK_TYPES, GUARDRAIL_CONDITIONS

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _validate_hhmm(v: str) -> str:
    if not _HHMM.match(v):
        raise ValueError('time must be HH:MM (24h)')
    return v


def _validate_timezone(v: str) -> str:
    if v not in pytz.all_timezones_set:
        raise ValueError(f'unknown timezone: {v}')
    return v


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool


class ErrorResponse(BaseModel):
    error: str
    message: str


class InboundMessageRequest(BaseModel):
    conversation_id: str
    workspace_id: str
    customer_message: str

    @field_validator('conversation_id', 'workspace_id', 'customer_message')
    @classmethod
    def must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('field cannot be empty')
        return v


class InboundMessageResponse(BaseModel):
    requires_approval: bool = False
    confidence: float = 0.0
    message: Optional[str] = None
    approval_id: Optional[str] = None
    success: Optional[bool] = None
    queued: Optional[bool] = None
    verdict: Optional[str] = None
    mode: Optional[str] = None


class ApprovalDecisionRequest(BaseModel):
    approved: bool
    rejection_reason: Optional[str] = None
    reviewer: Optional[str] = None
    use_fallback: bool = False


class ApprovalItem(BaseModel):
    id: str
    conversation_id: str
    workspace_id: str
    action_type: str
    action_payload: Dict[str, Any]
    ai_reasoning: str
    confidence_score: Optional[float]
    status: str
    created_at: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    rejection_reason: Optional[str] = None


class ApprovalListResponse(BaseModel):
    approvals: List[ApprovalItem]


class ApprovalDecisionResponse(BaseModel):
    success: bool
    approval_id: str
    status: str
    message: Optional[str] = None
    provider_message_id: Optional[str] = None


class QuietHoursPeriodModel(BaseModel):
    enabled: bool = True
    start: str
    end: str
    timezone: str = "UTC"
    days: List[str] = []

    @field_validator('start', 'end')
    @classmethod
    def time_must_be_hhmm(cls, v):
        return _validate_hhmm(v)

    @field_validator('timezone')
    @classmethod
    def timezone_must_exist(cls, v):
        return _validate_timezone(v)

    @field_validator('days')
    @classmethod
    def days_must_be_weekdays(cls, v):
        days = [d.lower() for d in v]
        invalid = [d for d in days if d not in WEEKDAYS]
        if invalid:
            raise ValueError(f'invalid days: {invalid}')
        return days


class SettingsUpdateRequest(BaseModel):
    mode: Optional[str] = None
    confidence_threshold: Optional[float] = None
    ai_voice: Optional[str] = None
    do_list: Optional[List[str]] = None
    dont_list: Optional[List[str]] = None
    escalation_rules: Optional[str] = None
    quiet_hours: Optional[List[QuietHoursPeriodModel]] = None
    compliance_notes: Optional[str] = None

    @field_validator('mode')
    @classmethod
    def mode_must_be_valid(cls, v):
        if v is not None and v not in AUTOMATION_MODES:
            raise ValueError(f'mode must be one of: {list(AUTOMATION_MODES)}')
        return v

    @field_validator('confidence_threshold')
    @classmethod
    def threshold_in_range(cls, v):
        if v is not None and not 0 <= v <= 100:
            raise ValueError('confidence_threshold must be between 0 and 100')
        return v


class SettingsResponse(BaseModel):
    workspace_id: str
    mode: str
    confidence_threshold: float
    ai_voice: str
    do_list: List[str]
    dont_list: List[str]
    escalation_rules: str
    quiet_hours: List[QuietHoursPeriodModel]
    compliance_notes: str
    superseded_approvals: int = 0


class GuardrailRuleModel(BaseModel):
    id: Optional[str] = None
    name: str
    type: str
    condition: Dict[str, Any] = {}
    enforcement: str = "warn"
    fallback_message: Optional[str] = None
    priority: int = 0
    enabled: bool = True

    @field_validator('type')
    @classmethod
    def type_must_be_valid(cls, v):
        if v not in GUARDRAIL_CONDITIONS:
            raise ValueError(f'type must be one of: {list(GUARDRAIL_CONDITIONS)}')
        return v

    @field_validator('enforcement')
    @classmethod
    def enforcement_must_be_valid(cls, v):
        if v not in ('warn', 'block'):
            raise ValueError("enforcement must be 'warn' or 'block'")
        return v


class EscalationPolicyModel(BaseModel):
    id: Optional[str] = None
    name: str
    triggers: Dict[str, Any] = {}
    routing: Dict[str, Any] = {}
    behavior: Dict[str, Any] = {}
    priority: int = 0
    enabled: bool = True


class ComplianceCheckModel(BaseModel):
    id: Optional[str] = None
    name: str
    check_type: str = "custom"
    validation: Dict[str, Any] = {}
    trigger_conditions: Dict[str, Any] = {}
    enforcement: str = "recommended"
    compliance_text: Optional[str] = None
    priority: int = 0
    enabled: bool = True

    @field_validator('check_type')
    @classmethod
    def check_type_must_be_valid(cls, v):
        if v not in CHECK_TYPES:
            raise ValueError(f'check_type must be one of: {list(CHECK_TYPES)}')
        return v

    @field_validator('enforcement')
    @classmethod
    def enforcement_must_be_valid(cls, v):
        if v not in ('required', 'recommended'):
            raise ValueError("enforcement must be 'required' or 'recommended'")
        return v


class GuardrailRulesRequest(BaseModel):
    rules: List[GuardrailRuleModel]


class EscalationPoliciesRequest(BaseModel):
    rules: List[EscalationPolicyModel]


class ComplianceChecksRequest(BaseModel):
    rules: List[ComplianceCheckModel]


class RulesReplaceResponse(BaseModel):
    success: bool
    workspace_id: str
    kind: str
    count: int


class DayScheduleModel(BaseModel):
    day: str
    enabled: bool = True
    start: str = "09:00"
    end: str = "17:00"

    @field_validator('day')
    @classmethod
    def day_must_be_weekday(cls, v):
        if v.lower() not in WEEKDAYS:
            raise ValueError(f'day must be one of: {list(WEEKDAYS)}')
        return v.lower()

    @field_validator('start', 'end')
    @classmethod
    def time_must_be_hhmm(cls, v):
        return _validate_hhmm(v)


class BusinessHoursModel(BaseModel):
    timezone: str = "America/New_York"
    schedule: List[DayScheduleModel] = []
    holidays: List[str] = []
    out_of_hours_behavior: str = "queue"
    enabled: bool = False

    @field_validator('timezone')
    @classmethod
    def timezone_must_exist(cls, v):
        return _validate_timezone(v)

    @field_validator('out_of_hours_behavior')
    @classmethod
    def behavior_must_be_valid(cls, v):
        if v not in OUT_OF_HOURS_BEHAVIORS:
            raise ValueError(f'out_of_hours_behavior must be one of: {list(OUT_OF_HOURS_BEHAVIORS)}')
        return v

    @field_validator('holidays')
    @classmethod
    def holidays_must_be_dates(cls, v):
        for d in v:
            if not re.match(r"^\d{4}-\d{2}-\d{2}$", d):
                raise ValueError(f'holiday must be YYYY-MM-DD: {d}')
        return v


class BusinessHoursStatusResponse(BaseModel):
    is_open: bool
    enabled: bool
    out_of_hours_behavior: str
    timezone: str
    local_time: str


class ActionLogItem(BaseModel):
    id: Optional[int]
    workspace_id: str
    conversation_id: Optional[str] = None
    action_type: str
    action_payload: Dict[str, Any]
    confidence_score: Optional[float] = None
    automation_mode: Optional[str] = None
    execution_method: Optional[str] = None
    result: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[str] = None


class ActionLogResponse(BaseModel):
    entries: List[ActionLogItem]
    count: int = Field(0, ge=0)
