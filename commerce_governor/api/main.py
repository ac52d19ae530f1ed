"""
Message ingress and operator API.
"""

import os
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    ActionLogItem, ActionLogResponse, ApprovalDecisionRequest, ApprovalDecisionResponse, ApprovalItem,
    ApprovalListResponse, BusinessHoursModel, BusinessHoursStatusResponse, ComplianceChecksRequest,
    EscalationPoliciesRequest, GuardrailRulesRequest, HealthResponse, InboundMessageRequest,
    InboundMessageResponse, RulesReplaceResponse, SettingsResponse, SettingsUpdateRequest,
)
from ..agents.orchestrator import OrchestrationEngine, get_engine
from ..core import config, dao, settings_service
from ..core.approval import ApprovalWorkflow, approval_workflow
from ..core.db import health_check, init_db
from ..core.errors import (
    ApprovalStateError, ConfigurationError, ConversationBusyError, GovernorError, UpstreamServiceError,
)
from ..core.schema import BusinessHoursConfig, default_business_hours
from ..core.time_gate import business_hours_status, is_business_open
from ..rules.loader import invalidate_rules
from ..rules.types import ComplianceCheck, EscalationPolicy, GuardrailRule
from ..util.logging import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    for issue in config.validate_config():
        logger.warning(f"Config issue: {issue}")
    yield


# Initialize the FastAPI application
app = FastAPI(
    title="Commerce Governor API",
    version=config.VERSION,
    description="Policy-governed AI responder for conversational commerce",
    docs_url="/docs" if config.debug_enabled() else None,
    redoc_url="/redoc" if config.debug_enabled() else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_approval_workflow() -> ApprovalWorkflow:
    return approval_workflow


def _error_response(status_code: int, exc: GovernorError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": exc.message, "message": exc.fallback_message})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request, exc: ConfigurationError):
    logger.error(f"Configuration error: {exc.message}")
    return _error_response(422, exc)


@app.exception_handler(UpstreamServiceError)
async def upstream_error_handler(request, exc: UpstreamServiceError):
    logger.error(f"Upstream service error: {exc.message}")
    return _error_response(502, exc)


@app.exception_handler(ApprovalStateError)
async def approval_state_error_handler(request, exc: ApprovalStateError):
    return _error_response(404 if exc.not_found else 409, exc)


@app.exception_handler(ConversationBusyError)
async def conversation_busy_handler(request, exc: ConversationBusyError):
    return _error_response(409, exc)


@app.exception_handler(GovernorError)
async def governor_error_handler(request, exc: GovernorError):
    logger.error(f"Invocation failed: {exc.message}")
    return _error_response(500, exc)


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()
    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=config.VERSION,
        db_health=db_health,
    )


@app.post("/messages/inbound", response_model=InboundMessageResponse, response_model_exclude_none=True)
async def inbound_message_endpoint(req: InboundMessageRequest, engine: OrchestrationEngine = Depends(get_engine)):
    """Run one inbound customer message through business hours, the in-flight lock and the engine."""
    hours = dao.get_business_hours(req.workspace_id)
    if not is_business_open(hours):
        behavior = hours.out_of_hours_behavior
        logger.log_operation("ingress.out_of_hours", behavior, {
            "workspace_id": req.workspace_id,
            "conversation_id": req.conversation_id,
        })
        if behavior == "auto_reply":
            return InboundMessageResponse(success=True, queued=True, message=config.OUT_OF_HOURS_MESSAGE)
        if behavior == "disable":
            return InboundMessageResponse(success=False, queued=False)
        return InboundMessageResponse(success=True, queued=True)

    owner = str(uuid.uuid4())
    locked = False
    if config.CONVERSATION_LOCK_ENABLED:
        locked = dao.try_acquire_conversation_lock(req.conversation_id, owner, config.CONVERSATION_LOCK_STALE_SEC)
        if not locked:
            raise ConversationBusyError(f"Conversation {req.conversation_id} is already being processed")

    try:
        result = await engine.handle_inbound_message(req.conversation_id, req.customer_message, req.workspace_id)
    finally:
        if locked:
            dao.release_conversation_lock(req.conversation_id, owner)

    return InboundMessageResponse(**{
        k: v for k, v in result.to_dict().items() if k in InboundMessageResponse.model_fields
    })


@app.get("/workspaces/{workspace_id}/approvals", response_model=ApprovalListResponse)
def list_approvals_endpoint(workspace_id: str, status: Optional[str] = "pending"):
    approvals = dao.list_approvals(workspace_id, status or None)
    return ApprovalListResponse(approvals=[ApprovalItem(**a.to_dict()) for a in approvals])


@app.post("/approvals/{approval_id}/decision", response_model=ApprovalDecisionResponse,
          response_model_exclude_none=True)
async def approval_decision_endpoint(approval_id: str, decision: ApprovalDecisionRequest,
                                     x_user_id: Optional[str] = Header(None),
                                     workflow: ApprovalWorkflow = Depends(get_approval_workflow)):
    """Approve (execute) or reject a pending approval."""
    reviewer = decision.reviewer or x_user_id
    if decision.approved:
        outcome = await workflow.approve(approval_id, reviewer, decision.use_fallback)
    else:
        outcome = workflow.reject(approval_id, reviewer, decision.rejection_reason)
    return ApprovalDecisionResponse(**{
        k: v for k, v in outcome.items() if k in ApprovalDecisionResponse.model_fields
    })


@app.get("/workspaces/{workspace_id}/settings", response_model=SettingsResponse)
def get_settings_endpoint(workspace_id: str):
    settings = dao.get_settings(workspace_id)
    if settings is None:
        raise HTTPException(status_code=404, detail="Automation settings not found")
    return SettingsResponse(**settings.to_dict())


@app.put("/workspaces/{workspace_id}/settings", response_model=SettingsResponse)
def update_settings_endpoint(workspace_id: str, req: SettingsUpdateRequest):
    """Update automation settings. Switching to auto supersedes pending approvals before returning."""
    try:
        settings, superseded = settings_service.update_settings(workspace_id, req.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return SettingsResponse(**settings.to_dict(), superseded_approvals=superseded)


def _with_id(data: dict) -> dict:
    if not data.get("id"):
        data["id"] = str(uuid.uuid4())
    return data


@app.put("/workspaces/{workspace_id}/rules/guardrails", response_model=RulesReplaceResponse)
def replace_guardrails_endpoint(workspace_id: str, req: GuardrailRulesRequest):
    try:
        rules = [GuardrailRule.from_dict(_with_id(r.model_dump())) for r in req.rules]
    except (ValueError, TypeError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    count = dao.replace_guardrails(workspace_id, rules)
    invalidate_rules(workspace_id)
    logger.log_operation("rules.replace", "success", {"workspace_id": workspace_id, "kind": "guardrails", "count": count})
    return RulesReplaceResponse(success=True, workspace_id=workspace_id, kind="guardrails", count=count)


@app.put("/workspaces/{workspace_id}/rules/escalation", response_model=RulesReplaceResponse)
def replace_escalation_endpoint(workspace_id: str, req: EscalationPoliciesRequest):
    try:
        policies = [EscalationPolicy.from_dict(_with_id(r.model_dump())) for r in req.rules]
    except (ValueError, TypeError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    count = dao.replace_escalation_policies(workspace_id, policies)
    invalidate_rules(workspace_id)
    logger.log_operation("rules.replace", "success", {"workspace_id": workspace_id, "kind": "escalation", "count": count})
    return RulesReplaceResponse(success=True, workspace_id=workspace_id, kind="escalation", count=count)


@app.put("/workspaces/{workspace_id}/rules/compliance", response_model=RulesReplaceResponse)
def replace_compliance_endpoint(workspace_id: str, req: ComplianceChecksRequest):
    try:
        checks = [ComplianceCheck.from_dict(_with_id(r.model_dump())) for r in req.rules]
    except (ValueError, TypeError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    count = dao.replace_compliance_checks(workspace_id, checks)
    invalidate_rules(workspace_id)
    logger.log_operation("rules.replace", "success", {"workspace_id": workspace_id, "kind": "compliance", "count": count})
    return RulesReplaceResponse(success=True, workspace_id=workspace_id, kind="compliance", count=count)


@app.get("/workspaces/{workspace_id}/business-hours", response_model=BusinessHoursModel)
def get_business_hours_endpoint(workspace_id: str):
    hours = dao.get_business_hours(workspace_id) or default_business_hours()
    return BusinessHoursModel(**hours.to_dict())


@app.put("/workspaces/{workspace_id}/business-hours", response_model=BusinessHoursModel)
def put_business_hours_endpoint(workspace_id: str, req: BusinessHoursModel):
    hours = BusinessHoursConfig.from_dict(req.model_dump())
    dao.save_business_hours(workspace_id, hours)
    logger.log_operation("business_hours.update", "success", {
        "workspace_id": workspace_id,
        "enabled": hours.enabled,
        "behavior": hours.out_of_hours_behavior,
    })
    return BusinessHoursModel(**hours.to_dict())


@app.get("/workspaces/{workspace_id}/business-hours/status", response_model=BusinessHoursStatusResponse)
def business_hours_status_endpoint(workspace_id: str):
    return BusinessHoursStatusResponse(**business_hours_status(dao.get_business_hours(workspace_id)))


@app.get("/workspaces/{workspace_id}/action-log", response_model=ActionLogResponse)
def action_log_endpoint(workspace_id: str, limit: int = 100, conversation_id: Optional[str] = None):
    if limit < 1 or limit > 1000:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 1000")
    entries = dao.list_action_log(workspace_id, limit, conversation_id)
    return ActionLogResponse(entries=[ActionLogItem(**e.to_dict()) for e in entries], count=len(entries))


def run():
    """Serve the API (console entry point)."""
    uvicorn.run(
        "commerce_governor.api.main:app",
        host=os.getenv("API_HOST", "127.0.0.1"),
        port=int(os.getenv("API_PORT", "8000")),
        log_level="debug" if config.debug_enabled() else "info",
    )
