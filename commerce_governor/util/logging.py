"""
Structured logging for the governance engine.
Every orchestration step, rule outcome, approval transition and channel send is logged as an operation line.
"""

import logging
from typing import Any, Dict, List, Optional

SENSITIVE_FIELDS = ['access_token', 'secret', 'password', 'token', 'authorization']


class StructuredLogger:
    """Structured logger for orchestration, governance and approval operations."""

    def __init__(self, name: str = "commerce_governor"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.info(message)

    def log_orchestration_step(self, step: str, conversation_id: str, details: Dict[str, Any] = None,
                               status: str = "success"):
        """Log a single step of the orchestration pipeline."""
        log_details = {"conversation_id": conversation_id}
        if details:
            log_details.update(sanitize_payload(details))

        self.log_operation(f"orchestration.{step}", status, log_details)

    def log_tool_call(self, tool_name: str, conversation_id: str, arguments: Dict[str, Any],
                      result: Dict[str, Any], duration_ms: float = 0.0):
        """Log a tool executor invocation."""
        failed = isinstance(result, dict) and "error" in result
        log_details = {
            "tool": tool_name,
            "conversation_id": conversation_id,
            "arguments": sanitize_payload(arguments),
            "duration_ms": round(duration_ms, 2),
        }
        if failed:
            log_details["error"] = result.get("error")

        self.log_operation(f"tool.{tool_name}", "failed" if failed else "success", log_details)

    def log_governance_decision(self, conversation_id: str, verdict: str, mode: str, confidence: float,
                                sentiment: float, reason: str):
        """Log the verdict of the governance decision layer."""
        log_details = {
            "conversation_id": conversation_id,
            "mode": mode,
            "confidence": confidence,
            "sentiment": round(sentiment, 3),
            "reason": reason[:200] if reason else "",
        }
        self.log_operation("governance.decision", verdict.lower(), log_details)

    def log_rule_violation(self, rule_id: str, rule_name: str, enforcement: str, reason: str):
        """Log a guardrail rule violation."""
        log_details = {
            "rule_id": rule_id,
            "rule_name": rule_name,
            "enforcement": enforcement,
            "reason": reason[:100] if reason else "",
        }
        self.log_operation("guardrail.violation", "blocked" if enforcement == "block" else "warned", log_details)

    def log_escalation_match(self, policy_id: str, policy_name: str, matched_triggers: List[str]):
        """Log the first escalation policy that matched."""
        log_details = {
            "policy_id": policy_id,
            "policy_name": policy_name,
            "matched_triggers": matched_triggers,
        }
        self.log_operation("escalation.matched", "escalated", log_details)

    def log_approval_transition(self, approval_id: str, from_status: str, to_status: str,
                                actor: str = "system", reason: str = ""):
        """Log a pending approval state transition."""
        log_details = {
            "approval_id": approval_id,
            "from": from_status,
            "to": to_status,
            "actor": actor,
            "reason": reason[:100] if reason else "",
        }
        self.log_operation("approval.transition", to_status, log_details)

    def log_mode_switch(self, workspace_id: str, old_mode: str, new_mode: str, superseded: int = 0):
        """Log a workspace automation mode change."""
        log_details = {
            "workspace_id": workspace_id,
            "old_mode": old_mode,
            "new_mode": new_mode,
            "superseded_approvals": superseded,
        }
        self.log_operation("settings.mode_switch", "applied", log_details)

    def log_channel_send(self, conversation_id: str, to: str, provider_message_id: Optional[str],
                         status: str = "success", error: str = None):
        """Log an outbound channel send."""
        log_details = {
            "conversation_id": conversation_id,
            "to": _mask_phone(to),
            "provider_message_id": provider_message_id,
        }
        if error:
            log_details["error"] = error[:200]

        self.log_operation("channel.send", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def _mask_phone(phone: Optional[str]) -> str:
    if not phone:
        return ""
    return f"***{phone[-4:]}" if len(phone) > 4 else "***"


# Global logger instance
logger = StructuredLogger()


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
