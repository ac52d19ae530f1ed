"""
Error taxonomy for the governance engine.
Invocation-level failures carry a customer-safe fallback message; tool errors are plain dicts, never exceptions.
"""

from typing import Any, Dict, Optional

from .config import FALLBACK_CUSTOMER_MESSAGE


class GovernorError(Exception):
    """Base class for invocation-level failures."""

    error_type = "governor_error"

    def __init__(self, message: str, fallback_message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.fallback_message = fallback_message or FALLBACK_CUSTOMER_MESSAGE
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "type": self.error_type,
            "message": self.fallback_message,
        }


class ConfigurationError(GovernorError):
    """Missing workspace settings, conversation, workspace profile or channel credentials."""

    error_type = "configuration_error"


class UpstreamServiceError(GovernorError):
    """An external collaborator failed."""

    error_type = "upstream_error"


class CompletionServiceError(UpstreamServiceError):
    error_type = "completion_error"


class ChannelSendError(UpstreamServiceError):
    error_type = "channel_send_error"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class ApprovalStateError(GovernorError):
    """Illegal approval transition."""

    error_type = "approval_state_error"

    def __init__(self, message: str, not_found: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.not_found = not_found


class ConversationBusyError(GovernorError):
    """Another invocation holds the in-flight marker for this conversation."""

    error_type = "conversation_busy"
