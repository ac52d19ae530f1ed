"""
Environment-driven configuration for the governance engine.
All values are read once at import; DB_PATH is looked up per connection so it can be redirected.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/commerce.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Completion service and sentiment estimator (Ollama)
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")
COMPLETION_MODEL = os.getenv("COMPLETION_MODEL", "llama3.1:8b")
SENTIMENT_MODEL = os.getenv("SENTIMENT_MODEL", COMPLETION_MODEL)
COMPLETION_TIMEOUT_SEC = float(os.getenv("COMPLETION_TIMEOUT_SEC", "60"))

# Orchestration
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "20"))
FORCED_ESCALATION_SENTIMENT = float(os.getenv("FORCED_ESCALATION_SENTIMENT", "-0.7"))
RULES_CACHE_TTL_SEC = int(os.getenv("RULES_CACHE_TTL_SEC", "30"))

# WhatsApp Cloud API channel
WHATSAPP_GRAPH_BASE_URL = os.getenv("WHATSAPP_GRAPH_BASE_URL", "https://graph.facebook.com")
WHATSAPP_GRAPH_API_VERSION = os.getenv("WHATSAPP_GRAPH_API_VERSION", "v21.0")
CHANNEL_SEND_TIMEOUT_SEC = float(os.getenv("CHANNEL_SEND_TIMEOUT_SEC", "10"))

# Checkout
PAYMENT_LINK_BASE_URL = os.getenv("PAYMENT_LINK_BASE_URL", "https://pay.stripe.com/test-link-")
PAYMENT_LINK_TTL_HOURS = int(os.getenv("PAYMENT_LINK_TTL_HOURS", "24"))

# Ingress single-flight lock
CONVERSATION_LOCK_ENABLED = os.getenv("CONVERSATION_LOCK_ENABLED", "true").lower() == "true"
CONVERSATION_LOCK_STALE_SEC = int(os.getenv("CONVERSATION_LOCK_STALE_SEC", "120"))

# Canned replies
QUIET_HOURS_MESSAGE = os.getenv(
    "QUIET_HOURS_MESSAGE",
    "Thanks for your message! Our team will get back to you shortly."
)
OUT_OF_HOURS_MESSAGE = os.getenv(
    "OUT_OF_HOURS_MESSAGE",
    "Thanks for reaching out! We're currently closed and will reply as soon as we're back."
)
FALLBACK_CUSTOMER_MESSAGE = (
    "I'm having trouble processing that right now. "
    "Please try again or contact our support team."
)

# Version string
VERSION = "1.0.0"


def get_db_path() -> str:
    """Current database path (module attribute, so tests can patch it)."""
    return DB_PATH


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def get_history_limit() -> int:
    """History window, clamped to 1..20."""
    return max(1, min(HISTORY_LIMIT, 20))


def get_rules_cache_ttl() -> int:
    return max(0, RULES_CACHE_TTL_SEC)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if not -1.0 <= FORCED_ESCALATION_SENTIMENT <= 1.0:
        issues.append(f"FORCED_ESCALATION_SENTIMENT must be within [-1, 1]: {FORCED_ESCALATION_SENTIMENT}")

    if HISTORY_LIMIT < 1 or HISTORY_LIMIT > 20:
        issues.append(f"HISTORY_LIMIT should be between 1 and 20 (got {HISTORY_LIMIT}, will be clamped)")

    if COMPLETION_TIMEOUT_SEC <= 0:
        issues.append("COMPLETION_TIMEOUT_SEC must be > 0")

    if CHANNEL_SEND_TIMEOUT_SEC <= 0:
        issues.append("CHANNEL_SEND_TIMEOUT_SEC must be > 0")

    if CONVERSATION_LOCK_STALE_SEC < 1:
        issues.append("CONVERSATION_LOCK_STALE_SEC must be >= 1")

    return issues
