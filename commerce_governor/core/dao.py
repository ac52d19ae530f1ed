"""
Data access for the governance engine.
Conversation store, catalog and orders, approval store, action log, rule tables,
business hours and the per-conversation in-flight marker.

Reads raise on storage failure so callers can treat a failed load as fatal; only the
action log is best-effort.
"""

import json
import secrets
import sqlite3
import string
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .db import get_db
from .config import PAYMENT_LINK_BASE_URL, PAYMENT_LINK_TTL_HOURS
from .schema import (
    APPROVAL_APPROVED, APPROVAL_APPROVING, APPROVAL_PENDING, APPROVAL_SUPERSEDED,
    ActionLogEntry, BusinessHoursConfig, ChannelAccount,
    Conversation, Message, PendingApproval, Workspace, WorkspaceAutomationSettings, QuietHoursPeriod,
)
from ..rules.types import ComplianceCheck, EscalationPolicy, GuardrailRule
from ..util.logging import logger


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _loads(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


# Workspaces and settings

def create_workspace(workspace_id: str, business_name: str) -> Workspace:
    with get_db() as conn:
        conn.execute(
            "INSERT OR REPLACE INTO workspaces (id, business_name, created_at) VALUES (?, ?, ?)",
            (workspace_id, business_name, utcnow_iso())
        )
        conn.commit()
    return Workspace(id=workspace_id, business_name=business_name)


def get_workspace(workspace_id: str) -> Optional[Workspace]:
    with get_db() as conn:
        row = conn.execute(
            "SELECT id, business_name FROM workspaces WHERE id = ?", (workspace_id,)
        ).fetchone()
    if row:
        return Workspace(id=row["id"], business_name=row["business_name"])
    return None


def get_settings(workspace_id: str) -> Optional[WorkspaceAutomationSettings]:
    """Automation settings of a workspace, or None if never configured."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM workspace_ai_settings WHERE workspace_id = ?", (workspace_id,)
        ).fetchone()
    if not row:
        return None
    return WorkspaceAutomationSettings(
        workspace_id=row["workspace_id"],
        mode=row["mode"],
        confidence_threshold=row["confidence_threshold"],
        ai_voice=row["ai_voice"] or "",
        do_list=_loads(row["do_list"], []),
        dont_list=_loads(row["dont_list"], []),
        escalation_rules=row["escalation_rules"] or "",
        quiet_hours=[QuietHoursPeriod.from_dict(p) for p in _loads(row["quiet_hours"], [])],
        compliance_notes=row["compliance_notes"] or "",
    )


def save_settings(settings: WorkspaceAutomationSettings, conn: Optional[sqlite3.Connection] = None):
    """Upsert automation settings. Commits only when it owns the connection."""
    params = (
        settings.workspace_id, settings.mode, settings.confidence_threshold, settings.ai_voice,
        json.dumps(settings.do_list), json.dumps(settings.dont_list), settings.escalation_rules,
        json.dumps([p.to_dict() for p in settings.quiet_hours]), settings.compliance_notes, utcnow_iso(),
    )
    sql = '''
        INSERT OR REPLACE INTO workspace_ai_settings
        (workspace_id, mode, confidence_threshold, ai_voice, do_list, dont_list,
         escalation_rules, quiet_hours, compliance_notes, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    '''
    if conn is not None:
        conn.execute(sql, params)
        return
    with get_db() as own:
        own.execute(sql, params)
        own.commit()


# Channel accounts and conversations

def create_account(account_id: str, workspace_id: str, phone_number_id: str, access_token: str,
                   display_phone_number: str = None) -> ChannelAccount:
    with get_db() as conn:
        conn.execute(
            "INSERT OR REPLACE INTO whatsapp_accounts VALUES (?, ?, ?, ?, ?)",
            (account_id, workspace_id, phone_number_id, access_token, display_phone_number)
        )
        conn.commit()
    return ChannelAccount(account_id, phone_number_id, access_token, display_phone_number)


def create_conversation(conversation_id: str, workspace_id: str, customer_phone: str,
                        customer_name: str = None, whatsapp_account_id: str = None) -> str:
    with get_db() as conn:
        conn.execute(
            '''INSERT INTO conversations
               (id, workspace_id, whatsapp_account_id, customer_phone, customer_name, created_at)
               VALUES (?, ?, ?, ?, ?, ?)''',
            (conversation_id, workspace_id, whatsapp_account_id, customer_phone, customer_name, utcnow_iso())
        )
        conn.commit()
    return conversation_id


def get_conversation(conversation_id: str) -> Optional[Conversation]:
    """Conversation snapshot joined with its channel account and message facts."""
    with get_db() as conn:
        row = conn.execute(
            '''SELECT c.*, a.id AS account_id, a.phone_number_id, a.access_token, a.display_phone_number
               FROM conversations c
               LEFT JOIN whatsapp_accounts a ON a.id = c.whatsapp_account_id
               WHERE c.id = ?''',
            (conversation_id,)
        ).fetchone()
        if not row:
            return None

        stats = conn.execute(
            '''SELECT COUNT(*) AS message_count,
                      MAX(CASE WHEN direction = 'outbound' THEN created_at END) AS last_outbound_at
               FROM messages WHERE conversation_id = ?''',
            (conversation_id,)
        ).fetchone()

    account = None
    if row["account_id"]:
        account = ChannelAccount(
            id=row["account_id"],
            phone_number_id=row["phone_number_id"],
            access_token=row["access_token"],
            display_phone_number=row["display_phone_number"],
        )

    return Conversation(
        id=row["id"],
        workspace_id=row["workspace_id"],
        customer_phone=row["customer_phone"],
        customer_name=row["customer_name"],
        cart_items=_loads(row["cart_items"], []),
        cart_total=row["cart_total"] or 0.0,
        message_count=stats["message_count"],
        last_outbound_at=stats["last_outbound_at"],
        account=account,
    )


def save_cart(conversation_id: str, items: List[Dict[str, Any]], interaction_type: str = None) -> float:
    """Persist cart lines and their recomputed total."""
    total = round(sum(float(i["price"]) * int(i["quantity"]) for i in items), 2)
    with get_db() as conn:
        if interaction_type:
            conn.execute(
                "UPDATE conversations SET cart_items = ?, cart_total = ?, last_interaction_type = ? WHERE id = ?",
                (json.dumps(items), total, interaction_type, conversation_id)
            )
        else:
            conn.execute(
                "UPDATE conversations SET cart_items = ?, cart_total = ? WHERE id = ?",
                (json.dumps(items), total, conversation_id)
            )
        conn.commit()
    return total


def get_cart(conversation_id: str) -> List[Dict[str, Any]]:
    with get_db() as conn:
        row = conn.execute("SELECT cart_items FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
    return _loads(row["cart_items"], []) if row else []


def update_conversation_preview(conversation_id: str, preview: str, at: str = None):
    with get_db() as conn:
        conn.execute(
            "UPDATE conversations SET last_message_preview = ?, last_message_at = ? WHERE id = ?",
            (preview[:100], at or utcnow_iso(), conversation_id)
        )
        conn.commit()


def get_conversation_preview(conversation_id: str) -> Optional[str]:
    with get_db() as conn:
        row = conn.execute(
            "SELECT last_message_preview FROM conversations WHERE id = ?", (conversation_id,)
        ).fetchone()
    return row["last_message_preview"] if row else None


# Messages

def add_message(conversation_id: str, direction: str, content: str, is_ai_generated: bool = False,
                provider_message_id: str = None) -> int:
    with get_db() as conn:
        cursor = conn.execute(
            '''INSERT INTO messages (conversation_id, direction, content, is_ai_generated, provider_message_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?)''',
            (conversation_id, direction, content, is_ai_generated, provider_message_id, utcnow_iso())
        )
        conn.commit()
        return cursor.lastrowid


def get_recent_messages(conversation_id: str, limit: int = 20) -> List[Message]:
    """Last `limit` messages, oldest first."""
    with get_db() as conn:
        rows = conn.execute(
            '''SELECT * FROM messages WHERE conversation_id = ?
               ORDER BY id DESC LIMIT ?''',
            (conversation_id, limit)
        ).fetchall()
    return [
        Message(
            id=r["id"],
            conversation_id=r["conversation_id"],
            direction=r["direction"],
            content=r["content"] or "",
            is_ai_generated=bool(r["is_ai_generated"]),
            created_at=r["created_at"],
        )
        for r in reversed(rows)
    ]


def count_messages(conversation_id: str, direction: str = None) -> int:
    with get_db() as conn:
        if direction:
            row = conn.execute(
                "SELECT COUNT(*) FROM messages WHERE conversation_id = ? AND direction = ?",
                (conversation_id, direction)
            ).fetchone()
        else:
            row = conn.execute("SELECT COUNT(*) FROM messages WHERE conversation_id = ?", (conversation_id,)).fetchone()
    return row[0]


# Catalog

def create_product(workspace_id: str, title: str, price: float, product_id: str = None, description: str = "",
                   category: str = None, sku: str = None, image_url: str = None,
                   stock_quantity: Optional[int] = None, is_active: bool = True) -> str:
    product_id = product_id or str(uuid.uuid4())
    with get_db() as conn:
        conn.execute(
            '''INSERT INTO products
               (id, workspace_id, title, description, price, category, sku, image_url, stock_quantity, is_active)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
            (product_id, workspace_id, title, description, price, category, sku, image_url, stock_quantity, is_active)
        )
        conn.commit()
    return product_id


def get_product(workspace_id: str, product_id: str) -> Optional[Dict[str, Any]]:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM products WHERE id = ? AND workspace_id = ?", (product_id, workspace_id)
        ).fetchone()
    return dict(row) if row else None


def list_active_products(workspace_id: str, category: str = None, max_price: float = None) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM products WHERE workspace_id = ? AND is_active = 1"
    params: List[Any] = [workspace_id]
    if category:
        sql += " AND LOWER(category) = LOWER(?)"
        params.append(category)
    if max_price is not None:
        sql += " AND price <= ?"
        params.append(max_price)
    with get_db() as conn:
        rows = conn.execute(sql, params).fetchall()
    return [dict(r) for r in rows]


def count_products(workspace_id: str) -> int:
    with get_db() as conn:
        row = conn.execute(
            "SELECT COUNT(*) FROM products WHERE workspace_id = ? AND is_active = 1", (workspace_id,)
        ).fetchone()
    return row[0]


# Orders

def generate_order_number(now: datetime = None) -> str:
    """Order number in the form ORD-YYYYMMDD-XXXXX."""
    now = now or datetime.now(timezone.utc)
    chars = string.ascii_uppercase + string.digits
    code = ''.join(secrets.choice(chars) for _ in range(5))
    return f"ORD-{now.strftime('%Y%m%d')}-{code}"


def create_order_from_cart(workspace_id: str, conversation_id: str) -> Optional[Dict[str, Any]]:
    """Create an order from the stored cart and clear the cart in one transaction.

    Returns None when the cart is empty.
    """
    with get_db() as conn:
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT customer_phone, customer_name, cart_items, cart_total FROM conversations WHERE id = ?",
                (conversation_id,)
            ).fetchone()
            items = _loads(row["cart_items"], []) if row else []
            if not items:
                conn.rollback()
                return None

            order_id = str(uuid.uuid4())
            order_number = generate_order_number()
            total = row["cart_total"] or 0.0
            payment_link = f"{PAYMENT_LINK_BASE_URL}{order_id}"
            expires_at = (datetime.now(timezone.utc) + timedelta(hours=PAYMENT_LINK_TTL_HOURS)).isoformat()
            created_at = utcnow_iso()

            conn.execute(
                '''INSERT INTO orders
                   (id, workspace_id, conversation_id, order_number, customer_phone, customer_name, items,
                    subtotal, total, status, payment_status, payment_link, payment_link_expires_at, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', 'pending', ?, ?, ?)''',
                (order_id, workspace_id, conversation_id, order_number, row["customer_phone"], row["customer_name"],
                 json.dumps(items), total, total, payment_link, expires_at, created_at)
            )
            conn.execute(
                '''UPDATE conversations SET cart_items = '[]', cart_total = 0, last_interaction_type = 'checkout'
                   WHERE id = ?''',
                (conversation_id,)
            )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise

    return {
        "id": order_id,
        "order_number": order_number,
        "total": total,
        "item_count": sum(int(i.get("quantity", 1)) for i in items),
        "payment_link": payment_link,
        "payment_link_expires_at": expires_at,
    }


def get_latest_order(workspace_id: str, customer_phone: str, order_number: str = None) -> Optional[Dict[str, Any]]:
    sql = "SELECT * FROM orders WHERE workspace_id = ? AND customer_phone = ?"
    params: List[Any] = [workspace_id, customer_phone]
    if order_number:
        sql += " AND order_number = ?"
        params.append(order_number)
    sql += " ORDER BY created_at DESC, rowid DESC LIMIT 1"
    with get_db() as conn:
        row = conn.execute(sql, params).fetchone()
    return dict(row) if row else None


def count_orders(workspace_id: str) -> int:
    with get_db() as conn:
        return conn.execute("SELECT COUNT(*) FROM orders WHERE workspace_id = ?", (workspace_id,)).fetchone()[0]


# Approvals

def _row_to_approval(row: sqlite3.Row) -> PendingApproval:
    return PendingApproval(
        id=row["id"],
        conversation_id=row["conversation_id"],
        workspace_id=row["workspace_id"],
        action_type=row["action_type"],
        action_payload=_loads(row["action_payload"], {}),
        ai_reasoning=row["ai_reasoning"] or "",
        confidence_score=row["confidence_score"],
        status=row["status"],
        created_at=row["created_at"],
        reviewed_by=row["reviewed_by"],
        reviewed_at=row["reviewed_at"],
        rejection_reason=row["rejection_reason"],
    )


def insert_approval(conversation_id: str, workspace_id: str, action_type: str, action_payload: Dict[str, Any],
                    ai_reasoning: str, confidence_score: float) -> PendingApproval:
    approval = PendingApproval(
        id=str(uuid.uuid4()),
        conversation_id=conversation_id,
        workspace_id=workspace_id,
        action_type=action_type,
        action_payload=action_payload,
        ai_reasoning=ai_reasoning,
        confidence_score=confidence_score,
        status=APPROVAL_PENDING,
        created_at=utcnow_iso(),
    )
    with get_db() as conn:
        conn.execute(
            '''INSERT INTO ai_pending_approvals
               (id, conversation_id, workspace_id, action_type, action_payload, ai_reasoning,
                confidence_score, status, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)''',
            (approval.id, conversation_id, workspace_id, action_type, json.dumps(action_payload),
             ai_reasoning, confidence_score, approval.status, approval.created_at)
        )
        conn.commit()
    return approval


def get_approval(approval_id: str) -> Optional[PendingApproval]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM ai_pending_approvals WHERE id = ?", (approval_id,)).fetchone()
    return _row_to_approval(row) if row else None


def list_approvals(workspace_id: str, status: Optional[str] = APPROVAL_PENDING) -> List[PendingApproval]:
    with get_db() as conn:
        if status:
            rows = conn.execute(
                "SELECT * FROM ai_pending_approvals WHERE workspace_id = ? AND status = ? ORDER BY created_at",
                (workspace_id, status)
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM ai_pending_approvals WHERE workspace_id = ? ORDER BY created_at", (workspace_id,)
            ).fetchall()
    return [_row_to_approval(r) for r in rows]


def resolve_approval(approval_id: str, status: str, reviewed_by: str = None, rejection_reason: str = None) -> bool:
    """Move a pending approval to a terminal status. False if it was no longer pending."""
    with get_db() as conn:
        cursor = conn.execute(
            '''UPDATE ai_pending_approvals
               SET status = ?, reviewed_by = ?, reviewed_at = ?, rejection_reason = ?
               WHERE id = ? AND status = ?''',
            (status, reviewed_by, utcnow_iso(), rejection_reason, approval_id, APPROVAL_PENDING)
        )
        conn.commit()
        return cursor.rowcount == 1


def claim_approval(approval_id: str, reviewed_by: str = None) -> bool:
    """Atomically move a pending approval to approving. False if it was no longer pending."""
    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE ai_pending_approvals SET status = ?, reviewed_by = ? WHERE id = ? AND status = ?",
            (APPROVAL_APPROVING, reviewed_by, approval_id, APPROVAL_PENDING)
        )
        conn.commit()
        return cursor.rowcount == 1


def finish_approval(approval_id: str) -> bool:
    """Mark a claimed approval approved once its payload was executed."""
    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE ai_pending_approvals SET status = ?, reviewed_at = ? WHERE id = ? AND status = ?",
            (APPROVAL_APPROVED, utcnow_iso(), approval_id, APPROVAL_APPROVING)
        )
        conn.commit()
        return cursor.rowcount == 1


def release_approval(approval_id: str) -> str:
    """Return a claimed approval after a failed execution; returns the resulting status.

    It goes back to pending, unless its workspace switched to auto mode meanwhile,
    in which case it is superseded like every other pending approval.
    """
    with get_db() as conn:
        conn.execute(
            '''UPDATE ai_pending_approvals
               SET status = CASE
                       WHEN (SELECT mode FROM workspace_ai_settings s
                             WHERE s.workspace_id = ai_pending_approvals.workspace_id) = 'auto'
                       THEN ? ELSE ? END,
                   reviewed_by = NULL
               WHERE id = ? AND status = ?''',
            (APPROVAL_SUPERSEDED, APPROVAL_PENDING, approval_id, APPROVAL_APPROVING)
        )
        conn.commit()
        row = conn.execute("SELECT status FROM ai_pending_approvals WHERE id = ?", (approval_id,)).fetchone()
    return row["status"] if row else None


def supersede_pending(workspace_id: str, conn: Optional[sqlite3.Connection] = None) -> int:
    """Mark every pending approval of the workspace superseded; returns the row count."""
    sql = '''UPDATE ai_pending_approvals SET status = ?, reviewed_at = ?, reviewed_by = 'system'
             WHERE workspace_id = ? AND status = ?'''
    params = (APPROVAL_SUPERSEDED, utcnow_iso(), workspace_id, APPROVAL_PENDING)
    if conn is not None:
        return conn.execute(sql, params).rowcount
    with get_db() as own:
        count = own.execute(sql, params).rowcount
        own.commit()
        return count


# Action log

def append_action_log(entry: ActionLogEntry) -> bool:
    """Append an audit entry. Best-effort: failures are logged, never raised."""
    try:
        with get_db() as conn:
            conn.execute(
                '''INSERT INTO ai_action_log
                   (workspace_id, conversation_id, action_type, action_payload, confidence_score,
                    automation_mode, execution_method, result, error_message, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
                (entry.workspace_id, entry.conversation_id, entry.action_type, json.dumps(entry.action_payload),
                 entry.confidence_score, entry.automation_mode, entry.execution_method, entry.result,
                 entry.error_message, entry.created_at or utcnow_iso())
            )
            conn.commit()
        return True
    except (sqlite3.Error, TypeError, ValueError) as e:
        logger.error(f"Failed to write action log entry {entry.action_type} for workspace {entry.workspace_id}: {e}")
        return False


def list_action_log(workspace_id: str, limit: int = 100, conversation_id: str = None) -> List[ActionLogEntry]:
    """Most recent entries first."""
    with get_db() as conn:
        if conversation_id:
            rows = conn.execute(
                "SELECT * FROM ai_action_log WHERE workspace_id = ? AND conversation_id = ? ORDER BY id DESC LIMIT ?",
                (workspace_id, conversation_id, limit)
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM ai_action_log WHERE workspace_id = ? ORDER BY id DESC LIMIT ?",
                (workspace_id, limit)
            ).fetchall()
    return [
        ActionLogEntry(
            id=r["id"],
            workspace_id=r["workspace_id"],
            conversation_id=r["conversation_id"],
            action_type=r["action_type"],
            action_payload=_loads(r["action_payload"], {}),
            confidence_score=r["confidence_score"],
            automation_mode=r["automation_mode"],
            execution_method=r["execution_method"],
            result=r["result"],
            error_message=r["error_message"],
            created_at=r["created_at"],
        )
        for r in rows
    ]


# Rule tables

def _load_rules(sql: str, workspace_id: str, build, kind: str) -> list:
    with get_db() as conn:
        rows = conn.execute(sql, (workspace_id,)).fetchall()
    rules = []
    for row in rows:
        try:
            rules.append(build(row))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping malformed {kind} {row['id']} in workspace {workspace_id}: {e}")
    return rules


def get_guardrails(workspace_id: str) -> List[GuardrailRule]:
    return _load_rules(
        "SELECT * FROM guardrail_rules WHERE workspace_id = ? AND enabled = 1 ORDER BY priority",
        workspace_id,
        lambda r: GuardrailRule.from_dict({
            "id": r["id"], "name": r["name"], "rule_type": r["rule_type"],
            "condition": _loads(r["condition"], {}), "enforcement": r["enforcement"],
            "fallback_message": r["fallback_message"], "priority": r["priority"], "enabled": bool(r["enabled"]),
        }),
        "guardrail",
    )


def get_escalation_policies(workspace_id: str) -> List[EscalationPolicy]:
    return _load_rules(
        "SELECT * FROM escalation_policies WHERE workspace_id = ? AND enabled = 1 ORDER BY priority",
        workspace_id,
        lambda r: EscalationPolicy.from_dict({
            "id": r["id"], "name": r["name"], "triggers": _loads(r["triggers"], {}),
            "routing": _loads(r["routing"], {}), "behavior": _loads(r["behavior"], {}),
            "priority": r["priority"], "enabled": bool(r["enabled"]),
        }),
        "escalation policy",
    )


def get_compliance_checks(workspace_id: str) -> List[ComplianceCheck]:
    return _load_rules(
        "SELECT * FROM compliance_checks WHERE workspace_id = ? AND enabled = 1 ORDER BY priority",
        workspace_id,
        lambda r: ComplianceCheck.from_dict({
            "id": r["id"], "name": r["name"], "check_type": r["check_type"],
            "validation": _loads(r["validation"], {}), "trigger_conditions": _loads(r["trigger_conditions"], {}),
            "enforcement": r["enforcement"], "compliance_text": r["compliance_text"],
            "priority": r["priority"], "enabled": bool(r["enabled"]),
        }),
        "compliance check",
    )


def _replace_rows(table: str, workspace_id: str, columns: List[str], rows: List[tuple]) -> int:
    """Delete all rows of the workspace, then insert the new set, in one transaction."""
    placeholders = ", ".join("?" for _ in columns)
    with get_db() as conn:
        try:
            conn.execute(f"DELETE FROM {table} WHERE workspace_id = ?", (workspace_id,))
            conn.executemany(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})", rows
            )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
    return len(rows)


def replace_guardrails(workspace_id: str, rules: List[GuardrailRule]) -> int:
    return _replace_rows(
        "guardrail_rules", workspace_id,
        ["id", "workspace_id", "name", "rule_type", "condition", "enforcement", "fallback_message", "priority", "enabled"],
        [(r.id, workspace_id, r.name, r.rule_type, json.dumps(r.to_dict()["condition"]), r.enforcement,
          r.fallback_message, r.priority, r.enabled) for r in rules],
    )


def replace_escalation_policies(workspace_id: str, policies: List[EscalationPolicy]) -> int:
    return _replace_rows(
        "escalation_policies", workspace_id,
        ["id", "workspace_id", "name", "triggers", "routing", "behavior", "priority", "enabled"],
        [(p.id, workspace_id, p.name, json.dumps(p.to_dict()["triggers"]), json.dumps(p.to_dict()["routing"]),
          json.dumps(p.to_dict()["behavior"]), p.priority, p.enabled) for p in policies],
    )


def replace_compliance_checks(workspace_id: str, checks: List[ComplianceCheck]) -> int:
    return _replace_rows(
        "compliance_checks", workspace_id,
        ["id", "workspace_id", "name", "check_type", "validation", "trigger_conditions", "enforcement",
         "compliance_text", "priority", "enabled"],
        [(c.id, workspace_id, c.name, c.check_type, json.dumps(c.to_dict()["validation"]),
          json.dumps(c.to_dict()["trigger_conditions"]), c.enforcement, c.compliance_text,
          c.priority, c.enabled) for c in checks],
    )


# Business hours

def get_business_hours(workspace_id: str) -> Optional[BusinessHoursConfig]:
    with get_db() as conn:
        row = conn.execute("SELECT config FROM business_hours WHERE workspace_id = ?", (workspace_id,)).fetchone()
    if not row:
        return None
    return BusinessHoursConfig.from_dict(_loads(row["config"], {}))


def save_business_hours(workspace_id: str, config: BusinessHoursConfig):
    with get_db() as conn:
        conn.execute(
            "INSERT OR REPLACE INTO business_hours (workspace_id, config, updated_at) VALUES (?, ?, ?)",
            (workspace_id, json.dumps(config.to_dict()), utcnow_iso())
        )
        conn.commit()


# Conversation in-flight marker

def try_acquire_conversation_lock(conversation_id: str, owner: str, stale_after_sec: int) -> bool:
    """Atomically set the in-flight marker; a marker older than `stale_after_sec` is taken over."""
    now = time.time()
    with get_db() as conn:
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                "DELETE FROM conversation_locks WHERE conversation_id = ? AND acquired_at < ?",
                (conversation_id, now - stale_after_sec)
            )
            cursor = conn.execute(
                "INSERT OR IGNORE INTO conversation_locks (conversation_id, owner, acquired_at) VALUES (?, ?, ?)",
                (conversation_id, owner, now)
            )
            conn.commit()
        except sqlite3.Error:
            conn.rollback()
            raise
        return cursor.rowcount == 1


def release_conversation_lock(conversation_id: str, owner: str) -> bool:
    with get_db() as conn:
        cursor = conn.execute(
            "DELETE FROM conversation_locks WHERE conversation_id = ? AND owner = ?", (conversation_id, owner)
        )
        conn.commit()
        return cursor.rowcount == 1
