"""
SQLite storage for the governance engine.
Conversation store, catalog/order store, approval store, action log and rule tables.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from . import config

REQUIRED_TABLES = [
    'workspaces', 'workspace_ai_settings', 'whatsapp_accounts', 'conversations', 'messages',
    'products', 'orders', 'ai_pending_approvals', 'ai_action_log', 'guardrail_rules',
    'escalation_policies', 'compliance_checks', 'business_hours', 'conversation_locks',
]


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    config.ensure_db_directory()
    conn = sqlite3.connect(config.get_db_path())
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db():
    """Initialize the database with required tables."""
    with get_db() as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS workspaces (
                id TEXT PRIMARY KEY,
                business_name TEXT NOT NULL,
                created_at TEXT
            )
        ''')

        # One row per workspace; list-valued fields are JSON text
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS workspace_ai_settings (
                workspace_id TEXT PRIMARY KEY,
                mode TEXT NOT NULL DEFAULT 'manual',
                confidence_threshold REAL NOT NULL DEFAULT 80,
                ai_voice TEXT DEFAULT '',
                do_list TEXT DEFAULT '[]',
                dont_list TEXT DEFAULT '[]',
                escalation_rules TEXT DEFAULT '',
                quiet_hours TEXT DEFAULT '[]',
                compliance_notes TEXT DEFAULT '',
                updated_at TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS whatsapp_accounts (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                phone_number_id TEXT NOT NULL,
                access_token TEXT NOT NULL,
                display_phone_number TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                whatsapp_account_id TEXT,
                customer_phone TEXT NOT NULL,
                customer_name TEXT,
                cart_items TEXT DEFAULT '[]',
                cart_total REAL DEFAULT 0,
                last_message_preview TEXT,
                last_message_at TEXT,
                last_interaction_type TEXT,
                created_at TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                direction TEXT NOT NULL,  -- 'inbound' | 'outbound'
                content TEXT,
                is_ai_generated BOOLEAN DEFAULT FALSE,
                provider_message_id TEXT,
                created_at TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS products (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                price REAL NOT NULL,
                category TEXT,
                sku TEXT,
                image_url TEXT,
                stock_quantity INTEGER,  -- NULL means stock is not tracked
                is_active BOOLEAN DEFAULT TRUE
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS orders (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                conversation_id TEXT,
                order_number TEXT UNIQUE NOT NULL,
                customer_phone TEXT,
                customer_name TEXT,
                items TEXT,
                subtotal REAL,
                total REAL,
                status TEXT DEFAULT 'pending',
                payment_status TEXT DEFAULT 'pending',
                payment_link TEXT,
                payment_link_expires_at TEXT,
                tracking_number TEXT,
                created_at TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS ai_pending_approvals (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                workspace_id TEXT NOT NULL,
                action_type TEXT NOT NULL,
                action_payload TEXT,
                ai_reasoning TEXT,
                confidence_score REAL,
                status TEXT NOT NULL DEFAULT 'pending',
                reviewed_by TEXT,
                reviewed_at TEXT,
                rejection_reason TEXT,
                created_at TEXT
            )
        ''')

        # Append-only audit trail
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS ai_action_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workspace_id TEXT NOT NULL,
                conversation_id TEXT,
                action_type TEXT NOT NULL,
                action_payload TEXT,
                confidence_score REAL,
                automation_mode TEXT,
                execution_method TEXT,
                result TEXT,
                error_message TEXT,
                created_at TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS guardrail_rules (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                name TEXT NOT NULL,
                rule_type TEXT NOT NULL,
                condition TEXT NOT NULL,
                enforcement TEXT NOT NULL DEFAULT 'warn',
                fallback_message TEXT,
                priority INTEGER DEFAULT 0,
                enabled BOOLEAN DEFAULT TRUE
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS escalation_policies (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                name TEXT NOT NULL,
                triggers TEXT NOT NULL,
                routing TEXT,
                behavior TEXT,
                priority INTEGER DEFAULT 0,
                enabled BOOLEAN DEFAULT TRUE
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS compliance_checks (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                name TEXT NOT NULL,
                check_type TEXT NOT NULL,
                validation TEXT,
                trigger_conditions TEXT,
                enforcement TEXT NOT NULL DEFAULT 'recommended',
                compliance_text TEXT,
                priority INTEGER DEFAULT 0,
                enabled BOOLEAN DEFAULT TRUE
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS business_hours (
                workspace_id TEXT PRIMARY KEY,
                config TEXT NOT NULL,
                updated_at TEXT
            )
        ''')

        # In-flight marker per conversation
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS conversation_locks (
                conversation_id TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                acquired_at REAL NOT NULL
            )
        ''')

        # Create indexes for performance
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, id DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_approvals_workspace_status ON ai_pending_approvals(workspace_id, status)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_action_log_workspace ON ai_action_log(workspace_id, id DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_products_workspace ON products(workspace_id)')

        conn.commit()


def health_check():
    """Check database health."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]
            return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error:
        return False
