"""
Store tests - schema health, conversation facts, locks and order numbering.
"""

import re
import sqlite3
import time
from datetime import datetime, timezone

from conftest import CONVERSATION_ID, WORKSPACE_ID
from commerce_governor.core import dao
from commerce_governor.core.db import get_db, health_check, init_db
from commerce_governor.core.schema import ActionLogEntry


class TestSchema:
    def test_health_check(self, temp_db):
        assert health_check()

    def test_init_is_idempotent(self, temp_db):
        init_db()
        assert health_check()

    def test_missing_table_is_unhealthy(self, temp_db):
        with get_db() as conn:
            conn.execute("DROP TABLE conversation_locks")
            conn.commit()
        assert not health_check()


class TestConversation:
    def test_facts_from_messages(self, workspace):
        dao.add_message(CONVERSATION_ID, "inbound", "hi")
        dao.add_message(CONVERSATION_ID, "outbound", "hello", is_ai_generated=True)
        conversation = dao.get_conversation(CONVERSATION_ID)

        assert conversation.message_count == 2
        assert conversation.last_outbound_at is not None
        assert conversation.account.phone_number_id == "pn-123"

    def test_recent_messages_oldest_first(self, workspace):
        for i in range(5):
            dao.add_message(CONVERSATION_ID, "inbound", f"m{i}")
        assert [m.content for m in dao.get_recent_messages(CONVERSATION_ID, 3)] == ["m2", "m3", "m4"]

    def test_preview_truncated(self, workspace):
        dao.update_conversation_preview(CONVERSATION_ID, "x" * 150)
        assert len(dao.get_conversation_preview(CONVERSATION_ID)) == 100

    def test_cart_total_recomputed(self, workspace):
        total = dao.save_cart(CONVERSATION_ID, [
            {"product_id": "p-road", "price": 90.0, "quantity": 2},
            {"product_id": "p-socks", "price": 12.5, "quantity": 1},
        ])
        assert total == 192.5
        assert dao.get_conversation(CONVERSATION_ID).cart_total == 192.5


class TestOrders:
    def test_order_number_format(self):
        number = dao.generate_order_number(datetime(2024, 5, 6, tzinfo=timezone.utc))
        assert re.fullmatch(r"ORD-20240506-[A-Z0-9]{5}", number)

    def test_empty_cart_creates_no_order(self, workspace):
        assert dao.create_order_from_cart(WORKSPACE_ID, CONVERSATION_ID) is None
        assert dao.count_orders(WORKSPACE_ID) == 0


class TestConversationLock:
    def test_single_holder(self, workspace):
        assert dao.try_acquire_conversation_lock(CONVERSATION_ID, "a", 120)
        assert not dao.try_acquire_conversation_lock(CONVERSATION_ID, "b", 120)
        assert dao.release_conversation_lock(CONVERSATION_ID, "a")
        assert dao.try_acquire_conversation_lock(CONVERSATION_ID, "b", 120)

    def test_release_by_other_owner_is_noop(self, workspace):
        dao.try_acquire_conversation_lock(CONVERSATION_ID, "a", 120)
        assert not dao.release_conversation_lock(CONVERSATION_ID, "b")

    def test_stale_lock_taken_over(self, workspace):
        with get_db() as conn:
            conn.execute(
                "INSERT INTO conversation_locks (conversation_id, owner, acquired_at) VALUES (?, ?, ?)",
                (CONVERSATION_ID, "crashed", time.time() - 600)
            )
            conn.commit()
        assert dao.try_acquire_conversation_lock(CONVERSATION_ID, "fresh", 120)


class TestActionLog:
    def test_append_is_best_effort(self, temp_db, monkeypatch):
        def broken_db():
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(dao, "get_db", broken_db)
        assert dao.append_action_log(ActionLogEntry(workspace_id=WORKSPACE_ID, action_type="x",
                                                    action_payload={})) is False
