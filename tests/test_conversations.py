"""Tests for dad/memory/conversations.py and dad/memory/store.py."""

from __future__ import annotations

from pathlib import Path

import pytest

from dad.memory.conversations import ConversationStore
from dad.memory.store import Database


class TestDatabase:
    def test_connection_before_initialize_raises(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "x.db")
        with pytest.raises(RuntimeError, match="not initialized"):
            db.connection()

    def test_initialize_creates_parent_dirs(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "deeper" / "dad.db"
        db = Database(path)
        db.initialize()
        try:
            assert path.exists()
        finally:
            db.close()

    def test_initialize_twice_is_safe(self, db: Database) -> None:
        db.initialize()
        assert db.connection() is not None

    def test_schema_tables_exist(self, db: Database) -> None:
        rows = db.connection().execute(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        ).fetchall()
        names = {row["name"] for row in rows}
        assert {"conversations", "messages", "relationships"} <= names

    def test_transaction_rolls_back_on_error(self, db: Database) -> None:
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute(
                    "INSERT INTO relationships (user_id) VALUES (?)", ("U_ROLLBACK",)
                )
                raise RuntimeError("boom")
        row = db.connection().execute(
            "SELECT * FROM relationships WHERE user_id = ?", ("U_ROLLBACK",)
        ).fetchone()
        assert row is None

    def test_close_then_reopen(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "dad.db")
        db.initialize()
        ConversationStore(db).find_or_create("C1", "T1", "U1")
        db.close()
        db.initialize()
        try:
            assert ConversationStore(db).find("C1", "T1") is not None
        finally:
            db.close()


class TestFindOrCreate:
    def test_creates_on_first_contact(self, conversations: ConversationStore) -> None:
        conv = conversations.find_or_create("C1", "T1", "U1")
        assert conv.id > 0
        assert conv.platform == "slack"
        assert conv.session_id is None
        assert conv.total_cost_usd == 0.0
        assert conv.total_turns == 0

    def test_returns_same_row_for_same_thread(self, conversations: ConversationStore) -> None:
        first = conversations.find_or_create("C1", "T1", "U1")
        second = conversations.find_or_create("C1", "T1", "U2")
        assert first.id == second.id
        # The conversation keeps the user who started it.
        assert second.user_id == "U1"

    def test_threads_are_distinct(self, conversations: ConversationStore) -> None:
        a = conversations.find_or_create("C1", "T1", "U1")
        b = conversations.find_or_create("C1", "T2", "U1")
        c = conversations.find_or_create("C2", "T1", "U1")
        assert len({a.id, b.id, c.id}) == 3

    def test_platform_is_part_of_identity(self, conversations: ConversationStore) -> None:
        slack = conversations.find_or_create("C1", "T1", "U1")
        other = conversations.find_or_create("C1", "T1", "U1", platform="discord")
        assert slack.id != other.id

    def test_find_missing_returns_none(self, conversations: ConversationStore) -> None:
        assert conversations.find("nope", "nope") is None
        assert conversations.get(999) is None


class TestSessionId:
    def test_update_and_clear(self, conversations: ConversationStore) -> None:
        conv = conversations.find_or_create("C1", "T1", "U1")
        conversations.update_session_id(conv.id, "sess-9")
        assert conversations.get(conv.id).session_id == "sess-9"
        conversations.clear_session_id(conv.id)
        assert conversations.get(conv.id).session_id is None


class TestCostAndMessages:
    def test_add_cost_accumulates(self, conversations: ConversationStore) -> None:
        conv = conversations.find_or_create("C1", "T1", "U1")
        conversations.add_cost(conv.id, 0.25, 2)
        conversations.add_cost(conv.id, 0.5, 3)
        updated = conversations.get(conv.id)
        assert updated.total_cost_usd == pytest.approx(0.75)
        assert updated.total_turns == 5

    def test_add_cost_ignores_negatives(self, conversations: ConversationStore) -> None:
        conv = conversations.find_or_create("C1", "T1", "U1")
        conversations.add_cost(conv.id, -1.0, -4)
        updated = conversations.get(conv.id)
        assert updated.total_cost_usd == 0.0
        assert updated.total_turns == 0

    def test_log_messages_in_order(self, conversations: ConversationStore) -> None:
        conv = conversations.find_or_create("C1", "T1", "U1")
        conversations.log_message(conv.id, "user", "hello")
        conversations.log_message(conv.id, "assistant", "hi", cost_usd=0.01, duration_ms=500)
        messages = conversations.messages(conv.id)
        assert [m.role for m in messages] == ["user", "assistant"]
        assert messages[0].cost_usd is None
        assert messages[1].cost_usd == 0.01
        assert messages[1].duration_ms == 500

    def test_log_message_rejects_unknown_role(self, conversations: ConversationStore) -> None:
        conv = conversations.find_or_create("C1", "T1", "U1")
        with pytest.raises(ValueError):
            conversations.log_message(conv.id, "system", "nope")

    def test_recent_orders_by_activity(self, conversations: ConversationStore) -> None:
        old = conversations.find_or_create("C1", "T1", "U1")
        new = conversations.find_or_create("C1", "T2", "U1")
        conversations.add_cost(old.id, 0.1, 1)
        recent = conversations.recent(limit=10)
        assert recent[0].id == old.id
        assert {c.id for c in recent} == {old.id, new.id}

    def test_recent_limit(self, conversations: ConversationStore) -> None:
        for i in range(5):
            conversations.find_or_create("C1", f"T{i}", "U1")
        assert len(conversations.recent(limit=2)) == 2
