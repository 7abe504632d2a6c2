"""
Conversation Store — one row per Slack thread, plus its message log.

A conversation is created the first time a thread talks to Dad. Its
``session_id`` is the agent's resumable session; cost and turn totals only
ever grow. Messages are written once and never touched again.
"""

from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass
from typing import Optional

import structlog

from dad.memory.store import Database

logger = structlog.get_logger(__name__)

DEFAULT_PLATFORM = "slack"


@dataclass
class Conversation:
    id: int
    platform: str
    channel_id: str
    thread_id: str
    session_id: Optional[str]
    user_id: str
    total_cost_usd: float
    total_turns: int
    created_at: float
    updated_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Conversation":
        return cls(
            id=row["id"],
            platform=row["platform"],
            channel_id=row["channel_id"],
            thread_id=row["thread_id"],
            session_id=row["session_id"] or None,
            user_id=row["user_id"],
            total_cost_usd=float(row["total_cost_usd"] or 0.0),
            total_turns=int(row["total_turns"] or 0),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Message:
    id: int
    conversation_id: int
    role: str
    content: str
    cost_usd: Optional[float]
    duration_ms: Optional[int]
    created_at: float


class ConversationStore:
    """Reads and writes the ``conversations`` and ``messages`` tables."""

    def __init__(self, db: Database):
        self._db = db

    def find(
        self,
        channel_id: str,
        thread_id: str,
        platform: str = DEFAULT_PLATFORM,
    ) -> Optional[Conversation]:
        row = self._db.connection().execute(
            "SELECT * FROM conversations WHERE platform = ? AND channel_id = ? AND thread_id = ?",
            (platform, channel_id, thread_id),
        ).fetchone()
        return Conversation.from_row(row) if row else None

    def get(self, conversation_id: int) -> Optional[Conversation]:
        row = self._db.connection().execute(
            "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
        ).fetchone()
        return Conversation.from_row(row) if row else None

    def find_or_create(
        self,
        channel_id: str,
        thread_id: str,
        user_id: str,
        platform: str = DEFAULT_PLATFORM,
    ) -> Conversation:
        """Return the thread's conversation, creating it on first contact."""
        now = time.time()
        cursor = self._db.connection().execute(
            "INSERT OR IGNORE INTO conversations "
            "(channel_id, thread_id, user_id, platform, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (channel_id, thread_id, user_id, platform, now, now),
        )
        if cursor.rowcount:
            logger.info(
                "conversations.created",
                platform=platform,
                channel_id=channel_id,
                thread_id=thread_id,
            )
        conversation = self.find(channel_id, thread_id, platform)
        assert conversation is not None
        return conversation

    def update_session_id(self, conversation_id: int, session_id: str) -> None:
        self._db.connection().execute(
            "UPDATE conversations SET session_id = ?, updated_at = ? WHERE id = ?",
            (session_id, time.time(), conversation_id),
        )
        logger.debug("conversations.session_updated", conversation_id=conversation_id)

    def clear_session_id(self, conversation_id: int) -> None:
        self._db.connection().execute(
            "UPDATE conversations SET session_id = NULL, updated_at = ? WHERE id = ?",
            (time.time(), conversation_id),
        )
        logger.info("conversations.session_cleared", conversation_id=conversation_id)

    def add_cost(self, conversation_id: int, cost_usd: float, turns: int) -> None:
        """Accumulate spend and turns; negative values are ignored."""
        self._db.connection().execute(
            "UPDATE conversations SET total_cost_usd = total_cost_usd + ?, "
            "total_turns = total_turns + ?, updated_at = ? WHERE id = ?",
            (max(0.0, float(cost_usd)), max(0, int(turns)), time.time(), conversation_id),
        )

    def log_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        cost_usd: Optional[float] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        if role not in ("user", "assistant"):
            raise ValueError(f"Unknown message role: {role!r}")
        self._db.connection().execute(
            "INSERT INTO messages (conversation_id, role, content, cost_usd, duration_ms, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (conversation_id, role, content, cost_usd, duration_ms, time.time()),
        )

    def messages(self, conversation_id: int) -> list[Message]:
        rows = self._db.connection().execute(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY id",
            (conversation_id,),
        ).fetchall()
        return [
            Message(
                id=row["id"],
                conversation_id=row["conversation_id"],
                role=row["role"],
                content=row["content"],
                cost_usd=row["cost_usd"],
                duration_ms=row["duration_ms"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def recent(self, limit: int = 20) -> list[Conversation]:
        rows = self._db.connection().execute(
            "SELECT * FROM conversations ORDER BY updated_at DESC, id DESC LIMIT ?",
            (max(1, int(limit)),),
        ).fetchall()
        return [Conversation.from_row(row) for row in rows]
