"""
Relationships — what Dad remembers about each person.

Every Slack user gets one row: a respect score between 0 and 100 (starting at
70), a display name filled in when we first learn it, and a short
chronological history of past interactions. The history never holds more than
50 entries; the oldest fall off first.

The score moves only through the agent's own ``[RESPECT:±N]`` verdicts. The
most recent slice of the history is rendered into the system prompt so the
agent can pick up where it left off with someone.
"""

from __future__ import annotations

import json
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from dad.harness.respect import DEFAULT_SCORE, MAX_SCORE, MIN_SCORE, clamp_delta, clamp_score
from dad.memory.store import Database
from dad.types import Sentiment

logger = structlog.get_logger(__name__)

MAX_HISTORY = 50
CONTEXT_ENTRIES = 10
TOPIC_MAX_CHARS = 100
_SENTIMENTS = ("positive", "negative", "neutral")


def snippet(text: str, limit: int = TOPIC_MAX_CHARS) -> str:
    """Cut *text* to at most *limit* characters, marking truncation with '...'."""
    flat = " ".join((text or "").split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3].rstrip() + "..."


def _format_ts(ts: Optional[float]) -> str:
    if not ts:
        return "never"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


@dataclass
class Interaction:
    timestamp: float
    topic: str
    sentiment: Sentiment = "neutral"

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "topic": self.topic, "sentiment": self.sentiment}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Interaction":
        sentiment = data.get("sentiment", "neutral")
        if sentiment not in _SENTIMENTS:
            sentiment = "neutral"
        return cls(
            timestamp=float(data.get("timestamp") or 0.0),
            topic=str(data.get("topic", ""))[:TOPIC_MAX_CHARS],
            sentiment=sentiment,
        )


def _decode_history(raw: Optional[str]) -> list[Interaction]:
    try:
        data = json.loads(raw or "[]")
    except json.JSONDecodeError:
        logger.warning("relationships.history_corrupt")
        return []
    if not isinstance(data, list):
        return []
    return [Interaction.from_dict(item) for item in data if isinstance(item, dict)]


@dataclass
class Relationship:
    user_id: str
    display_name: str = ""
    respect_score: int = DEFAULT_SCORE
    history: list[Interaction] = field(default_factory=list)
    last_interaction: Optional[float] = None
    total_interactions: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Relationship":
        return cls(
            user_id=row["user_id"],
            display_name=row["display_name"] or "",
            respect_score=clamp_score(row["respect_score"]),
            history=_decode_history(row["interaction_summary"]),
            last_interaction=row["last_interaction"],
            total_interactions=int(row["total_interactions"] or 0),
        )


@dataclass
class RelationshipContext:
    """Snapshot of a relationship, shaped for the next system prompt."""

    user_id: str
    display_name: str
    respect_score: int
    total_interactions: int
    last_interaction: Optional[float]
    recent: list[Interaction]

    def render(self) -> str:
        who = self.display_name or self.user_id
        lines = [
            f"## Your relationship with {who}",
            f"- Respect score: {self.respect_score}/{MAX_SCORE}",
            f"- Total interactions: {self.total_interactions}",
            f"- Last interaction: {_format_ts(self.last_interaction)}",
        ]
        if self.recent:
            lines.append("- Recent interactions (oldest first):")
            for item in self.recent:
                lines.append(f"  - [{_format_ts(item.timestamp)}] ({item.sentiment}) {item.topic}")
        else:
            lines.append("- This is your first interaction with this person.")
        return "\n".join(lines)


class RelationshipStore:
    """Reads and writes the ``relationships`` table."""

    def __init__(self, db: Database):
        self._db = db

    def get(self, user_id: str) -> Optional[Relationship]:
        row = self._db.connection().execute(
            "SELECT * FROM relationships WHERE user_id = ?", (user_id,)
        ).fetchone()
        return Relationship.from_row(row) if row else None

    def get_or_create(self, user_id: str, display_name: str = "") -> Relationship:
        cursor = self._db.connection().execute(
            "INSERT OR IGNORE INTO relationships (user_id, display_name, respect_score) "
            "VALUES (?, ?, ?)",
            (user_id, display_name, DEFAULT_SCORE),
        )
        if cursor.rowcount:
            logger.info("relationships.created", user_id=user_id)
        relationship = self.get(user_id)
        assert relationship is not None
        return relationship

    def update_display_name(self, user_id: str, name: str) -> None:
        self._db.connection().execute(
            "UPDATE relationships SET display_name = ? WHERE user_id = ?",
            (name.strip(), user_id),
        )

    def update_respect_score(self, user_id: str, score: int) -> int:
        clamped = clamp_score(score)
        self._db.connection().execute(
            "UPDATE relationships SET respect_score = ? WHERE user_id = ?",
            (clamped, user_id),
        )
        return clamped

    def apply_respect_delta(self, user_id: str, delta: int) -> int:
        """Shift the score by *delta*, clamped to [0, 100], in one statement."""
        conn = self._db.connection()
        conn.execute(
            "UPDATE relationships SET respect_score = MAX(?, MIN(?, respect_score + ?)) "
            "WHERE user_id = ?",
            (MIN_SCORE, MAX_SCORE, clamp_delta(delta), user_id),
        )
        row = conn.execute(
            "SELECT respect_score FROM relationships WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            raise KeyError(f"No relationship for user {user_id}")
        score = int(row["respect_score"])
        logger.info("relationships.respect_changed", user_id=user_id, delta=delta, score=score)
        return score

    def append_interaction(
        self,
        user_id: str,
        topic: str,
        sentiment: Sentiment = "neutral",
    ) -> Relationship:
        """Record one interaction; trimming and counting happen in one transaction."""
        if sentiment not in _SENTIMENTS:
            raise ValueError(f"Unknown sentiment: {sentiment!r}")
        now = time.time()
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT interaction_summary FROM relationships WHERE user_id = ?", (user_id,)
            ).fetchone()
            if row is None:
                raise KeyError(f"No relationship for user {user_id}")
            history = _decode_history(row["interaction_summary"])
            history.append(Interaction(timestamp=now, topic=snippet(topic), sentiment=sentiment))
            if len(history) > MAX_HISTORY:
                del history[: len(history) - MAX_HISTORY]
            conn.execute(
                "UPDATE relationships SET interaction_summary = ?, "
                "total_interactions = total_interactions + 1, last_interaction = ? "
                "WHERE user_id = ?",
                (json.dumps([item.to_dict() for item in history]), now, user_id),
            )
        relationship = self.get(user_id)
        assert relationship is not None
        return relationship

    def context_window(self, user_id: str) -> RelationshipContext:
        relationship = self.get_or_create(user_id)
        return RelationshipContext(
            user_id=relationship.user_id,
            display_name=relationship.display_name,
            respect_score=relationship.respect_score,
            total_interactions=relationship.total_interactions,
            last_interaction=relationship.last_interaction,
            recent=relationship.history[-CONTEXT_ENTRIES:],
        )
