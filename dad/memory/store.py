"""
Database — the relational contract behind conversations and relationships.

One SQLite file holds three tables:

- ``conversations``: one row per (platform, channel, thread) with the agent's
  resumable session id and accumulated spend
- ``messages``: append-only log of user and assistant turns
- ``relationships``: one row per Slack user with the respect score and a
  bounded interaction history (JSON)

The connection is synchronous and used from the event-loop thread only, so
each statement (and each explicit transaction) completes without another
coroutine interleaving.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import structlog

logger = structlog.get_logger(__name__)

CONVERSATIONS_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY,
    thread_id TEXT NOT NULL,
    channel_id TEXT NOT NULL,
    platform TEXT NOT NULL DEFAULT 'slack',
    session_id TEXT,
    user_id TEXT NOT NULL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    total_cost_usd REAL DEFAULT 0.0,
    total_turns INTEGER DEFAULT 0,
    UNIQUE(platform, channel_id, thread_id)
);

CREATE INDEX IF NOT EXISTS idx_conversations_updated ON conversations(updated_at);
"""

MESSAGES_SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id),
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    cost_usd REAL,
    duration_ms INTEGER,
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id);
"""

RELATIONSHIPS_SCHEMA = """
CREATE TABLE IF NOT EXISTS relationships (
    id INTEGER PRIMARY KEY,
    user_id TEXT NOT NULL UNIQUE,
    display_name TEXT DEFAULT '',
    respect_score INTEGER DEFAULT 70 CHECK (respect_score BETWEEN 0 AND 100),
    interaction_summary TEXT DEFAULT '[]',
    last_interaction REAL,
    total_interactions INTEGER DEFAULT 0
);
"""


class Database:
    """Owns the SQLite connection and the schema."""

    def __init__(self, db_path: Path):
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def path(self) -> Path:
        return self._db_path

    def initialize(self) -> None:
        """Open the connection and create the tables if they are missing."""
        if self._conn is not None:
            logger.debug("database.already_initialized", path=str(self._db_path))
            return

        if str(self._db_path) != ":memory:":
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # isolation_level=None: autocommit per statement; transaction() opts in.
        self._conn = sqlite3.connect(str(self._db_path), isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._conn.executescript(CONVERSATIONS_SCHEMA)
        self._conn.executescript(MESSAGES_SCHEMA)
        self._conn.executescript(RELATIONSHIPS_SCHEMA)

        logger.info("database.initialized", path=str(self._db_path))

    def connection(self) -> sqlite3.Connection:
        """Return the open connection or raise a clear error."""
        if self._conn is None:
            raise RuntimeError("Database is not initialized. Call initialize() first.")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block of statements as one write transaction."""
        conn = self.connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("database.closed", path=str(self._db_path))
