"""
Shared fixtures for the Dad test suite.

Provides an initialized on-disk database, the stores on top of it, an agent
config pointed at a temp workspace, and a stand-in for the agent subprocess so
individual test modules can focus on behavior rather than setup.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterator
from unittest.mock import AsyncMock

import pytest

from dad.config import AgentConfig
from dad.memory.conversations import ConversationStore
from dad.memory.relationships import RelationshipStore
from dad.memory.store import Database


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@pytest.fixture()
def db(tmp_path: Path) -> Iterator[Database]:
    database = Database(tmp_path / "dad.db")
    database.initialize()
    yield database
    database.close()


@pytest.fixture()
def conversations(db: Database) -> ConversationStore:
    return ConversationStore(db)


@pytest.fixture()
def relationships(db: Database) -> RelationshipStore:
    return RelationshipStore(db)


# ---------------------------------------------------------------------------
# Agent process
# ---------------------------------------------------------------------------

@pytest.fixture()
def agent_config(tmp_path: Path) -> AgentConfig:
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return AgentConfig(
        _env_file=None,
        model="claude-test",
        max_turns=5,
        cwd=workspace,
        claude_bin="claude",
        permission_mode="bypassPermissions",
        max_concurrent=2,
        api_key=None,
    )


class _FakeProcess:
    """Minimal stand-in for ``asyncio.subprocess.Process``."""

    def __init__(self, stdout: str = "", stderr: str = "", returncode: int = 0) -> None:
        self.returncode = returncode
        self.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )


def _result_json(
    text: str = "Hello there.",
    *,
    session_id: str = "sess-1",
    cost: float = 0.01,
    turns: int = 1,
    duration_ms: int = 1200,
    **extra: Any,
) -> str:
    """A result record shaped like the agent CLI's ``--output-format json``."""
    record = {
        "type": "result",
        "subtype": "success",
        "is_error": False,
        "result": text,
        "session_id": session_id,
        "total_cost_usd": cost,
        "num_turns": turns,
        "duration_ms": duration_ms,
    }
    record.update(extra)
    return json.dumps(record)


@pytest.fixture()
def fake_process() -> type[_FakeProcess]:
    return _FakeProcess


@pytest.fixture()
def result_json() -> Any:
    return _result_json
