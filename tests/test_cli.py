"""Tests for dad/cli.py — Click-based inspection commands."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from dad.cli import build_table, cli, format_timestamp, score_style
from dad.main import configure_logging
from dad.memory.conversations import ConversationStore
from dad.memory.relationships import RelationshipStore
from dad.memory.store import Database


@pytest.fixture()
def seeded_db(tmp_path: Path) -> Path:
    path = tmp_path / "dad.db"
    db = Database(path)
    db.initialize()
    try:
        rels = RelationshipStore(db)
        rels.get_or_create("U1", "Robin")
        rels.apply_respect_delta("U1", 5)
        rels.append_interaction("U1", "fix the deploy", "positive")
        convs = ConversationStore(db)
        conv = convs.find_or_create("C1", "T1", "U1")
        convs.add_cost(conv.id, 0.125, 3)
    finally:
        db.close()
    return path


class TestHelpers:
    def test_format_timestamp(self) -> None:
        assert format_timestamp(None) == "-"
        assert format_timestamp(0) == "-"
        assert format_timestamp(86400) == "1970-01-02 00:00"

    def test_score_style(self) -> None:
        assert score_style(90) == "green"
        assert score_style(60) == "yellow"
        assert score_style(10) == "red"

    def test_build_table(self) -> None:
        table = build_table("T", ["a", "b"], [[1, 2]])
        assert table.row_count == 1


class TestRelationshipCommand:
    def test_shows_score(self, seeded_db: Path) -> None:
        result = CliRunner().invoke(cli, ["--db", str(seeded_db), "--no-color", "relationship", "U1"])
        assert result.exit_code == 0, result.output
        assert "Robin" in result.output
        assert "75/100" in result.output
        assert "fix the deploy" in result.output

    def test_json_output(self, seeded_db: Path) -> None:
        result = CliRunner().invoke(cli, ["--db", str(seeded_db), "relationship", "U1", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["respect_score"] == 75
        assert data["total_interactions"] == 1
        assert data["history"][0]["topic"] == "fix the deploy"

    def test_unknown_user(self, seeded_db: Path) -> None:
        result = CliRunner().invoke(cli, ["--db", str(seeded_db), "relationship", "U_NOPE"])
        assert result.exit_code == 1
        assert "No relationship recorded" in result.output


class TestConversationsCommand:
    def test_lists_conversations(self, seeded_db: Path) -> None:
        result = CliRunner().invoke(cli, ["--db", str(seeded_db), "--no-color", "conversations"])
        assert result.exit_code == 0, result.output
        assert "C1" in result.output
        assert "$0.1250" in result.output

    def test_json_output(self, seeded_db: Path) -> None:
        result = CliRunner().invoke(cli, ["--db", str(seeded_db), "conversations", "--json"])
        data = json.loads(result.output)
        assert data[0]["total_turns"] == 3
        assert data[0]["total_cost_usd"] == pytest.approx(0.125)

    def test_empty_database(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["--db", str(tmp_path / "empty.db"), "conversations"])
        assert result.exit_code == 0
        assert "No conversations yet." in result.output


class TestLogging:
    def test_inspection_commands_log_warnings_only(self, seeded_db: Path) -> None:
        with patch("dad.main.configure_logging", side_effect=configure_logging) as configure:
            result = CliRunner().invoke(cli, ["--db", str(seeded_db), "conversations", "--json"])
        assert result.exit_code == 0, result.output
        configure.assert_called_once_with(logging.WARNING)
        assert json.loads(result.output)[0]["channel_id"] == "C1"

    def test_serve_leaves_logging_to_the_service(self) -> None:
        with patch("dad.main.configure_logging") as configure, patch("dad.main.run"):
            result = CliRunner().invoke(cli, ["serve"])
        assert result.exit_code == 0, result.output
        configure.assert_not_called()


class TestServeCommand:
    def test_serve_calls_run(self) -> None:
        with patch("dad.main.run") as run:
            result = CliRunner().invoke(cli, ["serve"])
        assert result.exit_code == 0, result.output
        run.assert_called_once()

    def test_version(self) -> None:
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output
