"""Tests for dad/harness/parser.py — decoding the agent's JSON result."""

from __future__ import annotations

import json

from dad.harness.parser import parse_result
from dad.types import EMPTY_OUTPUT_PLACEHOLDER


class TestStructuredResult:
    def test_success_record(self, result_json) -> None:
        result = parse_result(result_json("Hi!", session_id="s-42", cost=0.05, turns=3, duration_ms=900))
        assert result.text == "Hi!"
        assert result.session_id == "s-42"
        assert result.cost_usd == 0.05
        assert result.num_turns == 3
        assert result.duration_ms == 900
        assert result.degraded is False

    def test_missing_duration_uses_fallback(self) -> None:
        stdout = json.dumps({"type": "result", "result": "ok"})
        result = parse_result(stdout, fallback_duration_ms=1500)
        assert result.duration_ms == 1500

    def test_missing_numbers_default_to_zero(self) -> None:
        result = parse_result(json.dumps({"result": "ok"}))
        assert result.cost_usd == 0.0
        assert result.num_turns == 0
        assert result.session_id == ""

    def test_garbage_numbers_are_zeroed(self) -> None:
        stdout = json.dumps({"result": "ok", "total_cost_usd": "lots", "num_turns": None})
        result = parse_result(stdout)
        assert result.cost_usd == 0.0
        assert result.num_turns == 0

    def test_infinite_numbers_are_zeroed(self) -> None:
        stdout = '{"result": "ok", "num_turns": 1e400, "total_cost_usd": 1e400, "duration_ms": -1e400}'
        result = parse_result(stdout, fallback_duration_ms=25)
        assert result.text == "ok"
        assert result.num_turns == 0
        assert result.cost_usd == 0.0
        assert result.duration_ms == 25

    def test_negative_cost_is_zeroed(self) -> None:
        result = parse_result(json.dumps({"result": "ok", "total_cost_usd": -1}))
        assert result.cost_usd == 0.0

    def test_non_string_session_id_ignored(self) -> None:
        result = parse_result(json.dumps({"result": "ok", "session_id": 7}))
        assert result.session_id == ""

    def test_empty_result_gets_placeholder(self, result_json) -> None:
        result = parse_result(result_json(""))
        assert result.text == EMPTY_OUTPUT_PLACEHOLDER

    def test_error_record_without_text(self) -> None:
        stdout = json.dumps({
            "type": "result",
            "subtype": "error_max_turns",
            "is_error": True,
            "errors": ["ran out of turns"],
        })
        result = parse_result(stdout)
        assert result.text.startswith("Error: error_max_turns")
        assert "ran out of turns" in result.text
        assert result.degraded is False


class TestDegraded:
    def test_plain_text_passes_through(self) -> None:
        result = parse_result("not json", fallback_duration_ms=10)
        assert result.text == "not json"
        assert result.degraded is True
        assert result.cost_usd == 0.0
        assert result.num_turns == 0
        assert result.session_id == ""
        assert result.duration_ms == 10

    def test_surrounding_whitespace_trimmed(self) -> None:
        result = parse_result("\n  partial output \n")
        assert result.text == "partial output"

    def test_empty_stdout_gets_placeholder(self) -> None:
        result = parse_result("")
        assert result.text == EMPTY_OUTPUT_PLACEHOLDER
        assert result.degraded is True

    def test_json_array_is_not_a_record(self) -> None:
        result = parse_result("[1, 2, 3]")
        assert result.degraded is True
        assert result.text == "[1, 2, 3]"

    def test_deeply_nested_output_degrades(self) -> None:
        stdout = "[" * 200000
        result = parse_result(stdout)
        assert result.degraded is True
        assert result.text == stdout
