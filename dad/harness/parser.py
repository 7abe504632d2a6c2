"""
Result Parser — turns the agent's stdout into an ``InvocationResult``.

With ``--output-format json`` the agent prints a single JSON object:

    {"type": "result", "subtype": "success", "result": "...",
     "total_cost_usd": 0.01, "num_turns": 2, "session_id": "...",
     "duration_ms": 4210, ...}

Anything else that arrives on a clean exit is still a success: the raw text is
passed through and the numbers are zeroed. This module never raises.
"""

from __future__ import annotations

import json
from typing import Any

import structlog

from dad.types import EMPTY_OUTPUT_PLACEHOLDER, InvocationResult

logger = structlog.get_logger(__name__)


def _as_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return number if 0.0 <= number < float("inf") else 0.0


def _as_int(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, number)


def _degraded(raw: str, duration_ms: int, reason: str) -> InvocationResult:
    logger.warning("parser.degraded", reason=reason, length=len(raw))
    return InvocationResult(
        text=raw.strip() or EMPTY_OUTPUT_PLACEHOLDER,
        duration_ms=duration_ms,
        degraded=True,
    )


def _result_text(record: dict[str, Any]) -> str:
    text = record.get("result")
    if isinstance(text, str) and text.strip():
        return text
    subtype = record.get("subtype") or "success"
    if record.get("is_error") or subtype != "success":
        errors = record.get("errors")
        lines = [f"Error: {subtype}"]
        if isinstance(errors, list):
            lines.extend(str(item) for item in errors if item)
        return "\n".join(lines)
    return EMPTY_OUTPUT_PLACEHOLDER


def parse_result(stdout: str, fallback_duration_ms: int = 0) -> InvocationResult:
    """Decode the agent's structured result, degrading instead of failing."""
    raw = stdout or ""
    fallback_duration_ms = _as_int(fallback_duration_ms)
    try:
        record = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return _degraded(raw, fallback_duration_ms, "invalid_json")
    except RecursionError:
        return _degraded(raw, fallback_duration_ms, "too_deeply_nested")

    if not isinstance(record, dict):
        return _degraded(raw, fallback_duration_ms, "not_an_object")

    duration_ms = _as_int(record.get("duration_ms")) or fallback_duration_ms
    session_id = record.get("session_id")
    return InvocationResult(
        text=_result_text(record),
        cost_usd=_as_float(record.get("total_cost_usd")),
        num_turns=_as_int(record.get("num_turns")),
        session_id=session_id if isinstance(session_id, str) else "",
        duration_ms=duration_ms,
    )
