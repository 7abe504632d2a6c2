"""
Core data types shared across Dad subsystems.

These live here rather than in a specific subsystem to avoid circular imports
between the harness, the stores, and the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

Sentiment = Literal["positive", "negative", "neutral"]

# Shown when the agent exits cleanly but prints nothing at all.
EMPTY_OUTPUT_PLACEHOLDER = "Done (no text output)."


@dataclass
class InvocationResult:
    """Structured outcome of one successful agent process run.

    ``degraded`` is set when stdout could not be decoded and the raw text was
    substituted; the numeric fields are then zero and ``session_id`` is empty.
    """

    text: str
    cost_usd: float = 0.0
    num_turns: int = 0
    session_id: str = ""
    duration_ms: int = 0
    degraded: bool = False


@dataclass
class TurnResult:
    """What the orchestrator hands back to a channel after a completed turn."""

    text: str
    cost_usd: float
    duration_ms: int
    turns: int
    session_id: str
    respect_delta: Optional[int] = None
    respect_score: Optional[int] = None
    sentiment: Sentiment = "neutral"

    def __str__(self) -> str:
        return self.text
