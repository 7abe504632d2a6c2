"""
Respect Extractor — reads the agent's verdict on the person it just helped.

The system prompt asks the agent to end each reply with a tag such as
``[RESPECT:+3]``. This module finds the first such tag, turns it into a signed
delta and a sentiment label, and removes it from the text the user will see.
A missing tag is normal and leaves everything unchanged. Deltas are bounded to
±``MAX_SCORE``, the largest move the score range allows.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from dad.types import Sentiment

MIN_SCORE = 0
MAX_SCORE = 100
DEFAULT_SCORE = 70

# Whitespace on both sides of the tag goes with it.
_MARKER_RE = re.compile(r"\s*\[RESPECT:\s*([+-]?\d+)\s*\]\s*", re.IGNORECASE)


@dataclass(frozen=True)
class RespectOutcome:
    visible_text: str
    delta: Optional[int] = None
    sentiment: Sentiment = "neutral"

    @property
    def found(self) -> bool:
        return self.delta is not None


def clamp_score(value: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(value)))


def clamp_delta(value: int) -> int:
    """Bound a delta to the widest move the score range allows."""
    return max(-MAX_SCORE, min(MAX_SCORE, int(value)))


def _parse_delta(literal: str) -> int:
    # Long literals saturate without going through int().
    sign = -1 if literal.startswith("-") else 1
    digits = literal.lstrip("+-").lstrip("0") or "0"
    if len(digits) > len(str(MAX_SCORE)):
        return sign * MAX_SCORE
    return clamp_delta(sign * int(digits))


def sentiment_for(delta: Optional[int]) -> Sentiment:
    if delta is None or delta == 0:
        return "neutral"
    return "positive" if delta > 0 else "negative"


def _splice(text: str, match: re.Match) -> str:
    """Remove *match* from *text*, keeping a single space between surviving words."""
    before = text[: match.start()]
    after = text[match.end():]
    if before and after:
        gap = "\n" if "\n" in match.group(0) else " "
        return before + gap + after
    return before + after


def strip_respect_marker(text: str) -> str:
    """Remove every respect tag and its adjacent whitespace.

    Running this on text that no longer contains a tag returns it unchanged.
    """
    match = _MARKER_RE.search(text)
    while match is not None:
        text = _splice(text, match)
        match = _MARKER_RE.search(text)
    return text


def extract_respect(text: str) -> RespectOutcome:
    """Act on the first respect tag in *text*; never raises."""
    text = text or ""
    match = _MARKER_RE.search(text)
    if match is None:
        return RespectOutcome(visible_text=text)
    delta = _parse_delta(match.group(1))
    return RespectOutcome(
        visible_text=strip_respect_marker(text),
        delta=delta,
        sentiment=sentiment_for(delta),
    )
