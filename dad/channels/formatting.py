"""
Message formatting and chunking for Slack.

The agent writes ordinary Markdown; Slack speaks mrkdwn (``*bold*``,
``<url|text>`` links, no headings). Replies longer than a single Slack message
are split into chunks, preferring paragraph boundaries, then line boundaries,
and only hard-cutting as a last resort.
"""

from __future__ import annotations

import re

from dad.errors import ProcessError, SpawnError, ThreadBusy, TooBusy

# Slack rejects text over 4000 characters; keep some headroom.
SLACK_MAX_LEN: int = 3900

_FENCE_RE = re.compile(r"```.*?```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`[^`\n]+`")
_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")
_HEADER_RE = re.compile(r"^#{1,6}\s+(.+)$", re.MULTILINE)
_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")
_SENTINEL_RE = re.compile(r"\x02(\d+)\x03")

THREAD_BUSY_TEXT = "_I'm still working on your previous request in this thread. Hang on._"
TOO_BUSY_TEXT = "_I'm handling too many requests right now. Try again in a moment._"


def markdown_to_slack(text: str) -> str:
    """
    Convert agent Markdown to Slack mrkdwn.

    Code (fenced and inline) is set aside first so nothing inside it is
    rewritten, then ``**bold**`` → ``*bold*``, ``# Heading`` → ``*Heading*``
    and ``[text](url)`` → ``<url|text>``.
    """
    protected: list[str] = []

    def _protect(m: re.Match) -> str:
        protected.append(m.group(0))
        return f"\x02{len(protected) - 1}\x03"

    text = _FENCE_RE.sub(_protect, text)
    text = _INLINE_CODE_RE.sub(_protect, text)

    text = _BOLD_RE.sub(r"*\1*", text)
    text = _HEADER_RE.sub(r"*\1*", text)
    text = _LINK_RE.sub(r"<\2|\1>", text)

    return _SENTINEL_RE.sub(lambda m: protected[int(m.group(1))], text)


def chunk_message(text: str, max_len: int = SLACK_MAX_LEN) -> list[str]:
    """
    Split *text* into pieces of at most *max_len* characters.

    A boundary is only used if it falls in the second half of the window, so
    an early blank line can't produce a tiny chunk. Leading whitespace of
    each following chunk is dropped.
    """
    if len(text) <= max_len:
        return [text]

    chunks: list[str] = []
    remaining = text
    half = max_len // 2
    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break
        split_at = remaining.rfind("\n\n", 0, max_len)
        if split_at < half:
            split_at = remaining.rfind("\n", 0, max_len)
        if split_at < half:
            split_at = max_len
        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:].lstrip()
    return chunks


def describe_error(exc: BaseException) -> str:
    """Short, user-facing description of why a turn did not complete."""
    if isinstance(exc, ThreadBusy):
        return "_I'm still working on your previous request._"
    if isinstance(exc, TooBusy):
        return TOO_BUSY_TEXT
    if isinstance(exc, SpawnError):
        return "_Error: I couldn't start my agent process. Someone should check the server._"
    if isinstance(exc, ProcessError):
        detail = exc.excerpt or f"exit code {exc.returncode}"
        return f"_Error: {detail}_"
    return f"_Error: {exc}_" if str(exc) else "_Error: something went wrong._"
