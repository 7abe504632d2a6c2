"""
Error taxonomy for a single turn.

Admission errors are raised before any external work starts and have no side
effects. Invocation errors are raised by the invoker after its stale-session
retry policy has run. ``StaleContinuity`` never leaves the invoker.
"""

from __future__ import annotations

# Longest slice of process output we ever carry in an exception message.
EXCERPT_LIMIT = 200


def excerpt(text: str, limit: int = EXCERPT_LIMIT) -> str:
    """Collapse whitespace and cut *text* to at most *limit* characters."""
    flat = " ".join((text or "").split())
    return flat[:limit]


class DadError(Exception):
    """Root of every error this package raises on purpose."""


class AdmissionError(DadError):
    """The concurrency gate refused to start an invocation."""

    def __init__(self, thread_key: str, message: str) -> None:
        super().__init__(message)
        self.thread_key = thread_key


class ThreadBusy(AdmissionError):
    """An invocation is already running for this thread."""

    def __init__(self, thread_key: str) -> None:
        super().__init__(thread_key, f"Thread {thread_key} already has an active invocation")


class TooBusy(AdmissionError):
    """The global concurrency ceiling has been reached."""

    def __init__(self, thread_key: str, limit: int) -> None:
        super().__init__(thread_key, f"Concurrency limit reached ({limit} active invocations)")
        self.limit = limit


class InvocationError(DadError):
    """The agent process could not produce a result."""


class SpawnError(InvocationError):
    """The agent process could not be started at all."""


class ProcessError(InvocationError):
    """The agent process exited with a non-zero status."""

    def __init__(self, returncode: int | None, output: str) -> None:
        self.returncode = returncode
        self.excerpt = excerpt(output)
        detail = self.excerpt or "no output"
        super().__init__(f"Agent process exited with code {returncode}: {detail}")


class StaleContinuity(DadError):
    """The stored session id was rejected; used internally to trigger one retry."""

    def __init__(self, session_id: str, cause: InvocationError) -> None:
        super().__init__(f"Session {session_id} is no longer resumable: {cause}")
        self.session_id = session_id
        self.cause = cause
