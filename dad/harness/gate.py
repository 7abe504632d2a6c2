"""
Concurrency Gate — admission control for agent invocations.

Two rules, checked together:

- a thread may have at most one invocation in flight;
- the whole process may have at most ``max_concurrent`` in flight.

The check and the registration happen under one lock with no suspension point
in between, so two callers can never both see a thread as idle and both start.
The registration is handed back as a context manager whose exit always
releases it, whatever way the guarded block ends.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Optional

import structlog

from dad.errors import ThreadBusy, TooBusy

logger = structlog.get_logger(__name__)

DEFAULT_MAX_CONCURRENT = 3


def thread_key(channel_id: str, thread_id: str, platform: str = "slack") -> str:
    """Build the composite admission key for one conversation lane."""
    return f"{platform}:{channel_id}:{thread_id}"


class AdmissionHandle:
    """A held admission. Use as ``with`` or ``async with``; exit releases it."""

    def __init__(self, gate: "ConcurrencyGate", key: str) -> None:
        self._gate = gate
        self.key = key
        self.admitted_at = time.monotonic()
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._gate.release(self.key, handle=self)

    def __enter__(self) -> "AdmissionHandle":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()

    async def __aenter__(self) -> "AdmissionHandle":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.release()


class ConcurrencyGate:
    """Per-thread exclusivity plus a global ceiling on active invocations."""

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT) -> None:
        self._max_concurrent = max(1, int(max_concurrent))
        self._active: dict[str, AdmissionHandle] = {}
        self._lock = threading.Lock()

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def active_count(self) -> int:
        return len(self._active)

    def active_keys(self) -> list[str]:
        with self._lock:
            return list(self._active)

    def is_busy(self, key: str) -> bool:
        return key in self._active

    def admit(self, key: str) -> AdmissionHandle:
        """Register an invocation for *key* or raise ``ThreadBusy``/``TooBusy``."""
        with self._lock:
            if key in self._active:
                logger.info("gate.thread_busy", thread_key=key)
                raise ThreadBusy(key)
            if len(self._active) >= self._max_concurrent:
                logger.warning(
                    "gate.too_busy",
                    thread_key=key,
                    active=len(self._active),
                    limit=self._max_concurrent,
                )
                raise TooBusy(key, self._max_concurrent)
            handle = AdmissionHandle(self, key)
            self._active[key] = handle
            active = len(self._active)
        logger.debug("gate.admitted", thread_key=key, active=active)
        return handle

    def release(self, key: str, handle: Optional[AdmissionHandle] = None) -> None:
        """Drop the registration for *key*; releasing an idle key is a no-op.

        When *handle* is given, only that exact registration is removed, so a
        stale handle can never release a newer admission for the same key.
        """
        with self._lock:
            current = self._active.get(key)
            if current is None or (handle is not None and current is not handle):
                return
            del self._active[key]
            active = len(self._active)
        held = time.monotonic() - current.admitted_at
        logger.debug("gate.released", thread_key=key, active=active, held=round(held, 2))
