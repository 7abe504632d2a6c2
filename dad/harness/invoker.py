"""
Sessioned Invoker — runs the agent CLI once per turn and recovers stale sessions.

Each attempt spawns exactly one ``claude`` process in print mode with JSON
output, waits for it to exit, and buffers everything it wrote. A clean exit is
always a result (see ``parser``); a non-zero exit is a ``ProcessError``; a
process that cannot start at all is a ``SpawnError``.

When a stored session id is passed and the attempt fails in a way that says
the session is unknown (for example after the agent's workspace was rebuilt),
the invoker asks its caller to forget that session and tries exactly once more
without ``--resume``. Whatever the second attempt produces is final.

Cancelling an invocation stops the process too: it gets SIGTERM, then SIGKILL
after ``TERMINATE_GRACE_SECONDS``, and is reaped before the cancellation
propagates.
"""

from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

import structlog

from dad.errors import InvocationError, ProcessError, SpawnError, StaleContinuity
from dad.harness.parser import parse_result
from dad.types import InvocationResult

if TYPE_CHECKING:
    from dad.config import AgentConfig

logger = structlog.get_logger(__name__)

# Lower-cased fragments of agent error output that mean "that session is gone".
# The CLI reports this only as free text, so this is a substring heuristic.
STALE_SESSION_MARKERS: tuple[str, ...] = (
    "no conversation found",
    "session",
)

# How long a cancelled agent process gets to exit before it is killed.
TERMINATE_GRACE_SECONDS = 2.0


def is_stale_session_error(error: InvocationError) -> bool:
    """Return True if *error* looks like a rejected ``--resume`` session id."""
    text = str(error).lower()
    return any(marker in text for marker in STALE_SESSION_MARKERS)


class SessionedInvoker:
    """Spawns the agent process and applies the one-shot stale-session retry."""

    def __init__(self, config: "AgentConfig") -> None:
        self._config = config

    def build_args(
        self,
        prompt: str,
        system_prompt: str,
        session_id: Optional[str] = None,
    ) -> list[str]:
        """Assemble the agent command line; the prompt is always last."""
        args = [
            self._config.claude_bin,
            "--print",
            "--output-format",
            "json",
            "--model",
            self._config.model,
            "--max-turns",
            str(self._config.max_turns),
            "--permission-mode",
            self._config.permission_mode,
            "--system-prompt",
            system_prompt,
        ]
        if session_id:
            args.extend(["--resume", session_id])
        # "--" ends option parsing so a prompt starting with "-" stays positional.
        args.extend(["--", prompt])
        return args

    def _build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self._config.api_key:
            env["ANTHROPIC_API_KEY"] = self._config.api_key
        return env

    async def invoke(
        self,
        prompt: str,
        system_prompt: str,
        session_id: Optional[str] = None,
        *,
        on_stale: Optional[Callable[[], None]] = None,
    ) -> InvocationResult:
        """Run one turn, retrying once without ``--resume`` if the session is stale."""
        try:
            return await self._resume_or_fail(prompt, system_prompt, session_id)
        except StaleContinuity as stale:
            logger.warning(
                "invoker.stale_session",
                session_id=stale.session_id,
                error=str(stale.cause),
            )
            if on_stale is not None:
                try:
                    on_stale()
                except Exception as e:
                    # The retry does not depend on the stored id being cleared.
                    logger.error("invoker.stale_session_clear_failed", error=str(e))
        return await self._run_once(prompt, system_prompt, None)

    async def _resume_or_fail(
        self,
        prompt: str,
        system_prompt: str,
        session_id: Optional[str],
    ) -> InvocationResult:
        try:
            return await self._run_once(prompt, system_prompt, session_id)
        except InvocationError as exc:
            if session_id and is_stale_session_error(exc):
                raise StaleContinuity(session_id, exc) from exc
            raise

    async def _run_once(
        self,
        prompt: str,
        system_prompt: str,
        session_id: Optional[str],
    ) -> InvocationResult:
        args = self.build_args(prompt, system_prompt, session_id)
        cwd: Path = self._config.cwd
        start = time.monotonic()
        logger.info(
            "invoker.spawn",
            model=self._config.model,
            resume=bool(session_id),
            prompt=prompt,
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
                env=self._build_env(),
            )
        except OSError as exc:
            logger.error("invoker.spawn_failed", binary=args[0], error=str(exc))
            raise SpawnError(f"Could not start {args[0]}: {exc}") from exc

        try:
            stdout_bytes, stderr_bytes = await proc.communicate()
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise
        elapsed_ms = int((time.monotonic() - start) * 1000)
        stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
        stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")

        if proc.returncode != 0:
            error = ProcessError(proc.returncode, stderr.strip() or stdout)
            logger.error(
                "invoker.process_failed",
                returncode=proc.returncode,
                elapsed_ms=elapsed_ms,
                stderr=error.excerpt,
            )
            raise error

        result = parse_result(stdout, fallback_duration_ms=elapsed_ms)
        logger.info(
            "invoker.complete",
            elapsed_ms=elapsed_ms,
            cost_usd=result.cost_usd,
            turns=result.num_turns,
            degraded=result.degraded,
        )
        return result

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """Stop a still-running agent process: SIGTERM, then SIGKILL after a grace period."""
        if proc.returncode is not None:
            return
        logger.warning("invoker.terminating", pid=proc.pid)
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=TERMINATE_GRACE_SECONDS)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
