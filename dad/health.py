"""
Health Server — a tiny aiohttp app for liveness probes.

Routes:
  GET  /health  — {"status": "ok", "uptime": s, "active_invocations": n}

Anything else is a 404. The endpoint is unauthenticated and reveals nothing
beyond process uptime and how busy the gate is.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import structlog
from aiohttp import web

if TYPE_CHECKING:
    from dad.harness.gate import ConcurrencyGate

logger = structlog.get_logger(__name__)


class HealthServer:
    """Lifecycle: create → start() → (serve probes) → stop()."""

    def __init__(self, gate: "ConcurrencyGate", host: str = "0.0.0.0", port: int = 8080) -> None:
        self._gate = gate
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._started_at: float = time.monotonic()

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app(), access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        self._started_at = time.monotonic()
        logger.info("health.started", host=self._host, port=self._port)

    async def stop(self) -> None:
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        logger.info("health.stopped")

    async def _handle_health(self, request: web.Request) -> web.Response:
        uptime = time.monotonic() - self._started_at
        return web.json_response({
            "status": "ok",
            "uptime": round(uptime, 1),
            "active_invocations": self._gate.active_count,
        })
