"""
Main — Dad's startup sequence.

``dad serve`` (or ``python -m dad.main``) ends up here. This module:
  1. Configures logging
  2. Loads configuration from the environment
  3. Opens the database and makes sure the workspace and training dirs exist
  4. Wires gate → invoker → stores → orchestrator
  5. Starts the health endpoint and the Slack connection
  6. Waits for SIGINT/SIGTERM and shuts everything down in reverse order

All behaviour lives in the subsystems; this file only wires them together.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any, Optional

import structlog

from dad.agent.training import TrainingStore
from dad.config import DadConfig, SlackConfig
from dad.harness.gate import ConcurrencyGate
from dad.harness.invoker import SessionedInvoker
from dad.health import HealthServer
from dad.memory.conversations import ConversationStore
from dad.memory.relationships import RelationshipStore
from dad.memory.store import Database
from dad.orchestrator import Orchestrator

_TRUNCATED_KEYS = ("content", "prompt", "text", "system_prompt")
_MAX_DISPLAY_LEN = 80


def _truncate_message_fields(logger: Any, method_name: str, event_dict: dict) -> dict:
    """
    Structlog processor that shortens message bodies in log output.

    User prompts and agent replies are logged for context only; the full text
    is already in the database.
    """
    for key in _TRUNCATED_KEYS:
        val = event_dict.get(key)
        if isinstance(val, str) and len(val) > _MAX_DISPLAY_LEN:
            event_dict[key] = val[:_MAX_DISPLAY_LEN] + "... [truncated]"
    return event_dict


_logging_configured = False


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structlog over standard-library logging.

    Safe to call more than once; subsequent calls are no-ops.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=level, stream=sys.stderr)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _truncate_message_fields,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


logger = structlog.get_logger(__name__)


class DadApp:
    """
    The long-running Slack service.

    Lifecycle: create → run() → (serve until a signal) → cleanup.
    """

    def __init__(self, config: DadConfig, slack_config: Optional[SlackConfig] = None) -> None:
        self._config = config
        self._slack_config = slack_config
        self._shutdown_event = asyncio.Event()

        self.database = Database(config.storage.db_path)
        self.conversations = ConversationStore(self.database)
        self.relationships = RelationshipStore(self.database)
        assert config.training.training_dir is not None
        self.training = TrainingStore(config.training.training_dir)
        self.gate = ConcurrencyGate(config.agent.max_concurrent)
        self.invoker = SessionedInvoker(config.agent)
        self.orchestrator = Orchestrator(
            self.gate,
            self.invoker,
            self.conversations,
            self.relationships,
            training_context=self.training.get_context,
        )
        self.health = HealthServer(self.gate, config.health.host, config.health.port)
        self._slack: Any = None

    async def run(self) -> None:
        """Full lifecycle: init → serve → shutdown."""
        try:
            self._initialize()
            await self.health.start()
            await self._start_slack()
            logger.info(
                "dad.running",
                model=self._config.agent.model,
                max_concurrent=self.gate.max_concurrent,
                max_budget_usd=self._config.agent.max_budget_usd,
            )
            await self._shutdown_event.wait()
        finally:
            await self._cleanup()

    def _initialize(self) -> None:
        self._config.agent.cwd.mkdir(parents=True, exist_ok=True)
        self.database.initialize()
        self.training.initialize()
        logger.info("dad.initialized", config=repr(self._config))

    async def _start_slack(self) -> None:
        from dad.channels.slack_channel import SlackChannel

        slack_config = self._slack_config or SlackConfig()
        self._slack = SlackChannel(
            self.orchestrator,
            slack_config,
            self._config.auth,
            training=self.training,
            trainer_user_id=self._config.training.trainer_user_id,
        )
        await self._slack.start()

    async def _cleanup(self) -> None:
        if self._slack is not None:
            try:
                await self._slack.stop()
            except Exception as e:
                logger.error("dad.slack_stop_failed", error=str(e))
            self._slack = None
        try:
            await self.health.stop()
        except Exception as e:
            logger.error("dad.health_stop_failed", error=str(e))
        self.database.close()
        logger.info("dad.stopped")

    def request_shutdown(self, reason: str = "requested") -> None:
        logger.info("dad.shutdown_requested", reason=reason)
        self._shutdown_event.set()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        """Install SIGINT/SIGTERM handlers for graceful shutdown."""
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, f"signal_{sig.name.lower()}")
            except NotImplementedError:
                pass


def run() -> None:
    """Load config, build the service, and run it until a signal arrives."""
    configure_logging()
    try:
        config = DadConfig()
        slack_config = SlackConfig()
    except Exception as e:
        print(f"[dad] Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    app = DadApp(config, slack_config)
    app.install_signal_handlers(loop)
    try:
        loop.run_until_complete(app.run())
    except KeyboardInterrupt:
        pass
    finally:
        loop.close()


if __name__ == "__main__":
    run()
