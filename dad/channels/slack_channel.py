"""
Slack Channel — Socket Mode adapter for Slack via slack-bolt.

Uses ``AsyncApp`` with ``AsyncSocketModeHandler`` so events are handled on
the same asyncio loop as everything else. Every Slack thread is one Dad
conversation: a top-level mention starts a thread, and replies inside it
continue the same agent session.
"""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING, Any, Optional

import structlog

from dad.agent.training import extract_training_content, is_training_message
from dad.channels.formatting import (
    THREAD_BUSY_TEXT,
    chunk_message,
    describe_error,
    markdown_to_slack,
)
from dad.types import EMPTY_OUTPUT_PLACEHOLDER

if TYPE_CHECKING:
    from dad.agent.training import TrainingStore
    from dad.config import AuthConfig, SlackConfig
    from dad.orchestrator import Orchestrator

logger = structlog.get_logger(__name__)

_MENTION_RE = re.compile(r"<@[A-Z0-9]+>")

NOT_AUTHORIZED_TEXT = "Sorry, you're not authorized to use Dad."
EMPTY_MENTION_TEXT = "What do you need?"
THINKING_TEXT = "_Thinking..._"


def strip_mentions(text: str) -> str:
    """Remove every ``<@U…>`` mention from *text*."""
    return _MENTION_RE.sub("", text or "").strip()


class SlackChannel:
    """Slack adapter: mentions in channels, direct messages, and trainer uploads."""

    def __init__(
        self,
        orchestrator: "Orchestrator",
        config: "SlackConfig",
        auth: "AuthConfig",
        training: Optional["TrainingStore"] = None,
        trainer_user_id: str = "",
    ) -> None:
        self._orchestrator = orchestrator
        self._config = config
        self._auth = auth
        self._training = training
        self._trainer_user_id = trainer_user_id
        self._app: Any = None  # AsyncApp (lazy import)
        self._handler: Any = None  # AsyncSocketModeHandler (lazy import)
        self._handler_task: asyncio.Task[None] | None = None
        self._display_names: dict[str, str] = {}

    @property
    def channel_name(self) -> str:
        return "slack"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to Slack via Socket Mode and begin processing events."""
        from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
        from slack_bolt.async_app import AsyncApp

        self._app = AsyncApp(
            token=self._config.bot_token,
            signing_secret=self._config.signing_secret or None,
        )
        self._register_handlers()
        self._handler = AsyncSocketModeHandler(self._app, self._config.app_token)
        self._handler_task = asyncio.create_task(self._handler.start_async())
        logger.info("slack_channel.started")

    async def stop(self) -> None:
        """Disconnect from Slack gracefully."""
        if self._handler is not None:
            try:
                await self._handler.close_async()
            except Exception as e:
                logger.debug("slack_channel.handler_close_failed", error=str(e))
        if self._handler_task is not None:
            self._handler_task.cancel()
            try:
                await self._handler_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug("slack_channel.handler_task_failed", error=str(e))
            self._handler_task = None
        self._handler = None
        self._app = None
        logger.info("slack_channel.stopped")

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def _register_handlers(self) -> None:
        """Install event handlers on the slack-bolt AsyncApp."""
        assert self._app is not None

        @self._app.event("app_mention")
        async def _on_app_mention(event: dict[str, Any], say: Any, client: Any) -> None:
            await self.handle_mention(event, say, client)

        @self._app.event("message")
        async def _on_message(event: dict[str, Any], client: Any) -> None:
            await self.handle_direct_message(event, client)

    async def handle_mention(self, event: dict[str, Any], say: Any, client: Any) -> None:
        """An ``@Dad`` mention in a channel."""
        user = event.get("user") or ""
        channel_id = event.get("channel") or ""
        thread_ts = event.get("thread_ts") or event.get("ts") or ""
        if not user:
            return

        if not self._auth.is_user_authorized(user):
            logger.info("slack_channel.user_not_authorized", user=user)
            await say(text=NOT_AUTHORIZED_TEXT, thread_ts=thread_ts)
            return
        if not self._auth.is_channel_authorized(channel_id):
            logger.debug("slack_channel.channel_not_authorized", channel=channel_id)
            return

        text = strip_mentions(event.get("text") or "")
        if not text and not event.get("files"):
            await say(text=EMPTY_MENTION_TEXT, thread_ts=thread_ts)
            return

        await self._dispatch(client, event, channel_id, thread_ts, user, text)

    async def handle_direct_message(self, event: dict[str, Any], client: Any) -> None:
        """A message in a DM with the bot; everything else on the stream is ignored."""
        if event.get("channel_type") != "im":
            return
        if event.get("bot_id") or event.get("bot_profile"):
            return
        subtype = event.get("subtype")
        if subtype and subtype != "file_share":
            return

        user = event.get("user") or ""
        if not user:
            return
        channel_id = event.get("channel") or ""
        thread_ts = event.get("thread_ts") or event.get("ts") or ""

        if not self._auth.is_user_authorized(user):
            logger.info("slack_channel.user_not_authorized", user=user)
            await self._post(client, channel_id, NOT_AUTHORIZED_TEXT, thread_ts)
            return

        text = (event.get("text") or "").strip()
        if not text and not event.get("files"):
            return

        await self._dispatch(client, event, channel_id, thread_ts, user, text)

    async def _dispatch(
        self,
        client: Any,
        event: dict[str, Any],
        channel_id: str,
        thread_ts: str,
        user: str,
        text: str,
    ) -> None:
        if self._is_training(user, text, event):
            await self._handle_training(client, event, channel_id, thread_ts, text)
            return
        if not text:
            return
        await self._handle_turn(client, channel_id, thread_ts, user, text)

    # ------------------------------------------------------------------
    # Agent turns
    # ------------------------------------------------------------------

    async def _handle_turn(
        self,
        client: Any,
        channel_id: str,
        thread_ts: str,
        user: str,
        text: str,
    ) -> None:
        # Cheap early answer; the gate still decides inside run_turn.
        if self._orchestrator.is_thread_busy(channel_id, thread_ts):
            await self._post(client, channel_id, THREAD_BUSY_TEXT, thread_ts)
            return

        await self._react(client, channel_id, thread_ts, "eyes")
        placeholder_ts = await self._post(client, channel_id, THINKING_TEXT, thread_ts)
        display_name = await self._display_name(client, user)

        try:
            result = await self._orchestrator.run_turn(
                text, channel_id, thread_ts, user, display_name=display_name
            )
        except Exception as e:
            logger.error(
                "slack_channel.turn_failed",
                channel=channel_id,
                thread_ts=thread_ts,
                user=user,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._deliver(client, channel_id, thread_ts, placeholder_ts, [describe_error(e)])
            await self._swap_reaction(client, channel_id, thread_ts, "x")
            return

        formatted = markdown_to_slack(result.text or EMPTY_OUTPUT_PLACEHOLDER)
        await self._deliver(client, channel_id, thread_ts, placeholder_ts, chunk_message(formatted))
        await self._swap_reaction(client, channel_id, thread_ts, "white_check_mark")

    async def _deliver(
        self,
        client: Any,
        channel_id: str,
        thread_ts: str,
        placeholder_ts: Optional[str],
        chunks: list[str],
    ) -> None:
        """Put the first chunk into the placeholder and the rest into the thread."""
        remaining = list(chunks)
        if placeholder_ts and remaining:
            first = remaining.pop(0)
            try:
                await client.chat_update(channel=channel_id, ts=placeholder_ts, text=first)
            except Exception as e:
                logger.error("slack_channel.update_failed", channel=channel_id, error=str(e))
                remaining.insert(0, first)
        for chunk in remaining:
            if await self._post(client, channel_id, chunk, thread_ts) is None:
                break

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _is_training(self, user: str, text: str, event: dict[str, Any]) -> bool:
        if self._training is None or not self._trainer_user_id:
            return False
        if user != self._trainer_user_id:
            return False
        return is_training_message(text) or bool(event.get("files"))

    async def _handle_training(
        self,
        client: Any,
        event: dict[str, Any],
        channel_id: str,
        thread_ts: str,
        text: str,
    ) -> None:
        assert self._training is not None
        saved: list[str] = []
        failed: list[str] = []
        for item in event.get("files") or []:
            name = item.get("name") or item.get("id") or "upload"
            url = item.get("url_private_download") or item.get("url_private")
            if not url:
                failed.append(name)
                continue
            try:
                path = await self._training.download_file(url, self._config.bot_token, name)
            except Exception as e:
                logger.error("slack_channel.training_download_failed", file=name, error=str(e))
                failed.append(name)
                continue
            saved.append(path.name)

        content = extract_training_content(text) if is_training_message(text) else text.strip()
        if saved:
            listing = "\n".join(f"- files/{name}" for name in saved)
            content = f"{content}\n\nFiles:\n{listing}" if content else f"Files:\n{listing}"
        if content:
            self._training.append(content)

        parts = []
        if content:
            parts.append("Got it. Added to my training.")
        if saved:
            parts.append(f"Saved {len(saved)} file(s).")
        if failed:
            parts.append(f"Couldn't download: {', '.join(failed)}.")
        if not parts:
            parts.append("Nothing to add. Send `training: <notes>` or attach a file.")
        await self._post(client, channel_id, " ".join(parts), thread_ts)
        logger.info("slack_channel.training_received", saved=len(saved), failed=len(failed))

    # ------------------------------------------------------------------
    # Slack API helpers
    # ------------------------------------------------------------------

    async def _post(
        self,
        client: Any,
        channel_id: str,
        text: str,
        thread_ts: str,
    ) -> Optional[str]:
        """Post into the thread; returns the new message ts, or None on failure."""
        try:
            response = await client.chat_postMessage(
                channel=channel_id,
                text=text,
                thread_ts=thread_ts,
            )
        except Exception as e:
            logger.error("slack_channel.send_failed", channel=channel_id, error=str(e))
            return None
        return response.get("ts")

    async def _react(self, client: Any, channel_id: str, ts: str, name: str) -> None:
        try:
            await client.reactions_add(channel=channel_id, name=name, timestamp=ts)
        except Exception as e:
            # Usually "already_reacted".
            logger.debug("slack_channel.reaction_failed", name=name, error=str(e))

    async def _swap_reaction(self, client: Any, channel_id: str, ts: str, name: str) -> None:
        try:
            await client.reactions_remove(channel=channel_id, name="eyes", timestamp=ts)
        except Exception as e:
            logger.debug("slack_channel.reaction_remove_failed", error=str(e))
        await self._react(client, channel_id, ts, name)

    async def _display_name(self, client: Any, user_id: str) -> Optional[str]:
        """Best display name for *user_id*, cached after the first lookup."""
        cached = self._display_names.get(user_id)
        if cached:
            return cached
        try:
            response = await client.users_info(user=user_id)
        except Exception as e:
            logger.debug("slack_channel.users_info_failed", user=user_id, error=str(e))
            return None
        user = response.get("user") or {}
        profile = user.get("profile") or {}
        name = (
            profile.get("display_name")
            or profile.get("real_name")
            or user.get("real_name")
            or user.get("name")
            or ""
        ).strip()
        if not name:
            return None
        self._display_names[user_id] = name
        return name
