"""
Orchestrator — one Slack turn, end to end.

``run_turn`` is the only thing channels call. It:

  1. Admits the turn through the concurrency gate (or fails fast)
  2. Finds or creates the thread's conversation and logs the user message
  3. Loads the user's relationship and builds the system prompt from it
  4. Invokes the agent, resuming the thread's session when there is one
  5. Stores the session id the agent reports
  6. Applies the agent's respect verdict and records the interaction
  7. Logs the reply and adds up cost and turns
  8. Releases the admission, whatever happened

Steps 5–7 are bookkeeping after the user already has an answer. A failure in
any of them is logged and the answer is still returned.
"""

from __future__ import annotations

from typing import Callable, Optional

import structlog

from dad.agent.system_prompt import build_system_prompt
from dad.harness.gate import ConcurrencyGate, thread_key
from dad.harness.invoker import SessionedInvoker
from dad.harness.respect import RespectOutcome, extract_respect
from dad.memory.conversations import DEFAULT_PLATFORM, Conversation, ConversationStore
from dad.memory.relationships import RelationshipStore
from dad.types import InvocationResult, TurnResult

logger = structlog.get_logger(__name__)


class Orchestrator:
    """Composes the gate, the stores, and the invoker for each turn."""

    def __init__(
        self,
        gate: ConcurrencyGate,
        invoker: SessionedInvoker,
        conversations: ConversationStore,
        relationships: RelationshipStore,
        *,
        training_context: Optional[Callable[[], str]] = None,
        platform: str = DEFAULT_PLATFORM,
    ) -> None:
        self._gate = gate
        self._invoker = invoker
        self._conversations = conversations
        self._relationships = relationships
        self._training_context = training_context
        self._platform = platform

    @property
    def gate(self) -> ConcurrencyGate:
        return self._gate

    def thread_key(self, channel_id: str, thread_id: str) -> str:
        return thread_key(channel_id, thread_id, self._platform)

    def is_thread_busy(self, channel_id: str, thread_id: str) -> bool:
        return self._gate.is_busy(self.thread_key(channel_id, thread_id))

    async def run_turn(
        self,
        prompt: str,
        channel_id: str,
        thread_id: str,
        user_id: str,
        *,
        display_name: Optional[str] = None,
    ) -> TurnResult:
        key = self.thread_key(channel_id, thread_id)
        # Raises ThreadBusy/TooBusy before anything is touched.
        admission = self._gate.admit(key)
        async with admission:
            log = logger.bind(thread_key=key, user_id=user_id)
            return await self._execute(prompt, channel_id, thread_id, user_id, display_name, log)

    async def _execute(
        self,
        prompt: str,
        channel_id: str,
        thread_id: str,
        user_id: str,
        display_name: Optional[str],
        log: structlog.stdlib.BoundLogger,
    ) -> TurnResult:
        conversation = self._conversations.find_or_create(
            channel_id, thread_id, user_id, platform=self._platform
        )
        self._conversations.log_message(conversation.id, "user", prompt)

        relationship = self._relationships.get_or_create(user_id, display_name or "")
        if display_name and display_name != relationship.display_name:
            self._relationships.update_display_name(user_id, display_name)
        context = self._relationships.context_window(user_id)
        system_prompt = build_system_prompt(context, self._read_training_context(log))

        result = await self._invoker.invoke(
            prompt,
            system_prompt,
            conversation.session_id,
            on_stale=lambda: self._conversations.clear_session_id(conversation.id),
        )

        self._persist_session(conversation, result, log)
        outcome = extract_respect(result.text)
        score = self._persist_relationship(user_id, prompt, outcome, log)
        self._persist_reply(conversation, result, outcome.visible_text, log)

        log.info(
            "orchestrator.turn_complete",
            cost_usd=result.cost_usd,
            turns=result.num_turns,
            duration_ms=result.duration_ms,
            respect_delta=outcome.delta,
            degraded=result.degraded,
        )
        return TurnResult(
            text=outcome.visible_text,
            cost_usd=result.cost_usd,
            duration_ms=result.duration_ms,
            turns=result.num_turns,
            session_id=result.session_id,
            respect_delta=outcome.delta,
            respect_score=score,
            sentiment=outcome.sentiment,
        )

    def _read_training_context(self, log: structlog.stdlib.BoundLogger) -> str:
        if self._training_context is None:
            return ""
        try:
            return self._training_context()
        except Exception as e:
            log.warning("orchestrator.training_context_failed", error=str(e))
            return ""

    # ------------------------------------------------------------------
    # Best-effort persistence after a successful invocation
    # ------------------------------------------------------------------

    def _persist_session(
        self,
        conversation: Conversation,
        result: InvocationResult,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        if not result.session_id or result.session_id == conversation.session_id:
            return
        try:
            self._conversations.update_session_id(conversation.id, result.session_id)
        except Exception as e:
            log.error("orchestrator.persist_failed", step="session_id", error=str(e), exc_info=True)

    def _persist_relationship(
        self,
        user_id: str,
        prompt: str,
        outcome: RespectOutcome,
        log: structlog.stdlib.BoundLogger,
    ) -> Optional[int]:
        score: Optional[int] = None
        if outcome.delta is not None:
            try:
                score = self._relationships.apply_respect_delta(user_id, outcome.delta)
            except Exception as e:
                log.error("orchestrator.persist_failed", step="respect", error=str(e), exc_info=True)
        try:
            relationship = self._relationships.append_interaction(user_id, prompt, outcome.sentiment)
            score = relationship.respect_score
        except Exception as e:
            log.error("orchestrator.persist_failed", step="history", error=str(e), exc_info=True)
        return score

    def _persist_reply(
        self,
        conversation: Conversation,
        result: InvocationResult,
        visible_text: str,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        try:
            self._conversations.log_message(
                conversation.id,
                "assistant",
                visible_text,
                cost_usd=result.cost_usd,
                duration_ms=result.duration_ms,
            )
        except Exception as e:
            log.error("orchestrator.persist_failed", step="reply", error=str(e), exc_info=True)
        try:
            self._conversations.add_cost(conversation.id, result.cost_usd, result.num_turns)
        except Exception as e:
            log.error("orchestrator.persist_failed", step="cost", error=str(e), exc_info=True)
