"""
Parley Turn Coordinator - sequences one chat turn end to end.

Flow per message:
1. Read a settings snapshot (used for the whole turn)
2. If strategy is enabled: classifier -> rule engine -> DecisionProcess
3. Sensitive -> configured safe reply, no main model call
4. Otherwise: persona + strategy + redlines -> ToolOrchestrator
5. Workflow update from completion markers (successful turns only)
6. Transcript appended exactly once, whatever branch was taken

Turns for one session are serialized by the session's lock. Under the
`reject` busy policy a second concurrent turn raises SessionBusyError
instead of waiting.

save_on_exit marks the archived session closed. A turn or reset that was
waiting on its lock moves to a fresh session under the same id.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional, Tuple

from config import runtime_config
from errors import LLMError, SessionBusyError, log_error
from logging_config import log_decision, log_message_in, log_message_out
from routers.chat_prompts import build_system_prompt, cleanup_response_text
from services.config_store import (
    KEY_DEPENDENCIES,
    KEY_MAIN_MODEL,
    KEY_OPENING_MONOLOGUE,
    KEY_PERSONA_TEMPLATE,
    KEY_PROCESSES,
    KEY_SAFETY_REDLINES,
)
from services.history import TranscriptArchive
from . import rule_engine
from .classifier import PreProcessingClassifier
from .models import (
    DecisionProcess,
    Sensitive,
    StrategyDecision,
    ToolCallRecord,
    TurnResult,
    WorkflowState,
)
from .orchestrator import ToolOrchestrator
from .session import ChatSession, SessionRegistry
from .workflow import WorkflowTracker, strip_markers

logger = logging.getLogger(__name__)


def workflow_factory(store):
    """Callable building a fresh tracker from the store's current settings."""

    def build() -> WorkflowTracker:
        settings = store.snapshot()
        return WorkflowTracker.from_config(settings.get(KEY_PROCESSES), settings.get(KEY_DEPENDENCIES))

    return build


class TurnCoordinator:
    """Owns the per-turn pipeline and all mutations of session state."""

    def __init__(
        self,
        store,
        sessions: SessionRegistry,
        gateway,
        archive: Optional[TranscriptArchive] = None,
        classifier: Optional[PreProcessingClassifier] = None,
        orchestrator: Optional[ToolOrchestrator] = None,
        config=None,
    ):
        self.store = store
        self.sessions = sessions
        self.archive = archive or TranscriptArchive()
        self.classifier = classifier or PreProcessingClassifier(gateway)
        self.orchestrator = orchestrator or ToolOrchestrator(gateway)
        self.config = config or runtime_config

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _turn_lock(self, session: ChatSession, wait: bool = False):
        if not wait and self.config.session_busy_policy == "reject" and session.lock.locked():
            raise SessionBusyError(session.session_id)
        async with session.lock:
            yield

    # -------------------------------------------------------------------------
    # Turn
    # -------------------------------------------------------------------------

    async def handle_turn(self, session: ChatSession, message: str) -> TurnResult:
        """Handle one user message for a session.

        Raises:
            SessionBusyError: only under the reject policy, before any state
                is touched
        """
        async with self._turn_lock(session):
            if not session.closed:
                return await self._run_turn(session, message)
        return await self.handle_turn(self._reopen(session), message)

    async def _run_turn(self, session: ChatSession, message: str) -> TurnResult:
        settings = self.store.snapshot()
        log_message_in(
            logger,
            message,
            session=session.session_id[:8],
            strategy=settings.strategy_enabled,
            workflow=settings.workflow_enabled,
        )

        decision_process: Optional[DecisionProcess] = None
        decision: Optional[StrategyDecision] = None
        tool_call: Optional[ToolCallRecord] = None
        tools_offered = []
        failed = False

        try:
            decision_process, decision = await self._pre_process(session, message, settings)
            if isinstance(decision, Sensitive):
                reply = settings.sensitive_response
            else:
                reply, tool_call, tools_offered = await self._compose_reply(session, message, settings, decision)
        except LLMError as e:
            log_error(logger, e, context="Main model", include_traceback=False)
            reply, failed = settings.fallback_response, True
        except Exception as e:
            log_error(logger, e, context="Turn", include_traceback=True)
            reply, failed = settings.fallback_response, True

        session.add_exchange(message, reply, failed=failed)
        log_message_out(
            logger,
            tool=tool_call.tool_name if tool_call else None,
            strategy=decision.label if decision is not None else None,
            failed=failed,
        )
        return TurnResult(
            reply=reply,
            ui_state=self._ui_state(session, settings, message),
            decision_process=decision_process,
            tool_call=tool_call,
            failed=failed,
            tools_offered=tools_offered,
        )

    async def _pre_process(
        self, session: ChatSession, message: str, settings
    ) -> Tuple[Optional[DecisionProcess], Optional[StrategyDecision]]:
        if not settings.strategy_enabled:
            return None, None

        outcome = await self.classifier.classify(message, session.transcript, settings)
        result = outcome.result
        decision = rule_engine.select(
            self.store.list_active_rules(),
            result,
            self.store.active_strategies(),
        )
        log_decision(
            logger,
            result.intent,
            emotion=result.emotion,
            sensitive=result.is_sensitive,
            strategy=decision.label,
            elapsed_ms=outcome.elapsed_ms,
        )
        process = DecisionProcess(
            pre_processing_model=outcome.model,
            pre_processing_time_ms=outcome.elapsed_ms,
            detected_intent=result.intent,
            detected_emotion=result.emotion,
            is_sensitive=result.is_sensitive,
            selected_strategy=decision.label,
        )
        return process, decision

    async def _compose_reply(self, session: ChatSession, message: str, settings, decision):
        persona = session.workflow.render_persona(settings.get(KEY_PERSONA_TEMPLATE), message)
        system_prompt = build_system_prompt(persona, decision, settings.get(KEY_SAFETY_REDLINES))
        messages = session.get_messages_for_llm(message, self.config.max_history_messages)
        params = settings.model_params(KEY_MAIN_MODEL)

        outcome = await self.orchestrator.run(system_prompt, messages, settings, params)
        reply = cleanup_response_text(outcome.reply)
        if not reply:
            raise LLMError("Reply was empty after cleanup", error_type="invalid", model=outcome.model)

        if settings.workflow_enabled:
            session.workflow.apply_reply(reply)
        return strip_markers(reply), outcome.tool_call, outcome.tools_offered

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    def _ui_state(self, session: ChatSession, settings, message: str = "", opening: Optional[str] = None) -> WorkflowState:
        persona = session.workflow.render_persona(settings.get(KEY_PERSONA_TEMPLATE), message)
        return session.workflow.snapshot(persona, opening)

    def state(self, session: ChatSession) -> WorkflowState:
        return self._ui_state(session, self.store.snapshot())

    async def reset(self, session: ChatSession) -> WorkflowState:
        """Archive the transcript, rebuild the workflow from current settings
        and replay the opening monologue as the first assistant message."""
        async with self._turn_lock(session):
            if not session.closed:
                return await self._reset_locked(session)
        return await self.reset(self._reopen(session))

    async def _reset_locked(self, session: ChatSession) -> WorkflowState:
        await asyncio.to_thread(self.archive.save, session.session_id, session.pop_transcript())
        self.sessions.rebuild_workflow(session)

        settings = self.store.snapshot()
        opening = settings.get(KEY_OPENING_MONOLOGUE).strip() or None
        if opening:
            session.add_assistant_message(opening)
        logger.info(f"Session reset: {session.session_id[:8]} ({len(session.workflow.processes)} processes)")
        return self._ui_state(session, settings, opening=opening)

    def _reopen(self, session: ChatSession) -> ChatSession:
        """Live session for the id of one archived while a request waited."""
        logger.info(f"Session {session.session_id[:8]} was closed while a request waited, reopening")
        return self.sessions.get_or_create(session.session_id)

    async def save_on_exit(self, session_id: str) -> Optional[Path]:
        """Archive and drop a session whose page is closing.

        Waits for an in-flight turn regardless of the busy policy.
        """
        session = self.sessions.get(session_id)
        if session is None:
            return None
        async with self._turn_lock(session, wait=True):
            session.closed = True
            self.sessions.remove(session_id)
            path = await asyncio.to_thread(self.archive.save, session_id, session.pop_transcript())
        return path
