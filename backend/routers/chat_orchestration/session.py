"""
Parley Chat Session - per-session conversation and workflow state.

Each session owns its transcript and WorkflowTracker. Only the turn
coordinator mutates them, and only while holding the session's turn lock,
so two requests for one session never interleave.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .workflow import WorkflowTracker

logger = logging.getLogger(__name__)


@dataclass
class ChatSession:
    """Holds conversation state for a single chat session.

    Attributes:
        session_id: Unique identifier for this session
        transcript: Full list of message dicts (role, content), never trimmed
        workflow: Process status tracker built from configuration
        created_at: Session start (used for archive file names)
        turns: Completed turn count
        failed_turns: Turns that ended with the fallback reply
        closed: Archived and dropped by save-on-exit; no longer usable
    """

    session_id: str
    workflow: WorkflowTracker
    transcript: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    turns: int = 0
    failed_turns: int = 0
    closed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def add_exchange(self, user_message: str, assistant_reply: str, failed: bool = False) -> None:
        """Record one turn. Called exactly once per handled message."""
        self.transcript.append({"role": "user", "content": user_message})
        self.transcript.append({"role": "assistant", "content": assistant_reply})
        self.turns += 1
        if failed:
            self.failed_turns += 1

    def add_assistant_message(self, content: str) -> None:
        self.transcript.append({"role": "assistant", "content": content})

    def get_messages_for_llm(self, current_message: str, max_history: int = 30) -> List[Dict[str, str]]:
        """Recent transcript plus the current user message (system prompt excluded)."""
        history = self.transcript[-max_history:] if max_history else list(self.transcript)
        messages = [{"role": m["role"], "content": m["content"]} for m in history]
        messages.append({"role": "user", "content": current_message})
        return messages

    def pop_transcript(self) -> List[Dict[str, Any]]:
        """Hand over the transcript (for archiving) and start a fresh one."""
        transcript, self.transcript = self.transcript, []
        return transcript

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "turns": self.turns,
            "failed_turns": self.failed_turns,
            "messages": len(self.transcript),
            "process_status": {k: v.value for k, v in self.workflow.status.items()},
        }


class SessionRegistry:
    """Owns every live ChatSession, keyed by session id.

    Bounded LRU: the least recently used session is evicted once
    max_sessions is exceeded (busy sessions are never evicted).
    """

    def __init__(self, workflow_factory, max_sessions: int = 500):
        """
        Args:
            workflow_factory: Callable returning a fresh WorkflowTracker built
                from current configuration
            max_sessions: Upper bound on live sessions
        """
        self._workflow_factory = workflow_factory
        self._max = max_sessions
        self._sessions: "OrderedDict[str, ChatSession]" = OrderedDict()

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def get(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: Optional[str] = None) -> ChatSession:
        session_id = session_id or self.new_id()
        session = self._sessions.get(session_id)
        if session is None:
            session = ChatSession(session_id=session_id, workflow=self._workflow_factory())
            self._sessions[session_id] = session
            logger.info(f"Session created: {session_id[:8]} ({len(self._sessions)} live)")
            self._evict()
        else:
            self._sessions.move_to_end(session_id)
        return session

    def rebuild_workflow(self, session: ChatSession) -> None:
        """Replace the session's tracker with one built from current configuration."""
        session.workflow = self._workflow_factory()

    def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)

    def _evict(self) -> None:
        while len(self._sessions) > self._max:
            victim = next((sid for sid, s in self._sessions.items() if not s.lock.locked()), None)
            if victim is None:
                return
            del self._sessions[victim]
            logger.info(f"Session evicted: {victim[:8]}")
