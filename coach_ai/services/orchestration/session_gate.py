import logging
import threading
from typing import Dict, Optional

from coach_ai.core.config import settings
from coach_ai.core.exceptions import SessionClosedError
from coach_ai.schemas.generation import SessionGateState, SessionStatus

logger = logging.getLogger(__name__)


class SessionProgressGate:
    """
    Per-session generation call counter.

    ``active -> exhausted`` when the call limit is reached,
    ``active -> completed`` on an explicit completion signal. Both are
    terminal. The gate only counts; callers serialize requests per session.
    """

    def __init__(self, call_limit: int = 30):
        if call_limit < 1:
            raise ValueError("call_limit must be at least 1")
        self.call_limit = call_limit
        self._sessions: Dict[str, SessionGateState] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, config=settings) -> "SessionProgressGate":
        return cls(call_limit=config.SESSION_CALL_LIMIT)

    def _get_or_create(self, session_id: str) -> SessionGateState:
        state = self._sessions.get(session_id)
        if state is None:
            state = SessionGateState(session_id=session_id, call_limit=self.call_limit)
            self._sessions[session_id] = state
        return state

    def can_generate(self, session_id: str) -> bool:
        with self._lock:
            return self._get_or_create(session_id).status is SessionStatus.ACTIVE

    def record_call(self, session_id: str) -> SessionGateState:
        with self._lock:
            state = self._get_or_create(session_id)
            if state.is_terminal:
                raise SessionClosedError(
                    f"Session {session_id} is {state.status.value}; no further generation allowed",
                    details={"session_id": session_id, "status": state.status.value},
                )
            state.calls_made += 1
            if state.calls_made >= state.call_limit:
                state.status = SessionStatus.EXHAUSTED
                logger.info(f"Session {session_id} exhausted its {state.call_limit} generation calls")
            return state.model_copy()

    def mark_completed(self, session_id: str) -> SessionGateState:
        with self._lock:
            state = self._get_or_create(session_id)
            if state.status is SessionStatus.ACTIVE:
                state.status = SessionStatus.COMPLETED
                logger.info(f"Session {session_id} completed after {state.calls_made} generation calls")
            return state.model_copy()

    def status(self, session_id: str) -> Optional[SessionGateState]:
        with self._lock:
            state = self._sessions.get(session_id)
            return state.model_copy() if state else None

    def evict(self, session_id: str) -> bool:
        """Forget the in-memory working copy for a session."""
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
