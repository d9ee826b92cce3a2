"""In-memory table of live stream sessions."""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from .models import ActiveStream, SessionState, StreamSession

logger = logging.getLogger(__name__)


class StreamRegistry:
    """Sessions between activation and cleanup, keyed by session id.

    Every mutation happens under one lock so start, stop, progress handling
    and the reaper all see the same membership.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, StreamSession] = {}
        self._lock = threading.RLock()

    def add(self, session: StreamSession) -> None:
        with self._lock:
            if session.id in self._sessions:
                raise KeyError(f"Session {session.id} is already registered")
            session.state = SessionState.ACTIVE
            self._sessions[session.id] = session

    def remove(self, session_id: str) -> Optional[StreamSession]:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def get(self, session_id: str) -> Optional[StreamSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def begin_stop(self, session_id: str, reason: str = "manual stop") -> Optional[StreamSession]:
        """Move an active session to stopping. Returns None if it was not active."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.state is not SessionState.ACTIVE:
                return None
            session.state = SessionState.STOPPING
            session.manual_stop_requested = True
            session.stop_reason = reason
            return session

    def list_by_owner(self, owner_id: int) -> List[ActiveStream]:
        with self._lock:
            return [
                ActiveStream(
                    id=session.id,
                    platform_label=session.platform_label,
                    display_name=session.display_name,
                    started_at=session.started_at,
                    state=session.state.value,
                )
                for session in self._sessions.values()
                if session.owner_id == owner_id
            ]

    def count_by_owner(self, owner_id: int) -> int:
        with self._lock:
            return sum(1 for session in self._sessions.values() if session.owner_id == owner_id)

    def all(self) -> List[StreamSession]:
        with self._lock:
            return list(self._sessions.values())

    def clear(self) -> int:
        with self._lock:
            dropped = len(self._sessions)
            self._sessions.clear()
        if dropped:
            logger.warning("Registry reset dropped %d sessions", dropped)
        return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
