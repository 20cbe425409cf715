import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class CermatSession:
    user_id: int
    attempt_id: int
    mode: str
    session_index: int
    base_set: List[str]
    # order -> {"sequence": [...], "answer": token}
    questions: Dict[int, Dict[str, Any]]
    results: List[Dict[str, Any]] = field(default_factory=list)
    touched_at: float = field(default_factory=time.monotonic)


class CermatSessionStore:
    """
    In-process arena of live cermat rounds keyed by an opaque session id.

    Entries idle longer than ``idle_seconds`` are evicted on the next access.
    Only valid for a single worker process; run the drill behind sticky
    routing when scaling out.
    """

    def __init__(self, idle_seconds: int, clock=time.monotonic):
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._sessions: Dict[str, CermatSession] = {}
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> None:
        expired = [
            key for key, session in self._sessions.items()
            if now - session.touched_at > self.idle_seconds
        ]
        for key in expired:
            del self._sessions[key]

    def put(self, session: CermatSession) -> str:
        session_id = uuid.uuid4().hex
        with self._lock:
            now = self._clock()
            self._sweep(now)
            session.touched_at = now
            self._sessions[session_id] = session
        return session_id

    def get(self, session_id: str) -> Optional[CermatSession]:
        with self._lock:
            now = self._clock()
            self._sweep(now)
            session = self._sessions.get(session_id)
            if session:
                session.touched_at = now
            return session

    def restore(self, session_id: str, session: CermatSession) -> None:
        """Put a popped round back under its original id."""
        with self._lock:
            session.touched_at = self._clock()
            self._sessions[session_id] = session

    def pop(self, session_id: str) -> Optional[CermatSession]:
        with self._lock:
            self._sweep(self._clock())
            return self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
