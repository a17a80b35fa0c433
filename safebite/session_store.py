import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


logger = logging.getLogger("uvicorn.error")

TERMINAL_TYPES = ("final", "error")


@dataclass
class Session:
    session_id: str
    events: List[Dict[str, Any]] = field(default_factory=list)
    final: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    subscribers: List[asyncio.Queue] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    created_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    @property
    def done(self) -> bool:
        return self.final is not None or self.error is not None

    def terminal_event(self) -> Optional[Dict[str, Any]]:
        if self.final is not None:
            return {"type": "final", "data": self.final}
        if self.error is not None:
            return {"type": "error", "data": {"message": self.error}}
        return None

    def snapshot(self) -> Dict[str, Any]:
        if self.final is not None:
            status = "completed"
        elif self.error is not None:
            status = "error"
        else:
            status = "running"
        return {
            "session_id": self.session_id,
            "status": status,
            "events": list(self.events),
            "final": self.final,
            "error": self.error,
        }


@dataclass
class Subscription:
    session_id: str
    history: List[Dict[str, Any]]
    queue: Optional[asyncio.Queue] = None
    terminal: Optional[Dict[str, Any]] = None


class SessionStore:
    """In-memory run sessions with ordered fan-out to subscriber queues.

    Every mutation and every subscribe/unsubscribe for one session runs under
    that session's lock, so a subscriber sees the history snapshot and then
    exactly the events appended after it, never a gap or a duplicate.
    Terminal sessions are dropped ``ttl_seconds`` after they finish.
    """

    def __init__(self, ttl_seconds: Optional[float] = 3600):
        self.ttl_seconds = ttl_seconds
        self._sessions: Dict[str, Session] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, session_id: str) -> Session:
        self.prune_expired()
        existing = self._sessions.get(session_id)
        if existing is not None:
            logger.warning("Session %s already exists; keeping the original", session_id)
            return existing
        session = Session(session_id=session_id)
        self._sessions[session_id] = session
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def snapshot(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self._sessions.get(session_id)
        return session.snapshot() if session else None

    async def append_event(self, session_id: str, event: Dict[str, Any]) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        async with session.lock:
            if session.done:
                logger.warning("Session %s is finished; dropping step %s", session_id, event.get("id"))
                return False
            session.events.append(event)
            self._publish(session, {"type": "step", "data": event})
        return True

    async def set_final(self, session_id: str, result: Dict[str, Any]) -> bool:
        return await self._finish(session_id, final=result)

    async def set_error(self, session_id: str, message: str) -> bool:
        return await self._finish(session_id, error=message or "run failed")

    async def _finish(
        self,
        session_id: str,
        final: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        async with session.lock:
            if session.done:
                return False
            if final is not None:
                session.final = final
            else:
                session.error = error
            session.finished_at = time.monotonic()
            terminal = session.terminal_event()
            if terminal is not None:
                self._publish(session, terminal)
        return True

    async def subscribe(self, session_id: str) -> Optional[Subscription]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        async with session.lock:
            history = list(session.events)
            if session.done:
                return Subscription(session_id, history, terminal=session.terminal_event())
            queue: asyncio.Queue = asyncio.Queue()
            session.subscribers.append(queue)
            return Subscription(session_id, history, queue=queue)

    async def unsubscribe(self, session_id: str, subscription: Subscription) -> None:
        session = self._sessions.get(session_id)
        if session is None or subscription.queue is None:
            return
        async with session.lock:
            if subscription.queue in session.subscribers:
                session.subscribers.remove(subscription.queue)

    def prune_expired(self, now: Optional[float] = None) -> int:
        if not self.ttl_seconds:
            return 0
        current = time.monotonic() if now is None else now
        expired = [
            sid
            for sid, session in self._sessions.items()
            if session.finished_at is not None and current - session.finished_at > self.ttl_seconds
        ]
        for sid in expired:
            self._sessions.pop(sid, None)
        return len(expired)

    @staticmethod
    def _publish(session: Session, item: Dict[str, Any]) -> None:
        for queue in list(session.subscribers):
            queue.put_nowait(item)
