from typing import Dict, List, Optional, Set
from dataclasses import dataclass, field
from fastapi import WebSocket
import asyncio
from datetime import datetime
import structlog

from .schema.events import BaseEvent, ConnectionEvent, ErrorEvent

logger = structlog.get_logger(__name__)


@dataclass
class CompanionSession:
    websocket: WebSocket
    connected_at: datetime = field(default_factory=datetime.utcnow)
    last_activity: datetime = field(default_factory=datetime.utcnow)
    events_sent: int = 0

    def idle_seconds(self, now: datetime) -> float:
        return (now - self.last_activity).total_seconds()


class ConnectionManager:
    """Companion WebSocket sessions keyed by session id"""

    def __init__(self, stale_after_s: float = 300.0):
        self.sessions: Dict[str, CompanionSession] = {}
        self.stale_after_s = stale_after_s
        self._lock = asyncio.Lock()

    @property
    def active_connections(self) -> Dict[str, WebSocket]:
        return {session_id: session.websocket for session_id, session in self.sessions.items()}

    async def connect(self, websocket: WebSocket, session_id: str):
        await websocket.accept()

        async with self._lock:
            previous = self.sessions.get(session_id)
            self.sessions[session_id] = CompanionSession(websocket)

        # Same session id reconnecting replaces the old socket
        if previous is not None:
            await self._close(session_id, previous.websocket)

        await self.send_event(session_id, ConnectionEvent(status="connected", session_id=session_id))
        logger.info("WebSocket connected", session_id=session_id, reconnect=previous is not None)

    async def disconnect(self, session_id: str):
        async with self._lock:
            session = self.sessions.pop(session_id, None)

        if session is None:
            return
        await self._close(session_id, session.websocket)
        logger.info("WebSocket disconnected", session_id=session_id, events_sent=session.events_sent)

    def touch(self, session_id: str):
        session = self.sessions.get(session_id)
        if session is not None:
            session.last_activity = datetime.utcnow()

    async def send_event(self, session_id: str, event: BaseEvent) -> bool:
        """Send an event to one session; a failed send drops the session"""

        session = self.sessions.get(session_id)
        if session is None:
            logger.warning("Attempted to send to disconnected session", session_id=session_id)
            return False

        try:
            await session.websocket.send_json(event.model_dump(mode="json"))
        except Exception as e:
            logger.error("Failed to send event", session_id=session_id, event_type=event.type.value, error=str(e))
            await self.disconnect(session_id)
            return False

        session.events_sent += 1
        self.touch(session_id)
        return True

    async def broadcast(self, event: BaseEvent):
        await asyncio.gather(
            *(self.send_event(session_id, event) for session_id in list(self.sessions)),
            return_exceptions=True
        )

    async def send_error(self, session_id: str, error_message: str, error_code: Optional[str] = None):
        await self.send_event(
            session_id,
            ErrorEvent(payload={"message": error_message}, error_code=error_code, session_id=session_id)
        )

    def get_active_sessions(self) -> Set[str]:
        return set(self.sessions)

    async def prune_stale(self) -> List[str]:
        """Disconnect sessions idle for longer than ``stale_after_s``"""

        now = datetime.utcnow()
        stale = [
            session_id for session_id, session in self.sessions.items()
            if session.idle_seconds(now) > self.stale_after_s
        ]
        for session_id in stale:
            logger.warning("Disconnecting stale session", session_id=session_id)
            await self.disconnect(session_id)
        return stale

    async def disconnect_all(self):
        for session_id in list(self.sessions):
            await self.disconnect(session_id)

    @staticmethod
    async def _close(session_id: str, websocket: WebSocket):
        try:
            await websocket.close()
        except Exception as e:
            logger.debug("Error closing websocket", session_id=session_id, error=str(e))
