"""In-process registry of viewer sessions and their device scope.

A session with no scope receives every device's telemetry; a scoped
session only receives events whose ``deviceId`` equals its scope.
Independent of any transport: sessions only carry an outbound queue.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import uuid4

from core.logging_config import get_logger


logger = get_logger(__name__)


@dataclass(eq=False)
class ViewerSession:
    """One connected viewer.

    ``queue`` is the viewer's outbound channel; a single sender drains it,
    so deliveries to one viewer stay in enqueue order.
    """

    queue: asyncio.Queue
    session_id: str = field(default_factory=lambda: uuid4().hex)
    scope: Optional[str] = None
    closed: bool = False

    def accepts(self, device_id: str) -> bool:
        return self.scope is None or self.scope == device_id.strip()


class ViewerRegistry:
    """Concurrent-safe mapping session_id -> ViewerSession."""

    def __init__(self) -> None:
        self._sessions: Dict[str, ViewerSession] = {}
        self._lock = asyncio.Lock()

    async def register(self, session: ViewerSession) -> None:
        async with self._lock:
            session.scope = None
            session.closed = False
            self._sessions[session.session_id] = session
        logger.info("viewer_registered", session_id=session.session_id)

    async def set_scope(self, session_id: str, device_id: str) -> bool:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            previous = session.scope
            device_id = device_id.strip()
            session.scope = device_id
        if previous != device_id:
            logger.info("viewer_scope_set", session_id=session_id, device_id=device_id, previous=previous)
        return True

    async def clear_scope(self, session_id: str) -> bool:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            session.scope = None
        logger.info("viewer_scope_cleared", session_id=session_id)
        return True

    async def unregister(self, session_id: str) -> Optional[ViewerSession]:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is not None:
                session.closed = True
        if session is not None:
            logger.info("viewer_unregistered", session_id=session_id)
        return session

    async def targets_for(self, device_id: str) -> List[ViewerSession]:
        async with self._lock:
            return [s for s in self._sessions.values() if s.accepts(device_id)]

    async def snapshot(self) -> List[ViewerSession]:
        async with self._lock:
            return list(self._sessions.values())

    def count(self) -> int:
        return len(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)
