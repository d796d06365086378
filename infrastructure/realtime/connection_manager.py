"""In-process WebSocket connection manager.

Attaches each viewer WebSocket to a ViewerSession in the registry and
runs one sender task per connection that drains the session's outbound
queue. The sender task is the only writer to its socket.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Dict, Optional

from fastapi import WebSocket

from application.ports.realtime import Envelope
from core.config import settings
from core.logging_config import get_logger
from infrastructure.realtime.broadcaster import CLOSE_SENTINEL
from infrastructure.realtime.viewer_registry import ViewerRegistry, ViewerSession


logger = get_logger(__name__)

WS_CLOSE_GOING_AWAY = 1001
WS_CLOSE_TRY_AGAIN_LATER = 1013


class ConnectionManager:
    """Manage per-process viewer WebSocket connections."""

    def __init__(self, registry: ViewerRegistry, *, send_queue_max: Optional[int] = None) -> None:
        self._registry = registry
        self._queue_max = max(1, int(send_queue_max or settings.REALTIME_WS_SEND_QUEUE_MAX))
        self._sockets: Dict[str, WebSocket] = {}
        self._sender_tasks: Dict[str, asyncio.Task] = {}

    @property
    def registry(self) -> ViewerRegistry:
        return self._registry

    async def add(
        self,
        ws: WebSocket,
        *,
        greeting: Optional[Callable[[ViewerSession], Envelope]] = None,
    ) -> ViewerSession:
        """Register ``ws`` as a new unscoped viewer and start its sender.

        ``greeting`` builds the first frame from the new session; it is
        queued before registration so it is always delivered first.
        """
        session = ViewerSession(queue=asyncio.Queue(maxsize=self._queue_max))
        if greeting is not None:
            session.queue.put_nowait(greeting(session).model_dump(mode="json"))
        self._sockets[session.session_id] = ws
        self._sender_tasks[session.session_id] = asyncio.create_task(
            self._sender_loop(ws, session), name=f"ws-sender-{session.session_id[:8]}"
        )
        await self._registry.register(session)
        logger.info("ws_connected", session_id=session.session_id, viewers=len(self._registry))
        return session

    async def remove(self, session_id: str) -> None:
        await self._registry.unregister(session_id)
        self._sockets.pop(session_id, None)
        task = self._sender_tasks.pop(session_id, None)
        if task is not None and not task.done():
            task.cancel()
        logger.info("ws_disconnected", session_id=session_id, viewers=len(self._registry))

    def reply(self, session: ViewerSession, envelope: Envelope) -> bool:
        """Queue a direct response for one viewer, behind any pending telemetry."""
        if session.closed:
            return False
        try:
            session.queue.put_nowait(envelope.model_dump(mode="json"))
            return True
        except asyncio.QueueFull:
            logger.warning("ws_reply_dropped", session_id=session.session_id, type=envelope.type)
            return False

    async def close_all(self, code: int = WS_CLOSE_GOING_AWAY) -> int:
        """Unregister every viewer, stop its sender and close its socket."""
        sessions = await self._registry.snapshot()
        tasks = [t for t in self._sender_tasks.values() if not t.done()]
        for session in sessions:
            ws = self._sockets.get(session.session_id)
            await self.remove(session.session_id)
            if ws is not None:
                try:
                    await ws.close(code=code)
                except Exception as exc:
                    # socket may already be gone; nothing left to release
                    logger.debug("ws_close_failed", session_id=session.session_id, error=str(exc))
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("ws_all_closed", count=len(sessions))
        return len(sessions)

    async def _sender_loop(self, ws: WebSocket, session: ViewerSession) -> None:
        q = session.queue
        try:
            while True:
                payload = await q.get()
                if payload is CLOSE_SENTINEL:
                    try:
                        await ws.close(code=WS_CLOSE_TRY_AGAIN_LATER)
                    except Exception as exc:
                        logger.debug("ws_close_failed", session_id=session.session_id, error=str(exc))
                    return
                try:
                    await ws.send_json(payload)
                except Exception as exc:
                    # Connection is gone; pending deliveries are abandoned
                    session.closed = True
                    logger.warning("ws_send_failed", session_id=session.session_id, error=str(exc))
                    return
        except asyncio.CancelledError:  # graceful exit
            return
