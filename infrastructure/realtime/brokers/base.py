"""Shared plumbing for TelemetrySourcePort implementations.

Holds the connection state and the bounded inbound buffer that feeds
`messages()`. Subclasses only decide when state changes and when a raw
message arrives.
"""
from __future__ import annotations

import asyncio
import threading
from typing import AsyncIterator

from application.ports.realtime import ConnectionState, RawMessage
from core.logging_config import get_logger


logger = get_logger(__name__)

_END = object()


class BaseTelemetrySource:
    def __init__(self, *, queue_max: int = 1000) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, queue_max))
        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._finished = False
        self._dropped = 0

    def current_state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.current_state() is ConnectionState.CONNECTED

    @property
    def dropped_count(self) -> int:
        return self._dropped

    def _set_state(self, new: ConnectionState) -> None:
        # may be called from the broker client's network thread
        with self._state_lock:
            old = self._state
            self._state = new
        if old is not new:
            logger.info("broker_state_changed", previous=old.value, state=new.value)

    def _offer(self, message: RawMessage) -> None:
        """Buffer one inbound message; must run on the event loop thread."""
        if self._finished:
            return
        try:
            self._queue.put_nowait(message)
            return
        except asyncio.QueueFull:
            pass
        # Live telemetry: drop the oldest buffered message
        try:
            self._queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        self._dropped += 1
        logger.warning("broker_inbound_dropped", topic=message.topic, dropped=self._dropped)
        self._queue.put_nowait(message)

    def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        if self._queue.full():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(_END)

    async def messages(self) -> AsyncIterator[RawMessage]:
        while True:
            if self._finished and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _END:
                return
            yield item
