"""Fan-out of validated telemetry to viewer outbound queues.

Each event is serialized once and offered to every target session with
``put_nowait``; a slow or broken viewer never blocks the others.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from application.dtos.relay_stats import RelayStats
from application.dtos.telemetry import TelemetryEvent
from application.ports.realtime import Envelope
from core.config import settings
from core.logging_config import get_logger
from domain.telemetry.exceptions import DeliveryFailure
from infrastructure.realtime.viewer_registry import ViewerRegistry, ViewerSession


logger = get_logger(__name__)

TELEMETRY_EVENT_TYPE = "ecg_data"
OVERFLOW_POLICIES = {"drop_oldest", "drop_new", "disconnect"}

# Sentinel telling a sender loop to close its socket (overflow policy "disconnect")
CLOSE_SENTINEL = None


class FanoutBroadcaster:
    def __init__(
        self,
        registry: ViewerRegistry,
        *,
        stats: Optional[RelayStats] = None,
        overflow_policy: Optional[str] = None,
    ) -> None:
        self._registry = registry
        self._stats = stats if stats is not None else RelayStats()
        policy = (overflow_policy or settings.REALTIME_WS_SEND_OVERFLOW_POLICY or "drop_oldest").lower()
        if policy not in OVERFLOW_POLICIES:
            logger.warning("ws_send_queue_policy_invalid", policy=policy, fallback="drop_oldest")
            policy = "drop_oldest"
        self._policy = policy

    @property
    def stats(self) -> RelayStats:
        return self._stats

    async def broadcast(self, event: TelemetryEvent) -> int:
        """Offer ``event`` to every viewer whose scope accepts its device.

        Returns the number of viewers the event was enqueued for.
        """
        targets = await self._registry.targets_for(event.device_id)
        if not targets:
            return 0
        payload = Envelope(
            type=TELEMETRY_EVENT_TYPE,
            room=event.device_id,
            data=event.to_wire(),
        ).model_dump(mode="json")
        delivered = 0
        for session in targets:
            try:
                if self._enqueue(session, payload):
                    delivered += 1
            except Exception as exc:
                failure = DeliveryFailure(session.session_id, str(exc))
                self._stats.delivery_failures += 1
                logger.warning("ws_delivery_failed", error_type=failure.error_type, **failure.details)
        self._stats.deliveries += delivered
        return delivered

    def _enqueue(self, session: ViewerSession, payload: dict) -> bool:
        if session.closed:
            return False
        q = session.queue
        try:
            q.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            pass

        self._stats.dropped_overflow += 1
        context = {"session_id": session.session_id, "device_id": payload.get("room")}
        if self._policy == "drop_new":
            logger.warning("ws_send_queue_drop_new", **context)
            return False
        if self._policy == "disconnect":
            logger.warning("ws_send_queue_disconnect", **context)
            session.closed = True
            _drain(q)
            q.put_nowait(CLOSE_SENTINEL)
            return False
        # default: drop_oldest
        try:
            q.get_nowait()
        except asyncio.QueueEmpty:
            pass
        try:
            q.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            logger.warning("ws_send_queue_drop_after_trim", **context)
            return False


def _drain(q: asyncio.Queue) -> None:
    while True:
        try:
            q.get_nowait()
        except asyncio.QueueEmpty:
            return
