"""Application service bridging the telemetry source to live viewers.

One RelayService instance owns the upstream source, the viewer registry
(through the connection manager) and the broadcaster. It is built in the
application lifespan and handed to the routes via ``app.state``; tests
build isolated instances.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import WebSocket

from application.dtos.relay_stats import RelayStats
from application.ports.realtime import Envelope, RawMessage, TelemetrySourcePort
from application.services.telemetry_validator import TelemetryValidator
from core.config import settings
from core.logging_config import get_logger
from domain.telemetry.exceptions import IncompleteEvent, MalformedPayload
from infrastructure.realtime.broadcaster import FanoutBroadcaster
from infrastructure.realtime.connection_manager import ConnectionManager
from infrastructure.realtime.viewer_registry import ViewerRegistry, ViewerSession


logger = get_logger(__name__)

WELCOME_MESSAGE = "Connected to ECG monitoring system"


def _connection_status(session: ViewerSession) -> Envelope:
    return Envelope(
        type="connection_status",
        data={"status": "connected", "message": WELCOME_MESSAGE, "session_id": session.session_id},
    )


class RelayService:
    def __init__(
        self,
        *,
        source: TelemetrySourcePort,
        connections: ConnectionManager,
        validator: Optional[TelemetryValidator] = None,
        stats: Optional[RelayStats] = None,
        broadcaster: Optional[FanoutBroadcaster] = None,
    ) -> None:
        self._source = source
        self._conn = connections
        self._stats = stats if stats is not None else RelayStats()
        self._validator = validator or TelemetryValidator(settings.TELEMETRY_DATA_TYPE)
        self._broadcaster = broadcaster or FanoutBroadcaster(connections.registry, stats=self._stats)
        self._pump_task: Optional[asyncio.Task] = None
        self._closed = False

    # Expose for API convenience
    @property
    def source(self) -> TelemetrySourcePort:
        return self._source

    @property
    def registry(self) -> ViewerRegistry:
        return self._conn.registry

    @property
    def connections(self) -> ConnectionManager:
        return self._conn

    @property
    def stats(self) -> RelayStats:
        return self._stats

    # -------------------- Upstream --------------------
    async def start(self) -> None:
        await self._source.start()
        self._pump_task = asyncio.create_task(self._pump(), name="telemetry-relay-pump")
        logger.info("relay_started", data_type=self._validator.data_type)

    async def _pump(self) -> None:
        async for raw in self._source.messages():
            try:
                await self.handle_raw(raw)
            except Exception as exc:
                logger.error("relay_handle_failed", topic=raw.topic, error=str(exc), exc_info=True)
        logger.info("relay_pump_finished")

    async def handle_raw(self, raw: RawMessage) -> int:
        """Validate one broker message and fan it out.

        Returns the number of viewers it was delivered to; rejected
        messages are dropped and counted, never retried.
        """
        self._stats.received += 1
        try:
            event = self._validator.validate(raw.payload)
        except MalformedPayload as exc:
            self._stats.malformed += 1
            logger.warning("telemetry_rejected", topic=raw.topic, error_type=exc.error_type, reason=exc.message)
            return 0
        except IncompleteEvent as exc:
            self._stats.incomplete += 1
            logger.warning(
                "telemetry_rejected",
                topic=raw.topic,
                error_type=exc.error_type,
                reason=exc.message,
                field=exc.field,
            )
            return 0
        self._stats.relayed += 1
        delivered = await self._broadcaster.broadcast(event)
        logger.debug("telemetry_relayed", device_id=event.device_id, viewers=delivered)
        return delivered

    # -------------------- Viewers --------------------
    async def connect(self, ws: WebSocket) -> ViewerSession:
        """Register a viewer; the connection status is its first frame."""
        return await self._conn.add(ws, greeting=_connection_status)

    async def disconnect(self, session: ViewerSession) -> None:
        await self._conn.remove(session.session_id)

    async def subscribe_device(self, session: ViewerSession, device_id: str) -> None:
        await self.registry.set_scope(session.session_id, device_id)
        self._conn.reply(session, Envelope(type="subscribed", room=device_id, data={"deviceId": device_id}))

    async def unsubscribe_device(self, session: ViewerSession) -> None:
        await self.registry.clear_scope(session.session_id)
        self._conn.reply(session, Envelope(type="unsubscribed"))

    def reply(self, session: ViewerSession, envelope: Envelope) -> bool:
        return self._conn.reply(session, envelope)

    # -------------------- Status --------------------
    def status(self) -> dict[str, Any]:
        stats = self._stats.as_dict()
        stats["inbound_dropped"] = getattr(self._source, "dropped_count", 0)
        return {
            "status": "stopped" if self._closed else "running",
            "mqtt_connected": self._source.is_connected,
            "broker_state": self._source.current_state().value,
            "clients_connected": len(self.registry),
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "stats": stats,
        }

    # -------------------- Shutdown --------------------
    async def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Stop the pump, close the broker subscription, then close viewers.

        Returns False when the sequence did not finish within ``timeout``.
        """
        if self._closed:
            return True
        self._closed = True
        limit = settings.SHUTDOWN_TIMEOUT_S if timeout is None else timeout
        try:
            await asyncio.wait_for(self._shutdown_sequence(), timeout=limit)
        except asyncio.TimeoutError:
            logger.error("relay_shutdown_timeout", timeout_s=limit)
            return False
        logger.info("relay_shutdown_complete")
        return True

    async def _shutdown_sequence(self) -> None:
        # 1. stop accepting broker messages
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
            await asyncio.gather(self._pump_task, return_exceptions=True)
        # 2. close the broker subscription
        await self._source.aclose()
        # 3. close every viewer channel
        await self._conn.close_all()
