"""In-memory implementation of TelemetrySourcePort.

Single-process only. Useful for local dev and tests: payloads handed to
`publish()` come out of `messages()` exactly as an MQTT subscription would
deliver them, and connection drops can be simulated.
"""
from __future__ import annotations

from typing import Optional, Union

from application.ports.realtime import ConnectionState, RawMessage
from core.logging_config import get_logger
from infrastructure.realtime.brokers.base import BaseTelemetrySource


logger = get_logger(__name__)


class InMemoryTelemetrySource(BaseTelemetrySource):
    def __init__(self, topic: str = "telemetry", *, queue_max: int = 1000) -> None:
        super().__init__(queue_max=queue_max)
        self._topic = topic

    @property
    def topic(self) -> str:
        return self._topic

    async def start(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        self._set_state(ConnectionState.CONNECTED)
        logger.info("inmemory_source_started", topic=self._topic)

    async def publish(self, payload: Union[bytes, str], topic: Optional[str] = None) -> bool:
        """Deliver a payload as if it came from the broker.

        Messages published while disconnected are lost, like QoS 0 MQTT.
        """
        if not self.is_connected:
            return False
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        self._offer(RawMessage(topic=topic or self._topic, payload=payload))
        return True

    def simulate_disconnect(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        self._set_state(ConnectionState.RECONNECTING)

    def simulate_reconnect(self) -> None:
        self._set_state(ConnectionState.CONNECTED)

    async def aclose(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        self._finish()
