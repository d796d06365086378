"""
Realtime port and message DTOs (contracts-first).

This module defines the boundary DTOs and the TelemetrySourcePort
protocol so the application layer can remain decoupled from the
concrete broker client (MQTT, in-memory) living in infrastructure.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Protocol

from pydantic import BaseModel, Field


def _utc_now_z() -> str:
    ts = datetime.now(timezone.utc)
    s = ts.isoformat()
    return s.replace("+00:00", "Z")


class Envelope(BaseModel):
    """Unified WS message envelope sent to viewers.

    Fields:
      - type: semantic message type (connection_status/ecg_data/subscribed/ping/pong/error)
      - room: device id the message belongs to, if any
      - data: payload (JSON-serializable)
      - ts: server-generated UTC timestamp (ISO8601 with Z)
    """

    type: str
    room: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    ts: str = Field(default_factory=_utc_now_z)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True, slots=True)
class RawMessage:
    topic: str
    payload: bytes
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class TelemetrySourcePort(Protocol):
    """Upstream subscription to the telemetry topic.

    Implementations own the broker connection exclusively and keep it alive
    on their own; consumers only read `messages()` and `current_state()`.
    """

    async def start(self) -> None: ...

    def current_state(self) -> ConnectionState: ...

    @property
    def is_connected(self) -> bool: ...

    def messages(self) -> AsyncIterator[RawMessage]: ...

    async def aclose(self) -> None: ...


__all__ = ["Envelope", "ConnectionState", "RawMessage", "TelemetrySourcePort"]
