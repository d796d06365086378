"""Pytest bootstrap configuration.

Ensure environment variables are set before test collection and module
imports that depend on application settings.
"""
import asyncio
import os

# Tests never reach a real broker
os.environ.setdefault("REALTIME_BROKER", "inmemory")
# Heartbeat pings would interleave with the frames tests assert on
os.environ.setdefault("REALTIME_WS_IDLE_PING_INTERVAL_S", "0")

import pytest

from application.services.relay_service import RelayService
from application.services.telemetry_validator import TelemetryValidator
from infrastructure.realtime.brokers.inmemory import InMemoryTelemetrySource
from infrastructure.realtime.connection_manager import ConnectionManager
from infrastructure.realtime.viewer_registry import ViewerRegistry


class FakeWebSocket:
    """Records frames the sender task writes."""

    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.closed_code = None
        self.fail = fail

    async def send_json(self, data) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_code = code

    def frames(self, type_: str) -> list[dict]:
        return [m for m in self.sent if m.get("type") == type_]


@pytest.fixture
def fake_ws():
    return FakeWebSocket


@pytest.fixture
def settle():
    async def _settle(rounds: int = 10) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)
    return _settle


@pytest.fixture
def registry():
    return ViewerRegistry()


@pytest.fixture
def source():
    return InMemoryTelemetrySource(topic="mrhasan/heart")


@pytest.fixture
def relay(source):
    return RelayService(
        source=source,
        connections=ConnectionManager(ViewerRegistry(), send_queue_max=16),
        validator=TelemetryValidator("ecg_analysis"),
    )
