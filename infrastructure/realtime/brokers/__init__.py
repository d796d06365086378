"""Telemetry sources (MQTT, in-memory)."""

# Re-export convenience types for app assembly
from .inmemory import InMemoryTelemetrySource
from .mqtt import MqttTelemetrySource

__all__ = [
    "InMemoryTelemetrySource",
    "MqttTelemetrySource",
]
