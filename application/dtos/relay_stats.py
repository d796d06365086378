"""Counters describing what the relay did with inbound telemetry."""
from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass
class RelayStats:
    received: int = 0
    relayed: int = 0
    malformed: int = 0
    incomplete: int = 0
    deliveries: int = 0
    delivery_failures: int = 0
    dropped_overflow: int = 0
    inbound_dropped: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)
