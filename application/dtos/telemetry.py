"""
Telemetry DTOs (Pydantic v2) relayed from the broker to viewers.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, field_serializer, field_validator
from pydantic.alias_generators import to_camel

# JSON true/false and numeric strings are not readings
Number = Union[StrictInt, StrictFloat]


class TelemetryEvent(BaseModel):
    """Normalized ECG analysis record.

    Wire names are camelCase (``deviceId``, ``receivedAt``...) to match what
    the sensor publishes and what dashboards consume. Numeric fields are
    carried through unchanged and never coerced from bool or str; range
    interpretation belongs to the viewer.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    device_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    data_type: str
    bpm: Optional[Number] = None
    hp: Optional[Union[Number, str]] = None
    rmssd: Optional[Number] = None
    hr_trend: Optional[Number] = None
    threshold: Optional[Number] = None
    baseline_hr: Optional[Number] = Field(default=None, alias="baselineHR")
    timestamp: Optional[str] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("timestamp", mode="before")
    @classmethod
    def _stringify_timestamp(cls, v):
        # 设备端时间戳可能是 millis() 数字，也可能是字符串
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_serializer("received_at")
    def _serialize_received_at(self, ts: datetime) -> str:
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


__all__ = ["TelemetryEvent", "Number"]
