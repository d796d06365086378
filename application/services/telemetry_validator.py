"""Validation and normalization of raw broker payloads.

Turns the JSON text a sensor publishes into an immutable TelemetryEvent,
or raises MalformedPayload / IncompleteEvent. Numeric ranges are not
checked here: the relay only transports readings, viewers interpret them.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Union

from pydantic import ValidationError

from application.dtos.telemetry import TelemetryEvent
from domain.telemetry.exceptions import IncompleteEvent, MalformedPayload


DEFAULT_DATA_TYPE = "ecg_analysis"


def _require_text(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise IncompleteEvent(f"{key} is required", field=key)
    return value


class TelemetryValidator:
    def __init__(self, data_type: str = DEFAULT_DATA_TYPE) -> None:
        self._data_type = data_type

    @property
    def data_type(self) -> str:
        return self._data_type

    def parse(self, payload: Union[bytes, str]) -> dict[str, Any]:
        if isinstance(payload, (bytes, bytearray)):
            try:
                payload = bytes(payload).decode("utf-8")
            except UnicodeDecodeError as exc:
                raise MalformedPayload(f"not utf-8: {exc.reason}") from exc
        try:
            data = json.loads(payload)
        except ValueError as exc:
            raise MalformedPayload(f"invalid json: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedPayload(f"expected a json object, got {type(data).__name__}")
        return data

    def validate(self, payload: Union[bytes, str]) -> TelemetryEvent:
        """Parse, check and stamp one payload.

        Raises:
            MalformedPayload: payload is not a JSON object.
            IncompleteEvent: required fields missing, wrong ``dataType``,
                or a reading of the wrong type.
        """
        data = self.parse(payload)

        _require_text(data, "userId")
        data_type = data.get("dataType")
        if data_type != self._data_type:
            raise IncompleteEvent(
                f"dataType must be {self._data_type!r}, got {data_type!r}", field="dataType"
            )
        device_id = _require_text(data, "deviceId")

        fields = {k: v for k, v in data.items() if k != "receivedAt"}
        # viewer scopes are stripped the same way
        fields["deviceId"] = device_id.strip()
        fields["receivedAt"] = datetime.now(timezone.utc)
        try:
            return TelemetryEvent.model_validate(fields)
        except ValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            loc = ".".join(str(p) for p in first.get("loc", ()))
            raise IncompleteEvent(first.get("msg", "invalid event"), field=loc or None) from exc


__all__ = ["TelemetryValidator", "DEFAULT_DATA_TYPE"]
