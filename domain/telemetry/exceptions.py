"""遥测中继领域异常定义。

所有异常都是非致命的：中继只会丢弃消息或跳过观察者，不会终止进程。
core 层负责把 RelayException 映射为统一的 HTTP 错误响应。
"""
from __future__ import annotations

from typing import Optional

from shared.codes import BusinessCode


class RelayException(Exception):
    """中继异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "RelayError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class BrokerConnectionFailure(RelayException):
    """Connecting to the broker failed; always retried."""

    def __init__(self, reason: str, *, host: Optional[str] = None, port: Optional[int] = None):
        details = {"reason": reason}
        if host:
            details["host"] = host
        if port:
            details["port"] = port
        super().__init__(
            code=BusinessCode.BROKER_CONNECTION_FAILED,
            message=f"Broker connection failed: {reason}",
            error_type="BrokerConnectionFailure",
            details=details,
        )


class MalformedPayload(RelayException):
    def __init__(self, reason: str):
        super().__init__(
            code=BusinessCode.MALFORMED_PAYLOAD,
            message=f"Malformed payload: {reason}",
            error_type="MalformedPayload",
            details={"reason": reason},
        )


class IncompleteEvent(RelayException):
    def __init__(self, reason: str, field: Optional[str] = None):
        super().__init__(
            code=BusinessCode.INCOMPLETE_EVENT,
            message=f"Incomplete event: {reason}",
            error_type="IncompleteEvent",
            details={"reason": reason},
            field=field,
        )


class DeliveryFailure(RelayException):
    """Delivery to a single viewer failed; other viewers are unaffected."""

    def __init__(self, session_id: str, reason: str):
        super().__init__(
            code=BusinessCode.DELIVERY_FAILED,
            message=f"Delivery to viewer {session_id} failed: {reason}",
            error_type="DeliveryFailure",
            details={"session_id": session_id, "reason": reason},
        )


__all__ = [
    "RelayException",
    "BrokerConnectionFailure",
    "MalformedPayload",
    "IncompleteEvent",
    "DeliveryFailure",
]
