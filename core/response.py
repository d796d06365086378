"""
统一响应格式：HTTP 接口均返回 {code, message, data, error}
"""
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_serializer

from shared.codes import BusinessCode


T = TypeVar("T")


class ErrorDetail(BaseModel):
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("timestamp")
    def _timestamp_z(self, ts: datetime) -> str:
        # 与遥测帧一致：UTC，Z 结尾
        return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class Response(BaseModel, Generic[T]):
    code: int
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


def success_response(data: Any = None, message: str = "Success") -> Response:
    return Response(code=BusinessCode.SUCCESS, message=message, data=data)


def error_response(code: int, message: str, error_type: str, **detail: Any) -> Response:
    """构造错误响应；``detail`` 取 ErrorDetail 的 details/field/request_id"""
    return Response(code=code, message=message, error=ErrorDetail(type=error_type, **detail))
