"""
Shared business codes used across layers (Domain/Core/API).

This module provides a single source of truth to avoid drift between
multiple enum definitions scattered across the codebase.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """业务状态码定义（单一来源）"""

    # 成功
    SUCCESS = 0

    # 参数错误 (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # 遥测数据错误 (2xxxx)
    MALFORMED_PAYLOAD = 20001
    INCOMPLETE_EVENT = 20002
    NOT_FOUND = 20006  # 资源未找到（通用）

    # 投递错误 (3xxxx)
    DELIVERY_FAILED = 30000

    # 系统错误 (4xxxx)
    SYSTEM_ERROR = 40000
    BROKER_CONNECTION_FAILED = 40002
    SERVICE_UNAVAILABLE = 40003


__all__ = ["BusinessCode"]
