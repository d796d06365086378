"""
API依赖项 - 从应用状态获取中继服务
"""
from fastapi import HTTPException, Request, WebSocket, status

from application.services.relay_service import RelayService


def get_relay_service(request: Request) -> RelayService:
    """HTTP 路由使用：获取 lifespan 中创建的 RelayService"""
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay service not initialized",
        )
    return relay


def get_relay_service_from_ws(ws: WebSocket) -> RelayService:
    relay = getattr(ws.app.state, "relay", None)
    if relay is None:
        raise RuntimeError("Relay service not initialized. Ensure lifespan sets app.state.relay.")
    return relay
