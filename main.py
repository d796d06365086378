"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import RequestIDMiddleware
from api.routes import status as status_routes
from api.routes import ws as ws_routes
from application.ports.realtime import TelemetrySourcePort
from application.services.relay_service import RelayService
from core.config import settings
from core.exceptions import register_exception_handlers
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from infrastructure.realtime.brokers import InMemoryTelemetrySource, MqttTelemetrySource
from infrastructure.realtime.connection_manager import ConnectionManager
from infrastructure.realtime.viewer_registry import ViewerRegistry


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


def build_source() -> TelemetrySourcePort:
    """根据 REALTIME_BROKER 选择上游来源，默认 mqtt"""
    provider = (settings.REALTIME_BROKER or "mqtt").lower()
    if provider == "inmemory":
        logger.info("telemetry_source_selected", provider="inmemory")
        return InMemoryTelemetrySource(topic=settings.mqtt.topic, queue_max=settings.mqtt.inbound_queue_max)
    if provider != "mqtt":
        logger.warning("telemetry_source_unknown", provider=provider, fallback="mqtt")
    logger.info("telemetry_source_selected", provider="mqtt", host=settings.mqtt.host, topic=settings.mqtt.topic)
    return MqttTelemetrySource(settings.mqtt)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    relay = RelayService(
        source=build_source(),
        connections=ConnectionManager(ViewerRegistry()),
    )
    # 连接失败不会抛出：来源内部自行重连
    await relay.start()
    app.state.relay = relay
    logger.info("application_started", port=settings.PORT)

    yield

    # 通常已由 RelayServer.shutdown 完成；此处幂等，覆盖外部 ASGI 服务器的场景
    logger.info("application_shutting_down")
    await relay.shutdown(timeout=settings.SHUTDOWN_TIMEOUT_S)
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="ECG 遥测 MQTT -> WebSocket 实时中继",
)

# Request ID中间件（为日志提供request_id）
app.add_middleware(RequestIDMiddleware)

# CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)

# 注册路由
app.include_router(status_routes.router)
app.include_router(ws_routes.router)


# 健康检查
@app.get("/health", tags=["Health"])
async def health_check():
    """健康检查端点"""
    return success_response(data={"status": "healthy"})


class RelayServer(uvicorn.Server):
    """uvicorn Server that drains the relay before closing connections.

    uvicorn closes open WebSockets (1012) before running lifespan shutdown,
    so the relay is stopped here first: pump -> broker -> viewers (1001).
    """

    async def shutdown(self, sockets: Optional[list] = None) -> None:
        # 先停止监听，避免排空期间有新观察者接入
        for server in getattr(self, "servers", []):
            server.close()
        relay: Optional[RelayService] = getattr(app.state, "relay", None)
        if relay is not None:
            logger.info("relay_draining", viewers=len(relay.registry))
            await relay.shutdown(timeout=settings.SHUTDOWN_TIMEOUT_S)
        await super().shutdown(sockets=sockets)


def run() -> None:
    config = uvicorn.Config(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level="debug" if settings.DEBUG else "info",
    )
    try:
        RelayServer(config).run()
    except KeyboardInterrupt:
        # uvicorn re-raises the captured SIGINT after a clean shutdown
        pass


if __name__ == "__main__":
    run()
