"""
配置文件 - 项目配置管理
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator
from typing import Optional


class MqttSettings(BaseModel):
    # Broker endpoint
    host: str = Field(default="localhost")
    port: int = Field(default=8883)
    topic: str = Field(default="mrhasan/heart")
    qos: int = Field(default=0, ge=0, le=2)
    keepalive_s: int = 60

    # Credentials
    username: Optional[str] = None
    password: Optional[str] = None
    # 实际 client_id = 前缀 + 随机后缀，避免多实例互踢
    client_id_prefix: str = "ecg_webapp"

    # TLS
    tls_enable: bool = True
    tls_verify: bool = True
    tls_ca_location: Optional[str] = None

    # Reconnect policy (exponential backoff, capped)
    reconnect_min_delay_s: int = Field(default=1, ge=1)
    reconnect_max_delay_s: int = Field(default=30, ge=1)

    # 入站消息缓冲上限，满了丢最旧的
    inbound_queue_max: int = Field(default=1000, ge=1)


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = Field(default="ECG Telemetry Relay")
    VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="development")

    # 监听地址
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=3000)

    # 分组配置：MQTT 采用嵌套模型（MQTT__HOST / MQTT__PASSWORD ...）
    mqtt: MqttSettings = Field(default_factory=MqttSettings)

    # 上游来源：mqtt | inmemory
    REALTIME_BROKER: str = Field(default="mqtt")
    # 只转发该类型的遥测数据
    TELEMETRY_DATA_TYPE: str = Field(default="ecg_analysis")

    # CORS配置
    CORS_ORIGINS: list = Field(default=["*"])

    # Realtime/WebSocket 配置
    REALTIME_WS_SEND_QUEUE_MAX: int = Field(default=100)
    REALTIME_WS_SEND_OVERFLOW_POLICY: str = Field(
        default="drop_oldest",
        description="队列溢出策略: drop_oldest | drop_new | disconnect",
    )
    REALTIME_WS_IDLE_PING_INTERVAL_S: float = Field(default=30.0)
    REALTIME_WS_PONG_GRACE_S: float = Field(default=10.0)
    REALTIME_WS_MISSED_PING_LIMIT: int = Field(default=2)

    # 关闭流程整体超时（秒）
    SHUTDOWN_TIMEOUT_S: float = Field(default=10.0)

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """允许 JSON 字符串或逗号分隔字符串两种格式。"""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                import json
                try:
                    arr = json.loads(s)
                    if isinstance(arr, list):
                        return arr
                except ValueError:
                    pass
            if "," in s:
                return [item.strip() for item in s.split(",") if item.strip()]
            return [s]
        return v


settings = Settings()
