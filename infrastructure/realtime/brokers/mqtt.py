"""MQTT-based TelemetrySourcePort implementation.

Uses the `paho-mqtt` client with its network loop on a background thread.

Design:
- One subscription to a single topic, re-issued on every (re)connect.
- Every connection failure (refused CONNACK, auth, DNS, socket) is
  retried by paho with exponential backoff capped at
  `reconnect_max_delay_s`; nothing here ever gives up.
- Callbacks run on the paho thread; inbound messages are handed to the
  asyncio loop with `call_soon_threadsafe`.
"""
from __future__ import annotations

import asyncio
import ssl
from typing import Any, Callable, Optional
from uuid import uuid4

import paho.mqtt.client as mqtt

from application.ports.realtime import ConnectionState, RawMessage
from core.config import MqttSettings, settings
from core.logging_config import get_logger
from domain.telemetry.exceptions import BrokerConnectionFailure
from infrastructure.realtime.brokers.base import BaseTelemetrySource


logger = get_logger(__name__)


def _is_failure(reason_code: Any) -> bool:
    failure = getattr(reason_code, "is_failure", None)
    if failure is not None:
        return bool(failure)
    return bool(reason_code)


class MqttTelemetrySource(BaseTelemetrySource):
    def __init__(
        self,
        cfg: Optional[MqttSettings] = None,
        *,
        client_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._cfg = cfg or settings.mqtt
        super().__init__(queue_max=self._cfg.inbound_queue_max)
        self._client_factory = client_factory or mqtt.Client
        self._client: Optional[Any] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stopping = False
        self.client_id = f"{self._cfg.client_id_prefix}_{uuid4().hex[:8]}"

    @property
    def topic(self) -> str:
        return self._cfg.topic

    # --------------------------- Common API ---------------------------
    async def start(self) -> None:
        if self._client is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._client = self._build_client()
        self._set_state(ConnectionState.CONNECTING)
        logger.info(
            "mqtt_connecting",
            host=self._cfg.host,
            port=self._cfg.port,
            topic=self._cfg.topic,
            client_id=self.client_id,
        )
        # connect_async defers the socket work to the loop thread, which
        # also retries the first connection
        self._client.connect_async(self._cfg.host, self._cfg.port, keepalive=self._cfg.keepalive_s)
        self._client.loop_start()

    async def aclose(self) -> None:
        self._stopping = True
        client = self._client
        if client is not None:
            try:
                client.unsubscribe(self._cfg.topic)
                client.disconnect()
            except Exception as exc:  # pragma: no cover
                logger.warning("mqtt_disconnect_failed", error=str(exc))
            # loop_stop joins the network thread
            await asyncio.to_thread(client.loop_stop)
            self._client = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._finish()
        logger.info("mqtt_closed", client_id=self.client_id)

    # --------------------------- Callbacks ----------------------------
    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if _is_failure(reason_code):
            failure = BrokerConnectionFailure(str(reason_code), host=self._cfg.host, port=self._cfg.port)
            logger.warning("mqtt_connect_refused", error_type=failure.error_type, **failure.details)
            self._set_state(ConnectionState.RECONNECTING)
            return
        self._set_state(ConnectionState.CONNECTED)
        client.subscribe(self._cfg.topic, qos=self._cfg.qos)
        logger.info("mqtt_connected", host=self._cfg.host, topic=self._cfg.topic)

    def _on_connect_fail(self, client, userdata) -> None:
        failure = BrokerConnectionFailure("connect failed", host=self._cfg.host, port=self._cfg.port)
        logger.warning("mqtt_connect_failed", error_type=failure.error_type, **failure.details)
        if not self._stopping:
            self._set_state(ConnectionState.RECONNECTING)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if self._stopping:
            self._set_state(ConnectionState.DISCONNECTED)
            return
        logger.warning("mqtt_connection_lost", reason=str(reason_code))
        self._set_state(ConnectionState.DISCONNECTED)
        self._set_state(ConnectionState.RECONNECTING)

    def _on_subscribe(self, client, userdata, mid, reason_codes, properties=None) -> None:
        codes = reason_codes if isinstance(reason_codes, (list, tuple)) else [reason_codes]
        if any(_is_failure(rc) for rc in codes):
            logger.error("mqtt_subscribe_failed", topic=self._cfg.topic, reasons=[str(rc) for rc in codes])
        else:
            logger.info("mqtt_subscribed", topic=self._cfg.topic)

    def _on_message(self, client, userdata, msg) -> None:
        message = RawMessage(topic=msg.topic, payload=bytes(msg.payload))
        loop = self._loop
        if loop is None or self._stopping:
            return
        try:
            loop.call_soon_threadsafe(self._offer, message)
        except RuntimeError:
            # event loop already closed during shutdown
            logger.debug("mqtt_message_after_loop_closed", topic=msg.topic)

    # --------------------------- Internals ----------------------------
    def _build_client(self) -> Any:
        cfg = self._cfg
        client = self._client_factory(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True,
        )
        if cfg.username:
            client.username_pw_set(cfg.username, cfg.password)
        if cfg.tls_enable:
            client.tls_set(
                ca_certs=cfg.tls_ca_location,
                cert_reqs=ssl.CERT_REQUIRED if cfg.tls_verify else ssl.CERT_NONE,
            )
            if not cfg.tls_verify:
                client.tls_insecure_set(True)
                logger.warning("mqtt_tls_verification_disabled", host=cfg.host)
        client.reconnect_delay_set(
            min_delay=cfg.reconnect_min_delay_s,
            max_delay=max(cfg.reconnect_min_delay_s, cfg.reconnect_max_delay_s),
        )
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message
        return client
