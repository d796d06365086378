"""WebSocket route for live telemetry viewers.

Protocol (JSON text frames, Envelope shaped replies):
- server -> `connection_status` right after accept
- client -> `{"type": "subscribe_device", "deviceId": "..."}` scopes the viewer
- client -> `{"type": "unsubscribe_device"}` goes back to all devices
- client -> `ping` / `pong`
- server -> `ecg_data` for each relayed event

Heartbeat: server sends a JSON ping on idle and closes after the
configured number of missed pongs.
"""
from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from api.dependencies import get_relay_service_from_ws
from application.ports.realtime import Envelope
from application.services.relay_service import RelayService
from core.config import settings
from core.logging_config import get_logger
from infrastructure.realtime.viewer_registry import ViewerSession


logger = get_logger(__name__)


router = APIRouter(tags=["WebSocket"])


def _error(message: str, key: str) -> Envelope:
    return Envelope(type="error", data={"message": message, "message_key": key})


def _device_id(msg: dict[str, Any]) -> str:
    for key in ("deviceId", "device_id", "room"):
        value = msg.get(key)
        if value is not None:
            return str(value).strip()
    return ""


async def _handle_message(relay: RelayService, session: ViewerSession, raw: str) -> None:
    try:
        msg = json.loads(raw)
    except ValueError:
        relay.reply(session, _error("Invalid JSON", "ws.error.invalid_json"))
        return
    if not isinstance(msg, dict):
        relay.reply(session, _error("Message must be a JSON object", "ws.error.invalid_json"))
        return

    mtype = str(msg.get("type") or "").lower()
    if mtype == "subscribe_device":
        device_id = _device_id(msg)
        if not device_id:
            relay.reply(session, _error("deviceId is required", "ws.error.device_required"))
            return
        await relay.subscribe_device(session, device_id)
    elif mtype == "unsubscribe_device":
        await relay.unsubscribe_device(session)
    elif mtype == "ping":
        relay.reply(session, Envelope(type="pong"))
    elif mtype == "pong":
        # Client heartbeat reply; nothing else to do.
        return
    else:
        relay.reply(session, _error(f"Unknown message type: {mtype or '<empty>'}", "ws.error.unknown_type"))


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket) -> None:
    await ws.accept()
    relay = get_relay_service_from_ws(ws)
    session = await relay.connect(ws)

    idle_ping_interval = float(settings.REALTIME_WS_IDLE_PING_INTERVAL_S or 0)
    pong_grace = float(settings.REALTIME_WS_PONG_GRACE_S)
    missed_limit = int(settings.REALTIME_WS_MISSED_PING_LIMIT)
    try:
        missed = 0
        while True:
            if idle_ping_interval > 0:
                try:
                    raw = await asyncio.wait_for(ws.receive_text(), timeout=idle_ping_interval)
                except asyncio.TimeoutError:
                    # Idle: send ping and wait a short grace for response
                    missed += 1
                    if not relay.reply(session, Envelope(type="ping")):
                        break
                    try:
                        raw = await asyncio.wait_for(ws.receive_text(), timeout=pong_grace)
                        missed = 0
                    except asyncio.TimeoutError:
                        if missed >= missed_limit:
                            logger.info("ws_idle_timeout", session_id=session.session_id, missed=missed)
                            await ws.close(code=1001)
                            break
                        continue
            else:
                raw = await ws.receive_text()
            await _handle_message(relay, session, raw)
    except WebSocketDisconnect:
        logger.info("ws_client_left", session_id=session.session_id)
    except Exception as exc:
        if session.closed:
            # closed from our side (shutdown or overflow policy)
            logger.info("ws_closed_by_server", session_id=session.session_id)
        else:
            logger.error("ws_error", session_id=session.session_id, error=str(exc), exc_info=True)
    finally:
        await relay.disconnect(session)
