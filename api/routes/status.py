"""Read-only relay status for external monitoring."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import get_relay_service
from application.services.relay_service import RelayService
from core.response import Response, success_response


router = APIRouter(prefix="/api", tags=["Status"])


class RelayStatus(BaseModel):
    status: str
    mqtt_connected: bool
    broker_state: str
    clients_connected: int
    timestamp: str
    stats: dict[str, int]


@router.get("/status", response_model=Response[RelayStatus])
async def relay_status(relay: RelayService = Depends(get_relay_service)):
    """Broker connectivity, viewer count and relay counters."""
    return success_response(data=RelayStatus(**relay.status()))
