import pytest

from application.ports.realtime import Envelope
from infrastructure.realtime.broadcaster import CLOSE_SENTINEL
from infrastructure.realtime.connection_manager import ConnectionManager


@pytest.mark.asyncio
async def test_greeting_is_first_frame_and_order_is_kept(registry, fake_ws, settle):
    conn = ConnectionManager(registry, send_queue_max=8)
    ws = fake_ws()
    session = await conn.add(ws, greeting=lambda s: Envelope(type="connection_status", data={"status": "connected"}))
    for i in range(3):
        conn.reply(session, Envelope(type="ecg_data", data={"seq": i}))
    await settle()

    assert ws.sent[0]["type"] == "connection_status"
    assert [m["data"]["seq"] for m in ws.frames("ecg_data")] == [0, 1, 2]
    await conn.close_all()


@pytest.mark.asyncio
async def test_remove_unregisters_and_stops_sender(registry, fake_ws, settle):
    conn = ConnectionManager(registry, send_queue_max=8)
    ws = fake_ws()
    session = await conn.add(ws)
    await conn.remove(session.session_id)
    await settle()

    assert len(registry) == 0
    assert session.closed is True
    assert conn.reply(session, Envelope(type="pong")) is False


@pytest.mark.asyncio
async def test_send_failure_abandons_only_that_viewer(registry, fake_ws, settle):
    conn = ConnectionManager(registry, send_queue_max=8)
    broken, healthy = fake_ws(fail=True), fake_ws()
    s_broken = await conn.add(broken)
    s_healthy = await conn.add(healthy)
    conn.reply(s_broken, Envelope(type="ecg_data"))
    conn.reply(s_healthy, Envelope(type="ecg_data"))
    await settle()

    assert s_broken.closed is True
    assert len(healthy.frames("ecg_data")) == 1
    await conn.close_all()


@pytest.mark.asyncio
async def test_close_sentinel_closes_socket(registry, fake_ws, settle):
    conn = ConnectionManager(registry, send_queue_max=8)
    ws = fake_ws()
    session = await conn.add(ws)
    session.queue.put_nowait(CLOSE_SENTINEL)
    await settle()
    assert ws.closed_code == 1013
    await conn.remove(session.session_id)


@pytest.mark.asyncio
async def test_close_all_closes_every_socket(registry, fake_ws):
    conn = ConnectionManager(registry, send_queue_max=8)
    sockets = [fake_ws() for _ in range(3)]
    for ws in sockets:
        await conn.add(ws)

    assert await conn.close_all() == 3
    assert len(registry) == 0
    assert all(ws.closed_code == 1001 for ws in sockets)
