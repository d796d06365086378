import asyncio

import pytest

from infrastructure.realtime.viewer_registry import ViewerRegistry, ViewerSession


def _session() -> ViewerSession:
    return ViewerSession(queue=asyncio.Queue(maxsize=4))


@pytest.mark.asyncio
async def test_unscoped_viewer_targets_every_device(registry: ViewerRegistry):
    s = _session()
    await registry.register(s)
    assert s in await registry.targets_for("D1")
    assert s in await registry.targets_for("anything")


@pytest.mark.asyncio
async def test_scoped_viewer_only_targets_its_device(registry: ViewerRegistry):
    s = _session()
    await registry.register(s)
    assert await registry.set_scope(s.session_id, "D1") is True
    assert s in await registry.targets_for("D1")
    assert s not in await registry.targets_for("D2")


@pytest.mark.asyncio
async def test_set_scope_is_idempotent_and_last_write_wins(registry: ViewerRegistry):
    s = _session()
    await registry.register(s)
    await registry.set_scope(s.session_id, "D1")
    await registry.set_scope(s.session_id, "D1")
    assert len(registry) == 1
    assert (await registry.targets_for("D1")) == [s]

    await registry.set_scope(s.session_id, "D2")
    assert s not in await registry.targets_for("D1")
    assert s in await registry.targets_for("D2")


@pytest.mark.asyncio
async def test_clear_scope_returns_viewer_to_all_devices(registry: ViewerRegistry):
    s = _session()
    await registry.register(s)
    await registry.set_scope(s.session_id, "D1")
    await registry.clear_scope(s.session_id)
    assert s in await registry.targets_for("D2")


@pytest.mark.asyncio
async def test_unregister_removes_viewer_from_all_targets(registry: ViewerRegistry):
    scoped, unscoped = _session(), _session()
    await registry.register(scoped)
    await registry.register(unscoped)
    await registry.set_scope(scoped.session_id, "D1")

    removed = await registry.unregister(scoped.session_id)
    assert removed is scoped
    assert scoped.closed is True
    assert scoped not in await registry.targets_for("D1")
    assert (await registry.targets_for("D1")) == [unscoped]
    assert registry.count() == 1


@pytest.mark.asyncio
async def test_unregister_unknown_or_unscoped_is_safe(registry: ViewerRegistry):
    s = _session()
    await registry.register(s)
    assert await registry.unregister(s.session_id) is s
    assert await registry.unregister(s.session_id) is None
    assert await registry.unregister("missing") is None
    assert await registry.set_scope("missing", "D1") is False


@pytest.mark.asyncio
async def test_concurrent_registration_loses_nothing(registry: ViewerRegistry):
    sessions = [_session() for _ in range(50)]
    await asyncio.gather(*(registry.register(s) for s in sessions))
    await asyncio.gather(
        *(registry.set_scope(s.session_id, f"D{i % 3}") for i, s in enumerate(sessions)),
        *(registry.unregister(s.session_id) for s in sessions[:10]),
    )
    assert len(registry) == 40
    targets = await registry.targets_for("D0")
    assert all(s.scope == "D0" for s in targets)
    assert not any(s in targets for s in sessions[:10])


@pytest.mark.asyncio
async def test_scope_and_device_id_match_after_whitespace_strip(registry: ViewerRegistry):
    s = _session()
    await registry.register(s)
    await registry.set_scope(s.session_id, " D1 ")
    assert s.scope == "D1"
    assert s in await registry.targets_for("D1")
    assert s in await registry.targets_for("D1 ")
