import asyncio

from giggle.services.pending_actions import MemoryPendingActionStore


async def _stage(store, user="u1", amount="10.00", kind="send"):
    return await store.create(user, "+14155550101", kind, amount, "u2", "+14155550102")


async def test_create_and_get(store):
    action = await _stage(store)
    assert await store.get("u1") == action
    assert await store.has_pending("u1")
    assert not await store.has_pending("u2")


async def test_new_action_supersedes_previous(store):
    first = await _stage(store, amount="10.00")
    second = await _stage(store, amount="20.00")
    current = await store.get("u1")
    assert current.id == second.id != first.id
    assert current.amount == "20.00"


async def test_still_live_just_before_ttl(store, clock):
    await _stage(store)
    clock.advance(299)
    assert await store.has_pending("u1")
    assert await store.confirm("u1") is not None


async def test_expired_just_after_ttl(store, clock):
    await _stage(store)
    clock.advance(301)
    assert await store.get("u1") is None
    assert await store.confirm("u1") is None


async def test_confirm_pops_exactly_once(store):
    await _stage(store)
    results = await asyncio.gather(*(store.confirm("u1", pin="1234") for _ in range(5)))
    popped = [r for r in results if r is not None]
    assert len(popped) == 1
    assert popped[0].pin == "1234"
    assert not await store.has_pending("u1")


async def test_pin_hidden_from_repr(store):
    await _stage(store)
    action = await store.confirm("u1", pin="9876")
    assert "9876" not in repr(action)
    assert "9876" not in str(action)


async def test_cancel(store):
    await _stage(store)
    assert await store.cancel("u1") is True
    assert await store.cancel("u1") is False
    assert await store.get("u1") is None


async def test_sweep_removes_only_expired(store, clock):
    await _stage(store, user="old")
    clock.advance(200)
    await _stage(store, user="new")
    clock.advance(150)
    assert await store.sweep() == 1
    assert not await store.has_pending("old")
    assert await store.has_pending("new")


async def test_timer_expires_action_on_the_loop():
    store = MemoryPendingActionStore(ttl_seconds=1)
    store.ttl = store.ttl / 20   # 50ms
    await _stage(store)
    await asyncio.sleep(0.1)
    assert "u1" not in store._actions


async def test_stale_timer_does_not_remove_replacement():
    store = MemoryPendingActionStore(ttl_seconds=300)
    first = await _stage(store)
    second = await _stage(store)
    store._expire("u1", first.id)
    assert (await store.get("u1")).id == second.id
