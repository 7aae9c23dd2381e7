import asyncio
from unittest.mock import AsyncMock

import pytest

from clubroster.domain.roster.exceptions import Busy
from clubroster.domain.roster.locks import (
    MemoryLockManager,
    RedisLockManager,
    build_lock_manager,
    headcount_key,
    member_key,
    slot_key,
)
from clubroster.infra.redis import redis_client
from clubroster.settings import Settings


@pytest.mark.asyncio
async def test_keys_are_acquired_in_sorted_order():
    locks = MemoryLockManager()
    async with locks.hold([slot_key("sub-a", "ev-1"), member_key("m1"), member_key("m1")]) as held:
        assert held == ["member:m1", "slot:sub-a:ev-1"]
        assert locks.is_held("member:m1")
    assert not locks.is_held("member:m1")
    assert locks._locks == {}


@pytest.mark.asyncio
async def test_opposite_orders_do_not_deadlock():
    locks = MemoryLockManager(default_timeout=1.0)
    order = []

    async def worker(name, keys):
        async with locks.hold(keys):
            order.append(name)
            await asyncio.sleep(0.01)

    await asyncio.gather(
        worker("first", [member_key("m1"), headcount_key("sub-a")]),
        worker("second", [headcount_key("sub-a"), member_key("m1")]),
    )
    assert sorted(order) == ["first", "second"]


@pytest.mark.asyncio
async def test_timeout_releases_keys_already_taken():
    locks = MemoryLockManager()
    async with locks.hold([slot_key("sub-a", "ev-1")]):
        with pytest.raises(Busy):
            async with locks.hold([member_key("m1"), slot_key("sub-a", "ev-1")], timeout=0.02):
                pass
        assert not locks.is_held(member_key("m1"))
    assert locks._locks == {}


@pytest.mark.asyncio
async def test_waiter_proceeds_after_release():
    locks = MemoryLockManager(default_timeout=1.0)
    release = asyncio.Event()
    entered = []

    async def holder():
        async with locks.hold([member_key("m1")]):
            await release.wait()

    async def waiter():
        async with locks.hold([member_key("m1")]):
            entered.append("waiter")

    task = asyncio.create_task(holder())
    await asyncio.sleep(0)
    waiting = asyncio.create_task(waiter())
    await asyncio.sleep(0.01)
    assert entered == []
    release.set()
    await asyncio.gather(task, waiting)
    assert entered == ["waiter"]


@pytest.mark.asyncio
async def test_redis_lease_is_set_and_cleared(fake_redis):
    locks = RedisLockManager(redis_client, default_timeout=1.0, ttl_ms=5_000)
    async with locks.hold([member_key("m1")]):
        token = await fake_redis.get("roster:lock:member:m1")
        assert token
        ttl = await fake_redis.pttl("roster:lock:member:m1")
        assert 0 < ttl <= 5_000
    assert await fake_redis.get("roster:lock:member:m1") is None


@pytest.mark.asyncio
async def test_redis_lease_held_elsewhere_yields_busy(fake_redis):
    await fake_redis.set("roster:lock:member:m1", "another-process", px=10_000)
    locks = RedisLockManager(redis_client, default_timeout=0.05, poll_ms=5)
    with pytest.raises(Busy):
        async with locks.hold([member_key("m1")]):
            pass
    assert await fake_redis.get("roster:lock:member:m1") == "another-process"
    assert not locks.is_held(member_key("m1"))


@pytest.mark.asyncio
async def test_redis_release_leaves_foreign_lease_alone(fake_redis):
    locks = RedisLockManager(redis_client, default_timeout=1.0)
    async with locks.hold([member_key("m1")]):
        await fake_redis.set("roster:lock:member:m1", "new-owner")
    assert await fake_redis.get("roster:lock:member:m1") == "new-owner"


@pytest.mark.asyncio
async def test_redis_release_after_lease_expiry_spares_the_next_owner(fake_redis, monkeypatch):
    locks = RedisLockManager(redis_client, default_timeout=1.0, ttl_ms=50)
    async with locks.hold([member_key("m1")]):
        await asyncio.sleep(0.08)
        assert await fake_redis.set("roster:lock:member:m1", "next-owner", nx=True, px=10_000)
        # release must compare and delete in one command, never GET then DEL
        monkeypatch.setattr(fake_redis, "get", AsyncMock(side_effect=AssertionError("split release")))
        monkeypatch.setattr(fake_redis, "delete", AsyncMock(side_effect=AssertionError("split release")))
    monkeypatch.undo()
    assert await fake_redis.get("roster:lock:member:m1") == "next-owner"
    assert not locks.is_held(member_key("m1"))


def test_build_lock_manager_follows_settings():
    memory = build_lock_manager(Settings(ROSTER_LOCK_BACKEND="memory", ROSTER_LOCK_TIMEOUT_SECONDS=2.0))
    assert type(memory) is MemoryLockManager
    assert memory.default_timeout == 2.0

    redis_locks = build_lock_manager(Settings(ROSTER_LOCK_BACKEND="redis", ROSTER_LOCK_TTL_MS=1_000))
    assert isinstance(redis_locks, RedisLockManager)
    assert redis_locks.ttl_ms == 1_000
