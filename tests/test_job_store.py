"""Job store backend tests."""

import pytest

from mediaflow.store import MemoryJobStore, RedisJobStore, create_job_store


def test_create_job_store_selects_backend():
    assert isinstance(create_job_store("memory://"), MemoryJobStore)
    assert isinstance(create_job_store("redis://localhost:6379/0"), RedisJobStore)


@pytest.mark.asyncio
async def test_set_if_absent_and_ttl(job_store, clock):
    assert await job_store.set_if_absent("lock", "a", ttl_seconds=10)
    assert not await job_store.set_if_absent("lock", "b", ttl_seconds=10)

    clock.advance(10)
    assert await job_store.get("lock") is None
    assert await job_store.set_if_absent("lock", "b", ttl_seconds=10)


@pytest.mark.asyncio
async def test_plain_set_clears_ttl_and_keep_ttl_preserves_it(job_store, clock):
    await job_store.set("k", "v1", ttl_seconds=5)
    await job_store.set("k", "v2", keep_ttl=True)
    clock.advance(6)
    assert await job_store.get("k") is None

    await job_store.set("k", "v1", ttl_seconds=5)
    await job_store.set("k", "v2")
    clock.advance(6)
    assert await job_store.get("k") == "v2"


@pytest.mark.asyncio
async def test_list_is_fifo_with_lpush_rpop(job_store):
    for value in ("a", "b", "c"):
        await job_store.lpush("q", value)

    assert await job_store.llen("q") == 3
    assert [await job_store.rpop("q") for _ in range(3)] == ["a", "b", "c"]
    assert await job_store.rpop("q") is None


@pytest.mark.asyncio
async def test_compare_and_set_helpers_only_touch_matching_value(job_store, clock):
    await job_store.set("lease", "owner-a", ttl_seconds=10)

    assert not await job_store.expire_if_equals("lease", "owner-b", ttl_seconds=100)
    assert not await job_store.delete_if_equals("lease", "owner-b")
    assert await job_store.get("lease") == "owner-a"

    clock.advance(8)
    assert await job_store.expire_if_equals("lease", "owner-a", ttl_seconds=10)
    clock.advance(8)
    assert await job_store.get("lease") == "owner-a"

    assert await job_store.delete_if_equals("lease", "owner-a")
    assert await job_store.get("lease") is None
    assert not await job_store.expire_if_equals("lease", "owner-a", ttl_seconds=10)
