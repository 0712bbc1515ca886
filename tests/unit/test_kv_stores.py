"""Tests for the key-value store adapters."""
import pytest
from unittest.mock import MagicMock, AsyncMock
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError

from reporting_api.adapters.memory_store.stores import MemoryKeyValueStore, MemoryObjectStore
from reporting_api.adapters.redis.stores import RedisKeyValueStore
from reporting_api.errors import StoreTransientError


@pytest.fixture
def memory(clock):
    return MemoryKeyValueStore(clock=clock)


@pytest.mark.asyncio
async def test_memory_put_if_absent(memory):
    assert await memory.put_if_absent("k", "first") is True
    assert await memory.put_if_absent("k", "second") is False
    assert await memory.get("k") == "first"


@pytest.mark.asyncio
async def test_memory_compare_and_swap(memory):
    await memory.put("k", "v1")
    assert await memory.compare_and_swap("k", "stale", "v2") is False
    assert await memory.compare_and_swap("k", "v1", "v2") is True
    assert await memory.get("k") == "v2"
    # Missing keys never match
    assert await memory.compare_and_swap("missing", "v1", "v2") is False


@pytest.mark.asyncio
async def test_memory_compare_and_delete(memory):
    await memory.put("k", "mine")
    assert await memory.compare_and_delete("k", "theirs") is False
    assert await memory.compare_and_delete("k", "mine") is True
    assert await memory.get("k") is None


@pytest.mark.asyncio
async def test_memory_expiry(memory, clock):
    await memory.put("k", "v", ttl_seconds=10)
    clock.advance(9.9)
    assert await memory.get("k") == "v"
    clock.advance(0.1)
    assert await memory.get("k") is None
    # Expired keys count as absent
    assert await memory.put_if_absent("k", "new", ttl_seconds=10) is True


@pytest.mark.asyncio
async def test_memory_cas_keeps_ttl_when_not_given(memory, clock):
    await memory.put("k", "v1", ttl_seconds=10)
    assert await memory.compare_and_swap("k", "v1", "v2") is True
    clock.advance(10)
    assert await memory.get("k") is None


@pytest.mark.asyncio
async def test_memory_object_store_delete_prefix():
    store = MemoryObjectStore()
    await store.put("reports/a/c1/x.pdf", b"1", "application/pdf")
    await store.put("reports/a/c1/y.pdf", b"2", "application/pdf")
    await store.put("reports/a/c2/z.pdf", b"3", "application/pdf")

    assert await store.delete_prefix("reports/a/c1/") == 2
    assert await store.get("reports/a/c1/x.pdf") is None
    assert (await store.get("reports/a/c2/z.pdf")).data == b"3"


@pytest.fixture
def mock_redis():
    redis = MagicMock()
    redis.get = AsyncMock()
    redis.set = AsyncMock()
    redis.eval = AsyncMock()
    redis.delete = AsyncMock()
    redis.ping = AsyncMock()
    return redis


@pytest.mark.asyncio
async def test_redis_put_uses_millisecond_ttl(mock_redis):
    store = RedisKeyValueStore(mock_redis)
    await store.put("k", "v", ttl_seconds=1.5)
    mock_redis.set.assert_awaited_once_with("k", "v", px=1500)


@pytest.mark.asyncio
async def test_redis_put_if_absent(mock_redis):
    store = RedisKeyValueStore(mock_redis)

    mock_redis.set.return_value = True
    assert await store.put_if_absent("k", "v", ttl_seconds=60) is True
    mock_redis.set.assert_awaited_with("k", "v", px=60000, nx=True)

    mock_redis.set.return_value = None
    assert await store.put_if_absent("k", "v", ttl_seconds=60) is False


@pytest.mark.asyncio
async def test_redis_compare_and_swap_script(mock_redis):
    store = RedisKeyValueStore(mock_redis)

    mock_redis.eval.return_value = 1
    assert await store.compare_and_swap("k", "old", "new", ttl_seconds=2) is True
    args = mock_redis.eval.call_args.args
    assert args[1:] == (1, "k", "old", "new", 2000)

    mock_redis.eval.return_value = 0
    assert await store.compare_and_swap("k", "old", "new") is False
    # Without a TTL the script keeps the existing expiry
    assert mock_redis.eval.call_args.args[-1] == 0


@pytest.mark.asyncio
async def test_redis_compare_and_delete(mock_redis):
    store = RedisKeyValueStore(mock_redis)
    mock_redis.eval.return_value = 1
    assert await store.compare_and_delete("k", "owner") is True
    assert mock_redis.eval.call_args.args[1:] == (1, "k", "owner")


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [RedisConnectionError("refused"), RedisTimeoutError("slow")])
async def test_redis_errors_become_transient(mock_redis, error):
    store = RedisKeyValueStore(mock_redis)
    mock_redis.get.side_effect = error
    mock_redis.eval.side_effect = error

    with pytest.raises(StoreTransientError):
        await store.get("k")
    with pytest.raises(StoreTransientError):
        await store.compare_and_swap("k", "a", "b")


@pytest.mark.asyncio
async def test_redis_ping_reports_failure(mock_redis):
    store = RedisKeyValueStore(mock_redis)
    mock_redis.ping.side_effect = RedisConnectionError("down")
    assert await store.ping() is False
