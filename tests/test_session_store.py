"""
Session store behaviour (TTL, atomic create-if-absent, compare-and-delete, sets).
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cloudstorage.exceptions import Unavailable
from cloudstorage.session_store import RedisSessionStore


async def test_set_only_if_absent(store):
    assert await store.set("k", "a", only_if_absent=True) is True
    assert await store.set("k", "b", only_if_absent=True) is False
    assert await store.get("k") == "a"


async def test_ttl_expiry(store, clock):
    await store.set("k", "v", ttl=10)
    clock.advance(9)
    assert await store.exists("k")
    clock.advance(1)
    assert not await store.exists("k")
    assert await store.get("k") is None


async def test_expired_key_can_be_claimed_again(store, clock):
    await store.set("guard", "t1", ttl=5, only_if_absent=True)
    clock.advance(5)
    assert await store.set("guard", "t2", ttl=5, only_if_absent=True) is True


async def test_expire_extends_deadline(store, clock):
    await store.set("k", "v", ttl=10)
    clock.advance(8)
    assert await store.expire("k", 10) is True
    clock.advance(8)
    assert await store.exists("k")
    assert await store.expire("missing", 10) is False


async def test_delete_if_equals(store):
    await store.set("k", "token-1")
    assert await store.delete_if_equals("k", "token-2") is False
    assert await store.exists("k")
    assert await store.delete_if_equals("k", "token-1") is True
    assert not await store.exists("k")


async def test_delete_counts_removed_keys(store):
    await store.set("a", "1")
    await store.sadd("b", "x")
    assert await store.delete("a", "b", "c") == 2


async def test_hash_written_with_ttl(store, clock):
    await store.create_hash("h", {"owner": "alice", "file_size": "10"}, ttl=30)
    assert await store.hget("h", "owner") == "alice"
    assert await store.hgetall("h") == {"owner": "alice", "file_size": "10"}
    clock.advance(30)
    assert await store.hgetall("h") == {}


async def test_set_add_is_idempotent(store):
    assert await store.sadd("s", "3") == 1
    assert await store.sadd("s", "3") == 0
    await store.sadd("s", "0")
    assert await store.smembers("s") == {"0", "3"}
    assert await store.scard("s") == 2


async def test_wrong_type_reads_as_absent(store):
    await store.sadd("s", "1")
    assert await store.get("s") is None
    assert await store.hgetall("s") == {}


async def test_redis_errors_surface_as_unavailable():
    client = MagicMock()
    client.get = AsyncMock(side_effect=RedisConnectionError("refused"))
    store = RedisSessionStore(client)

    with pytest.raises(Unavailable):
        await store.get("k")


async def test_redis_set_only_if_absent_uses_nx():
    client = MagicMock()
    client.set = AsyncMock(return_value=None)
    store = RedisSessionStore(client)

    assert await store.set("k", "v", ttl=5, only_if_absent=True) is False
    client.set.assert_awaited_once_with("k", "v", ex=5, nx=True)
