"""
Shared session store.

The session store is the single coordination point between request handlers that run
on independent workers: upload session records, chunk-completion sets, resume pointers,
completion guards and issued access tokens all live here. Every mutation is one atomic
store primitive (SET NX EX, SADD, compare-and-delete); nothing relies on an in-process
lock.

Two implementations:
- ``RedisSessionStore``: production, on ``redis.asyncio``.
- ``InMemorySessionStore``: single-process development (no REDIS_URL) and tests.
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Dict, Optional, Protocol, Set, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from cloudstorage.config import get_settings
from cloudstorage.exceptions import Unavailable
from cloudstorage.utils.prometheus_metrics import record_external_request

logger = logging.getLogger("cloudstorage.store")

# KEYS[1] 값이 ARGV[1]과 같을 때만 삭제 (가드/재개 포인터 해제용)
_DELETE_IF_EQUALS_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class SessionStore(Protocol):
    """Primitive operations the upload core is allowed to use."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(
        self,
        key: str,
        value: str,
        ttl: Optional[int] = None,
        only_if_absent: bool = False,
    ) -> bool: ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def delete_if_equals(self, key: str, value: str) -> bool: ...

    async def expire(self, key: str, ttl: int) -> bool: ...

    async def create_hash(self, key: str, mapping: Dict[str, str], ttl: int) -> None: ...

    async def hget(self, key: str, field: str) -> Optional[str]: ...

    async def hgetall(self, key: str) -> Dict[str, str]: ...

    async def sadd(self, key: str, member: str) -> int: ...

    async def smembers(self, key: str) -> Set[str]: ...

    async def scard(self, key: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisSessionStore:
    """
    Redis-backed session store.

    Redis errors are logged and surfaced as ``Unavailable`` so that handlers answer
    with a retryable 503 instead of a bare 500.
    """

    def __init__(self, client: redis.Redis):
        self.client = client
        self._delete_if_equals = client.register_script(_DELETE_IF_EQUALS_LUA)

    @classmethod
    def from_url(cls, url: str, max_connections: int = 50) -> "RedisSessionStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            max_connections=max_connections,
        )
        return cls(client)

    @asynccontextmanager
    async def _op(self, name: str) -> AsyncGenerator[None, None]:
        try:
            async with record_external_request("redis"):
                yield
        except RedisError as e:
            logger.error(
                "Session store operation failed",
                extra={"event": "store", "op": name, "error_type": type(e).__name__},
            )
            raise Unavailable("Session store unavailable") from e

    async def get(self, key: str) -> Optional[str]:
        async with self._op("get"):
            return await self.client.get(key)

    async def set(
        self,
        key: str,
        value: str,
        ttl: Optional[int] = None,
        only_if_absent: bool = False,
    ) -> bool:
        async with self._op("set"):
            result = await self.client.set(key, value, ex=ttl, nx=only_if_absent)
        return bool(result)

    async def exists(self, key: str) -> bool:
        async with self._op("exists"):
            return bool(await self.client.exists(key))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        async with self._op("delete"):
            return int(await self.client.delete(*keys))

    async def delete_if_equals(self, key: str, value: str) -> bool:
        async with self._op("delete_if_equals"):
            return bool(await self._delete_if_equals(keys=[key], args=[value]))

    async def expire(self, key: str, ttl: int) -> bool:
        async with self._op("expire"):
            return bool(await self.client.expire(key, ttl))

    async def create_hash(self, key: str, mapping: Dict[str, str], ttl: int) -> None:
        # HSET + EXPIRE in one MULTI/EXEC: the record never exists without its TTL
        async with self._op("create_hash"):
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping=mapping)
                pipe.expire(key, ttl)
                await pipe.execute()

    async def hget(self, key: str, field: str) -> Optional[str]:
        async with self._op("hget"):
            return await self.client.hget(key, field)

    async def hgetall(self, key: str) -> Dict[str, str]:
        async with self._op("hgetall"):
            return await self.client.hgetall(key)

    async def sadd(self, key: str, member: str) -> int:
        async with self._op("sadd"):
            return int(await self.client.sadd(key, member))

    async def smembers(self, key: str) -> Set[str]:
        async with self._op("smembers"):
            return set(await self.client.smembers(key))

    async def scard(self, key: str) -> int:
        async with self._op("scard"):
            return int(await self.client.scard(key))

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self.client.aclose()


class InMemorySessionStore:
    """
    Process-local session store with lazy TTL expiry.

    Operations never await, so each one is atomic with respect to other coroutines on
    the same event loop. Not shared across processes: only for development and tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, object] = {}
        self._expires_at: Dict[str, float] = {}

    def _purge_if_expired(self, key: str) -> None:
        deadline = self._expires_at.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._data.pop(key, None)
            self._expires_at.pop(key, None)

    def _lookup(self, key: str) -> Tuple[bool, object]:
        self._purge_if_expired(key)
        if key in self._data:
            return True, self._data[key]
        return False, None

    def _put(self, key: str, value: object, ttl: Optional[int]) -> None:
        self._data[key] = value
        if ttl is not None:
            self._expires_at[key] = self._clock() + ttl
        else:
            self._expires_at.pop(key, None)

    async def get(self, key: str) -> Optional[str]:
        found, value = self._lookup(key)
        return value if found and isinstance(value, str) else None

    async def set(
        self,
        key: str,
        value: str,
        ttl: Optional[int] = None,
        only_if_absent: bool = False,
    ) -> bool:
        found, _ = self._lookup(key)
        if only_if_absent and found:
            return False
        self._put(key, value, ttl)
        return True

    async def exists(self, key: str) -> bool:
        found, _ = self._lookup(key)
        return found

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            found, _ = self._lookup(key)
            if found:
                self._data.pop(key, None)
                self._expires_at.pop(key, None)
                removed += 1
        return removed

    async def delete_if_equals(self, key: str, value: str) -> bool:
        found, current = self._lookup(key)
        if found and current == value:
            return await self.delete(key) == 1
        return False

    async def expire(self, key: str, ttl: int) -> bool:
        found, _ = self._lookup(key)
        if not found:
            return False
        self._expires_at[key] = self._clock() + ttl
        return True

    async def create_hash(self, key: str, mapping: Dict[str, str], ttl: int) -> None:
        found, current = self._lookup(key)
        merged = dict(current) if found and isinstance(current, dict) else {}
        merged.update(mapping)
        self._put(key, merged, ttl)

    async def hget(self, key: str, field: str) -> Optional[str]:
        found, value = self._lookup(key)
        if not found or not isinstance(value, dict):
            return None
        return value.get(field)

    async def hgetall(self, key: str) -> Dict[str, str]:
        found, value = self._lookup(key)
        if not found or not isinstance(value, dict):
            return {}
        return dict(value)

    async def sadd(self, key: str, member: str) -> int:
        found, value = self._lookup(key)
        if not found:
            # Redis와 동일: 새 키는 TTL 없음
            self._put(key, {member}, None)
            return 1
        if member in value:
            return 0
        value.add(member)
        return 1

    async def smembers(self, key: str) -> Set[str]:
        found, value = self._lookup(key)
        return set(value) if found and isinstance(value, set) else set()

    async def scard(self, key: str) -> int:
        return len(await self.smembers(key))

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()
        self._expires_at.clear()


# Singleton instance
_session_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Get the process-wide session store (Redis when REDIS_URL is set)."""
    global _session_store
    if _session_store is None:
        settings = get_settings()
        if settings.redis_url:
            _session_store = RedisSessionStore.from_url(
                settings.redis_url, max_connections=settings.redis_max_connections
            )
        else:
            logger.warning(
                "REDIS_URL not set, using in-process session store (single worker only)",
                extra={"event": "store"},
            )
            _session_store = InMemorySessionStore()
    return _session_store


async def close_session_store() -> None:
    """Close the store connection pool on shutdown."""
    global _session_store
    if _session_store is not None:
        await _session_store.close()
        _session_store = None
