"""Server-authoritative storage for ride sessions and dispatch records.

Redis is the primary backend when configured. The backend is chosen on
first use: if Redis does not answer a ping then, records live in a
process-local LRU for the life of the process. Once Redis is in use its
failures surface as :class:`SessionStoreUnavailableError`; reads never
switch to an empty local backend mid-ride. Records are stored as
orjson-encoded pydantic dumps so both backends see identical bytes.

The monitoring engine only ever talks to :class:`SessionStore`; it never
keeps a session between calls.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import OrderedDict
from typing import Any, Protocol, TypeVar, runtime_checkable

import orjson
import structlog
from pydantic import BaseModel, ValidationError

from src.models.errors import SessionStoreUnavailableError
from src.models.ride import RideSession, SilentDispatch

logger = structlog.get_logger(__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class StoreBackend(Protocol):
    """Async byte-oriented key/value backend."""

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisStoreBackend:
    """Redis-backed store using ``redis.asyncio`` with connection pooling."""

    __slots__ = ("_pool", "_redis")

    def __init__(self, url: str, *, max_connections: int = 20) -> None:
        import redis.asyncio as aioredis

        self._pool = aioredis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=False,
        )
        self._redis = aioredis.Redis(connection_pool=self._pool)

    async def get(self, key: str) -> bytes | None:
        return await self._redis.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        if ttl_seconds is not None:
            await self._redis.set(key, value, ex=ttl_seconds)
        else:
            await self._redis.set(key, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def close(self) -> None:
        await self._redis.aclose()
        await self._pool.aclose()

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class _Entry:
    __slots__ = ("expires_at", "value")

    def __init__(self, value: bytes, ttl_seconds: int | None) -> None:
        self.value = value
        self.expires_at: float | None = (time.monotonic() + ttl_seconds) if ttl_seconds is not None else None

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() > self.expires_at


class InMemoryStoreBackend:
    """Bounded LRU with per-entry TTL, guarded by an :class:`asyncio.Lock`.

    When full, the least-recently-used record is evicted.
    """

    __slots__ = ("_data", "_lock", "_max_size")

    def __init__(self, *, max_size: int = 10_000) -> None:
        self._max_size = max_size
        self._data: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.expired:
                del self._data[key]
                return None
            self._data.move_to_end(key)
            return entry.value

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        async with self._lock:
            self._data.pop(key, None)
            while len(self._data) >= self._max_size:
                self._data.popitem(last=False)
            self._data[key] = _Entry(value, ttl_seconds)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    @property
    def size(self) -> int:
        return len(self._data)


# ---------------------------------------------------------------------------
# SessionStore -- public API
# ---------------------------------------------------------------------------


class SessionStore:
    """Typed get/put/delete for ride sessions and dispatches.

    Parameters
    ----------
    redis_url:
        Redis connection string. ``None`` or empty keeps everything in
        memory.
    ttl_seconds:
        Expiry applied to every record.
    inmemory_max_size:
        Capacity of the in-memory fallback.
    """

    __slots__ = ("_fallback", "_redis", "_redis_available", "_redis_checked", "_ttl")

    _SESSION_PREFIX = "ride:"
    _DISPATCH_PREFIX = "dispatch:"

    def __init__(
        self,
        *,
        redis_url: str | None = None,
        ttl_seconds: int | None = 86_400,
        inmemory_max_size: int = 10_000,
    ) -> None:
        self._ttl = ttl_seconds
        self._fallback = InMemoryStoreBackend(max_size=inmemory_max_size)
        self._redis: RedisStoreBackend | None = None
        self._redis_available = False
        self._redis_checked = False

        if redis_url:
            try:
                self._redis = RedisStoreBackend(redis_url)
            except Exception:
                logger.warning("session_store.redis_init_failed", redis_url=redis_url)
                self._redis = None

    # -- Internal helpers ------------------------------------------------------

    async def _check_redis(self) -> None:
        if self._redis is not None and not self._redis_checked:
            self._redis_checked = True
            self._redis_available = await self._redis.ping()
            if self._redis_available:
                logger.info("session_store.redis_connected")
            else:
                logger.warning("session_store.redis_unavailable_using_inmemory")

    async def _op(self, method: str, key: str, *args: Any, **kwargs: Any) -> Any:
        """Run *method* on the chosen backend.

        Raises
        ------
        SessionStoreUnavailableError
            Redis is the chosen backend and the call failed.
        """
        await self._check_redis()
        if self._redis_available and self._redis is not None:
            try:
                return await getattr(self._redis, method)(key, *args, **kwargs)
            except Exception as exc:
                logger.error("session_store.redis_op_failed", method=method, key=key, error=str(exc))
                raise SessionStoreUnavailableError(method) from exc
        return await getattr(self._fallback, method)(key, *args, **kwargs)

    async def _load(self, key: str, model: type[_ModelT]) -> _ModelT | None:
        raw: bytes | None = await self._op("get", key)
        if raw is None:
            return None
        try:
            return model.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError):
            logger.warning("session_store.corrupt_record", key=key, exc_info=True)
            return None

    async def _save(self, key: str, record: BaseModel) -> None:
        raw = orjson.dumps(record.model_dump(mode="json"))
        await self._op("set", key, raw, ttl_seconds=self._ttl)

    # -- Sessions --------------------------------------------------------------

    async def get(self, session_id: str) -> RideSession | None:
        return await self._load(self._SESSION_PREFIX + session_id, RideSession)

    async def put(self, session: RideSession) -> None:
        await self._save(self._SESSION_PREFIX + session.id, session)

    async def delete(self, session_id: str) -> None:
        await self._op("delete", self._SESSION_PREFIX + session_id)

    # -- Dispatches ------------------------------------------------------------

    async def get_dispatch(self, dispatch_id: str) -> SilentDispatch | None:
        return await self._load(self._DISPATCH_PREFIX + dispatch_id, SilentDispatch)

    async def put_dispatch(self, dispatch: SilentDispatch) -> None:
        await self._save(self._DISPATCH_PREFIX + dispatch.id, dispatch)

    # -- Lifecycle -------------------------------------------------------------

    async def ping(self) -> str:
        """Return the name of the backend in use.

        Raises
        ------
        SessionStoreUnavailableError
            Redis is the chosen backend and does not answer.
        """
        await self._check_redis()
        if self._redis_available and self._redis is not None:
            if not await self._redis.ping():
                raise SessionStoreUnavailableError("ping")
            return "redis"
        return "memory"

    async def close(self) -> None:
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.close()
