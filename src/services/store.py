"""Durable key-value storage seam with Redis and in-memory backends.

The core never assumes a particular persistence engine.  It talks to a
:class:`KeyValueStore` (raw bytes, get/set/remove) through the
:class:`JsonStateStore` facade, which adds a namespace, orjson
serialisation of pydantic models and a single error type.

Unlike a cache, this store must not lose data silently: there is no LRU
eviction and no fallback from Redis to memory.  Backend failures surface
as :class:`~src.services.errors.StoreUnavailableError`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any, Protocol, TypeVar, runtime_checkable

import orjson
import structlog
from pydantic import BaseModel

from src.services.errors import StoreUnavailableError

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Store backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class KeyValueStore(Protocol):
    """Async durable key-value interface."""

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes) -> None: ...

    async def remove(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisKeyValueStore:
    """Redis-backed store using ``redis.asyncio`` with connection pooling."""

    __slots__ = ("_pool", "_redis")

    def __init__(self, url: str = "redis://localhost:6379/0", *, max_connections: int = 20) -> None:
        import redis.asyncio as aioredis

        self._pool = aioredis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=False,
        )
        self._redis = aioredis.Redis(connection_pool=self._pool)

    # -- KeyValueStore interface -----------------------------------------------

    async def get(self, key: str) -> bytes | None:
        return await self._redis.get(key)

    async def set(self, key: str, value: bytes) -> None:
        await self._redis.set(key, value)

    async def remove(self, key: str) -> None:
        await self._redis.delete(key)

    # -- Lifecycle -------------------------------------------------------------

    async def close(self) -> None:
        await self._redis.aclose()
        await self._pool.aclose()


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryKeyValueStore:
    """Process-local dict store.

    Guarded by an :class:`asyncio.Lock` (sufficient for single-process
    async workloads).  Used in development and tests.
    """

    __slots__ = ("_data", "_lock")

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        async with self._lock:
            self._data[key] = value

    async def remove(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    @property
    def size(self) -> int:
        return len(self._data)

    def keys(self) -> list[str]:
        return list(self._data)


# ---------------------------------------------------------------------------
# JsonStateStore  --  public API
# ---------------------------------------------------------------------------


class JsonStateStore:
    """Namespaced JSON facade over a :class:`KeyValueStore`.

    Parameters
    ----------
    backend:
        Raw byte store.
    namespace:
        Prefix prepended to every key (e.g. ``"tumaini:"``).
    """

    __slots__ = ("_backend", "_index_lock", "_namespace")

    def __init__(self, backend: KeyValueStore, *, namespace: str = "") -> None:
        self._backend = backend
        self._namespace = namespace
        self._index_lock = asyncio.Lock()

    @property
    def backend(self) -> KeyValueStore:
        return self._backend

    # -- Internal helpers ------------------------------------------------------

    def _make_key(self, key: str) -> str:
        if self._namespace:
            return f"{self._namespace}{key}"
        return key

    async def _raw_get(self, key: str) -> bytes | None:
        full_key = self._make_key(key)
        try:
            return await self._backend.get(full_key)
        except Exception as exc:
            logger.error("store.get_failed", key=full_key, exc_info=True)
            raise StoreUnavailableError(f"store read failed for {full_key!r}") from exc

    async def _raw_set(self, key: str, raw: bytes) -> None:
        full_key = self._make_key(key)
        try:
            await self._backend.set(full_key, raw)
        except Exception as exc:
            logger.error("store.set_failed", key=full_key, exc_info=True)
            raise StoreUnavailableError(f"store write failed for {full_key!r}") from exc

    # -- Plain JSON ------------------------------------------------------------

    async def get_json(self, key: str, default: Any = None) -> Any:
        """Retrieve a stored value, deserialised from bytes via *orjson*."""
        raw = await self._raw_get(key)
        if raw is None:
            return default
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            raise StoreUnavailableError(f"corrupt value under {key!r}") from exc

    async def set_json(self, key: str, value: Any) -> None:
        """Serialise *value* via *orjson* and store it."""
        await self._raw_set(key, orjson.dumps(value))

    async def remove(self, key: str) -> None:
        full_key = self._make_key(key)
        try:
            await self._backend.remove(full_key)
        except Exception as exc:
            logger.error("store.remove_failed", key=full_key, exc_info=True)
            raise StoreUnavailableError(f"store remove failed for {full_key!r}") from exc

    # -- Pydantic models -------------------------------------------------------

    async def get_model(self, key: str, model: type[ModelT]) -> ModelT | None:
        data = await self.get_json(key)
        if data is None:
            return None
        return model.model_validate(data)

    async def set_model(self, key: str, value: BaseModel) -> None:
        await self.set_json(key, value.model_dump(mode="json"))

    async def get_models(self, key: str, model: type[ModelT]) -> list[ModelT]:
        data = await self.get_json(key, default=[])
        return [model.model_validate(item) for item in data]

    async def set_models(self, key: str, values: Iterable[BaseModel]) -> None:
        await self.set_json(key, [v.model_dump(mode="json") for v in values])

    # -- Ordered indexes -------------------------------------------------------

    async def get_index(self, key: str) -> list[str]:
        return list(await self.get_json(key, default=[]))

    async def add_to_index(self, key: str, member: str) -> bool:
        """Append *member* to the ordered index under *key* if absent.

        Returns True if the index changed.
        """
        async with self._index_lock:
            members = await self.get_index(key)
            if member in members:
                return False
            members.append(member)
            await self.set_json(key, members)
            return True


def create_state_store(redis_url: str | None, *, namespace: str = "") -> JsonStateStore:
    """Build the store from settings: Redis when a URL is configured."""
    backend: KeyValueStore
    if redis_url:
        backend = RedisKeyValueStore(url=redis_url)
        logger.info("store.redis_backend", namespace=namespace)
    else:
        backend = InMemoryKeyValueStore()
        logger.info("store.inmemory_backend", namespace=namespace)
    return JsonStateStore(backend, namespace=namespace)
