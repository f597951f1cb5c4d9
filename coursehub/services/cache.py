from __future__ import annotations

import asyncio
from enum import Enum
from fnmatch import fnmatchcase
import functools
import json
import logging
import time
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from coursehub.core.config import Settings, get_settings
from coursehub.core.errors import CacheBackendError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...


class MemoryCacheBackend:
    # Process-local TTL store bounded by max_entries; the clock is injectable so expiry is testable without sleeping.
    def __init__(self, *, clock: Callable[[], float] = time.monotonic, max_entries: int = 10_000) -> None:
        self._clock = clock
        self._max_entries = max(1, max_entries)
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                self._entries.pop(key, None)
                return None
            return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._lock:
            now = self._clock()
            if key not in self._entries and len(self._entries) >= self._max_entries:
                self._evict(now)
            self._entries[key] = (value, now + max(1, int(ttl_seconds)))

    def _evict(self, now: float) -> None:
        # Drop expired entries first; when none have expired, drop the one closest to expiry.
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) >= self._max_entries:
            soonest = min(self._entries, key=lambda key: self._entries[key][1])
            del self._entries[soonest]

    async def delete_pattern(self, pattern: str) -> int:
        async with self._lock:
            matched = [key for key in self._entries if fnmatchcase(key, pattern)]
            for key in matched:
                self._entries.pop(key, None)
            return len(matched)

    def keys(self) -> list[str]:
        return sorted(self._entries)


class RedisCacheBackend:
    # Shared cache for multi-replica deployments; every driver error surfaces as CacheBackendError.
    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheBackend":
        return cls(Redis.from_url(url, encoding="utf-8", decode_responses=True))

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(key)
        except (RedisError, OSError) as exc:
            raise CacheBackendError(f"cache get failed for {key}") from exc
        if isinstance(value, (bytes, bytearray)):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.set(key, value, ex=max(1, int(ttl_seconds)))
        except (RedisError, OSError) as exc:
            raise CacheBackendError(f"cache set failed for {key}") from exc

    async def delete_pattern(self, pattern: str) -> int:
        # SCAN keeps invalidation non-blocking on large keyspaces, unlike KEYS.
        try:
            keys = [key async for key in self._redis.scan_iter(match=pattern, count=500)]
            if not keys:
                return 0
            return int(await self._redis.delete(*keys))
        except (RedisError, OSError) as exc:
            raise CacheBackendError(f"cache invalidation failed for {pattern}") from exc


def build_cache_backend(settings: Settings | None = None) -> CacheBackend:
    settings = settings or get_settings()
    if settings.cache_backend.strip().lower() == "redis":
        return RedisCacheBackend.from_url(settings.redis_url)
    return MemoryCacheBackend(max_entries=settings.cache_memory_max_entries)


def _token(value: Any) -> str:
    # Stable, order-independent serialization for one argument.
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    return json.dumps(value, sort_keys=True, default=str, separators=(",", ":"))


def fingerprint(args: tuple[Any, ...], kwargs: dict[str, Any]) -> str:
    parts = [_token(arg) for arg in args]
    parts.extend(f"{name}={_token(kwargs[name])}" for name in sorted(kwargs))
    return ":".join(parts)


class CacheLayer:
    """Read-through cache with explicit, synchronous invalidation.

    Keys are ``{namespace}:{key_prefix}:{fingerprint}`` and ``key_prefix``
    starts with the entity kind (``course:detail``). Each kind has a
    generation counter: ``invalidate`` bumps it before deleting keys, and a
    read only stores its result when the generation it observed before
    calling the wrapped function is still current, so a read that raced a
    write cannot repopulate the cache with the pre-write value.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        namespace: str | None = None,
        enabled: bool | None = None,
        default_ttl_s: int | None = None,
    ) -> None:
        settings = get_settings()
        self._backend = backend
        self._namespace = (namespace or settings.cache_key_namespace).rstrip(":")
        self._enabled = settings.cache_enabled if enabled is None else enabled
        self._default_ttl_s = default_ttl_s or settings.cache_default_ttl_s
        self._generations: dict[str, int] = {}

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    def build_key(self, key_prefix: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> str:
        return f"{self._namespace}:{key_prefix}:{fingerprint(args, kwargs)}"

    def generation(self, entity_kind: str) -> int:
        return self._generations.get(entity_kind, 0)

    def cached(
        self,
        key_prefix: str,
        ttl_seconds: int | None,
        fn: Callable[..., Awaitable[T]],
        *,
        model: type[BaseModel] | None = None,
    ) -> Callable[..., Awaitable[T]]:
        entity_kind = key_prefix.split(":", 1)[0]
        ttl = ttl_seconds or self._default_ttl_s

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            if not self._enabled:
                return await fn(*args, **kwargs)
            key = self.build_key(key_prefix, args, kwargs)
            try:
                raw = await self._backend.get(key)
            except CacheBackendError as exc:
                # Serve from the source of truth while the cache is unavailable.
                logger.warning("cache_read_failed key=%s", key, exc_info=exc)
                return await fn(*args, **kwargs)
            if raw is not None:
                try:
                    return self._decode(raw, model)
                except (ValueError, ValidationError) as exc:
                    logger.warning("cache_decode_failed key=%s", key, exc_info=exc)

            observed = self.generation(entity_kind)
            value = await fn(*args, **kwargs)
            if value is None or self.generation(entity_kind) != observed:
                return value
            try:
                await self._backend.set(key, self._encode(value, model), ttl)
            except CacheBackendError as exc:
                logger.warning("cache_write_failed key=%s", key, exc_info=exc)
            return value

        return wrapper

    async def invalidate(self, entity_kind: str, entity_id: str | None = None) -> int:
        # Bump first so in-flight reads of this kind stop short of storing.
        self._generations[entity_kind] = self.generation(entity_kind) + 1
        if entity_id is None:
            patterns = [f"{self._namespace}:{entity_kind}:*"]
        else:
            patterns = [
                f"{self._namespace}:{entity_kind}:*:{entity_id}",
                f"{self._namespace}:{entity_kind}:*:{entity_id}:*",
            ]
        removed = 0
        for pattern in patterns:
            try:
                removed += await self._backend.delete_pattern(pattern)
            except CacheBackendError as exc:
                logger.warning("cache_invalidate_failed pattern=%s", pattern, exc_info=exc)
        logger.debug("cache_invalidated kind=%s id=%s removed=%s", entity_kind, entity_id, removed)
        return removed

    def _encode(self, value: Any, model: type[BaseModel] | None) -> str:
        if model is not None:
            if isinstance(value, list):
                value = [item.model_dump(mode="json") for item in value]
            else:
                value = value.model_dump(mode="json")
        return json.dumps(value, default=str, separators=(",", ":"))

    def _decode(self, raw: str, model: type[BaseModel] | None) -> Any:
        data = json.loads(raw)
        if model is None:
            return data
        if isinstance(data, list):
            return [model.model_validate(item) for item in data]
        return model.model_validate(data)
