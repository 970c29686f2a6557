from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 15 * 60


class PermissionCache(Protocol):
    def get(self, user_id: str) -> list[str] | None: ...

    def set(self, user_id: str, permissions: list[str]) -> None: ...

    def invalidate(self, user_id: str) -> None: ...

    def clear(self) -> None: ...


class PermissionSource(Protocol):
    def get_user_permissions(self, *, user_id: str) -> list[str]: ...


class InMemoryPermissionCache:
    """Per-process TTL cache of user permission names.

    Entries are not refreshed when a user's role changes; they expire after
    ``ttl_seconds`` or when ``invalidate``/``clear`` is called.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, tuple[float, list[str]]] = {}

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def get(self, user_id: str) -> list[str] | None:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            expires_at, permissions = entry
            if self._clock() >= expires_at:
                self._entries.pop(user_id, None)
                return None
            return list(permissions)

    def set(self, user_id: str, permissions: list[str]) -> None:
        with self._lock:
            self._entries[user_id] = (self._clock() + self._ttl_seconds, list(permissions))

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def _import_redis() -> Any:
    try:
        import redis  # type: ignore
    except ImportError as exc:
        raise RuntimeError("redis is required for PERMISSION_CACHE_BACKEND=redis; install redis>=5") from exc
    return redis


class RedisPermissionCache:
    """Shared permission cache; expiry is delegated to redis SETEX."""

    def __init__(
        self,
        *,
        dsn: str = "",
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        namespace: str = "sat",
        client: Any | None = None,
    ) -> None:
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._namespace = namespace.strip() or "sat"
        if client is not None:
            self._client = client
            return
        if not dsn.strip():
            raise ValueError("REDIS_DSN must be provided for redis permission cache")
        redis = _import_redis()
        self._client = redis.Redis.from_url(dsn.strip(), decode_responses=True)

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def _key(self, user_id: str) -> str:
        return f"{self._namespace}:permissions:{user_id}"

    def get(self, user_id: str) -> list[str] | None:
        raw = self._client.get(self._key(user_id))
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("permission_cache_corrupt_entry user_id=%s", user_id)
            return None
        if not isinstance(value, list):
            return None
        return [str(x) for x in value]

    def set(self, user_id: str, permissions: list[str]) -> None:
        self._client.setex(self._key(user_id), self._ttl_seconds, json.dumps(list(permissions)))

    def invalidate(self, user_id: str) -> None:
        self._client.delete(self._key(user_id))

    def clear(self) -> None:
        keys = list(self._client.scan_iter(match=f"{self._namespace}:permissions:*"))
        if keys:
            self._client.delete(*keys)


class PermissionResolver:
    def __init__(self, *, cache: PermissionCache, repository: PermissionSource) -> None:
        self._cache = cache
        self._repository = repository

    @property
    def cache(self) -> PermissionCache:
        return self._cache

    def permissions_for(self, user_id: str) -> list[str]:
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached
        permissions = sorted(set(self._repository.get_user_permissions(user_id=user_id)))
        self._cache.set(user_id, permissions)
        return permissions

    def has_permission(self, user_id: str, permission: str) -> bool:
        return permission in self.permissions_for(user_id)


def _ttl_from_env(env: Mapping[str, str]) -> int:
    raw = env.get("PERMISSION_CACHE_TTL_SECONDS", "").strip()
    if not raw:
        return DEFAULT_TTL_SECONDS
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_TTL_SECONDS
    return value if value >= 1 else DEFAULT_TTL_SECONDS


def create_permission_cache_from_env(
    environ: Mapping[str, str] | None = None,
) -> InMemoryPermissionCache | RedisPermissionCache:
    env = os.environ if environ is None else environ
    backend = env.get("PERMISSION_CACHE_BACKEND", "memory").strip().lower() or "memory"
    ttl_seconds = _ttl_from_env(env)
    if backend == "memory":
        return InMemoryPermissionCache(ttl_seconds=ttl_seconds)
    if backend == "redis":
        dsn = env.get("REDIS_DSN", "").strip()
        if not dsn:
            raise ValueError("REDIS_DSN must be set when PERMISSION_CACHE_BACKEND=redis")
        namespace = env.get("PERMISSION_CACHE_KEY_PREFIX", "sat")
        return RedisPermissionCache(dsn=dsn, ttl_seconds=ttl_seconds, namespace=namespace)
    raise RuntimeError(f"unsupported permission cache backend: {backend}")
