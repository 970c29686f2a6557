from __future__ import annotations

import pytest

from achievement_tracker.permission_cache import (
    InMemoryPermissionCache,
    PermissionResolver,
    RedisPermissionCache,
    create_permission_cache_from_env,
)
from achievement_tracker.repositories.permissions import InMemoryPermissionsRepository


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class CountingRepository:
    def __init__(self, permissions: dict[str, list[str]]):
        self.permissions = permissions
        self.calls = 0

    def get_user_permissions(self, *, user_id: str) -> list[str]:
        self.calls += 1
        return list(self.permissions.get(user_id, []))


def test_inmemory_cache_expires_after_ttl():
    clock = FakeClock()
    cache = InMemoryPermissionCache(ttl_seconds=900, clock=clock)
    cache.set("u1", ["achievements.read"])
    clock.now += 899
    assert cache.get("u1") == ["achievements.read"]
    clock.now += 1
    assert cache.get("u1") is None


def test_resolver_reads_through_and_keeps_stale_entry_until_invalidated():
    clock = FakeClock()
    repo = CountingRepository({"u1": ["achievements.read"]})
    resolver = PermissionResolver(cache=InMemoryPermissionCache(ttl_seconds=900, clock=clock), repository=repo)

    assert resolver.has_permission("u1", "achievements.read") is True
    assert resolver.permissions_for("u1") == ["achievements.read"]
    assert repo.calls == 1

    repo.permissions["u1"] = ["achievements.read", "achievements.verify"]
    assert resolver.has_permission("u1", "achievements.verify") is False

    resolver.cache.invalidate("u1")
    assert resolver.has_permission("u1", "achievements.verify") is True
    assert repo.calls == 2

    clock.now += 901
    resolver.permissions_for("u1")
    assert repo.calls == 3


def test_resolver_caches_empty_permission_sets():
    repo = CountingRepository({})
    resolver = PermissionResolver(cache=InMemoryPermissionCache(), repository=repo)
    assert resolver.permissions_for("ghost") == []
    assert resolver.permissions_for("ghost") == []
    assert repo.calls == 1


def test_inmemory_permissions_repository_role_mapping():
    repo = InMemoryPermissionsRepository({"lect_1": "lecturer", "stud_1": "student"})
    assert repo.get_user_permissions(user_id="lect_1") == ["achievements.read", "achievements.verify"]
    assert "achievements.verify" not in repo.get_user_permissions(user_id="stud_1")
    assert repo.get_user_permissions(user_id="nobody") == []


class FakeRedis:
    def __init__(self):
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key: str):
        return self.values.get(key)

    def setex(self, key: str, ttl: int, value: str):
        self.values[key] = value
        self.ttls[key] = ttl

    def delete(self, *keys: str):
        for key in keys:
            self.values.pop(key, None)

    def scan_iter(self, match: str):
        prefix = match.rstrip("*")
        return [key for key in list(self.values) if key.startswith(prefix)]


def test_redis_cache_uses_setex_and_namespace():
    client = FakeRedis()
    cache = RedisPermissionCache(client=client, ttl_seconds=60, namespace="sat_test")
    cache.set("u1", ["achievements.read"])
    assert client.ttls == {"sat_test:permissions:u1": 60}
    assert cache.get("u1") == ["achievements.read"]

    client.values["sat_test:permissions:u2"] = "{broken"
    assert cache.get("u2") is None

    cache.clear()
    assert client.values == {}


def test_create_permission_cache_from_env():
    cache = create_permission_cache_from_env({"PERMISSION_CACHE_TTL_SECONDS": "bogus"})
    assert isinstance(cache, InMemoryPermissionCache)
    assert cache.ttl_seconds == 900

    with pytest.raises(ValueError, match="REDIS_DSN"):
        create_permission_cache_from_env({"PERMISSION_CACHE_BACKEND": "redis"})
    with pytest.raises(RuntimeError, match="unsupported permission cache backend"):
        create_permission_cache_from_env({"PERMISSION_CACHE_BACKEND": "memcached"})


def test_redis_cache_from_env_uses_lazy_import(monkeypatch):
    created: dict[str, object] = {}

    class FakeRedisModule:
        class Redis:
            @staticmethod
            def from_url(dsn: str, decode_responses: bool):
                created["dsn"] = dsn
                created["decode_responses"] = decode_responses
                return FakeRedis()

    monkeypatch.setattr("achievement_tracker.permission_cache._import_redis", lambda: FakeRedisModule)
    cache = create_permission_cache_from_env(
        {
            "PERMISSION_CACHE_BACKEND": "redis",
            "REDIS_DSN": "redis://localhost:6379/0",
            "PERMISSION_CACHE_TTL_SECONDS": "120",
        }
    )
    assert isinstance(cache, RedisPermissionCache)
    assert cache.ttl_seconds == 120
    assert created == {"dsn": "redis://localhost:6379/0", "decode_responses": True}
