from __future__ import annotations

import fnmatch
from types import SimpleNamespace

import pytest

from assessment_recorder.config import Settings
from assessment_recorder.kv_store import (
    InMemoryKeyValueBackend,
    RedisKeyValueBackend,
    StorageError,
    build_kv_backend,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeRedisClient:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.expiry: dict[str, int] = {}

    def get(self, key: str):
        return self.values.get(key)

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.values[key] = value
        if ex is not None:
            self.expiry[key] = ex
        else:
            self.expiry.pop(key, None)
        return True

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if key in self.values:
                del self.values[key]
                self.expiry.pop(key, None)
                removed += 1
        return removed

    def scan_iter(self, match: str):
        return iter([key for key in self.values if fnmatch.fnmatchcase(key, match)])

    def ttl(self, key: str) -> int:
        if key not in self.values:
            return -2
        return self.expiry.get(key, -1)


def test_memory_backend_expires_values_after_ttl() -> None:
    clock = FakeClock()
    backend = InMemoryKeyValueBackend(clock=clock)
    backend.set("file:a", "manifest", ttl_seconds=60)
    backend.set("criteria:current", "value")

    assert backend.get("file:a") == "manifest"
    assert backend.ttl("file:a") == 60
    assert backend.ttl("criteria:current") is None

    clock.now += 61
    assert backend.get("file:a") is None
    assert backend.keys("file:") == []
    assert backend.get("criteria:current") == "value"


def test_memory_backend_lists_keys_by_prefix_in_sorted_order() -> None:
    backend = InMemoryKeyValueBackend()
    for key in ("filechunk:x:1", "filechunk:x:0", "filechunk:y:0", "file:x"):
        backend.set(key, "v")

    assert backend.keys("filechunk:x:") == ["filechunk:x:0", "filechunk:x:1"]
    assert backend.delete("filechunk:x:0", "filechunk:x:1", "missing") == 2
    assert backend.keys("filechunk:") == ["filechunk:y:0"]


def test_memory_backend_rejects_non_positive_ttl() -> None:
    backend = InMemoryKeyValueBackend()
    with pytest.raises(StorageError):
        backend.set("key", "value", ttl_seconds=0)


def test_redis_backend_applies_namespace_and_strips_it_from_listed_keys() -> None:
    client = FakeRedisClient()
    backend = RedisKeyValueBackend(url="", namespace="recorder:", client=client)

    backend.set("file:a", "manifest", ttl_seconds=30)
    backend.set("filechunk:a:0", "chunk", ttl_seconds=30)

    assert client.values["recorder:file:a"] == "manifest"
    assert client.expiry["recorder:file:a"] == 30
    assert backend.get("file:a") == "manifest"
    assert backend.keys("filechunk:a:") == ["filechunk:a:0"]
    assert backend.ttl("file:a") == 30
    assert backend.ttl("missing") is None
    assert backend.delete("file:a", "filechunk:a:0") == 2
    assert backend.get("file:a") is None


def test_build_kv_backend_uses_redis_driver_from_url(monkeypatch: pytest.MonkeyPatch) -> None:
    client = FakeRedisClient()
    seen: dict[str, object] = {}

    def from_url(url: str, **kwargs):
        seen["url"] = url
        seen.update(kwargs)
        return client

    fake_module = SimpleNamespace(Redis=SimpleNamespace(from_url=from_url))
    monkeypatch.setattr("assessment_recorder.kv_store._import_redis", lambda: fake_module)

    backend = build_kv_backend(Settings(kv_backend="Redis", redis_url="redis://cache:6379/1"))
    backend.set("criteria:current", "{}")

    assert backend.backend_name == "redis"
    assert seen == {"url": "redis://cache:6379/1", "decode_responses": True}
    assert client.values["criteria:current"] == "{}"


def test_build_kv_backend_rejects_unknown_backend() -> None:
    with pytest.raises(StorageError, match="Unsupported KV_BACKEND"):
        build_kv_backend(Settings(kv_backend="sqlite"))


def test_redis_backend_requires_url() -> None:
    with pytest.raises(StorageError, match="REDIS_URL"):
        RedisKeyValueBackend(url="  ")
