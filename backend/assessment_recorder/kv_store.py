from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Protocol

from assessment_recorder.config import Settings

logger = logging.getLogger("recorder.kv")


class StorageError(RuntimeError):
    """Raised when the key-value backend is misconfigured or a read/write fails."""


class KeyValueBackend(Protocol):
    backend_name: str

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        ...

    def delete(self, *keys: str) -> int:
        ...

    def keys(self, prefix: str) -> list[str]:
        ...

    def ttl(self, key: str) -> int | None:
        ...


class InMemoryKeyValueBackend:
    """Process-local backend with lazy TTL expiry. Used for development and tests."""

    backend_name = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._values: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.RLock()

    def _live_entry(self, key: str) -> tuple[str, float | None] | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._values[key]
            return None
        return entry

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live_entry(key)
            return entry[0] if entry else None

    def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise StorageError(f"TTL must be positive (key={key}, ttl={ttl_seconds}).")
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._values[key] = (value, expires_at)

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._live_entry(key) is not None:
                    del self._values[key]
                    removed += 1
        return removed

    def keys(self, prefix: str) -> list[str]:
        with self._lock:
            candidates = [key for key in self._values if key.startswith(prefix)]
            return sorted(key for key in candidates if self._live_entry(key) is not None)

    def ttl(self, key: str) -> int | None:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None or entry[1] is None:
                return None
            return max(0, int(entry[1] - self._clock()))


def _import_redis() -> Any:
    try:
        import redis  # type: ignore
    except ImportError as exc:
        raise StorageError("redis is required for KV_BACKEND=redis; install redis>=5") from exc
    return redis


class RedisKeyValueBackend:
    backend_name = "redis"

    def __init__(self, *, url: str, namespace: str = "", client: Any | None = None) -> None:
        if client is None and not url.strip():
            raise StorageError("REDIS_URL must be set when KV_BACKEND=redis.")
        self._namespace = namespace.strip().strip(":")
        if client is None:
            redis = _import_redis()
            client = redis.Redis.from_url(url.strip(), decode_responses=True)
        self._client = client

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    def _strip(self, key: str) -> str:
        if self._namespace and key.startswith(f"{self._namespace}:"):
            return key[len(self._namespace) + 1 :]
        return key

    def get(self, key: str) -> str | None:
        try:
            value = self._client.get(self._key(key))
        except Exception as exc:  # pragma: no cover - depends on a live redis server
            raise StorageError(f"Redis GET failed (key={key}): {exc}") from exc
        if value is None:
            return None
        return value if isinstance(value, str) else value.decode("utf-8")

    def set(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        try:
            self._client.set(self._key(key), value, ex=ttl_seconds)
        except Exception as exc:  # pragma: no cover - depends on a live redis server
            raise StorageError(f"Redis SET failed (key={key}): {exc}") from exc

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(self._client.delete(*[self._key(key) for key in keys]))
        except Exception as exc:  # pragma: no cover - depends on a live redis server
            raise StorageError(f"Redis DEL failed: {exc}") from exc

    def keys(self, prefix: str) -> list[str]:
        try:
            found = self._client.scan_iter(match=f"{self._key(prefix)}*")
            return sorted(self._strip(key if isinstance(key, str) else key.decode("utf-8")) for key in found)
        except Exception as exc:  # pragma: no cover - depends on a live redis server
            raise StorageError(f"Redis SCAN failed (prefix={prefix}): {exc}") from exc

    def ttl(self, key: str) -> int | None:
        remaining = int(self._client.ttl(self._key(key)))
        # -1: key without expiry, -2: missing key
        return remaining if remaining >= 0 else None


def _normalize_backend(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized in {"memory", "inmemory", "local"}:
        return "memory"
    if normalized in {"redis", "upstash"}:
        return "redis"
    raise StorageError(f"Unsupported KV_BACKEND '{value}'. Use 'memory' or 'redis'.")


def build_kv_backend(settings: Settings) -> KeyValueBackend:
    backend = _normalize_backend(settings.kv_backend)
    if backend == "memory":
        if settings.app_env.strip().lower() == "production":
            logger.warning(
                "kv_backend_memory_in_production",
                extra={"event": "kv_backend_memory_in_production"},
            )
        return InMemoryKeyValueBackend()
    return RedisKeyValueBackend(url=settings.redis_url, namespace=settings.kv_namespace)
