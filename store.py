"""Key-value persistence with per-key expiry.

Three backends share one async interface:

* `MemoryStore` keeps everything in the current process (tests, one-off runs);
* `JsonFileStore` persists to a JSON document on disk, the default for a
  single host driven by cron;
* `RedisStore` delegates to Redis, where `SET NX EX` gives the rate lock a
  real compare-and-set.
"""

from __future__ import annotations

import abc
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from redis.asyncio import Redis, from_url
from redis.exceptions import RedisError

from settings import Settings

__all__ = [
    "StoreError",
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "RedisStore",
    "build_store",
]

LOGGER = logging.getLogger("xmlrpc-pinger")

Clock = Callable[[], float]


class StoreError(RuntimeError):
    """Raised when the backing store cannot be read or written."""


class KeyValueStore(abc.ABC):
    """String values with an optional time-to-live in seconds."""

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abc.abstractmethod
    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    @abc.abstractmethod
    async def put_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Write only when no live value exists; return True if written."""

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def close(self) -> None:
        return None

    async def get_json(self, key: str) -> Any:
        """Decode a JSON value, treating unreadable content as missing."""
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning("Ignoring malformed JSON under %s", key)
            return None

    async def put_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self.put(key, json.dumps(value, ensure_ascii=False), ttl)


def _expiry(clock: Clock, ttl: Optional[int]) -> Optional[float]:
    return clock() + ttl if ttl else None


class MemoryStore(KeyValueStore):
    """In-process store; put_if_absent is atomic within one event loop."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        self._data[key] = (str(value), _expiry(self._clock, ttl))

    async def put_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        if self._live(key) is not None:
            return False
        self._data[key] = (str(value), _expiry(self._clock, ttl))
        return True

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        """Return the live keys (mostly useful for assertions)."""
        return [k for k in list(self._data) if self._live(k) is not None]


class JsonFileStore(KeyValueStore):
    """Store backed by a JSON file of `{key: {"value": ..., "expires_at": ...}}`.

    put_if_absent is a read-then-write: two processes racing on the same file
    can both win. Use Redis when overlapping triggers are expected.
    """

    def __init__(self, path: Path, clock: Clock = time.time) -> None:
        self.path = Path(path)
        self._clock = clock

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            LOGGER.warning("KV file %s is not valid JSON; starting empty", self.path)
            return {}
        except OSError as exc:
            raise StoreError(f"cannot read {self.path}: {exc}") from exc
        data: Dict[str, Dict[str, Any]] = {}
        if isinstance(raw, dict):
            now = self._clock()
            for key, entry in raw.items():
                if not isinstance(entry, dict) or "value" not in entry:
                    continue
                expires_at = entry.get("expires_at")
                if expires_at is not None:
                    try:
                        expired = float(expires_at) <= now
                    except (TypeError, ValueError):
                        LOGGER.warning("Dropping %s from %s: bad expires_at %r", key, self.path, expires_at)
                        continue
                    if expired:
                        continue
                data[str(key)] = entry
        return data

    def _store(self, data: Dict[str, Dict[str, Any]]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"cannot write {self.path}: {exc}") from exc

    async def get(self, key: str) -> Optional[str]:
        entry = self._load().get(key)
        return None if entry is None else str(entry["value"])

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        data = self._load()
        data[key] = {"value": str(value), "expires_at": _expiry(self._clock, ttl)}
        self._store(data)

    async def put_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        data = self._load()
        if key in data:
            return False
        data[key] = {"value": str(value), "expires_at": _expiry(self._clock, ttl)}
        self._store(data)
        return True

    async def delete(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._store(data)


class RedisStore(KeyValueStore):
    def __init__(self, client: Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._redis.get(key)
        except RedisError as exc:
            raise StoreError(f"redis get {key} failed: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        try:
            await self._redis.set(key, value, ex=ttl or None)
        except RedisError as exc:
            raise StoreError(f"redis set {key} failed: {exc}") from exc

    async def put_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        try:
            acquired = await self._redis.set(key, value, ex=ttl or None, nx=True)
        except RedisError as exc:
            raise StoreError(f"redis set nx {key} failed: {exc}") from exc
        return bool(acquired)

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as exc:
            raise StoreError(f"redis delete {key} failed: {exc}") from exc

    async def close(self) -> None:
        await self._redis.aclose()


def build_store(settings: Settings) -> KeyValueStore:
    """Instantiate the backend selected by `KV_BACKEND`."""
    backend = settings.kv_backend
    if backend == "redis":
        if not settings.redis_url:
            raise StoreError("KV_BACKEND=redis requires REDIS_URL")
        return RedisStore.from_url(settings.redis_url)
    if backend == "memory":
        return MemoryStore()
    if backend != "file":
        LOGGER.warning("Unknown KV_BACKEND %r; using the JSON file store", backend)
    return JsonFileStore(Path(settings.kv_path))
