"""Ephemeral cache backends: shared Redis or local JSON files.

Both backends store opaque string payloads with a TTL.  ``RedisCache`` turns
every redis-py error into ``CacheUnavailable`` so the cache layer can degrade
to durable-store-only reads.  ``FileCache`` is the fallback when no Redis is
configured or reachable; it raises ``CacheUnavailable`` on filesystem errors
the same way.
"""

import contextlib
import fnmatch
import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Protocol

import redis

from hr_metrics.config import Settings
from hr_metrics.errors import CacheUnavailable

logger = logging.getLogger(__name__)


class EphemeralCache(Protocol):
    name: str

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_pattern(self, pattern: str) -> int: ...

    def ping(self) -> bool: ...


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisCache:
    name = "redis"

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    def get(self, key: str) -> str | None:
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            raise CacheUnavailable(f"Redis get failed: {exc}") from exc
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self._client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as exc:
            raise CacheUnavailable(f"Redis set failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise CacheUnavailable(f"Redis delete failed: {exc}") from exc

    def delete_pattern(self, pattern: str) -> int:
        try:
            keys = list(self._client.scan_iter(match=pattern))
            if not keys:
                return 0
            return int(self._client.delete(*keys))
        except redis.RedisError as exc:
            raise CacheUnavailable(f"Redis pattern delete failed: {exc}") from exc

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False


# ---------------------------------------------------------------------------
# File-backed fallback
# ---------------------------------------------------------------------------


class FileCache:
    """One JSON file per key: ``{"key", "value", "expires_at"}``.

    Expired entries are never returned; they are removed on read.
    """

    name = "file"

    def __init__(self, directory: str, clock: Callable[[], datetime] | None = None) -> None:
        self._directory = directory
        self._clock = clock or (lambda: datetime.now(UTC))
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        digest = hashlib.md5(key.encode("utf-8"), usedforsecurity=False).hexdigest()
        return os.path.join(self._directory, f"{digest}.json")

    def _read(self, path: str) -> dict[str, str] | None:
        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, UnicodeDecodeError, OSError):
            self._discard(path)
            return None
        if not isinstance(data, dict) or not isinstance(data.get("value"), str):
            self._discard(path)
            return None
        return data

    def _discard(self, path: str) -> None:
        logger.warning("Unreadable cache file %s, discarding", path)
        with contextlib.suppress(OSError):
            os.unlink(path)

    def get(self, key: str) -> str | None:
        path = self._path(key)
        entry = self._read(path)
        if entry is None:
            return None
        try:
            expires_at = datetime.fromisoformat(entry["expires_at"])
            expired = expires_at <= self._clock()
        except (KeyError, TypeError, ValueError):
            self._discard(path)
            return None
        if expired:
            with contextlib.suppress(OSError):
                os.unlink(path)
            return None
        return entry["value"]

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        payload = {"key": key, "value": value, "expires_at": expires_at.isoformat()}

        # Atomic write: write to temp file then rename
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self._directory, suffix=".tmp")
        except OSError as exc:
            raise CacheUnavailable(f"File cache write failed: {exc}") from exc
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f)
            os.replace(tmp_path, self._path(key))
        except OSError as exc:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise CacheUnavailable(f"File cache write failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            os.unlink(self._path(key))
        except FileNotFoundError:
            return
        except OSError as exc:
            raise CacheUnavailable(f"File cache delete failed: {exc}") from exc

    def delete_pattern(self, pattern: str) -> int:
        try:
            filenames = os.listdir(self._directory)
        except OSError as exc:
            raise CacheUnavailable(f"File cache unavailable: {exc}") from exc
        removed = 0
        for filename in filenames:
            if not filename.endswith(".json"):
                continue
            path = os.path.join(self._directory, filename)
            entry = self._read(path)
            if entry is None or not fnmatch.fnmatchcase(str(entry.get("key", "")), pattern):
                continue
            try:
                os.unlink(path)
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise CacheUnavailable(f"File cache delete failed: {exc}") from exc
            removed += 1
        return removed

    def ping(self) -> bool:
        return os.access(self._directory, os.W_OK)


def create_ephemeral_cache(settings: Settings) -> EphemeralCache:
    """Redis when configured and reachable, otherwise the file cache."""
    if settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url, socket_timeout=5)
            client.ping()
            logger.info("Using Redis ephemeral cache at %s", settings.redis_url)
            return RedisCache(client)
        except redis.RedisError as exc:
            logger.warning("Redis unavailable (%s), falling back to file cache", exc)
    return FileCache(settings.file_cache_dir)
