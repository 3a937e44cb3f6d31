"""
Gateway State Stores
====================

Explicit store interfaces injected into the gateway components:

- ``AdmissionStore``: per-user quota windows with atomic read-modify-write
- ``CacheStore``: per-user analysis results with merge (insert-if-live-absent) writes
- ``ErrorReportStore``: append-mostly audit trail of failed attempts

Each interface has a Redis implementation for production and an
in-memory implementation for development and tests. The in-memory
variants serialize per key with ``asyncio.Lock`` so they honour the
same atomicity contract as the Redis transactions.

A stored document that no longer validates never escapes as a pydantic
error: cache reads treat it as absent and merge writes overwrite it,
while quota windows are reset on update and reported as ``StoreError``
on plain reads.

Architecture: Repository Pattern + Strategy Pattern
"""

import asyncio
import math
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Hashable, NamedTuple, Optional, TypeVar

from loguru import logger

from config.constants import STORE_KEYS
from core.exceptions import StoreError
from core.models import CacheEntry, ErrorReport, ErrorResolution, RateWindow
from infrastructure.redis_client import RedisClient

R = TypeVar("R")

# Receives the current window (None when absent); returns (window to persist or None, outcome)
WindowMutation = Callable[[Optional[RateWindow]], tuple[Optional[RateWindow], R]]


def _to_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class CacheWrite(NamedTuple):
    """Outcome of a merge write."""

    written: bool
    # The live entry under the key afterwards: ours when written, else the one kept
    stored: Optional[CacheEntry]


def _decode_entry(data: Any, key: str) -> Optional[CacheEntry]:
    if data is None:
        return None
    try:
        return CacheEntry.model_validate(data)
    except ValueError as e:
        logger.warning(f"Ignoring unreadable cache entry {key}: {e}")
        return None


def _decode_window(data: Any, key: str) -> Optional[RateWindow]:
    if data is None:
        return None
    try:
        return RateWindow.model_validate(data)
    except ValueError as e:
        logger.warning(f"Resetting unreadable rate window {key}: {e}")
        return None


class KeyedLocks:
    """
    One ``asyncio.Lock`` per key, dropped once nobody holds or awaits it.
    """

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# =============================================================================
# INTERFACES
# =============================================================================


class AdmissionStore(ABC):
    """Durable per-user quota windows."""

    @abstractmethod
    async def update_window(self, user_id: str, mutate: WindowMutation) -> R:
        """Apply ``mutate`` to the user's window as one atomic transaction."""

    @abstractmethod
    async def get_window(self, user_id: str) -> Optional[RateWindow]:
        """Read the user's window without modifying it."""

    @abstractmethod
    async def delete_inactive(self, cutoff_ms: int, limit: int) -> int:
        """Delete up to ``limit`` windows whose last request precedes ``cutoff_ms``."""


class CacheStore(ABC):
    """Durable per-user analysis result entries."""

    @abstractmethod
    async def get(self, user_id: str, fingerprint: str) -> Optional[CacheEntry]:
        """Return the stored entry, expired or not; None when absent or unreadable."""

    @abstractmethod
    async def put_if_absent(self, entry: CacheEntry, now_ms: int) -> CacheWrite:
        """Store ``entry`` unless a live entry already exists for its key."""

    @abstractmethod
    async def purge_expired(self, now_ms: int, limit: int) -> int:
        """Delete up to ``limit`` entries that expired before ``now_ms``."""


class ErrorReportStore(ABC):
    """Audit trail of failed analysis attempts."""

    @abstractmethod
    async def add(self, report: ErrorReport) -> None:
        """Persist a new report."""

    @abstractmethod
    async def attach_resolution(self, error_id: str, resolution: ErrorResolution) -> bool:
        """Update an existing report with its resolution; False if unknown."""

    @abstractmethod
    async def list_since(self, since: datetime) -> list[ErrorReport]:
        """Reports recorded at or after ``since``."""


# =============================================================================
# REDIS IMPLEMENTATIONS
# =============================================================================


class RedisAdmissionStore(AdmissionStore):
    """Quota windows as JSON documents plus a last-activity sorted set."""

    def __init__(self, redis_client: RedisClient):
        self._redis = redis_client
        self._index_key = STORE_KEYS.RATE_ACTIVITY_INDEX.format(prefix=redis_client.key_prefix)

    def _key(self, user_id: str) -> str:
        return STORE_KEYS.RATE_WINDOW.format(prefix=self._redis.key_prefix, user_id=user_id)

    async def update_window(self, user_id: str, mutate: WindowMutation) -> R:
        key = self._key(user_id)

        def apply(current: Optional[Any]):
            updated, outcome = mutate(_decode_window(current, key))
            if updated is None:
                return None, outcome
            return updated.model_dump(mode="json", by_alias=True), outcome

        def index_activity(pipe, value: dict[str, Any]) -> None:
            pipe.zadd(self._index_key, {user_id: value["lastRequest"]})

        return await self._redis.update_json(key, apply, on_write=index_activity)

    async def get_window(self, user_id: str) -> Optional[RateWindow]:
        key = self._key(user_id)
        try:
            data = await self._redis.get_json(key)
            return RateWindow.model_validate(data) if data is not None else None
        except ValueError as e:
            raise StoreError(f"unreadable rate window {key}: {e}", cause=e) from e

    async def delete_inactive(self, cutoff_ms: int, limit: int) -> int:
        user_ids = await self._redis.zrangebyscore(self._index_key, f"({cutoff_ms}", limit)
        if not user_ids:
            return 0

        stale_keys = []
        stale_users = []
        windows = await self._redis.get_many_json([self._key(u) for u in user_ids])
        for user_id, data in zip(user_ids, windows):
            # A window touched after the index read is kept
            last_request = data.get("lastRequest", 0) if isinstance(data, dict) else 0
            if last_request < cutoff_ms:
                stale_keys.append(self._key(user_id))
                stale_users.append(user_id)

        await self._redis.delete(*stale_keys)
        await self._redis.zrem(self._index_key, *stale_users)
        logger.info(f"Deleted {len(stale_users)} inactive rate windows")
        return len(stale_users)


class RedisCacheStore(CacheStore):
    """
    Cache entries as JSON documents plus an expiry sorted set.

    Redis key TTLs are padded by a grace period so logically expired
    entries remain readable and are ignored by the caller, not by Redis.
    """

    def __init__(self, redis_client: RedisClient, grace_seconds: int = 3600):
        self._redis = redis_client
        self._grace_seconds = grace_seconds
        self._index_key = STORE_KEYS.CACHE_EXPIRY_INDEX.format(prefix=redis_client.key_prefix)

    def _key(self, user_id: str, fingerprint: str) -> str:
        return STORE_KEYS.CACHE_ENTRY.format(
            prefix=self._redis.key_prefix, user_id=user_id, fingerprint=fingerprint
        )

    async def get(self, user_id: str, fingerprint: str) -> Optional[CacheEntry]:
        key = self._key(user_id, fingerprint)
        try:
            data = await self._redis.get_json(key)
        except ValueError as e:
            logger.warning(f"Ignoring undecodable cache entry {key}: {e}")
            return None
        return _decode_entry(data, key)

    async def put_if_absent(self, entry: CacheEntry, now_ms: int) -> CacheWrite:
        key = self._key(entry.user_id, entry.fingerprint)
        payload = entry.model_dump(mode="json", by_alias=True)

        def apply(current: Optional[Any]):
            existing = _decode_entry(current, key)
            if existing is not None and not existing.is_expired(now_ms):
                return None, CacheWrite(False, existing)
            return payload, CacheWrite(True, entry)

        def index_expiry(pipe, value: dict[str, Any]) -> None:
            pipe.zadd(self._index_key, {key: value["expiresAt"]})

        ttl = max(1, math.ceil((entry.expires_at - now_ms) / 1000)) + self._grace_seconds
        return await self._redis.update_json(key, apply, ttl=ttl, on_write=index_expiry)

    async def purge_expired(self, now_ms: int, limit: int) -> int:
        keys = await self._redis.zrangebyscore(self._index_key, f"({now_ms}", limit)
        if not keys:
            return 0

        expired = []
        entries = await self._redis.get_many_json(keys)
        for key, data in zip(keys, entries):
            expires_at = data.get("expiresAt", 0) if isinstance(data, dict) else 0
            if expires_at < now_ms:
                expired.append(key)

        await self._redis.delete(*expired)
        await self._redis.zrem(self._index_key, *expired)
        return len(expired)


class RedisErrorReportStore(ErrorReportStore):
    """Error reports as JSON documents plus a timeline sorted set."""

    def __init__(self, redis_client: RedisClient, retention_seconds: int = 7 * 24 * 3600):
        self._redis = redis_client
        self._retention_seconds = retention_seconds
        self._timeline_key = STORE_KEYS.ERROR_TIME_INDEX.format(prefix=redis_client.key_prefix)

    def _key(self, error_id: str) -> str:
        return STORE_KEYS.ERROR_REPORT.format(prefix=self._redis.key_prefix, error_id=error_id)

    async def add(self, report: ErrorReport) -> None:
        await self._redis.set_json(
            self._key(report.error_id),
            report.model_dump(mode="json", by_alias=True),
            ttl=self._retention_seconds,
        )
        await self._redis.zadd(self._timeline_key, {report.error_id: _to_ms(report.timestamp)})

    async def attach_resolution(self, error_id: str, resolution: ErrorResolution) -> bool:
        resolved = resolution.model_dump(mode="json", by_alias=True)

        def apply(current: Optional[dict[str, Any]]):
            if current is None:
                return None, False
            return {**current, "resolution": resolved}, True

        return await self._redis.update_json(
            self._key(error_id), apply, ttl=self._retention_seconds
        )

    async def list_since(self, since: datetime) -> list[ErrorReport]:
        error_ids = await self._redis.zrangebyscore_from(self._timeline_key, _to_ms(since))
        documents = await self._redis.get_many_json([self._key(e) for e in error_ids])

        reports = []
        for error_id, document in zip(error_ids, documents):
            # Documents past retention have vanished while the index still lists them
            if document is None:
                continue
            try:
                reports.append(ErrorReport.model_validate(document))
            except ValueError as e:
                logger.warning(f"Skipping unreadable error report {error_id}: {e}")
        return reports


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================


class InMemoryAdmissionStore(AdmissionStore):
    def __init__(self):
        self._windows: dict[str, RateWindow] = {}
        self._locks = KeyedLocks()

    async def update_window(self, user_id: str, mutate: WindowMutation) -> R:
        async with self._locks.hold(user_id):
            current = self._windows.get(user_id)
            updated, outcome = mutate(current.model_copy() if current else None)
            if updated is not None:
                self._windows[user_id] = updated.model_copy()
            return outcome

    async def get_window(self, user_id: str) -> Optional[RateWindow]:
        window = self._windows.get(user_id)
        return window.model_copy() if window else None

    async def delete_inactive(self, cutoff_ms: int, limit: int) -> int:
        stale = [u for u, w in self._windows.items() if w.last_request < cutoff_ms][:limit]
        for user_id in stale:
            del self._windows[user_id]
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)


class InMemoryCacheStore(CacheStore):
    def __init__(self):
        self._entries: dict[tuple[str, str], CacheEntry] = {}
        self._locks = KeyedLocks()

    async def get(self, user_id: str, fingerprint: str) -> Optional[CacheEntry]:
        entry = self._entries.get((user_id, fingerprint))
        return entry.model_copy(deep=True) if entry else None

    async def put_if_absent(self, entry: CacheEntry, now_ms: int) -> CacheWrite:
        key = (entry.user_id, entry.fingerprint)
        async with self._locks.hold(key):
            current = self._entries.get(key)
            if current is not None and not current.is_expired(now_ms):
                return CacheWrite(False, current.model_copy(deep=True))
            self._entries[key] = entry.model_copy(deep=True)
            return CacheWrite(True, entry)

    async def purge_expired(self, now_ms: int, limit: int) -> int:
        expired = [k for k, e in self._entries.items() if e.expires_at < now_ms][:limit]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class InMemoryErrorReportStore(ErrorReportStore):
    def __init__(self):
        self._reports: dict[str, ErrorReport] = {}

    async def add(self, report: ErrorReport) -> None:
        self._reports[report.error_id] = report.model_copy(deep=True)

    async def attach_resolution(self, error_id: str, resolution: ErrorResolution) -> bool:
        report = self._reports.get(error_id)
        if report is None:
            return False
        self._reports[error_id] = report.model_copy(update={"resolution": resolution})
        return True

    async def list_since(self, since: datetime) -> list[ErrorReport]:
        return [r.model_copy(deep=True) for r in self._reports.values() if r.timestamp >= since]

    def __len__(self) -> int:
        return len(self._reports)


__all__ = [
    "AdmissionStore",
    "CacheStore",
    "ErrorReportStore",
    "CacheWrite",
    "KeyedLocks",
    "RedisAdmissionStore",
    "RedisCacheStore",
    "RedisErrorReportStore",
    "InMemoryAdmissionStore",
    "InMemoryCacheStore",
    "InMemoryErrorReportStore",
]
