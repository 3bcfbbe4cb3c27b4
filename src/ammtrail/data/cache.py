"""TTL and size bounded cache for raw transactions, processed observations
and aggregate swap groups.

Each kind has its own key prefix, TTL, per-entry byte ceiling and record cap.
Records are stored newest-first, so capping keeps the most recent ones.

Storage quota errors never escape this layer: the cache runs an aggressive
cleanup, retries once with half the records and half the TTL, and abandons
the write if that also fails.
"""

import asyncio
import json
import time
from collections import Counter
from collections.abc import Callable
from typing import Any

from ammtrail.config import CacheSettings
from ammtrail.data.models import CacheEntry, CacheKind
from ammtrail.data.storage import KeyValueStorage, entry_size
from ammtrail.exceptions import StorageQuotaExceeded
from ammtrail.logging import get_logger

logger = get_logger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


class CacheLayer:
    """Cache facade over a KeyValueStorage backend.

    Usage:
        cache = CacheLayer(storage, settings.cache)
        await cache.put(pair_key, CacheKind.RAW, transactions, assetOrder="normal")
        entry = await cache.get(pair_key, CacheKind.RAW)
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        settings: CacheSettings,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._storage = storage
        self._settings = settings
        self._clock = clock
        # In-flight get() count per storage key; the sweep leaves these alone
        self._reading: Counter[str] = Counter()

    def limits(self, kind: CacheKind) -> tuple[int, int, int]:
        """Return (ttl_seconds, max_bytes, max_records) for a kind."""
        s = self._settings
        if kind is CacheKind.RAW:
            return s.raw_ttl, s.raw_max_bytes, s.raw_max_records
        if kind is CacheKind.PROCESSED:
            return s.processed_ttl, s.processed_max_bytes, s.processed_max_records
        return s.aggregate_ttl, s.aggregate_max_bytes, s.aggregate_max_records

    # ──────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────

    async def get(self, key: str, kind: CacheKind) -> CacheEntry | None:
        """Return a live entry, or None.

        Expired and unparsable entries are deleted and reported as a miss.
        """
        storage_key = kind.storage_key(key)
        self._reading[storage_key] += 1
        try:
            raw = await self._storage.get(storage_key)
            if raw is None:
                return None

            try:
                entry = CacheEntry.from_json_dict(json.loads(raw))
            except ValueError:
                logger.warning("cache_entry_corrupt", key=storage_key)
                await self._storage.delete(storage_key)
                return None

            if entry.is_expired(self._clock()):
                logger.debug("cache_entry_expired", key=storage_key)
                await self._storage.delete(storage_key)
                return None

            return entry
        finally:
            self._reading[storage_key] -= 1
            if self._reading[storage_key] <= 0:
                del self._reading[storage_key]

    # ──────────────────────────────────────────────
    # Writes
    # ──────────────────────────────────────────────

    async def put(
        self,
        key: str,
        kind: CacheKind,
        data: list[Any],
        **extra: Any,
    ) -> bool:
        """Write an entry. Returns True if it was stored.

        Oversized entries are skipped. Quota errors trigger cleanup and one
        reduced retry; a failed retry abandons the write.
        """
        ttl, max_bytes, max_records = self.limits(kind)
        storage_key = kind.storage_key(key)
        records = list(data[:max_records])

        try:
            if await self._write(storage_key, records, ttl, max_bytes, extra):
                return True
        except _OversizedEntry:
            return False

        logger.warning(
            "cache_quota_exceeded",
            key=storage_key,
            records=len(records),
        )
        removed = await self._aggressive_cleanup()

        reduced = records[: len(records) // 2]
        try:
            stored = await self._write(storage_key, reduced, ttl // 2, max_bytes, extra)
        except _OversizedEntry:
            stored = False
        if stored:
            logger.info(
                "cache_write_reduced",
                key=storage_key,
                records=len(reduced),
                cleaned=removed,
            )
            return True

        logger.warning("cache_write_abandoned", key=storage_key)
        return False

    async def _write(
        self,
        storage_key: str,
        records: list[Any],
        ttl: int,
        max_bytes: int,
        extra: dict[str, Any],
    ) -> bool:
        """Serialize and store. False means the storage quota was hit."""
        now = self._clock()
        entry = CacheEntry(
            data=records,
            timestamp=now,
            expires=now + ttl * 1000,
            extra=extra,
        )
        serialized = _dumps(entry.to_json_dict())
        size = len(serialized.encode("utf-8"))
        if size > max_bytes:
            logger.info(
                "cache_entry_oversized",
                key=storage_key,
                size=size,
                max_bytes=max_bytes,
            )
            raise _OversizedEntry

        try:
            await self._storage.set(storage_key, serialized)
        except StorageQuotaExceeded:
            return False
        return True

    async def delete(self, key: str, kind: CacheKind) -> None:
        await self._storage.delete(kind.storage_key(key))

    # ──────────────────────────────────────────────
    # Maintenance
    # ──────────────────────────────────────────────

    async def _scan(self) -> list[tuple[str, CacheEntry | None, int]]:
        """Load every cache entry as (key, entry or None if corrupt, size)."""
        scanned: list[tuple[str, CacheEntry | None, int]] = []
        for kind in CacheKind:
            for storage_key in await self._storage.keys(kind.value):
                raw = await self._storage.get(storage_key)
                if raw is None:
                    continue
                try:
                    entry: CacheEntry | None = CacheEntry.from_json_dict(json.loads(raw))
                except ValueError:
                    entry = None
                scanned.append((storage_key, entry, entry_size(storage_key, raw)))
        return scanned

    async def clear_expired(self) -> int:
        """Delete expired and unparsable entries. Returns the count removed."""
        now = self._clock()
        removed = 0
        for storage_key, entry, _ in await self._scan():
            if storage_key in self._reading:
                continue
            if entry is None or entry.is_expired(now):
                await self._storage.delete(storage_key)
                removed += 1
        return removed

    async def evict(self) -> int:
        """Periodic sweep enforcing the global entry count and byte ceilings.

        Expired entries go first; then the oldest by write timestamp until
        both ceilings hold. Keys being read are skipped.
        """
        now = self._clock()
        removed = 0
        live: list[tuple[str, CacheEntry, int]] = []

        for storage_key, entry, size in await self._scan():
            if storage_key in self._reading:
                if entry is not None:
                    live.append((storage_key, entry, size))
                continue
            if entry is None or entry.is_expired(now):
                await self._storage.delete(storage_key)
                removed += 1
            else:
                live.append((storage_key, entry, size))

        live.sort(key=lambda item: item[1].timestamp)
        count = len(live)
        total = sum(size for _, _, size in live)

        for storage_key, _, size in live:
            if count <= self._settings.max_entries and total <= self._settings.max_total_bytes:
                break
            if storage_key in self._reading:
                continue
            await self._storage.delete(storage_key)
            removed += 1
            count -= 1
            total -= size

        if removed:
            logger.info("cache_evicted", removed=removed, entries=count, total_bytes=total)
        return removed

    async def _aggressive_cleanup(self) -> int:
        """Free space after a quota error.

        Removes entries written more than aggressive_cleanup_age ago (and
        unparsable ones). If none qualified, removes the largest half.
        """
        cutoff = self._clock() - self._settings.aggressive_cleanup_age * 1000
        scanned = [item for item in await self._scan() if item[0] not in self._reading]

        stale = [
            storage_key
            for storage_key, entry, _ in scanned
            if entry is None or entry.timestamp < cutoff
        ]
        if not stale:
            by_size = sorted(scanned, key=lambda item: item[2], reverse=True)
            stale = [storage_key for storage_key, _, _ in by_size[: (len(by_size) + 1) // 2]]

        for storage_key in stale:
            await self._storage.delete(storage_key)

        logger.info("cache_aggressive_cleanup", removed=len(stale))
        return len(stale)


class _OversizedEntry(Exception):
    """Serialized entry exceeds the per-kind byte ceiling."""


async def run_sweep_loop(cache: CacheLayer, interval: float) -> None:
    """Call cache.evict() every interval seconds until cancelled."""
    logger.info("cache_sweep_loop_started", interval=interval)
    while True:
        try:
            await asyncio.sleep(interval)
            await cache.evict()
        except asyncio.CancelledError:
            logger.info("cache_sweep_loop_stopped")
            raise
        except Exception as e:
            logger.error("cache_sweep_error", error=str(e), exc_info=True)
