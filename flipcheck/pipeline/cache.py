"""Two-tier comps cache.

The primary tier answers repeat lookups for a few hours so paid sources are
not hit twice for the same item. The last-known-good tier keeps the most
recent successful result for days and is only read when every live source
fails. Both TTLs depend on how fast the category's market moves.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterator, Optional

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from flipcheck.config import Settings, settings as default_settings
from flipcheck.models.comps import AggregatedCompsResult, Provenance
from flipcheck.models.comps_snapshot import CompsSnapshot
from flipcheck.pipeline.categories import lookup_by_category

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class NoLiveDataError(Exception):
    """Raised by a fetcher when no live source produced usable data."""


@dataclass(frozen=True)
class CacheEntry:
    value: AggregatedCompsResult
    created_at: datetime
    expires_at: datetime
    provenance: Provenance = Provenance.LIVE

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def age_minutes(self, now: datetime) -> int:
        return round((now - self.created_at).total_seconds() / 60)


class MemoryCacheStore:
    """In-process store. Entries are kept as objects, so nothing can fail to decode."""

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self, now: datetime) -> int:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def counts(self, now: datetime) -> tuple[int, int]:
        """(total, expired) entry counts."""
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        return len(self._entries), expired


class SqlCacheStore:
    """Database-backed store; survives restarts. Values are stored as JSON."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextlib.contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._session() as db:
            row = db.scalar(select(CompsSnapshot).where(CompsSnapshot.cache_key == key))
            if row is None:
                return None

            try:
                value = AggregatedCompsResult.model_validate_json(row.payload)
            except ValidationError as e:
                logger.warning(f"Discarding unreadable cache entry {key!r}: {e.error_count()} errors")
                db.delete(row)
                db.commit()
                return None

            return CacheEntry(value=value, created_at=row.created_at, expires_at=row.expires_at)

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._session() as db:
            row = db.scalar(select(CompsSnapshot).where(CompsSnapshot.cache_key == key))
            if row is None:
                row = CompsSnapshot(cache_key=key)
                db.add(row)
            row.category = entry.value.category
            row.payload = entry.value.model_dump_json()
            row.created_at = entry.created_at
            row.expires_at = entry.expires_at
            db.commit()

    def delete(self, key: str) -> None:
        with self._session() as db:
            db.execute(delete(CompsSnapshot).where(CompsSnapshot.cache_key == key))
            db.commit()

    def clear(self) -> None:
        with self._session() as db:
            db.execute(delete(CompsSnapshot))
            db.commit()

    def sweep(self, now: datetime) -> int:
        with self._session() as db:
            result = db.execute(delete(CompsSnapshot).where(CompsSnapshot.expires_at <= now))
            db.commit()
            return result.rowcount or 0

    def counts(self, now: datetime) -> tuple[int, int]:
        with self._session() as db:
            total = db.scalar(select(func.count()).select_from(CompsSnapshot)) or 0
            expired = db.scalar(
                select(func.count()).select_from(CompsSnapshot).where(CompsSnapshot.expires_at <= now)
            ) or 0
            return total, expired


class CacheLayer:
    """Primary and last-known-good tiers plus hit/miss accounting."""

    def __init__(
        self,
        primary: MemoryCacheStore | SqlCacheStore | None = None,
        last_known_good: MemoryCacheStore | SqlCacheStore | None = None,
        settings: Settings | None = None,
        clock: Clock = datetime.utcnow,
    ):
        self.primary = primary or MemoryCacheStore()
        self.last_known_good = last_known_good or MemoryCacheStore()
        self.settings = settings or default_settings
        self._clock = clock
        self._sweeper: Optional[asyncio.Task] = None

        self.hits = 0
        self.misses = 0
        self.fallbacks = 0
        self.live_fetches = 0

    def primary_ttl(self, category: Optional[str]) -> timedelta:
        hours = lookup_by_category(
            self.settings.primary_ttl_hours, category, self.settings.primary_ttl_default_hours
        )
        return timedelta(hours=hours)

    def last_known_good_ttl(self, category: Optional[str]) -> timedelta:
        days = lookup_by_category(
            self.settings.last_known_good_ttl_days, category, self.settings.last_known_good_ttl_default_days
        )
        return timedelta(days=days)

    def get(self, key: str) -> Optional[CacheEntry]:
        """Fresh primary-tier entry, or None."""
        entry = self.primary.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self.primary.delete(key)
            return None
        return entry

    def set(self, key: str, value: AggregatedCompsResult, ttl: Optional[timedelta] = None) -> CacheEntry:
        """Write the primary tier. TTL defaults to the value's category TTL."""
        now = self._clock()
        entry = CacheEntry(
            value=value,
            created_at=now,
            expires_at=now + (ttl if ttl is not None else self.primary_ttl(value.category)),
        )
        self.primary.set(key, entry)
        return entry

    def get_last_known_good(self, key: str) -> Optional[CacheEntry]:
        entry = self.last_known_good.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self.last_known_good.delete(key)
            return None
        return entry

    def _set_last_known_good(self, key: str, value: AggregatedCompsResult, category: Optional[str]) -> None:
        now = self._clock()
        entry = CacheEntry(value=value, created_at=now, expires_at=now + self.last_known_good_ttl(category))
        self.last_known_good.set(key, entry)

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[AggregatedCompsResult]],
        category: Optional[str] = None,
    ) -> CacheEntry:
        """
        Serve from the primary tier, else fetch live and write both tiers.

        Raises:
            NoLiveDataError: When the fetch found nothing and no
                last-known-good entry exists for the key.
        """
        cached = self.get(key)
        if cached is not None:
            self.hits += 1
            logger.info(f"Cache HIT for {key!r} ({cached.age_minutes(self._clock())}m old)")
            return replace(cached, provenance=Provenance.CACHE)

        self.misses += 1
        try:
            value = await fetcher()
        except NoLiveDataError as e:
            fallback = self.get_last_known_good(key)
            if fallback is None:
                raise
            self.fallbacks += 1
            logger.warning(
                f"Live fetch failed for {key!r} ({e}); using last-known-good "
                f"({fallback.age_minutes(self._clock())}m old)"
            )
            return replace(fallback, provenance=Provenance.FALLBACK)

        self.live_fetches += 1
        category = category or value.category
        entry = self.set(key, value, self.primary_ttl(category))
        self._set_last_known_good(key, value, category)
        return entry

    def delete(self, key: str) -> None:
        self.primary.delete(key)
        self.last_known_good.delete(key)

    def clear(self) -> None:
        self.primary.clear()
        self.last_known_good.clear()
        self.hits = self.misses = self.fallbacks = self.live_fetches = 0
        logger.info("All comps caches cleared")

    def sweep(self) -> int:
        now = self._clock()
        removed = self.primary.sweep(now) + self.last_known_good.sweep(now)
        if removed:
            logger.info(f"Cache sweep removed {removed} expired entries")
        return removed

    def stats(self) -> dict:
        now = self._clock()
        lookups = self.hits + self.misses
        return {
            "primary": self._tier_stats(self.primary, now),
            "last_known_good": self._tier_stats(self.last_known_good, now),
            "hits": self.hits,
            "misses": self.misses,
            "fallbacks": self.fallbacks,
            "live_fetches": self.live_fetches,
            "hit_rate": round(self.hits / lookups * 100, 1) if lookups else 0.0,
        }

    @staticmethod
    def _tier_stats(store, now: datetime) -> dict:
        total, expired = store.counts(now)
        return {
            "total_entries": total,
            "active_entries": total - expired,
            "expired_entries": expired,
            "percent_expired": round(expired / total * 100, 1) if total else 0.0,
        }

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Cache sweep failed: {e}", exc_info=True)

    def start_sweeper(self, interval: float | None = None) -> asyncio.Task:
        """Start the background sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            interval = self.settings.cache_sweep_interval_seconds if interval is None else interval
            self._sweeper = asyncio.create_task(self._sweep_forever(interval))
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
