import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from conftest import FakeDateClock, make_comp, make_settings
from flipcheck.database import Base
from flipcheck.models.comps import AggregatedCompsResult, CompsSource, Confidence, Provenance
from flipcheck.models.comps_snapshot import CompsSnapshot
from flipcheck.pipeline.cache import CacheEntry, CacheLayer, MemoryCacheStore, NoLiveDataError, SqlCacheStore


def result(category="Shoes", price=180):
    return AggregatedCompsResult(
        query="nike dunk low",
        category=category,
        comps=[make_comp("Nike Dunk Low Panda", price)],
        source=CompsSource.FREE_SEARCH,
        confidence=Confidence.MEDIUM,
    )


@pytest.fixture
def clock():
    return FakeDateClock()


@pytest.fixture
def cache(clock):
    return CacheLayer(settings=make_settings(), clock=clock)


def fetcher_returning(value, calls):
    async def fetch():
        calls.append(1)
        return value

    return fetch


def failing_fetcher(calls, exc=None):
    async def fetch():
        calls.append(1)
        raise exc or NoLiveDataError("all sources unavailable")

    return fetch


def test_live_fetch_then_cache_hit(cache):
    calls = []

    async def run():
        first = await cache.get_or_fetch("comps:nike dunk low::", fetcher_returning(result(), calls), "Shoes")
        second = await cache.get_or_fetch("comps:nike dunk low::", fetcher_returning(result(), calls), "Shoes")
        return first, second

    first, second = asyncio.run(run())

    assert len(calls) == 1
    assert first.provenance == Provenance.LIVE
    assert second.provenance == Provenance.CACHE
    assert second.value == first.value
    assert cache.hits == 1
    assert cache.misses == 1
    assert cache.live_fetches == 1


def test_primary_expiry_falls_back_to_last_known_good(cache, clock):
    calls = []
    key = "comps:nike dunk low::"

    asyncio.run(cache.get_or_fetch(key, fetcher_returning(result(), calls), "Shoes"))
    clock.advance(hours=25)
    entry = asyncio.run(cache.get_or_fetch(key, failing_fetcher(calls), "Shoes"))

    assert len(calls) == 2
    assert entry.provenance == Provenance.FALLBACK
    assert entry.value.comps[0].price == Decimal("180")
    assert entry.age_minutes(clock()) == 25 * 60
    assert cache.fallbacks == 1


def test_no_last_known_good_reraises(cache):
    with pytest.raises(NoLiveDataError):
        asyncio.run(cache.get_or_fetch("comps:nothing::", failing_fetcher([])))


def test_expired_last_known_good_is_not_served(cache, clock):
    key = "comps:topps chrome::"
    asyncio.run(cache.get_or_fetch(key, fetcher_returning(result("Trading Cards"), []), "Trading Cards"))
    clock.advance(days=2)

    with pytest.raises(NoLiveDataError):
        asyncio.run(cache.get_or_fetch(key, failing_fetcher([]), "Trading Cards"))


def test_unexpected_errors_propagate(cache):
    key = "comps:nike dunk low::"
    asyncio.run(cache.get_or_fetch(key, fetcher_returning(result(), []), "Shoes"))
    cache.primary.clear()

    with pytest.raises(RuntimeError):
        asyncio.run(cache.get_or_fetch(key, failing_fetcher([], RuntimeError("bug"))))


@pytest.mark.parametrize(
    "category, primary_hours, lkg_days",
    [
        ("Trading Cards", 3, 1),
        ("Shoes", 24, 28),
        ("Men's Watches", 24, 21),
        ("Video Games", 12, 14),
        (None, 12, 7),
    ],
)
def test_ttls_follow_category(cache, category, primary_hours, lkg_days):
    assert cache.primary_ttl(category) == timedelta(hours=primary_hours)
    assert cache.last_known_good_ttl(category) == timedelta(days=lkg_days)


def test_set_with_explicit_ttl(cache, clock):
    cache.set("k", result(), ttl=timedelta(minutes=5))
    assert cache.get("k") is not None

    clock.advance(minutes=5)
    assert cache.get("k") is None


def test_sweep_and_stats(cache, clock):
    asyncio.run(cache.get_or_fetch("comps:cards::", fetcher_returning(result("Trading Cards"), []), "Trading Cards"))
    asyncio.run(cache.get_or_fetch("comps:shoes::", fetcher_returning(result("Shoes"), []), "Shoes"))
    clock.advance(hours=4)

    stats = cache.stats()
    assert stats["primary"] == {
        "total_entries": 2,
        "active_entries": 1,
        "expired_entries": 1,
        "percent_expired": 50.0,
    }
    assert stats["last_known_good"]["active_entries"] == 2
    assert stats["hit_rate"] == 0.0

    assert cache.sweep() == 1
    assert cache.stats()["primary"]["total_entries"] == 1


def test_delete_and_clear(cache):
    key = "comps:nike dunk low::"
    asyncio.run(cache.get_or_fetch(key, fetcher_returning(result(), []), "Shoes"))

    cache.delete(key)
    assert cache.get(key) is None
    assert cache.get_last_known_good(key) is None

    cache.clear()
    assert cache.stats()["misses"] == 0


def test_background_sweeper_removes_expired_entries(cache, clock):
    cache.set("k", result(), ttl=timedelta(minutes=1))
    clock.advance(minutes=2)

    async def run():
        task = cache.start_sweeper(interval=0.01)
        assert cache.start_sweeper(interval=0.01) is task
        await asyncio.sleep(0.1)
        await cache.stop_sweeper()
        return task

    task = asyncio.run(run())

    assert task.cancelled()
    assert cache.primary.counts(clock()) == (0, 0)


def test_memory_store_counts():
    store = MemoryCacheStore()
    clock = FakeDateClock()
    now = clock()
    store.set("a", CacheEntry(value=result(), created_at=now, expires_at=now + timedelta(hours=1)))
    store.set("b", CacheEntry(value=result(), created_at=now, expires_at=now))

    assert store.counts(now) == (2, 1)
    assert store.sweep(now) == 1


# --- database-backed tier ---


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


def test_sql_store_round_trip(session_factory):
    store = SqlCacheStore(session_factory)
    now = FakeDateClock()()
    store.set("comps:nike dunk low::", CacheEntry(value=result(), created_at=now, expires_at=now + timedelta(days=28)))

    entry = store.get("comps:nike dunk low::")

    assert entry.value.query == "nike dunk low"
    assert entry.value.comps[0].price == Decimal("180")
    assert entry.value.source == CompsSource.FREE_SEARCH
    assert entry.expires_at == now + timedelta(days=28)


def test_sql_store_overwrites_existing_key(session_factory):
    store = SqlCacheStore(session_factory)
    now = FakeDateClock()()
    store.set("k", CacheEntry(value=result(price=100), created_at=now, expires_at=now + timedelta(days=1)))
    store.set("k", CacheEntry(value=result(price=120), created_at=now, expires_at=now + timedelta(days=1)))

    assert store.get("k").value.comps[0].price == Decimal("120")
    assert store.counts(now) == (1, 0)


def test_sql_store_discards_unreadable_rows(session_factory):
    now = FakeDateClock()()
    with session_factory() as db:
        db.add(CompsSnapshot(cache_key="broken", payload="{not json", created_at=now, expires_at=now + timedelta(days=1)))
        db.commit()

    store = SqlCacheStore(session_factory)

    assert store.get("broken") is None
    with session_factory() as db:
        assert db.scalar(select(func.count()).select_from(CompsSnapshot)) == 0


def test_cache_layer_with_persistent_last_known_good(session_factory, clock):
    cache = CacheLayer(last_known_good=SqlCacheStore(session_factory), settings=make_settings(), clock=clock)
    key = "comps:nike dunk low::"

    asyncio.run(cache.get_or_fetch(key, fetcher_returning(result(), []), "Shoes"))
    clock.advance(days=2)
    entry = asyncio.run(cache.get_or_fetch(key, failing_fetcher([]), "Shoes"))

    assert entry.provenance == Provenance.FALLBACK
    assert entry.value.comps[0].title == "Nike Dunk Low Panda"
    assert cache.stats()["last_known_good"]["total_entries"] == 1
