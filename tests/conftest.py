from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from flipcheck.api.base import SourceAdapter, SourceResult
from flipcheck.api.http import RateLimiter, RetryController
from flipcheck.config import Settings
from flipcheck.models.comps import ComparableSale
from flipcheck.money import Cost


def make_settings(**overrides) -> Settings:
    """Settings isolated from any local .env file."""
    values = {
        "pricecharting_api_key": "",
        "ebay_app_id": "",
        "ebay_cert_id": "",
        "serpapi_api_key": "",
        "persist_last_known_good": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_comp(title: str, price, condition: str = "Used", shipping=None, date_sold: str = "2026-10-01") -> ComparableSale:
    return ComparableSale(
        price=Decimal(str(price)),
        shipping=shipping if shipping is not None else Cost.free(),
        condition=condition,
        date_sold=date_sold,
        title=title,
    )


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeClock:
    """Monotonic clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeDateClock:
    def __init__(self, start: datetime = datetime(2026, 10, 19, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def fast_retry(sleep_recorder):
    return RetryController(max_retries=3, base_delay_ms=500, jitter_ms=500, sleep=sleep_recorder)


@pytest.fixture
def no_throttle():
    return RateLimiter(min_interval=0)


class FakeAdapter(SourceAdapter):
    """Adapter returning canned comps (or an unavailable reason) and counting calls."""

    def __init__(self, source, comps=None, reason=None, eligible=True):
        super().__init__(settings=make_settings(), rate_limiter=RateLimiter(0))
        self.source = source
        self.name = source.value
        self.comps = comps or []
        self.reason = reason
        self.eligible = eligible
        self.calls = []

    def is_eligible(self, query, category):
        return self.eligible

    async def _search(self, query, category):
        self.calls.append((query.text, category))
        if self.reason:
            return SourceResult.unavailable(self.source, self.reason)
        return SourceResult(source=self.source, comps=list(self.comps))
