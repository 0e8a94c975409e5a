"""Outbound call guards: per-source throttling and retry with backoff.

Retry timing follows eBay's guidance for 5xx responses: up to three retries
with delays of roughly 0.5s, 1.5s and 4.5s plus up to 0.5s of jitter.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import httpx

from flipcheck.config import settings

logger = logging.getLogger(__name__)

MAX_ERROR_SAMPLES = 10
MAX_BODY_CHARS = 500

CORRELATION_HEADERS = (
    "x-ebay-c-correlation-id",
    "x-ebay-request-id",
    "x-ebay-c-request-id",
    "x-ebay-c-tracking-id",
)
SENSITIVE_HEADERS = {"authorization", "x-api-key"}
_SENSITIVE_PARAM_RE = re.compile(
    r"([?&](?:appid|api_key|t|SECURITY-APPNAME|CONSUMER-ID)=)[^&]+", re.IGNORECASE
)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


def redact_url(url: str) -> str:
    return _SENSITIVE_PARAM_RE.sub(r"\1[REDACTED]", url)


def redact_headers(headers) -> dict[str, str]:
    redacted = {}
    for key, value in dict(headers or {}).items():
        redacted[key] = "[REDACTED]" if key.lower() in SENSITIVE_HEADERS else value
    return redacted


def extract_correlation_id(headers: httpx.Headers) -> Optional[str]:
    for name in CORRELATION_HEADERS:
        value = headers.get(name)
        if value:
            return f"{name}: {value}"
    return None


def _request_of(response: httpx.Response) -> Optional[httpx.Request]:
    try:
        return response.request
    except RuntimeError:
        return None


@dataclass
class ErrorSample:
    timestamp: str
    endpoint: str
    method: str
    status: Optional[int]
    correlation_id: Optional[str]
    body: str
    request_headers: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def from_response(cls, response: httpx.Response, endpoint: str) -> "ErrorSample":
        request = _request_of(response)
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            endpoint=redact_url(endpoint or (str(request.url) if request is not None else "")),
            method=request.method if request is not None else "GET",
            status=response.status_code,
            correlation_id=extract_correlation_id(response.headers),
            body=response.text[:MAX_BODY_CHARS],
            request_headers=redact_headers(request.headers if request is not None else {}),
        )

    @classmethod
    def from_exception(cls, exc: Exception, endpoint: str, method: str = "GET") -> "ErrorSample":
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            endpoint=redact_url(endpoint),
            method=method,
            status=None,
            correlation_id=None,
            body="",
            error=f"{type(exc).__name__}: {exc}"[:MAX_BODY_CHARS],
        )

    def as_dict(self) -> dict:
        return asdict(self)


class ApiMetrics:
    """Call accounting and transient-failure spike detection for the sources."""

    def __init__(
        self,
        spike_threshold: int | None = None,
        spike_window_seconds: float | None = None,
        on_alert: Optional[Callable[[int], None]] = None,
        clock: Clock = time.monotonic,
    ):
        self.spike_threshold = spike_threshold or settings.error_spike_threshold
        self.spike_window_seconds = spike_window_seconds or settings.error_spike_window_seconds
        self.on_alert = on_alert
        self._clock = clock

        self.total_calls = 0
        self.successful_calls = 0
        self.failed_calls = 0
        self.alerts = 0
        self.error_samples: deque[ErrorSample] = deque(maxlen=MAX_ERROR_SAMPLES)
        self._recent_failures: deque[float] = deque()

    def record_attempt(self) -> None:
        self.total_calls += 1

    def record_success(self) -> None:
        self.successful_calls += 1

    def record_failure(self, sample: Optional[ErrorSample] = None) -> None:
        self.failed_calls += 1
        if sample is None:
            return

        self.error_samples.appendleft(sample)
        logger.error(f"Transient source error: {json.dumps(sample.as_dict())}")

        now = self._clock()
        self._recent_failures.append(now)
        while self._recent_failures and now - self._recent_failures[0] > self.spike_window_seconds:
            self._recent_failures.popleft()

        if len(self._recent_failures) >= self.spike_threshold:
            self.alerts += 1
            logger.error(
                f"ALERT: {len(self._recent_failures)} transient source errors in the last "
                f"{self.spike_window_seconds:.0f}s - check upstream API status"
            )
            if self.on_alert is not None:
                self.on_alert(len(self._recent_failures))

    def snapshot(self) -> dict:
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "alerts": self.alerts,
            "recent_transient_failures": len(self._recent_failures),
            "error_samples": [s.as_dict() for s in self.error_samples],
        }


class Throttle:
    """Enforces a minimum interval between calls to one source."""

    def __init__(self, min_interval: float, clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        # The lock spans check, sleep and stamp so concurrent callers queue up.
        async with self._lock:
            if self._last_call is not None:
                remaining = self.min_interval - (self._clock() - self._last_call)
                if remaining > 0:
                    await self._sleep(remaining)
            self._last_call = self._clock()

    async def call(self, fn: Callable[[], Awaitable]):
        await self.wait()
        return await fn()


class RateLimiter:
    """Process-wide registry of per-source throttles."""

    def __init__(self, min_interval: float | None = None, clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep):
        self.min_interval = settings.min_request_interval_seconds if min_interval is None else min_interval
        self._clock = clock
        self._sleep = sleep
        self._throttles: dict[str, Throttle] = {}

    def throttle(self, source: str) -> Throttle:
        throttle = self._throttles.get(source)
        if throttle is None:
            throttle = Throttle(self.min_interval, clock=self._clock, sleep=self._sleep)
            self._throttles[source] = throttle
        return throttle


def is_transient(response: httpx.Response) -> bool:
    return response.status_code >= 500


class RetryController:
    """Retries transient failures (5xx, network errors, timeouts) with backoff."""

    def __init__(
        self,
        metrics: Optional[ApiMetrics] = None,
        max_retries: int | None = None,
        base_delay_ms: float | None = None,
        jitter_ms: float | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.metrics = metrics or ApiMetrics()
        self.max_retries = settings.retry_max_attempts if max_retries is None else max_retries
        self.base_delay_ms = settings.retry_base_delay_ms if base_delay_ms is None else base_delay_ms
        self.jitter_ms = settings.retry_jitter_ms if jitter_ms is None else jitter_ms
        self._sleep = sleep
        self._rng = rng or random.Random()

    def backoff_ms(self, attempt: int) -> float:
        return self.base_delay_ms * (3 ** attempt) + self._rng.uniform(0, self.jitter_ms)

    async def retrying_call(
        self,
        fn: Callable[[], Awaitable[httpx.Response]],
        max_retries: int | None = None,
        endpoint: str = "",
    ) -> httpx.Response:
        """
        Call ``fn`` and retry transient failures.

        Args:
            fn: Zero-argument coroutine factory performing one request
            max_retries: Extra attempts after the first (defaults to settings)
            endpoint: URL used for error samples

        Returns:
            The first non-transient response, or the last response received
            once retries are exhausted (which may be a 5xx).

        Raises:
            httpx.TransportError: Only when every attempt failed before any
                response was received.
        """
        retries = self.max_retries if max_retries is None else max_retries
        last_response: Optional[httpx.Response] = None
        last_error: Optional[httpx.TransportError] = None

        for attempt in range(retries + 1):
            self.metrics.record_attempt()
            try:
                response = await fn()
            except httpx.TransportError as e:
                last_error = e
                self.metrics.record_failure(ErrorSample.from_exception(e, endpoint))
            else:
                if not is_transient(response):
                    if response.is_success:
                        self.metrics.record_success()
                    else:
                        self.metrics.record_failure()
                    return response
                last_response = response
                self.metrics.record_failure(ErrorSample.from_response(response, endpoint))

            if attempt < retries:
                delay = self.backoff_ms(attempt)
                logger.info(f"Retry {attempt + 1}/{retries} after {delay:.0f}ms ({redact_url(endpoint)})")
                await self._sleep(delay / 1000)

        if last_response is not None:
            return last_response
        raise last_error
