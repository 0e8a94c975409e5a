"""Shared plumbing for the pricing source adapters."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from flipcheck.api.http import RateLimiter, RetryController
from flipcheck.config import Settings, settings as default_settings
from flipcheck.models.comps import ComparableSale, CompsSource, SearchQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceResult:
    """Outcome of one adapter search: comps, or an unavailable signal with a reason."""

    source: CompsSource
    comps: list[ComparableSale] = field(default_factory=list)
    available: bool = True
    reason: Optional[str] = None

    @classmethod
    def unavailable(cls, source: CompsSource, reason: str) -> "SourceResult":
        return cls(source=source, comps=[], available=False, reason=reason)

    def __bool__(self) -> bool:
        return self.available and bool(self.comps)


class SourceAdapter:
    """Base class for a priority-ordered pricing source.

    Subclasses implement ``is_configured``, ``_search`` and optionally
    ``is_eligible``. ``search`` wraps ``_search`` so that expected failures
    (missing credentials, HTTP errors, network errors) come back as an
    unavailable ``SourceResult`` instead of an exception.
    """

    name: str = "source"
    source: CompsSource = CompsSource.NONE

    def __init__(
        self,
        settings: Settings | None = None,
        rate_limiter: RateLimiter | None = None,
        retry: RetryController | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or default_settings
        self.rate_limiter = rate_limiter or RateLimiter()
        self.retry = retry or RetryController()
        self._transport = transport

    def is_configured(self) -> bool:
        return True

    def is_eligible(self, query: SearchQuery, category: Optional[str]) -> bool:
        return True

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds,
            transport=self._transport,
        )

    async def get(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        on_attempt: Callable[[], None] | None = None,
    ) -> httpx.Response:
        """Throttled, retried GET against this adapter's source.

        ``on_attempt`` runs before every HTTP attempt, retries included.
        """
        throttle = self.rate_limiter.throttle(self.name)

        async def attempt() -> httpx.Response:
            if on_attempt is not None:
                on_attempt()
            return await throttle.call(lambda: client.get(url, params=params, headers=headers))

        return await self.retry.retrying_call(attempt, endpoint=str(httpx.URL(url, params=params)))

    async def search(self, query: SearchQuery, category: Optional[str] = None) -> SourceResult:
        if not self.is_configured():
            logger.debug(f"{self.name}: not configured, skipping")
            return SourceResult.unavailable(self.source, "not_configured")

        try:
            return await self._search(query, category)
        except httpx.TransportError as e:
            logger.warning(f"{self.name}: network error after retries: {e}")
            return SourceResult.unavailable(self.source, "network_error")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            # json decoding errors subclass ValueError; the rest are unexpected shapes
            logger.warning(f"{self.name}: unreadable response: {type(e).__name__}: {e}")
            return SourceResult.unavailable(self.source, "bad_response")

    async def _search(self, query: SearchQuery, category: Optional[str]) -> SourceResult:
        raise NotImplementedError

    def _http_unavailable(self, response: httpx.Response) -> SourceResult:
        logger.warning(f"{self.name}: HTTP {response.status_code} - {response.text[:100]}")
        return SourceResult.unavailable(self.source, f"http_{response.status_code}")

    def _bad_response(self, detail: str) -> SourceResult:
        logger.warning(f"{self.name}: unexpected response shape: {detail}")
        return SourceResult.unavailable(self.source, "bad_response")


def first(value: Any, default: Any = None) -> Any:
    """Unwrap the single-element lists the Finding API wraps every field in."""
    if isinstance(value, list):
        return value[0] if value else default
    return default if value is None else value


def first_dict(value: Any) -> dict:
    """Like ``first`` but always a dict; anything else becomes an empty one."""
    node = first(value)
    return node if isinstance(node, dict) else {}


def as_list(value: Any) -> list:
    """Upstream collections as a list: a lone object is wrapped, anything else is empty."""
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return [value]
    return []
