"""Multi-source comps resolution.

Sources are tried in priority order: the curated catalog, free sold search,
paid sold search, then discounted active listings. Results are relevance
filtered, bucketed by condition and cached in both tiers.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, Sequence

import httpx

from flipcheck.api.base import SourceAdapter
from flipcheck.api.ebay_browse import EbayBrowseAPI
from flipcheck.api.ebay_finding_sold import EbayFindingSoldAPI
from flipcheck.api.http import ApiMetrics, RateLimiter, RetryController
from flipcheck.api.pricecharting import PriceChartingAPI
from flipcheck.api.serpapi_sold import SerpApiSoldAPI
from flipcheck.config import Settings, settings as default_settings
from flipcheck.models.comps import (
    AggregatedCompsResult,
    ComparableSale,
    CompsSource,
    Confidence,
    SearchQuery,
)
from flipcheck.pipeline.cache import CacheLayer, NoLiveDataError
from flipcheck.pipeline.categories import effective_category, lookup_by_category
from flipcheck.pipeline.conditions import split_by_condition
from flipcheck.pipeline.links import build_search_url
from flipcheck.pipeline.relevance import drop_price_outliers, filter_relevant

logger = logging.getLogger(__name__)

SOLD_SOURCES = (CompsSource.FREE_SEARCH, CompsSource.PAID_SEARCH)


class CompsAggregator:
    """Resolves a query to one AggregatedCompsResult."""

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        cache: CacheLayer,
        settings: Settings | None = None,
        metrics: ApiMetrics | None = None,
    ):
        self.adapters = list(adapters)
        self.cache = cache
        self.settings = settings or default_settings
        self.metrics = metrics or ApiMetrics()

    @classmethod
    def from_settings(
        cls,
        cache: CacheLayer,
        settings: Settings | None = None,
        metrics: ApiMetrics | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "CompsAggregator":
        """Wire the production adapters around one shared rate limiter and retry controller."""
        settings = settings or default_settings
        metrics = metrics or ApiMetrics()
        shared = {
            "settings": settings,
            "rate_limiter": RateLimiter(settings.min_request_interval_seconds),
            "retry": RetryController(metrics=metrics),
            "transport": transport,
        }
        adapters = [
            PriceChartingAPI(**shared),
            EbayFindingSoldAPI(**shared),
            SerpApiSoldAPI(**shared),
            EbayBrowseAPI(**shared),
        ]
        return cls(adapters, cache, settings=settings, metrics=metrics)

    async def resolve(self, query: SearchQuery, category: Optional[str] = None) -> AggregatedCompsResult:
        """
        Resolve comps for a query. Never raises for source failures.

        Args:
            query: The lookup
            category: Overrides ``query.category`` when given

        Returns:
            A result tagged with its provenance. When nothing is available
            the result has source ``none``, low confidence, a message and a
            manual search link.
        """
        category = effective_category(category or query.category, query.title_text)
        key = query.cache_key()

        try:
            entry = await self.cache.get_or_fetch(key, lambda: self._fetch_live(query, category), category)
        except NoLiveDataError as e:
            logger.info(f"No comps available for \"{query.text}\": {e}")
            return self._no_data(query, category)

        return entry.value.with_provenance(entry.provenance)

    async def _fetch_live(self, query: SearchQuery, category: Optional[str]) -> AggregatedCompsResult:
        sparse: Optional[AggregatedCompsResult] = None
        reasons: list[str] = []

        for adapter in self.adapters:
            if adapter.source == CompsSource.ACTIVE_LISTING_FALLBACK and sparse is not None:
                break
            if not adapter.is_eligible(query, category):
                logger.debug(f"{adapter.name}: not eligible for \"{query.text}\"")
                continue

            result = await adapter.search(query, category)
            if not result:
                reasons.append(f"{adapter.name}: {result.reason or 'no results'}")
                continue

            comps = result.comps
            if adapter.source != CompsSource.CURATED_DATABASE:
                comps = drop_price_outliers(filter_relevant(comps, query.text, query.item_title, category))
                if not comps:
                    reasons.append(f"{adapter.name}: no relevant results")
                    continue

            built = self._build_result(query, category, adapter.source, comps)

            if adapter.source in SOLD_SOURCES and len(comps) < self.settings.min_sufficient_comps:
                logger.info(f"{adapter.name}: only {len(comps)} comps, trying next source")
                if sparse is None:
                    sparse = built
                continue

            logger.info(
                f"Resolved \"{query.text}\" from {adapter.name}: {len(comps)} comps, "
                f"{built.confidence.value} confidence"
            )
            return built

        if sparse is not None:
            logger.info(f"Using sparse {sparse.source.value} result for \"{query.text}\"")
            return sparse

        raise NoLiveDataError("; ".join(reasons) or "no eligible sources")

    def _confidence(self, source: CompsSource, count: int) -> Confidence:
        if source == CompsSource.CURATED_DATABASE:
            return Confidence.HIGH
        if source in SOLD_SOURCES:
            if count >= self.settings.high_confidence_min_comps:
                return Confidence.HIGH
            if count >= self.settings.min_sufficient_comps:
                return Confidence.MEDIUM
        return Confidence.LOW

    def _price_factor(self, source: CompsSource, category: Optional[str]) -> Decimal:
        if source != CompsSource.ACTIVE_LISTING_FALLBACK:
            return Decimal("1")
        discount = lookup_by_category(
            self.settings.active_listing_discount, category, self.settings.active_listing_discount_default
        )
        return Decimal(str(discount))

    def _build_result(
        self,
        query: SearchQuery,
        category: Optional[str],
        source: CompsSource,
        comps: list[ComparableSale],
    ) -> AggregatedCompsResult:
        price_factor = self._price_factor(source, category)
        return AggregatedCompsResult(
            query=query.text,
            category=category,
            comps=comps,
            source=source,
            confidence=self._confidence(source, len(comps)),
            buckets=split_by_condition(comps, price_factor),
            price_factor=price_factor,
            search_url=build_search_url(query.text, category),
        )

    def _no_data(self, query: SearchQuery, category: Optional[str]) -> AggregatedCompsResult:
        return AggregatedCompsResult(
            query=query.text,
            category=category,
            source=CompsSource.NONE,
            confidence=Confidence.LOW,
            message=(
                f"No comparable sales found for \"{query.text}\". "
                "Check recent sold listings manually before buying."
            ),
            search_url=build_search_url(query.text, category),
        )
