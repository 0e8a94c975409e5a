"""Pricing source clients."""

from flipcheck.api.base import SourceAdapter, SourceResult
from flipcheck.api.ebay_auth import EbayAuth
from flipcheck.api.ebay_browse import EbayBrowseAPI
from flipcheck.api.ebay_finding_sold import EbayFindingSoldAPI
from flipcheck.api.pricecharting import PriceChartingAPI
from flipcheck.api.serpapi_sold import SerpApiSoldAPI

__all__ = [
    "SourceAdapter",
    "SourceResult",
    "EbayAuth",
    "EbayBrowseAPI",
    "EbayFindingSoldAPI",
    "PriceChartingAPI",
    "SerpApiSoldAPI",
]
