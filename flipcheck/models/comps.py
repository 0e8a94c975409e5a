"""Comparable-sale domain models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from flipcheck.money import Cost

ACTIVE_LISTING = "Active listing"


class CompsSource(str, Enum):
    CURATED_DATABASE = "curated-database"
    FREE_SEARCH = "free-search"
    PAID_SEARCH = "paid-search"
    ACTIVE_LISTING_FALLBACK = "active-listing-fallback"
    NONE = "none"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Provenance(str, Enum):
    LIVE = "live"
    CACHE = "cache"
    FALLBACK = "fallback"


class ComparableSale(BaseModel):
    """One observed sale (or active listing) used as pricing evidence."""

    model_config = ConfigDict(frozen=True)

    price: Decimal
    shipping: Cost = Field(default_factory=Cost.unknown)
    condition: str = "Unknown"
    date_sold: str = "Unknown"
    title: str = ""
    image_url: Optional[str] = None

    @computed_field
    @property
    def total_price(self) -> Decimal:
        return self.price + self.shipping.value_or_zero()

    @property
    def is_active_listing(self) -> bool:
        return self.date_sold == ACTIVE_LISTING


class SearchQuery(BaseModel):
    """A normalized comps lookup."""

    model_config = ConfigDict(frozen=True)

    text: str
    category: Optional[str] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    limit: int = 30
    condition: Optional[str] = None
    item_title: Optional[str] = None

    @property
    def title_text(self) -> str:
        """Most descriptive text available for relevance scoring."""
        return self.item_title or self.text

    def cache_key(self) -> str:
        low = "" if self.min_price is None else str(self.min_price)
        high = "" if self.max_price is None else str(self.max_price)
        return f"comps:{self.text.strip().lower()}:{low}:{high}"


class BucketStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = 0
    median: Optional[Decimal] = None
    low: Optional[Decimal] = None
    high: Optional[Decimal] = None


class ConditionBuckets(BaseModel):
    model_config = ConfigDict(frozen=True)

    new_like: BucketStats
    used: BucketStats
    all: BucketStats


class AggregatedCompsResult(BaseModel):
    """Resolved comps for one query. Replaced wholesale, never mutated."""

    model_config = ConfigDict(frozen=True)

    query: str
    category: Optional[str] = None
    comps: list[ComparableSale] = Field(default_factory=list)
    source: CompsSource = CompsSource.NONE
    confidence: Confidence = Confidence.LOW
    buckets: Optional[ConditionBuckets] = None
    provenance: Provenance = Provenance.LIVE
    price_factor: Decimal = Decimal("1")
    message: Optional[str] = None
    search_url: Optional[str] = None
    fetched_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def has_data(self) -> bool:
        return self.source != CompsSource.NONE and bool(self.comps)

    def with_provenance(self, provenance: Provenance) -> "AggregatedCompsResult":
        return self.model_copy(update={"provenance": provenance})
