"""Condition bucketing: separate new-like from used comps before pricing."""

from decimal import Decimal
from enum import Enum
from statistics import median
from typing import Optional, Sequence

from flipcheck.models.comps import BucketStats, ComparableSale, ConditionBuckets
from flipcheck.money import quantize

NEW_LIKE_MARKERS = ("new", "sealed", "unopened", "refurbished", "certified")


class ConditionBucket(str, Enum):
    NEW_LIKE = "new_like"
    USED = "used"


def classify_condition(condition: Optional[str]) -> ConditionBucket:
    """New, open-box "new other", refurbished and sealed all price like new; the rest is used."""
    lowered = (condition or "").lower()
    if any(marker in lowered for marker in NEW_LIKE_MARKERS):
        return ConditionBucket.NEW_LIKE
    return ConditionBucket.USED


def bucket_stats(comps: Sequence[ComparableSale], price_factor: Decimal = Decimal("1")) -> BucketStats:
    prices = sorted(c.total_price * price_factor for c in comps if c.total_price > 0)
    if not prices:
        return BucketStats()

    return BucketStats(
        count=len(prices),
        median=quantize(median(prices)),
        low=quantize(prices[0]),
        high=quantize(prices[-1]),
    )


def split_by_condition(
    comps: Sequence[ComparableSale],
    price_factor: Decimal = Decimal("1"),
) -> ConditionBuckets:
    """
    Compute new-like, used and combined price stats.

    ``price_factor`` scales every total first; active-listing comps use it
    to discount asking prices down toward sold prices.
    """
    new_like = [c for c in comps if classify_condition(c.condition) == ConditionBucket.NEW_LIKE]
    used = [c for c in comps if classify_condition(c.condition) == ConditionBucket.USED]

    return ConditionBuckets(
        new_like=bucket_stats(new_like, price_factor),
        used=bucket_stats(used, price_factor),
        all=bucket_stats(comps, price_factor),
    )


def price_for_condition(buckets: Optional[ConditionBuckets], item_condition: Optional[str]) -> Optional[Decimal]:
    """
    Median of the bucket matching the item's condition.

    Returns None when that bucket is empty; the other bucket is never used
    as a stand-in, since new and used prices differ too much.
    """
    if buckets is None:
        return None
    if classify_condition(item_condition) == ConditionBucket.NEW_LIKE:
        return buckets.new_like.median
    return buckets.used.median
