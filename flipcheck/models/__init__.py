"""Domain and database models."""

from flipcheck.models.comps import (
    AggregatedCompsResult,
    BucketStats,
    ComparableSale,
    CompsSource,
    ConditionBuckets,
    Confidence,
    Provenance,
    SearchQuery,
)
from flipcheck.models.comps_snapshot import CompsSnapshot

__all__ = [
    "AggregatedCompsResult",
    "BucketStats",
    "ComparableSale",
    "CompsSource",
    "ConditionBuckets",
    "Confidence",
    "Provenance",
    "SearchQuery",
    "CompsSnapshot",
]
