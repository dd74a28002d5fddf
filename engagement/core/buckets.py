# ==============================================================================
# Bucket Aggregator - Pure Domain Logic
# ==============================================================================
"""
Fold timestamped values into zero-filled period buckets.

Every key produced by enumerate_periods() gets a PeriodBucket before any value
is added, so the output is gap-free: a period without activity reads as the
reducer's zero instead of being missing.

Values are passed as (timestamp, value) pairs. What `value` means depends on
the reducer:
    count           ignored
    sum / average   a number
    distinct_count  an actor id (user id, session id...)
"""

import logging
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Hashable, Optional

from engagement.core.models import Granularity
from engagement.core.periods import period_key_of

logger = logging.getLogger(__name__)


class Reducer(str, Enum):
    """How the values of one bucket are combined."""

    COUNT = "count"
    SUM = "sum"
    AVERAGE = "average"
    DISTINCT_COUNT = "distinct_count"


@dataclass
class PeriodBucket:
    """
    Accumulator for one period.

    `count` is always kept. `total` is kept for sum/average and `actors` for
    distinct_count, so a bucket built for one reducer can also be read as a
    plain count.
    """

    key: str
    count: int = 0
    total: float = 0.0
    actors: set[Hashable] = field(default_factory=set)

    def add(self, value: Any = None, reducer: Optional[Reducer] = None) -> None:
        """Add one value to the bucket."""
        self.count += 1
        if reducer is Reducer.DISTINCT_COUNT:
            self.actors.add(value)
        elif reducer in (Reducer.SUM, Reducer.AVERAGE):
            self.total += float(value)

    @property
    def average(self) -> float:
        """Mean of the added values; an empty bucket reads 0."""
        if self.count == 0:
            return 0.0
        return self.total / self.count

    def read(self, reducer: Reducer) -> float | int:
        """Read the bucket with the given reducer."""
        if reducer is Reducer.COUNT:
            return self.count
        if reducer is Reducer.SUM:
            return self.total
        if reducer is Reducer.AVERAGE:
            return self.average
        return len(self.actors)


def bucketize(
    events: Iterable[tuple[datetime, Any]],
    periods: list[str],
    granularity: Granularity,
    reducer: Reducer = Reducer.COUNT,
) -> "OrderedDict[str, PeriodBucket]":
    """
    Fold events into zero-initialised buckets keyed by period.

    Events whose period is not in `periods` are dropped.
    `reducer` selects which accumulator the values feed.

    Returns:
        Ordered mapping of period key to PeriodBucket, in `periods` order
    """
    buckets: OrderedDict[str, PeriodBucket] = OrderedDict((key, PeriodBucket(key)) for key in periods)
    dropped = 0
    for timestamp, value in events:
        bucket = buckets.get(period_key_of(timestamp, granularity))
        if bucket is None:
            dropped += 1
            continue
        bucket.add(value, reducer)
    if dropped:
        logger.debug("Dropped %d values outside %d %s periods", dropped, len(periods), granularity.value)
    return buckets


def aggregate(
    events: Iterable[tuple[datetime, Any]],
    periods: list[str],
    reducer: Reducer,
    granularity: Granularity,
) -> "OrderedDict[str, float | int]":
    """
    Bucket events and read each bucket with one reducer.

    Args:
        events: (timestamp, value) pairs
        periods: Canonical period keys (from enumerate_periods)
        reducer: count, sum, average or distinct_count
        granularity: Granularity the keys were generated with

    Returns:
        Ordered mapping of period key to reduced value, one entry per period
    """
    reducer = Reducer(reducer)
    buckets = bucketize(events, periods, granularity, reducer)
    return OrderedDict((key, bucket.read(reducer)) for key, bucket in buckets.items())
