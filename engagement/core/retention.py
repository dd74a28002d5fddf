# ==============================================================================
# Retention Cohort Engine - Pure Domain Logic
# ==============================================================================
"""
Cohort retention from raw (timestamp, actor) activity.

An actor's cohort is the period of their first activity inside the range.
For each later offset up to the end of the range, the engine counts how many
cohort members were active in that period:

    rate = round(returning / cohort_size * 100)

Offset 0 is always 100. Offsets past the last period of the range are
omitted; offsets inside the range with nobody returning are 0.

Everything is computed in memory from one list of activity rows, so callers
run a single range query instead of one query per cohort and offset.
"""

from collections import defaultdict
from collections.abc import Hashable, Iterable
from datetime import datetime

from pydantic import BaseModel, Field

from engagement.core.models import Granularity
from engagement.core.periods import enumerate_periods, period_key_of, period_offset, to_utc


class CohortRow(BaseModel):
    """
    Retention figures for one cohort.

    Attributes:
        cohort: Period key of the cohort's first activity
        size: Number of actors in the cohort
        retention: Offset (periods after the cohort) to rate in percent
        returning: Offset to number of returning actors
    """

    cohort: str
    size: int
    retention: dict[int, int] = Field(default_factory=dict)
    returning: dict[int, int] = Field(default_factory=dict)


def retention_rate(returning: int, size: int) -> int:
    """Whole-percent share of a cohort that returned."""
    if size == 0:
        return 0
    return round(returning / size * 100)


def compute_retention(
    activity: Iterable[tuple[datetime, Hashable]],
    start: datetime,
    end: datetime,
    granularity: Granularity,
) -> list[CohortRow]:
    """
    Group actors into cohorts and compute per-offset retention.

    Args:
        activity: (timestamp, actor_id) rows; rows outside [start, end] are ignored
        start: Normalized range start
        end: Normalized range end
        granularity: Period width

    Returns:
        Cohort rows ordered by cohort key
    """
    periods = enumerate_periods(start, end, granularity)
    if not periods:
        return []
    start_utc, end_utc = to_utc(start), to_utc(end)

    first_seen: dict[Hashable, datetime] = {}
    active_by_period: dict[str, set[Hashable]] = defaultdict(set)
    for timestamp, actor in activity:
        ts = to_utc(timestamp)
        if ts < start_utc or ts > end_utc:
            continue
        active_by_period[period_key_of(ts, granularity)].add(actor)
        if actor not in first_seen or ts < first_seen[actor]:
            first_seen[actor] = ts

    cohorts: dict[str, set[Hashable]] = defaultdict(set)
    for actor, ts in first_seen.items():
        cohorts[period_key_of(ts, granularity)].add(actor)

    position = {key: index for index, key in enumerate(periods)}
    last_key = periods[-1]
    rows: list[CohortRow] = []
    for cohort_key in periods:
        members = cohorts.get(cohort_key)
        if not members:
            continue
        size = len(members)
        row = CohortRow(cohort=cohort_key, size=size, retention={0: 100}, returning={0: size})
        horizon = period_offset(cohort_key, last_key, granularity)
        for offset in range(1, horizon + 1):
            target = periods[position[cohort_key] + offset]
            returning = len(members & active_by_period.get(target, set()))
            row.returning[offset] = returning
            row.retention[offset] = retention_rate(returning, size)
        rows.append(row)
    return rows
