# ==============================================================================
# Growth Rate Calculator - Pure Domain Logic
# ==============================================================================
"""
Period-over-period growth of an ordered bucket series.

Rules:
- The first period has no predecessor: previous_count = count, growth 0%.
- A previous count of 0 gives 100% when the current count is positive, else 0%.
- Otherwise growth = (count - previous) / previous * 100, rounded to 2 dp.

Callers that need a real rate for the first reported period canonicalize the
range with include_prior_period=True and drop the leading point afterwards
(see drop_leading).
"""

from collections.abc import Mapping

from pydantic import BaseModel


class GrowthPoint(BaseModel):
    """Growth figures for one period."""

    key: str
    count: int
    growth_rate_percent: float
    previous_count: int


def growth_percent(count: float, previous: float) -> float:
    """Growth from previous to count, in percent, with the zero-baseline rule."""
    if previous == 0:
        return 100.0 if count > 0 else 0.0
    return round((count - previous) / previous * 100, 2)


def growth_rate(bucketed: Mapping[str, int]) -> list[GrowthPoint]:
    """
    Compute growth points for an ordered key -> count mapping.

    Args:
        bucketed: Period key to count, in period order

    Returns:
        One GrowthPoint per period, in the same order
    """
    points: list[GrowthPoint] = []
    previous: int | None = None
    for key, count in bucketed.items():
        if previous is None:
            points.append(GrowthPoint(key=key, count=count, growth_rate_percent=0.0, previous_count=count))
        else:
            points.append(
                GrowthPoint(
                    key=key,
                    count=count,
                    growth_rate_percent=growth_percent(count, previous),
                    previous_count=previous,
                )
            )
        previous = count
    return points


def drop_leading(points: list[GrowthPoint], count: int = 1) -> list[GrowthPoint]:
    """Drop the extra leading period(s) requested with include_prior_period."""
    return points[count:]
