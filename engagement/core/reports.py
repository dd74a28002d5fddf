# ==============================================================================
# Analytics Report Models
# ==============================================================================
"""
Pydantic models returned by AnalyticsService.

Every range report carries the canonical start/end keys, the granularity, a
gap-free `data` series (one point per period, zero-filled) and summary
figures. `skipped_rows` counts input rows left out by the data quality
filters; `data_quality` breaks that count down by reason.
"""

from typing import Optional

from pydantic import BaseModel, Field

from engagement.core.growth import GrowthPoint
from engagement.core.models import Granularity
from engagement.core.retention import CohortRow


class RangeReport(BaseModel):
    """Fields shared by every range report."""

    start_key: str
    end_key: str
    granularity: Granularity
    skipped_rows: int = 0
    data_quality: dict[str, int] = Field(default_factory=dict)


class ActiveUserCount(BaseModel):
    """Distinct active users in a single period."""

    key: str
    granularity: Granularity
    count: int


class CountPoint(BaseModel):
    key: str
    count: int


class ActiveUserTrendReport(RangeReport):
    data: list[CountPoint]
    total_active_users: int = Field(description="Distinct users over the whole range")
    peak_count: int = 0
    peak_key: Optional[str] = None


class GrowthReport(RangeReport):
    data: list[GrowthPoint]
    average_growth_rate: float = 0.0


class RetentionReport(RangeReport):
    data: list[CohortRow]
    total_users: int = Field(description="Actors across all cohorts")


class SessionDurationPoint(BaseModel):
    key: str
    session_count: int
    average_duration_minutes: float


class SessionDurationReport(RangeReport):
    data: list[SessionDurationPoint]
    total_sessions: int
    average_duration_minutes: float


class SessionEngagementPoint(BaseModel):
    key: str
    sessions: int
    engaged_sessions: int
    engagement_rate: float


class SessionEngagementReport(RangeReport):
    data: list[SessionEngagementPoint]
    total_sessions: int
    engaged_sessions: int
    engagement_rate: float


class CompletionPoint(BaseModel):
    """
    Watch outcomes for one period.

    completed: percent above the completion threshold
    partial: between the thresholds, both inclusive
    dropped: below the drop-off threshold
    """

    key: str
    total_views: int = 0
    completed: int = 0
    partial: int = 0
    dropped: int = 0
    completion_rate: float = 0.0
    partial_rate: float = 0.0
    dropoff_rate: float = 0.0


class CompletionReport(RangeReport):
    video_id: Optional[str] = None
    data: list[CompletionPoint]
    overall: CompletionPoint


class WatchPercentagePoint(BaseModel):
    key: str
    views: int
    average_percent: float


class WatchPercentageReport(RangeReport):
    video_id: Optional[str] = None
    data: list[WatchPercentagePoint]
    total_views: int
    average_percent: float
