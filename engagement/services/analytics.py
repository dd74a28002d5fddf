# ==============================================================================
# Analytics Service
# ==============================================================================
"""
Time-bucketed engagement metrics over arbitrary ranges.

Each report follows the same recipe:
1. Canonicalize the requested range to whole periods (core.periods).
2. Pull the raw rows for the range with one repository call.
3. Drop bad rows (data quality filters), counting them.
4. Fold rows into zero-filled buckets and read them with a reducer.
5. Add summary figures.

Reports are read-only and idempotent. Bad rows never fail a report; an
invalid range or an unavailable store does.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Optional, Union

from engagement.base.repositories import EventRepository, SessionStore
from engagement.core.buckets import Reducer, aggregate, bucketize
from engagement.core.growth import drop_leading, growth_rate
from engagement.core.models import Granularity
from engagement.core.periods import (
    DateLike,
    canonicalize_range,
    enumerate_periods,
    parse_granularity,
    period_key_of,
    to_utc,
    unit_end,
    unit_start,
    utc_now,
)
from engagement.core.quality import (
    DataQualityReport,
    classify_completion,
    filter_completed_sessions,
    filter_watch_events,
)
from engagement.core.reports import (
    ActiveUserCount,
    ActiveUserTrendReport,
    CompletionPoint,
    CompletionReport,
    CountPoint,
    GrowthReport,
    RetentionReport,
    SessionDurationPoint,
    SessionDurationReport,
    SessionEngagementPoint,
    SessionEngagementReport,
    WatchPercentagePoint,
    WatchPercentageReport,
)
from engagement.core.retention import compute_retention
from engagement.utils.config import AnalyticsSettings, get_settings

logger = logging.getLogger(__name__)

GranularityLike = Union[str, Granularity]


def _rate(part: int, total: int) -> float:
    """Percentage of total, 2 dp; 0 when total is 0."""
    if total == 0:
        return 0.0
    return round(part / total * 100, 2)


class _Range:
    """A canonicalized request: granularity, bounds and period keys."""

    def __init__(self, granularity: Granularity, start: datetime, end: datetime):
        self.granularity = granularity
        self.start = start
        self.end = end
        self.periods = enumerate_periods(start, end, granularity)

    @property
    def start_key(self) -> str:
        return self.periods[0]

    @property
    def end_key(self) -> str:
        return self.periods[-1]


class AnalyticsService:
    """
    Engagement analytics over login, session and watch data.

    Args:
        events: Login and watch activity
        sessions: Session store (read methods only)
        settings: Lookback windows and completion thresholds. If None, uses
            get_settings().analytics.
        clock: Returns the current time; defaults ranges end "today"
    """

    def __init__(
        self,
        events: EventRepository,
        sessions: SessionStore,
        settings: AnalyticsSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._events = events
        self._sessions = sessions
        self._settings = settings or get_settings().analytics
        self._clock = clock

    def _lookback(self, granularity: Granularity) -> int:
        return {
            Granularity.DAILY: self._settings.daily_lookback_days,
            Granularity.WEEKLY: self._settings.weekly_lookback_weeks,
            Granularity.MONTHLY: self._settings.monthly_lookback_months,
        }[granularity]

    def _range(
        self,
        start: Optional[DateLike],
        end: Optional[DateLike],
        granularity: GranularityLike,
        include_prior_period: bool = False,
    ) -> _Range:
        g = parse_granularity(granularity)
        range_start, range_end = canonicalize_range(
            start,
            end,
            g,
            include_prior_period=include_prior_period,
            today=self._clock(),
            lookback=self._lookback(g),
        )
        return _Range(g, range_start, range_end)

    # ==========================================================================
    # Active users
    # ==========================================================================

    def active_user_count(
        self, day: Optional[DateLike] = None, granularity: GranularityLike = Granularity.DAILY
    ) -> ActiveUserCount:
        """
        Distinct users with a successful login in the period containing `day`.

        Args:
            day: Any instant inside the period (defaults to now)
            granularity: Period width
        """
        g = parse_granularity(granularity)
        reference = to_utc(day) if day is not None else to_utc(self._clock())
        start, end = unit_start(reference, g), unit_end(reference, g)
        logins = self._events.logins_between(start, end, successful_only=True)
        users = {login.user_id for login in logins if login.successful}
        return ActiveUserCount(key=period_key_of(reference, g), granularity=g, count=len(users))

    def active_user_trend(
        self,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
        granularity: GranularityLike = Granularity.DAILY,
    ) -> ActiveUserTrendReport:
        """Distinct active users per period."""
        r = self._range(start, end, granularity)
        logins = [
            login
            for login in self._events.logins_between(r.start, r.end, successful_only=True)
            if login.successful
        ]
        counts = aggregate(
            ((login.timestamp, login.user_id) for login in logins),
            r.periods,
            Reducer.DISTINCT_COUNT,
            r.granularity,
        )
        data = [CountPoint(key=key, count=count) for key, count in counts.items()]
        peak = max(data, key=lambda p: p.count) if data else None
        return ActiveUserTrendReport(
            start_key=r.start_key,
            end_key=r.end_key,
            granularity=r.granularity,
            data=data,
            total_active_users=len({login.user_id for login in logins}),
            peak_count=peak.count if peak else 0,
            peak_key=peak.key if peak and peak.count else None,
        )

    def growth_rate_trend(
        self,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
        granularity: GranularityLike = Granularity.MONTHLY,
    ) -> GrowthReport:
        """
        Period-over-period growth of distinct active users.

        One extra period before the requested start is fetched so the first
        reported period has a real growth rate; it is not part of the output.
        """
        r = self._range(start, end, granularity, include_prior_period=True)
        logins = self._events.logins_between(r.start, r.end, successful_only=True)
        counts = aggregate(
            ((login.timestamp, login.user_id) for login in logins if login.successful),
            r.periods,
            Reducer.DISTINCT_COUNT,
            r.granularity,
        )
        points = drop_leading(growth_rate(counts))
        average = round(sum(p.growth_rate_percent for p in points) / len(points), 2) if points else 0.0
        return GrowthReport(
            start_key=r.periods[1] if len(r.periods) > 1 else r.start_key,
            end_key=r.end_key,
            granularity=r.granularity,
            data=points,
            average_growth_rate=average,
        )

    def retention_cohorts(
        self,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
        granularity: GranularityLike = Granularity.MONTHLY,
    ) -> RetentionReport:
        """Cohorts by period of first login in range, with per-offset retention."""
        r = self._range(start, end, granularity)
        logins = self._events.logins_between(r.start, r.end, successful_only=True)
        rows = compute_retention(
            ((login.timestamp, login.user_id) for login in logins if login.successful),
            r.start,
            r.end,
            r.granularity,
        )
        return RetentionReport(
            start_key=r.start_key,
            end_key=r.end_key,
            granularity=r.granularity,
            data=rows,
            total_users=sum(row.size for row in rows),
        )

    # ==========================================================================
    # Sessions
    # ==========================================================================

    def session_duration_stats(
        self,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
        granularity: GranularityLike = Granularity.DAILY,
    ) -> SessionDurationReport:
        """
        Average duration of completed sessions, by period of session start.

        Sessions with a non-positive duration or one over 24 hours are skipped.
        """
        r = self._range(start, end, granularity)
        quality = DataQualityReport()
        kept = filter_completed_sessions(
            self._sessions.sessions_started_between(r.start, r.end, completed_only=True), quality
        )
        buckets = bucketize(
            ((session.start_time, minutes) for session, minutes in kept),
            r.periods,
            r.granularity,
            Reducer.AVERAGE,
        )
        data = [
            SessionDurationPoint(
                key=key,
                session_count=bucket.count,
                average_duration_minutes=round(bucket.average, 1),
            )
            for key, bucket in buckets.items()
        ]
        total = sum(bucket.count for bucket in buckets.values())
        total_minutes = sum(bucket.total for bucket in buckets.values())
        quality.log_summary("session_duration_stats")
        return SessionDurationReport(
            start_key=r.start_key,
            end_key=r.end_key,
            granularity=r.granularity,
            data=data,
            total_sessions=total,
            average_duration_minutes=round(total_minutes / total, 1) if total else 0.0,
            skipped_rows=quality.total,
            data_quality=quality.to_dict(),
        )

    def session_engagement_trend(
        self,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
        granularity: GranularityLike = Granularity.DAILY,
    ) -> SessionEngagementReport:
        """Sessions started per period and the share that engaged with content."""
        r = self._range(start, end, granularity)
        sessions = self._sessions.sessions_started_between(r.start, r.end)
        started = aggregate(((s.start_time, None) for s in sessions), r.periods, Reducer.COUNT, r.granularity)
        engaged = aggregate(
            ((s.start_time, None) for s in sessions if s.content_engaged),
            r.periods,
            Reducer.COUNT,
            r.granularity,
        )
        data = [
            SessionEngagementPoint(
                key=key,
                sessions=started[key],
                engaged_sessions=engaged[key],
                engagement_rate=_rate(engaged[key], started[key]),
            )
            for key in r.periods
        ]
        total = sum(started.values())
        total_engaged = sum(engaged.values())
        return SessionEngagementReport(
            start_key=r.start_key,
            end_key=r.end_key,
            granularity=r.granularity,
            data=data,
            total_sessions=total,
            engaged_sessions=total_engaged,
            engagement_rate=_rate(total_engaged, total),
        )

    # ==========================================================================
    # Watch progress
    # ==========================================================================

    def watch_completion_stats(
        self,
        video_id: Optional[str] = None,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
        granularity: GranularityLike = Granularity.DAILY,
    ) -> CompletionReport:
        """
        Completed / partial / dropped views per period.

        Args:
            video_id: Only this video; all videos when None
        """
        r = self._range(start, end, granularity)
        quality = DataQualityReport()
        events = self._events.watch_events_between(r.start, r.end, video_id, quality=quality)
        kept = filter_watch_events(events, quality)

        points = {key: CompletionPoint(key=key) for key in r.periods}
        overall = CompletionPoint(key="overall")
        for event, percent in kept:
            point = points.get(period_key_of(event.start_time, r.granularity))
            if point is None:
                continue
            outcome = classify_completion(
                percent, self._settings.completion_threshold, self._settings.dropoff_threshold
            )
            for target in (point, overall):
                target.total_views += 1
                setattr(target, outcome, getattr(target, outcome) + 1)

        for point in [*points.values(), overall]:
            point.completion_rate = _rate(point.completed, point.total_views)
            point.partial_rate = _rate(point.partial, point.total_views)
            point.dropoff_rate = _rate(point.dropped, point.total_views)

        quality.log_summary("watch_completion_stats")
        return CompletionReport(
            start_key=r.start_key,
            end_key=r.end_key,
            granularity=r.granularity,
            video_id=video_id,
            data=list(points.values()),
            overall=overall,
            skipped_rows=quality.total,
            data_quality=quality.to_dict(),
        )

    def average_watch_percentage(
        self,
        video_id: Optional[str] = None,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
        granularity: GranularityLike = Granularity.DAILY,
    ) -> WatchPercentageReport:
        """Average normalized watch percentage per period."""
        r = self._range(start, end, granularity)
        quality = DataQualityReport()
        events = self._events.watch_events_between(r.start, r.end, video_id, quality=quality)
        kept = filter_watch_events(events, quality)
        buckets = bucketize(
            ((event.start_time, percent) for event, percent in kept),
            r.periods,
            r.granularity,
            Reducer.AVERAGE,
        )
        data = [
            WatchPercentagePoint(key=key, views=bucket.count, average_percent=round(bucket.average, 2))
            for key, bucket in buckets.items()
        ]
        views = sum(bucket.count for bucket in buckets.values())
        total_percent = sum(bucket.total for bucket in buckets.values())
        quality.log_summary("average_watch_percentage")
        return WatchPercentageReport(
            start_key=r.start_key,
            end_key=r.end_key,
            granularity=r.granularity,
            video_id=video_id,
            data=data,
            total_views=views,
            average_percent=round(total_percent / views, 2) if views else 0.0,
            skipped_rows=quality.total,
            data_quality=quality.to_dict(),
        )
