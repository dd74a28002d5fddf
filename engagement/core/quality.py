# ==============================================================================
# Data Quality Filters - Pure Domain Logic
# ==============================================================================
"""
Row-level validation for analytics inputs.

Bad rows never fail a report. They are skipped, counted per reason in a
DataQualityReport and logged, and the report's `skipped_rows` tells the
caller how much was left out.
"""

import logging
from collections import Counter
from collections.abc import Iterable
from datetime import timedelta
from typing import Optional

from engagement.core.models import Session, WatchEvent

logger = logging.getLogger(__name__)

MAX_DURATION = timedelta(hours=24)

# Skip reasons
PERCENT_OUT_OF_RANGE = "percent_out_of_range"
NO_WATCH_TIME = "no_watch_time"
WATCH_DURATION_OUT_OF_RANGE = "watch_duration_out_of_range"
SESSION_NOT_CLOSED = "session_not_closed"
SESSION_DURATION_OUT_OF_RANGE = "session_duration_out_of_range"
MALFORMED_ROW = "malformed_row"


def normalize_percent(raw: float) -> float:
    """
    Bring a watch percentage to the 0-100 scale.

    Values above 1.0 are taken as percentages already; values up to 1.0 are
    fractions and are multiplied by 100. A true 1% watch stored as 1.0 is
    therefore read as 100%, which matches how legacy producers wrote it.
    """
    if raw > 1.0:
        return float(raw)
    return float(raw) * 100


class DataQualityReport:
    """Counts of skipped rows, by reason."""

    def __init__(self):
        self.skipped: Counter[str] = Counter()

    def record(self, reason: str, row_id: object = None) -> None:
        self.skipped[reason] += 1
        logger.debug("Skipping row %s: %s", row_id, reason)

    @property
    def total(self) -> int:
        return sum(self.skipped.values())

    def to_dict(self) -> dict[str, int]:
        return dict(self.skipped)

    def log_summary(self, report_name: str) -> None:
        """Log one INFO line when anything was skipped."""
        if self.total:
            reasons = ", ".join(f"{reason}={count}" for reason, count in sorted(self.skipped.items()))
            logger.info("%s skipped %d rows (%s)", report_name, self.total, reasons)


def watch_skip_reason(event: WatchEvent) -> Optional[str]:
    """Reason to exclude a watch event, or None if it is usable."""
    percent = normalize_percent(event.percent_watched)
    if percent < 0 or percent > 100:
        return PERCENT_OUT_OF_RANGE
    if event.seconds_watched <= 0:
        return NO_WATCH_TIME
    if event.end_time is not None:
        duration = event.end_time - event.start_time
        if duration <= timedelta(0) or duration > MAX_DURATION:
            return WATCH_DURATION_OUT_OF_RANGE
    return None


def filter_watch_events(
    events: Iterable[WatchEvent], report: DataQualityReport
) -> list[tuple[WatchEvent, float]]:
    """
    Keep usable watch events.

    Returns:
        (event, normalized_percent) pairs for every event that passed
    """
    kept: list[tuple[WatchEvent, float]] = []
    for event in events:
        reason = watch_skip_reason(event)
        if reason:
            report.record(reason, event.id)
            continue
        kept.append((event, normalize_percent(event.percent_watched)))
    return kept


def session_skip_reason(session: Session) -> Optional[str]:
    """Reason to exclude a session from duration statistics, or None."""
    if session.is_active or session.end_time is None:
        return SESSION_NOT_CLOSED
    duration = session.end_time - session.start_time
    if duration <= timedelta(0) or duration > MAX_DURATION:
        return SESSION_DURATION_OUT_OF_RANGE
    return None


def filter_completed_sessions(
    sessions: Iterable[Session], report: DataQualityReport
) -> list[tuple[Session, float]]:
    """
    Keep closed sessions with a plausible duration.

    Returns:
        (session, duration_minutes) pairs
    """
    kept: list[tuple[Session, float]] = []
    for session in sessions:
        reason = session_skip_reason(session)
        if reason:
            report.record(reason, session.id)
            continue
        kept.append((session, session.duration_minutes))
    return kept


def classify_completion(
    percent: float, completion_threshold: float = 70.0, dropoff_threshold: float = 30.0
) -> str:
    """Classify a normalized watch percentage as completed, partial or dropped."""
    if percent > completion_threshold:
        return "completed"
    if percent < dropoff_threshold:
        return "dropped"
    return "partial"
