# ==============================================================================
# Core Domain Logic
# ==============================================================================
"""
Pure domain logic with no store dependencies.

This module contains:
- Domain models (Session, LoginActivity, WatchEvent, ...)
- Period arithmetic and bucketing for analytics
- Growth, retention and data quality rules
- Session lifecycle (heartbeat, expiry, renewal) in
  engagement.core.session_lifecycle, not re-exported here

Everything here works against the base/ contracts and is unit-testable
with in-memory fakes.
"""

from engagement.core.errors import (
    EngagementError,
    ForbiddenError,
    InvalidRangeError,
    NotFoundError,
    StoreUnavailableError,
)
from engagement.core.models import (
    ClientContext,
    DeviceInfo,
    Granularity,
    HeartbeatResult,
    HeartbeatStatus,
    LoginActivity,
    Session,
    WatchEvent,
)

__all__ = [
    # Errors
    "EngagementError",
    "ForbiddenError",
    "InvalidRangeError",
    "NotFoundError",
    "StoreUnavailableError",
    # Models
    "ClientContext",
    "DeviceInfo",
    "Granularity",
    "HeartbeatResult",
    "HeartbeatStatus",
    "LoginActivity",
    "Session",
    "WatchEvent",
]
