"""Application services built on the core logic and the store contracts."""

from engagement.services.analytics import AnalyticsService

__all__ = ["AnalyticsService"]
