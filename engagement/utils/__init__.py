# ==============================================================================
# Engagement Utilities
# ==============================================================================
"""
Shared utilities: configuration, schema management and retry policies.
"""

from engagement.utils.config import (
    AnalyticsSettings,
    AuthSettings,
    PostgresSettings,
    SessionSettings,
    Settings,
    ValkeySettings,
    get_settings,
)
from engagement.utils.db import (
    ensure_schema,
    reset_schema,
)

__all__ = [
    # Config
    "AnalyticsSettings",
    "AuthSettings",
    "PostgresSettings",
    "SessionSettings",
    "Settings",
    "ValkeySettings",
    "get_settings",
    # Database
    "ensure_schema",
    "reset_schema",
]
