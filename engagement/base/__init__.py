# ==============================================================================
# Base Abstract Classes
# ==============================================================================
"""
Abstract base classes defining the contracts for the ports-and-adapters architecture.

The session lifecycle and the analytics service depend only on these; the
PostgreSQL, Valkey and JWT adapters in infrastructure/ implement them.
"""

from engagement.base.identity import (
    Identity,
    IdentityResolver,
    IdentityStatus,
    NoIdentityResolver,
)
from engagement.base.repositories import EventRepository, SessionStore

__all__ = [
    "EventRepository",
    "Identity",
    "IdentityResolver",
    "IdentityStatus",
    "NoIdentityResolver",
    "SessionStore",
]
