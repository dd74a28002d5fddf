# ==============================================================================
# Infrastructure Adapters
# ==============================================================================
"""
Adapters for external services (ports-and-adapters architecture).

This module contains concrete implementations of the base/ contracts:
- repositories/ - PostgreSQL session store and event repository
- session_store.py - Valkey session store
- identity.py - JWT identity resolver

get_session_store() picks the session backend from settings.
"""

from engagement.base.repositories import SessionStore
from engagement.infrastructure.identity import JwtIdentityResolver
from engagement.infrastructure.repositories import (
    PostgreSQLEventRepository,
    PostgreSQLSessionStore,
    check_postgresql_connection,
)
from engagement.infrastructure.session_store import (
    ValkeySessionStore,
    check_valkey_connection,
)
from engagement.utils.config import Settings, get_settings


def get_session_store(settings: Settings | None = None) -> SessionStore:
    """
    Get a session store based on configuration.

    The store is determined by the SESSION_BACKEND environment variable:
    - "postgresql" (default): user_sessions table with guarded UPDATEs
    - "valkey": Valkey hashes with WATCH/MULTI/EXEC transactions

    The store is not connected yet; call connect() before use.

    Raises:
        ValueError: If an unknown backend is configured
    """
    settings = settings or get_settings()
    backend = settings.sessions.backend

    match backend:
        case "postgresql":
            return PostgreSQLSessionStore(settings)
        case "valkey":
            return ValkeySessionStore(settings=settings)
        case _:
            raise ValueError(
                f"Unknown session backend: '{backend}'.\n"
                "Valid options are: postgresql, valkey"
            )


__all__ = [
    "JwtIdentityResolver",
    "PostgreSQLEventRepository",
    "PostgreSQLSessionStore",
    "ValkeySessionStore",
    "check_postgresql_connection",
    "check_valkey_connection",
    "get_session_store",
]
