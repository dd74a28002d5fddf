# ==============================================================================
# Database Repository Adapters
# ==============================================================================
"""
Database adapters implementing the repository interfaces from base/repositories.py.

Currently supported:
- PostgreSQL (postgresql.py)
"""

from engagement.infrastructure.repositories.postgresql import (
    PostgreSQLEventRepository,
    PostgreSQLSessionStore,
    check_postgresql_connection,
)

__all__ = [
    "PostgreSQLEventRepository",
    "PostgreSQLSessionStore",
    "check_postgresql_connection",
]
