# ==============================================================================
# Database Utilities
# ==============================================================================
"""
Database utility functions for the engagement store.

Provides schema initialization and reset. The schema is a Jinja2 template
(schema/init.sql) rendered with the configured schema name.
Includes retry logic with exponential backoff for network resilience.
"""

import logging
from pathlib import Path

import psycopg2
from jinja2 import Template

from engagement.utils.config import Settings, get_settings
from engagement.utils.paths import get_init_sql_path
from engagement.utils.retry import POSTGRES_RETRY_EXCEPTIONS, retry_standard

logger = logging.getLogger(__name__)


def get_schema_file() -> Path | None:
    """Get the schema init.sql path, or None if not found."""
    path = get_init_sql_path()
    if path.exists():
        return path
    # Fallback to current directory
    cwd_path = Path.cwd() / "schema" / "init.sql"
    if cwd_path.exists():
        return cwd_path
    return None


def render_schema_sql(schema_name: str) -> str:
    """Render the schema SQL template with the given schema name."""
    schema_file = get_schema_file()
    if not schema_file:
        raise RuntimeError("Schema file (schema/init.sql) not found.")

    template = Template(schema_file.read_text())
    return template.render(schema_name=schema_name)


@retry_standard(POSTGRES_RETRY_EXCEPTIONS, logger)
def check_schema_exists(settings: Settings | None = None) -> bool:
    """
    Check if the sessions table exists.

    Retries on connection errors with exponential backoff (10 attempts, ~60 seconds).
    """
    settings = settings or get_settings()
    with psycopg2.connect(settings.postgres.connection_string, connect_timeout=5) as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT EXISTS (
                    SELECT FROM information_schema.tables
                    WHERE table_schema = %s
                    AND table_name = 'user_sessions'
                )
                """,
                (settings.postgres.schema_name,),
            )
            result = cur.fetchone()
            return bool(result[0]) if result else False


@retry_standard(POSTGRES_RETRY_EXCEPTIONS, logger)
def ensure_schema(settings: Settings | None = None) -> bool:
    """
    Ensure the database schema exists, initializing it if needed.

    This function is idempotent and safe to call multiple times.

    Returns:
        True if the schema was created, False if it already existed

    Raises:
        RuntimeError: If the schema file is missing or initialization fails
    """
    settings = settings or get_settings()
    if check_schema_exists(settings):
        return False

    schema_name = settings.postgres.schema_name
    logger.info("Initializing database schema '%s'...", schema_name)

    schema_sql = render_schema_sql(schema_name)
    try:
        with psycopg2.connect(settings.postgres.connection_string) as conn:
            with conn.cursor() as cur:
                cur.execute(schema_sql)
            conn.commit()
    except POSTGRES_RETRY_EXCEPTIONS:
        raise
    except psycopg2.Error as e:
        raise RuntimeError(f"Failed to initialize schema: {e}") from e
    logger.info("Database schema '%s' initialized.", schema_name)
    return True


def reset_schema(settings: Settings | None = None) -> None:
    """
    Drop and recreate the database schema.

    WARNING: This deletes all data in the schema!
    """
    settings = settings or get_settings()
    schema_name = settings.postgres.schema_name

    schema_sql = render_schema_sql(schema_name)
    try:
        with psycopg2.connect(settings.postgres.connection_string) as conn:
            with conn.cursor() as cur:
                # Drop schema with all objects
                cur.execute(f"DROP SCHEMA IF EXISTS {schema_name} CASCADE")
                # Run the full init (which creates the schema)
                cur.execute(schema_sql)
            conn.commit()
    except psycopg2.Error as e:
        raise RuntimeError(f"Failed to reset schema: {e}") from e
    logger.warning("Database schema '%s' dropped and recreated.", schema_name)
