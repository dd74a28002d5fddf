# ==============================================================================
# Path Constants and Utilities
# ==============================================================================
"""
Centralized project paths.

The schema template ships inside the package so an installed copy can
initialize the database without the source checkout.
"""

from pathlib import Path

# utils/paths.py -> engagement
PACKAGE_DIR = Path(__file__).parent.parent


def get_schema_dir() -> Path:
    """
    Get the directory holding the SQL templates.

    Returns:
        Path to the schema directory
    """
    return PACKAGE_DIR / "schema"


def get_init_sql_path() -> Path:
    """
    Get the path to the database initialization SQL template.

    Returns:
        Path to init.sql
    """
    return get_schema_dir() / "init.sql"
