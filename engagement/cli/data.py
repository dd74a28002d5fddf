# ==============================================================================
# Database Commands
# ==============================================================================
"""
Database management commands for the engagement CLI.

Commands for creating and resetting the PostgreSQL schema (and the Valkey
session keys when that backend is configured).
"""

from typing import Annotated

import typer

from engagement.cli.shared import C, print_error, print_success
from engagement.infrastructure import (
    ValkeySessionStore,
    check_postgresql_connection,
    check_valkey_connection,
)
from engagement.utils.config import get_settings


# ==============================================================================
# Commands
# ==============================================================================


def db_init() -> None:
    """Create the database schema if it does not exist.

    Safe to run more than once.

    Examples:
        engagement db init
    """
    from engagement.utils.db import ensure_schema

    settings = get_settings()
    schema = settings.postgres.schema_name

    print()
    print(f"  Initializing PostgreSQL schema '{C.WHITE}{schema}{C.RESET}'...")
    if not check_postgresql_connection(settings):
        print_error("Cannot connect to PostgreSQL")
        raise typer.Exit(1)

    try:
        created = ensure_schema(settings)
    except RuntimeError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if created:
        print_success(f"Schema '{schema}' created")
    else:
        print_success(f"Schema '{schema}' already exists")
    print()


def db_reset(
    confirm: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Drop and recreate the database schema.

    With SESSION_BACKEND=valkey the session keys are deleted as well.

    Examples:
        engagement db reset       # With confirmation prompt
        engagement db reset -y    # Skip confirmation
    """
    from engagement.utils.db import reset_schema

    settings = get_settings()
    schema = settings.postgres.schema_name
    use_valkey = settings.sessions.backend == "valkey"

    if not confirm:
        stores = "PostgreSQL and Valkey" if use_valkey else "PostgreSQL"
        typer.confirm(f"This will DELETE all engagement data from {stores}. Are you sure?", abort=True)

    print()
    print(f"  Resetting PostgreSQL schema '{C.WHITE}{schema}{C.RESET}'...")
    if not check_postgresql_connection(settings):
        print_error("Cannot connect to PostgreSQL")
        raise typer.Exit(1)
    try:
        reset_schema(settings)
    except RuntimeError as e:
        print_error(f"Failed to reset PostgreSQL: {e}")
        raise typer.Exit(1)
    print_success("PostgreSQL reset")

    if use_valkey:
        print(f"  Deleting Valkey keys '{C.WHITE}{settings.valkey.key_prefix}:*{C.RESET}'...")
        if not check_valkey_connection(settings):
            print_error("Cannot connect to Valkey")
            raise typer.Exit(1)
        store = ValkeySessionStore(settings=settings)
        try:
            deleted = store.clear_all()
        finally:
            store.close()
        print_success(f"Valkey cleared ({deleted:,} keys)")
    print()
