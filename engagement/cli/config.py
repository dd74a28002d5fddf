# ==============================================================================
# Config Commands
# ==============================================================================
"""
Configuration commands for the engagement CLI.
"""

import json
from typing import Annotated

import typer

from engagement.cli.shared import C, I
from engagement.infrastructure import check_postgresql_connection, check_valkey_connection
from engagement.utils.config import get_settings


# ==============================================================================
# Commands
# ==============================================================================


def _status(ok: bool) -> str:
    if ok:
        return f"{C.BRIGHT_GREEN}{I.CHECK} reachable{C.RESET}"
    return f"{C.BRIGHT_RED}{I.CROSS} unreachable{C.RESET}"


def config_show(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output configuration as JSON")
    ] = False,
    check: Annotated[
        bool, typer.Option("--check/--no-check", help="Test store connections")
    ] = True,
) -> None:
    """Display current configuration (includes secrets in JSON mode)."""
    settings = get_settings()
    use_valkey = settings.sessions.backend == "valkey"

    postgres_ok = check_postgresql_connection(settings) if check else None
    valkey_ok = check_valkey_connection(settings) if check and use_valkey else None

    if json_output:
        config = {
            "postgresql": {
                "host": settings.postgres.host,
                "port": settings.postgres.port,
                "database": settings.postgres.database,
                "schema": settings.postgres.schema_name,
                "user": settings.postgres.user,
                "password": settings.postgres.password,
                "sslmode": settings.postgres.sslmode,
                "reachable": postgres_ok,
            },
            "valkey": {
                "host": settings.valkey.host,
                "port": settings.valkey.port,
                "db": settings.valkey.db,
                "ssl_enabled": settings.valkey.ssl,
                "password": settings.valkey.password,
                "key_prefix": settings.valkey.key_prefix,
                "reachable": valkey_ok,
            },
            "sessions": {
                "backend": settings.sessions.backend,
                "timeout_minutes": settings.sessions.timeout_minutes,
                "grace_minutes": settings.sessions.grace_minutes,
                "max_write_attempts": settings.sessions.max_write_attempts,
            },
            "analytics": settings.analytics.model_dump(),
            "auth": {
                "algorithm": settings.auth.algorithm,
                "secret_configured": settings.auth.access_token_secret is not None,
            },
            "log_level": settings.log_level,
        }
        print(json.dumps(config, indent=2))
        return

    print()
    print(f"{C.BOLD}Configuration{C.RESET}")
    print()

    print(f"{C.CYAN}PostgreSQL{C.RESET}")
    print(f"  Host:       {C.WHITE}{settings.postgres.host}:{settings.postgres.port}{C.RESET}")
    print(f"  Database:   {C.WHITE}{settings.postgres.database}{C.RESET}")
    print(f"  Schema:     {C.WHITE}{settings.postgres.schema_name}{C.RESET}")
    print(f"  User:       {C.WHITE}{settings.postgres.user}{C.RESET}")
    print(f"  SSL mode:   {C.WHITE}{settings.postgres.sslmode}{C.RESET}")
    if postgres_ok is not None:
        print(f"  Status:     {_status(postgres_ok)}")
    print()

    print(f"{C.CYAN}Sessions{C.RESET}")
    print(f"  Backend:    {C.WHITE}{settings.sessions.backend}{C.RESET}")
    print(f"  Timeout:    {C.WHITE}{settings.sessions.timeout_minutes} min{C.RESET}")
    print(f"  Grace:      {C.WHITE}{settings.sessions.grace_minutes} min{C.RESET}")
    print()

    if use_valkey:
        print(f"{C.CYAN}Valkey{C.RESET}")
        print(f"  Host:       {C.WHITE}{settings.valkey.host}:{settings.valkey.port}{C.RESET}")
        print(f"  DB:         {C.WHITE}{settings.valkey.db}{C.RESET}")
        print(f"  SSL:        {C.WHITE}{'enabled' if settings.valkey.ssl else 'disabled'}{C.RESET}")
        print(f"  Key prefix: {C.WHITE}{settings.valkey.key_prefix}{C.RESET}")
        if valkey_ok is not None:
            print(f"  Status:     {_status(valkey_ok)}")
        print()

    analytics = settings.analytics
    print(f"{C.CYAN}Analytics{C.RESET}")
    print(
        f"  Lookback:   {C.WHITE}{analytics.daily_lookback_days} days / "
        f"{analytics.weekly_lookback_weeks} weeks / {analytics.monthly_lookback_months} months{C.RESET}"
    )
    print(
        f"  Completion: {C.WHITE}> {analytics.completion_threshold:g}%{C.RESET}  "
        f"Drop-off: {C.WHITE}< {analytics.dropoff_threshold:g}%{C.RESET}"
    )
    print()

    secret = "configured" if settings.auth.access_token_secret else f"{C.BRIGHT_YELLOW}not set{C.RESET}"
    print(f"{C.CYAN}Auth{C.RESET}")
    print(f"  Algorithm:  {C.WHITE}{settings.auth.algorithm}{C.RESET}")
    print(f"  Secret:     {C.WHITE}{secret}{C.RESET}")
    print()
