# ==============================================================================
# Engagement CLI
# ==============================================================================
"""
Command-line interface for user session tracking and engagement analytics.

Usage:
    engagement --help
    engagement config show
    engagement db init
    engagement db reset -y
    engagement sessions list
    engagement sessions sweep
    engagement analytics trend -g weekly
    engagement analytics retention
"""

import logging

# ==============================================================================
# App Configuration
# ==============================================================================
# Set consistent terminal width for help output formatting
import os

import typer

from engagement.utils.config import get_settings

if "COLUMNS" not in os.environ:
    os.environ["COLUMNS"] = "115"

app = typer.Typer(
    name="engagement",
    help="User session tracking and engagement analytics CLI",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

analytics_app = typer.Typer(
    help="Engagement reports",
    no_args_is_help=True,
)
app.add_typer(analytics_app, name="analytics")

# Register analytics commands from cli.analytics module
from engagement.cli.analytics import (
    active_user_trend,
    active_users,
    completion,
    engagement,
    growth,
    retention,
    sessions,
    watch_percentage,
)

analytics_app.command("active-users")(active_users)
analytics_app.command("trend")(active_user_trend)
analytics_app.command("growth")(growth)
analytics_app.command("retention")(retention)
analytics_app.command("sessions")(sessions)
analytics_app.command("engagement")(engagement)
analytics_app.command("completion")(completion)
analytics_app.command("watch-percentage")(watch_percentage)

sessions_app = typer.Typer(
    help="Session administration",
    no_args_is_help=True,
)
app.add_typer(sessions_app, name="sessions")

# Register session commands from cli.sessions module
from engagement.cli.sessions import sessions_end, sessions_end_user, sessions_list, sessions_sweep

sessions_app.command("list")(sessions_list)
sessions_app.command("end")(sessions_end)
sessions_app.command("end-user")(sessions_end_user)
sessions_app.command("sweep")(sessions_sweep)

db_app = typer.Typer(
    help="Database management operations",
    no_args_is_help=True,
)
app.add_typer(db_app, name="db")

# Register database commands from cli.data module
from engagement.cli.data import db_init, db_reset

db_app.command("init")(db_init)
db_app.command("reset")(db_reset)

config_app = typer.Typer(
    help="Configuration management",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")

# Register config commands from cli.config module
from engagement.cli.config import config_show

config_app.command("show")(config_show)


# ==============================================================================
# Entry Point
# ==============================================================================


def main() -> None:
    """CLI entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app()


if __name__ == "__main__":
    main()
