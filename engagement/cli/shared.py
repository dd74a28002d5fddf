# ==============================================================================
# Shared Utilities for CLI Commands
# ==============================================================================
"""
Shared utilities, constants, and helper functions used across CLI command modules.

This module provides:
- ANSI color codes and box-drawing characters
- Box drawing helpers for formatted output
- Store / service wiring for commands
- Option parsing helpers
"""

import json
import re
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, date, datetime
from typing import Optional

import psycopg2
import redis
import typer

from engagement.core.errors import EngagementError
from engagement.core.session_lifecycle import SessionLifecycleManager
from engagement.infrastructure import (
    JwtIdentityResolver,
    PostgreSQLEventRepository,
    get_session_store,
)
from engagement.services.analytics import AnalyticsService
from engagement.utils.config import get_settings

# ==============================================================================
# Constants
# ==============================================================================

# Box drawing width (unified for all commands)
BOX_WIDTH = 68

_ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m")


# ==============================================================================
# ANSI Colors and Box Drawing
# ==============================================================================


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    # Colors
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    # Bright colors
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_YELLOW = "\033[93m"


class Box:
    """Unicode box-drawing characters."""

    H = "─"  # horizontal
    V = "│"  # vertical
    TL = "┌"  # top-left
    TR = "┐"  # top-right
    BL = "└"  # bottom-left
    BR = "┘"  # bottom-right
    LT = "├"  # left-tee
    RT = "┤"  # right-tee


class Icons:
    """Status icons using Unicode symbols."""

    CHECK = "✓"
    CROSS = "✗"
    WARN = "!"
    BULLET = "•"
    DATABASE = "◆"


# Module-level aliases for convenience
C, B, I = Colors, Box, Icons


def _visible_len(s: str) -> int:
    """Calculate visible length of string, ignoring ANSI escape codes."""
    return len(_ANSI_ESCAPE_PATTERN.sub("", s))


def _box_header(title: str, width: int = BOX_WIDTH) -> str:
    """Create a single-line box header."""
    inner_width = width - 2
    title_padded = f" {title} "
    left_bar = (inner_width - len(title_padded)) // 2
    right_bar = inner_width - left_bar - len(title_padded)
    return (
        f"{C.CYAN}{B.TL}{B.H * left_bar}{C.BOLD}{C.WHITE}{title_padded}"
        f"{C.RESET}{C.CYAN}{B.H * right_bar}{B.TR}{C.RESET}"
    )


def _section_header_plain(title: str, width: int = BOX_WIDTH) -> str:
    """Create a section header without icon."""
    inner_width = width - 2
    title_padded = f" {title} "
    bar_len = inner_width - len(title_padded) - 1  # -1 for the first H after LT
    return (
        f"{C.CYAN}{B.LT}{B.H}{C.BOLD}{title_padded}{C.RESET}{C.CYAN}{B.H * bar_len}{B.RT}{C.RESET}"
    )


def _box_line(content: str, width: int = BOX_WIDTH) -> str:
    """Create a line inside the box with proper padding to right border."""
    inner_width = width - 2
    padding = max(inner_width - _visible_len(content), 0)
    return f"{C.CYAN}{B.V}{C.RESET}{content}{' ' * padding}{C.CYAN}{B.V}{C.RESET}"


def _empty_line(width: int = BOX_WIDTH) -> str:
    """Create an empty line inside the box."""
    return f"{C.CYAN}{B.V}{' ' * (width - 2)}{B.V}{C.RESET}"


def _box_bottom(footer: str = "", width: int = BOX_WIDTH) -> str:
    """Create a box bottom border with an optional centered footer."""
    text = f" {footer} " if footer else ""
    remaining = width - 2 - len(text)  # -2 for corners
    left_pad = remaining // 2
    right_pad = remaining - left_pad
    return f"{C.CYAN}{B.BL}{B.H * left_pad}{text}{B.H * right_pad}{B.BR}{C.RESET}"


def _separator(width: int = BOX_WIDTH) -> str:
    """Dashed separator row for tables inside a box."""
    return _box_line("  " + B.H * (width - 6), width)


def print_error(message: str) -> None:
    print(f"{C.BRIGHT_RED}{I.CROSS} {message}{C.RESET}")


def print_success(message: str) -> None:
    print(f"{C.BRIGHT_GREEN}{I.CHECK} {message}{C.RESET}")


# ==============================================================================
# Option Parsing
# ==============================================================================


def parse_date_option(value: Optional[str], option_name: str) -> Optional[date]:
    """
    Parse a YYYY-MM-DD option value.

    Raises:
        typer.BadParameter: If the value is not a valid date
    """
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=UTC).date()
    except ValueError:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got '{value}'", param_hint=option_name)


# ==============================================================================
# Service Wiring
# ==============================================================================


@contextmanager
def analytics_service() -> Iterator[AnalyticsService]:
    """Connect the configured stores and yield an AnalyticsService."""
    settings = get_settings()
    events = PostgreSQLEventRepository(settings)
    sessions = get_session_store(settings)
    events.connect()
    try:
        sessions.connect()
        try:
            yield AnalyticsService(events, sessions, settings.analytics)
        finally:
            sessions.close()
    finally:
        events.close()


@contextmanager
def lifecycle_manager() -> Iterator[SessionLifecycleManager]:
    """Connect the configured session store and yield a SessionLifecycleManager."""
    settings = get_settings()
    store = get_session_store(settings)
    store.connect()
    try:
        yield SessionLifecycleManager(store, JwtIdentityResolver(settings.auth), settings.sessions)
    finally:
        store.close()


@contextmanager
def handle_errors(json_output: bool = False) -> Iterator[None]:
    """Turn engagement and connection errors into a printed message and exit code 1."""
    try:
        yield
    except EngagementError as e:
        if json_output:
            print(json.dumps({"error": e.to_dict()}))
        else:
            print_error(e.message)
        raise typer.Exit(1)
    except (psycopg2.Error, redis.RedisError) as e:
        if json_output:
            print(json.dumps({"error": {"detail": str(e), "code": "CONNECTION_FAILED"}}))
        else:
            print_error(f"Cannot connect to the data store: {e}")
        raise typer.Exit(1)
