# ==============================================================================
# Analytics Commands
# ==============================================================================
"""
Analytics commands for the engagement CLI.

Each command runs one AnalyticsService report and prints it as a box-drawn
table, or as JSON with --json.
"""

from typing import Annotated, Optional

import typer
from pydantic import BaseModel

from engagement.cli.shared import (
    BOX_WIDTH,
    C,
    _box_bottom,
    _box_header,
    _box_line,
    _empty_line,
    _section_header_plain,
    _separator,
    analytics_service,
    handle_errors,
    parse_date_option,
)
from engagement.core.errors import InvalidRangeError
from engagement.core.periods import parse_granularity

# ==============================================================================
# Shared Options
# ==============================================================================

StartOption = Annotated[
    Optional[str], typer.Option("--start", "-s", help="Range start (YYYY-MM-DD)")
]
EndOption = Annotated[Optional[str], typer.Option("--end", "-e", help="Range end (YYYY-MM-DD)")]
GranularityOption = Annotated[
    str, typer.Option("--granularity", "-g", help="daily, weekly or monthly")
]
VideoOption = Annotated[Optional[str], typer.Option("--video", "-v", help="Only this video id")]
JsonOption = Annotated[bool, typer.Option("--json", "-j", help="Output as JSON for scripting")]


def _range_args(start: Optional[str], end: Optional[str], granularity: str) -> dict:
    try:
        g = parse_granularity(granularity)
    except InvalidRangeError as e:
        raise typer.BadParameter(e.message, param_hint="--granularity")
    return {
        "start": parse_date_option(start, "--start"),
        "end": parse_date_option(end, "--end"),
        "granularity": g,
    }


# ==============================================================================
# Rendering
# ==============================================================================


def _print_json(report: BaseModel) -> None:
    print(report.model_dump_json(indent=2))


def _print_table(
    title: str,
    subtitle: str,
    headers: list[str],
    rows: list[list[str]],
    summary: list[tuple[str, str]],
    skipped_rows: int = 0,
) -> None:
    """Print a report: period table followed by summary figures."""
    W = BOX_WIDTH
    first_width = 14
    other_width = max((W - 6 - first_width) // max(len(headers) - 1, 1), 8)

    def fmt(cells: list[str]) -> str:
        head, *rest = cells
        return "  " + f"{head:<{first_width}}" + "".join(f"{cell:>{other_width}}" for cell in rest)

    print()
    print(_box_header(title, W))
    print(_box_line(f"  {C.DIM}{subtitle}{C.RESET}", W))
    print(_empty_line(W))
    print(_box_line(fmt(headers), W))
    print(_separator(W))
    for row in rows:
        print(_box_line(fmt(row), W))
    print(_empty_line(W))
    print(_section_header_plain("Summary", W))
    for label, value in summary:
        print(_box_line(f"  {label:<30}{C.WHITE}{value:>{W - 36}}{C.RESET}", W))
    if skipped_rows:
        print(_box_line(f"  {C.DIM}{skipped_rows:,} rows skipped by data quality checks{C.RESET}", W))
    print(_box_bottom("engagement", W))
    print()


def _subtitle(report) -> str:
    return f"{report.granularity.value}: {report.start_key} .. {report.end_key}"


# ==============================================================================
# Commands
# ==============================================================================


def active_users(
    day: Annotated[Optional[str], typer.Option("--date", "-d", help="Day inside the period")] = None,
    granularity: GranularityOption = "daily",
    json_output: JsonOption = False,
) -> None:
    """Show distinct active users in one period.

    Examples:
        engagement analytics active-users
        engagement analytics active-users --date 2025-04-17 -g weekly
    """
    args = _range_args(None, None, granularity)
    with handle_errors(json_output), analytics_service() as service:
        result = service.active_user_count(parse_date_option(day, "--date"), args["granularity"])
    if json_output:
        _print_json(result)
        return
    print(f"\n  Active users in {C.WHITE}{result.key}{C.RESET} ({result.granularity.value}): "
          f"{C.BRIGHT_GREEN}{result.count:,}{C.RESET}\n")


def active_user_trend(
    start: StartOption = None,
    end: EndOption = None,
    granularity: GranularityOption = "daily",
    json_output: JsonOption = False,
) -> None:
    """Show distinct active users per period.

    Examples:
        engagement analytics trend
        engagement analytics trend -g monthly --start 2025-01-01
    """
    args = _range_args(start, end, granularity)
    with handle_errors(json_output), analytics_service() as service:
        report = service.active_user_trend(**args)
    if json_output:
        _print_json(report)
        return
    _print_table(
        "ACTIVE USERS",
        _subtitle(report),
        ["Period", "Users"],
        [[p.key, f"{p.count:,}"] for p in report.data],
        [
            ("Distinct users in range", f"{report.total_active_users:,}"),
            ("Peak period", f"{report.peak_key or '-'} ({report.peak_count:,})"),
        ],
    )


def growth(
    start: StartOption = None,
    end: EndOption = None,
    granularity: GranularityOption = "monthly",
    json_output: JsonOption = False,
) -> None:
    """Show period-over-period growth of active users.

    Examples:
        engagement analytics growth
        engagement analytics growth -g weekly
    """
    args = _range_args(start, end, granularity)
    with handle_errors(json_output), analytics_service() as service:
        report = service.growth_rate_trend(**args)
    if json_output:
        _print_json(report)
        return
    _print_table(
        "USER GROWTH",
        _subtitle(report),
        ["Period", "Users", "Previous", "Growth"],
        [
            [p.key, f"{p.count:,}", f"{p.previous_count:,}", f"{p.growth_rate_percent:.2f}%"]
            for p in report.data
        ],
        [("Average growth", f"{report.average_growth_rate:.2f}%")],
    )


def retention(
    start: StartOption = None,
    end: EndOption = None,
    granularity: GranularityOption = "monthly",
    json_output: JsonOption = False,
) -> None:
    """Show retention by cohort of first activity.

    Examples:
        engagement analytics retention
        engagement analytics retention -g weekly --start 2025-03-01
    """
    args = _range_args(start, end, granularity)
    with handle_errors(json_output), analytics_service() as service:
        report = service.retention_cohorts(**args)
    if json_output:
        _print_json(report)
        return
    max_offset = min(max((max(row.retention) for row in report.data), default=0), 4)
    headers = ["Cohort", "Size"] + [f"+{offset}" for offset in range(1, max_offset + 1)]
    rows = []
    for row in report.data:
        cells = [row.cohort, f"{row.size:,}"]
        for offset in range(1, max_offset + 1):
            cells.append(f"{row.retention[offset]}%" if offset in row.retention else "-")
        rows.append(cells)
    _print_table(
        "RETENTION",
        _subtitle(report),
        headers,
        rows,
        [("Cohorts", f"{len(report.data):,}"), ("Users", f"{report.total_users:,}")],
    )


def sessions(
    start: StartOption = None,
    end: EndOption = None,
    granularity: GranularityOption = "daily",
    json_output: JsonOption = False,
) -> None:
    """Show average duration of completed sessions.

    Examples:
        engagement analytics sessions
        engagement analytics sessions -g weekly
    """
    args = _range_args(start, end, granularity)
    with handle_errors(json_output), analytics_service() as service:
        report = service.session_duration_stats(**args)
    if json_output:
        _print_json(report)
        return
    _print_table(
        "SESSION DURATION",
        _subtitle(report),
        ["Period", "Sessions", "Avg (min)"],
        [[p.key, f"{p.session_count:,}", f"{p.average_duration_minutes:.1f}"] for p in report.data],
        [
            ("Completed sessions", f"{report.total_sessions:,}"),
            ("Average duration (min)", f"{report.average_duration_minutes:.1f}"),
        ],
        report.skipped_rows,
    )


def engagement(
    start: StartOption = None,
    end: EndOption = None,
    granularity: GranularityOption = "daily",
    json_output: JsonOption = False,
) -> None:
    """Show sessions per period and how many engaged with content.

    Examples:
        engagement analytics engagement
        engagement analytics engagement -g monthly
    """
    args = _range_args(start, end, granularity)
    with handle_errors(json_output), analytics_service() as service:
        report = service.session_engagement_trend(**args)
    if json_output:
        _print_json(report)
        return
    _print_table(
        "SESSION ENGAGEMENT",
        _subtitle(report),
        ["Period", "Sessions", "Engaged", "Rate"],
        [
            [p.key, f"{p.sessions:,}", f"{p.engaged_sessions:,}", f"{p.engagement_rate:.2f}%"]
            for p in report.data
        ],
        [
            ("Sessions", f"{report.total_sessions:,}"),
            ("Engaged sessions", f"{report.engaged_sessions:,}"),
            ("Engagement rate", f"{report.engagement_rate:.2f}%"),
        ],
    )


def completion(
    video: VideoOption = None,
    start: StartOption = None,
    end: EndOption = None,
    granularity: GranularityOption = "daily",
    json_output: JsonOption = False,
) -> None:
    """Show completed, partial and dropped views.

    Examples:
        engagement analytics completion
        engagement analytics completion --video 42 -g weekly
    """
    args = _range_args(start, end, granularity)
    with handle_errors(json_output), analytics_service() as service:
        report = service.watch_completion_stats(video_id=video, **args)
    if json_output:
        _print_json(report)
        return
    overall = report.overall
    _print_table(
        "WATCH COMPLETION" + (f" - VIDEO {video}" if video else ""),
        _subtitle(report),
        ["Period", "Views", "Complete", "Partial", "Dropped"],
        [
            [
                p.key,
                f"{p.total_views:,}",
                f"{p.completion_rate:.2f}%",
                f"{p.partial_rate:.2f}%",
                f"{p.dropoff_rate:.2f}%",
            ]
            for p in report.data
        ],
        [
            ("Views", f"{overall.total_views:,}"),
            ("Completion rate", f"{overall.completion_rate:.2f}%"),
            ("Partial rate", f"{overall.partial_rate:.2f}%"),
            ("Drop-off rate", f"{overall.dropoff_rate:.2f}%"),
        ],
        report.skipped_rows,
    )


def watch_percentage(
    video: VideoOption = None,
    start: StartOption = None,
    end: EndOption = None,
    granularity: GranularityOption = "daily",
    json_output: JsonOption = False,
) -> None:
    """Show the average watch percentage per period.

    Examples:
        engagement analytics watch-percentage
        engagement analytics watch-percentage --video 42
    """
    args = _range_args(start, end, granularity)
    with handle_errors(json_output), analytics_service() as service:
        report = service.average_watch_percentage(video_id=video, **args)
    if json_output:
        _print_json(report)
        return
    _print_table(
        "WATCH PERCENTAGE" + (f" - VIDEO {video}" if video else ""),
        _subtitle(report),
        ["Period", "Views", "Avg watched"],
        [[p.key, f"{p.views:,}", f"{p.average_percent:.2f}%"] for p in report.data],
        [
            ("Views", f"{report.total_views:,}"),
            ("Average watched", f"{report.average_percent:.2f}%"),
        ],
        report.skipped_rows,
    )
