# ==============================================================================
# Session Commands
# ==============================================================================
"""
Session administration commands for the engagement CLI.

Commands operate on the configured session backend (SESSION_BACKEND).
"""

import json
from typing import Annotated, Optional

import typer

from engagement.cli.shared import (
    BOX_WIDTH,
    C,
    I,
    _box_bottom,
    _box_header,
    _box_line,
    _empty_line,
    _separator,
    handle_errors,
    lifecycle_manager,
    print_success,
)
from engagement.core.periods import utc_now

JsonOption = Annotated[bool, typer.Option("--json", "-j", help="Output as JSON for scripting")]


def _idle(seconds: float) -> str:
    minutes = int(seconds // 60)
    if minutes >= 60:
        return f"{minutes // 60}h {minutes % 60:02d}m"
    return f"{minutes}m"


def sessions_list(
    user: Annotated[Optional[str], typer.Option("--user", "-u", help="Only this user's sessions")] = None,
    json_output: JsonOption = False,
) -> None:
    """List active sessions, most recently active first.

    Examples:
        engagement sessions list
        engagement sessions list --user 42 --json
    """
    with handle_errors(json_output), lifecycle_manager() as manager:
        active = manager.list_active_sessions(user)

    if json_output:
        print(json.dumps([s.model_dump(mode="json") for s in active], indent=2))
        return

    W = BOX_WIDTH
    now = utc_now()
    print()
    print(_box_header("ACTIVE SESSIONS", W))
    print(_empty_line(W))
    if not active:
        print(_box_line(f"  {C.DIM}No active sessions{C.RESET}", W))
    else:
        print(_box_line(f"  {'Session':<38}{'User':<12}{'Idle':>10}", W))
        print(_separator(W))
        for session in active:
            idle = _idle((now - session.last_active_time).total_seconds())
            user_id = session.user_id if len(session.user_id) <= 11 else session.user_id[:10] + "…"
            print(_box_line(f"  {session.id:<38}{user_id:<12}{idle:>10}", W))
    print(_empty_line(W))
    print(_box_bottom(f"{len(active)} active", W))
    print()


def sessions_end(
    session_id: Annotated[str, typer.Argument(help="Session to close")],
    json_output: JsonOption = False,
) -> None:
    """Close one session now. Closing an already closed session is a no-op.

    Examples:
        engagement sessions end 3f1c...
    """
    with handle_errors(json_output), lifecycle_manager() as manager:
        closed = manager.end_session(session_id)
    if json_output:
        print(json.dumps({"session_id": session_id, "closed": closed}))
    elif closed:
        print_success(f"Session {session_id} ended")
    else:
        print(f"{C.BRIGHT_YELLOW}{I.WARN} Session {session_id} not found or already inactive{C.RESET}")


def sessions_end_user(
    user_id: Annotated[str, typer.Argument(help="User whose sessions are closed")],
    json_output: JsonOption = False,
) -> None:
    """Close every active session of a user.

    Examples:
        engagement sessions end-user 42
    """
    with handle_errors(json_output), lifecycle_manager() as manager:
        count = manager.end_all_active_sessions_for_user(user_id)
    if json_output:
        print(json.dumps({"user_id": user_id, "closed": count}))
    else:
        print_success(f"Ended {count} session(s) for user {user_id}")


def sessions_sweep(json_output: JsonOption = False) -> None:
    """Close sessions idle for longer than the timeout.

    Each session gets its last heartbeat plus the grace window as end time.
    Run it periodically (e.g. from cron) so sessions of clients that never
    come back are closed.

    Examples:
        engagement sessions sweep
    """
    with handle_errors(json_output), lifecycle_manager() as manager:
        count = manager.expire_idle_sessions()
    if json_output:
        print(json.dumps({"expired": count}))
    else:
        print_success(f"Expired {count} idle session(s)")
