# ==============================================================================
# Repository Abstract Base Classes
# ==============================================================================
"""
Repository ABCs for data persistence.

These define the "what" (close a session if nobody else changed it) not the
"how" (a guarded UPDATE, a WATCH/MULTI/EXEC transaction).
Concrete implementations in infrastructure/ handle the specifics.

Includes:
- SessionStore: User sessions with conditional (versioned) writes
- EventRepository: Read side of login and watch activity

Conditional writes:
    Every mutating SessionStore method that takes a `version` only applies
    when the stored session is still active AND still at that version. On
    success the stored version is incremented. A False/None result means
    somebody else changed the session first; the caller re-reads and decides
    again. A closed session is never reopened by any method.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from engagement.core.models import ClientContext, LoginActivity, Session, WatchEvent
from engagement.core.quality import DataQualityReport


class SessionStore(ABC):
    """Store for user sessions."""

    @abstractmethod
    def connect(self) -> None:
        """Establish connection to the data store."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close connection and release resources."""
        ...

    @abstractmethod
    def get(self, session_id: str) -> Optional[Session]:
        """
        Get a session by id, active or not.

        Returns:
            The session, or None if it does not exist
        """
        ...

    @abstractmethod
    def replace_active(
        self, user_id: str, client_context: ClientContext, now: datetime
    ) -> Session:
        """
        Close every active session of the user and open a new one, atomically.

        Closed sessions get end_time = now. The new session has
        start_time = last_active_time = now.

        Returns:
            The new active session
        """
        ...

    @abstractmethod
    def touch(self, session_id: str, version: int, now: datetime) -> Optional[Session]:
        """
        Conditionally bump last_active_time to max(current, now).

        Returns:
            The updated session, or None if the session is closed or its
            version changed
        """
        ...

    @abstractmethod
    def close_if_version(self, session_id: str, version: int, end_time: datetime) -> bool:
        """
        Conditionally close a session with the given end time.

        Returns:
            True if this call closed the session
        """
        ...

    @abstractmethod
    def deactivate(self, session_id: str, end_time: datetime) -> bool:
        """
        Close a session if it is still active, whatever its version.

        Returns:
            True if this call closed the session, False if it was already
            closed or does not exist
        """
        ...

    @abstractmethod
    def set_content_engaged(self, session_id: str, engaged: bool) -> Optional[Session]:
        """
        Set the content-engaged flag of an active session.

        Returns:
            The updated session, or None if no active session has that id
        """
        ...

    @abstractmethod
    def deactivate_user(self, user_id: str, end_time: datetime) -> int:
        """
        Close every active session of a user.

        Returns:
            Count of sessions closed
        """
        ...

    @abstractmethod
    def expire_idle(self, idle_before: datetime, grace_seconds: int) -> int:
        """
        Close every active session whose last_active_time <= idle_before.

        Each one gets end_time = last_active_time + grace.

        Returns:
            Count of sessions closed
        """
        ...

    @abstractmethod
    def list_active(self, user_id: Optional[str] = None) -> list[Session]:
        """
        Active sessions, most recently active first.

        Args:
            user_id: Only this user's sessions; all users when None
        """
        ...

    @abstractmethod
    def sessions_started_between(
        self, start: datetime, end: datetime, completed_only: bool = False
    ) -> list[Session]:
        """
        Sessions whose start_time falls in [start, end].

        Args:
            completed_only: Only closed sessions
        """
        ...


class EventRepository(ABC):
    """Read access to login and watch activity."""

    @abstractmethod
    def connect(self) -> None:
        """Establish connection to the data store."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close connection and release resources."""
        ...

    @abstractmethod
    def logins_between(
        self, start: datetime, end: datetime, successful_only: bool = True
    ) -> list[LoginActivity]:
        """Login attempts with a timestamp in [start, end]."""
        ...

    @abstractmethod
    def watch_events_between(
        self,
        start: datetime,
        end: datetime,
        video_id: Optional[str] = None,
        quality: Optional[DataQualityReport] = None,
    ) -> list[WatchEvent]:
        """
        Watch events that started in [start, end].

        Rows that cannot be read as a WatchEvent are left out and recorded
        in `quality` as malformed.

        Args:
            video_id: Only events for this video; all videos when None
            quality: Report that collects skipped rows
        """
        ...
