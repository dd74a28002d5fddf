# ==============================================================================
# Session Lifecycle Manager
# ==============================================================================
"""
Session state machine: NoSession -> Active -> (Active | Expired).

A session stays Active while heartbeats arrive less than `timeout_minutes`
apart. A heartbeat that finds its session idle for the timeout or longer
closes it with end_time = last_active_time + grace, then tries to open a
replacement for the caller's identity.

The manager keeps no session state of its own. Every transition is one
conditional write on the store; when a write loses a race the session is
read again and the decision is made again, up to `max_write_attempts` times.
A closed session is never reopened.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from engagement.base.identity import IdentityResolver, IdentityStatus, NoIdentityResolver
from engagement.base.repositories import SessionStore
from engagement.core.errors import ForbiddenError, NotFoundError, StoreUnavailableError
from engagement.core.models import ClientContext, HeartbeatResult, HeartbeatStatus, Session
from engagement.core.periods import to_utc, utc_now
from engagement.utils.config import SessionSettings, get_settings

logger = logging.getLogger(__name__)


class SessionLifecycleManager:
    """
    Opens, keeps alive and closes user sessions.

    Thread-safe as long as the store is: all coordination happens through the
    store's conditional writes.
    """

    def __init__(
        self,
        store: SessionStore,
        identity_resolver: IdentityResolver | None = None,
        settings: SessionSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the manager.

        Args:
            store: Session persistence
            identity_resolver: Resolves heartbeat credentials when a session
                has to be renewed. Without one, renewals never happen.
            settings: Timeout, grace window and write attempts. If None, uses
                get_settings().sessions.
            clock: Returns the current time
        """
        settings = settings or get_settings().sessions
        self._store = store
        self._identity = identity_resolver or NoIdentityResolver()
        self._clock = clock
        self.timeout = timedelta(minutes=settings.timeout_minutes)
        self.grace = timedelta(minutes=settings.grace_minutes)
        self.max_write_attempts = settings.max_write_attempts

    def _now(self) -> datetime:
        return to_utc(self._clock())

    def is_session_expired(self, session: Session, now: datetime) -> bool:
        """
        Check if an active session has been idle for the timeout or longer.

        Args:
            session: Current session
            now: Time of the heartbeat

        Returns:
            True if the session must be closed
        """
        return now - session.last_active_time >= self.timeout

    # ==========================================================================
    # Transitions
    # ==========================================================================

    def start_session(self, user_id: str, client_context: ClientContext | None = None) -> Session:
        """
        Open a new session, closing any active session of the same user.

        Both happen in one store operation, so concurrent starts for one user
        still leave exactly one active session.
        """
        session = self._store.replace_active(user_id, client_context or ClientContext(), self._now())
        logger.info("Session %s created for user %s", session.id, user_id)
        return session

    def heartbeat(
        self,
        session_id: str,
        client_context: ClientContext | None = None,
        credentials: Optional[str] = None,
    ) -> HeartbeatResult:
        """
        Record client activity on a session.

        Args:
            session_id: Session the client believes it is in
            client_context: Used if a replacement session is opened
            credentials: Authorization value used to renew a closed session

        Returns:
            HeartbeatResult:
                ACTIVE  - session kept alive; `session` is the updated row
                RENEWED - session was missing, closed or timed out and a new
                          one was opened for the caller; `session` is the new one
                EXPIRED - session is gone and the caller could not be identified

        Raises:
            StoreUnavailableError: If the store is down or the session kept
                changing under every attempt
        """
        now = self._now()
        for attempt in range(1, self.max_write_attempts + 1):
            session = self._store.get(session_id)
            if session is None or not session.is_active:
                logger.warning("Session %s not found or not active", session_id)
                return self._renew(session_id, client_context, credentials)

            if self.is_session_expired(session, now):
                end_time = session.last_active_time + self.grace
                if self._store.close_if_version(session.id, session.version, end_time):
                    idle_minutes = int((now - session.last_active_time).total_seconds() // 60)
                    logger.info(
                        "Session %s expired after %d minutes of inactivity", session_id, idle_minutes
                    )
                    return self._renew(session_id, client_context, credentials)
            else:
                if attempt > 1 and session.last_active_time >= now:
                    # A concurrent heartbeat already covered this instant
                    return HeartbeatResult(status=HeartbeatStatus.ACTIVE, session=session)
                updated = self._store.touch(session.id, session.version, now)
                if updated is not None:
                    return HeartbeatResult(status=HeartbeatStatus.ACTIVE, session=updated)

            logger.warning(
                "Session %s changed concurrently (attempt %d/%d)",
                session_id,
                attempt,
                self.max_write_attempts,
            )

        raise StoreUnavailableError(
            "session store", f"Session {session_id} kept changing during heartbeat"
        )

    def _renew(
        self, session_id: str, client_context: ClientContext | None, credentials: Optional[str]
    ) -> HeartbeatResult:
        """Open a replacement session for the caller, if they can be identified."""
        identity = self._identity.resolve(credentials)
        if identity.status is IdentityStatus.AUTHENTICATED:
            logger.info(
                "Session %s expired. Creating new session for user %s", session_id, identity.user_id
            )
            new_session = self.start_session(identity.user_id, client_context)
            return HeartbeatResult(
                status=HeartbeatStatus.RENEWED, session=new_session, previous_session_id=session_id
            )
        if identity.status is IdentityStatus.INVALID:
            logger.warning("Cannot renew session %s: %s", session_id, identity.reason)
        return HeartbeatResult(status=HeartbeatStatus.EXPIRED, previous_session_id=session_id)

    def end_session(self, session_id: str) -> bool:
        """
        Close a session now. No-op when it is already closed or unknown.

        Returns:
            True if this call closed the session
        """
        closed = self._store.deactivate(session_id, self._now())
        if closed:
            logger.info("Session %s ended", session_id)
        else:
            logger.warning("Session %s not found or already inactive", session_id)
        return closed

    def mark_content_engaged(self, session_id: str, engaged: bool = True) -> Session:
        """
        Set the content-engaged flag.

        Raises:
            NotFoundError: If there is no active session with that id
        """
        session = self._store.set_content_engaged(session_id, engaged)
        if session is None:
            raise NotFoundError("Session", session_id, "not active")
        return session

    def end_all_active_sessions_for_user(self, user_id: str) -> int:
        """
        Close every active session of a user.

        Returns:
            Count of sessions closed
        """
        count = self._store.deactivate_user(user_id, self._now())
        logger.info("Ended %d sessions for user %s", count, user_id)
        return count

    def expire_idle_sessions(self) -> int:
        """
        Close every session idle for the timeout or longer.

        Each gets end_time = last_active_time + grace, the same as a heartbeat
        arriving after the timeout.

        Returns:
            Count of sessions closed
        """
        count = self._store.expire_idle(self._now() - self.timeout, int(self.grace.total_seconds()))
        if count:
            logger.info("Expired %d idle sessions", count)
        return count

    # ==========================================================================
    # Queries
    # ==========================================================================

    def get_active_session(self, session_id: str) -> Session:
        """
        Get an active session.

        Raises:
            NotFoundError: If the session does not exist or is closed
        """
        session = self._store.get(session_id)
        if session is None or not session.is_active:
            logger.warning("Active session %s not found", session_id)
            raise NotFoundError("Session", session_id, "not active")
        return session

    def list_active_sessions(self, user_id: Optional[str] = None) -> list[Session]:
        """Active sessions (of one user, or of everyone), most recently active first."""
        return self._store.list_active(user_id)

    @staticmethod
    def assert_owner(session: Session, user_id: str) -> None:
        """
        Check that a caller owns a session before mutating it.

        Raises:
            ForbiddenError: If the session belongs to someone else
        """
        if session.user_id != user_id:
            raise ForbiddenError("Session", session.id)
