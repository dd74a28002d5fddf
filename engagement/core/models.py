# ==============================================================================
# Engagement Domain Models
# ==============================================================================
"""
Pydantic models for sessions, login activity and watch events.

These models are used for:
- Validating rows read from PostgreSQL and hashes read from Valkey
- Passing sessions between the lifecycle manager and the stores
- Feeding raw activity into the analytics engine

This module is part of the core domain layer and has no external dependencies
beyond Pydantic.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class Granularity(str, Enum):
    """Bucket width for analytics reports."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class HeartbeatStatus(str, Enum):
    """Outcome of a heartbeat."""

    ACTIVE = "active"
    RENEWED = "renewed"
    EXPIRED = "expired"


class DeviceInfo(BaseModel):
    """Device details parsed from a user agent string."""

    user_agent: str = Field(default="Unknown", description="Raw user agent")
    is_mobile: bool = Field(default=False, description="Mobile device")
    browser: str = Field(default="Unknown", description="Browser family")
    os: str = Field(default="Unknown", description="Operating system family")


class ClientContext(BaseModel):
    """
    Where a session request came from.

    Opaque to the lifecycle manager; stored with the session so device and
    network breakdowns can be computed later.
    """

    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    device_info: Optional[DeviceInfo] = Field(None, description="Parsed device info")


class Session(BaseModel):
    """
    One continuous span of user presence.

    Attributes:
        id: Opaque session identifier
        user_id: Owner of the session
        start_time: When the session was opened
        last_active_time: Last accepted heartbeat
        end_time: When the session was closed (None while active)
        is_active: False once closed; a closed session is never reopened
        content_engaged: Set once the user interacts with content
        client_context: IP, user agent and device info
        version: Incremented by every conditional write
    """

    id: str = Field(..., description="Session identifier")
    user_id: str = Field(..., description="User identifier")
    start_time: datetime = Field(..., description="Session start time (UTC)")
    last_active_time: datetime = Field(..., description="Last heartbeat time (UTC)")
    end_time: Optional[datetime] = Field(None, description="Session end time (UTC)")
    is_active: bool = Field(default=True, description="Session is open")
    content_engaged: bool = Field(default=False, description="Content interaction seen")
    client_context: ClientContext = Field(default_factory=ClientContext)
    version: int = Field(default=0, description="Optimistic concurrency token")

    @property
    def duration_minutes(self) -> Optional[float]:
        """Duration of a closed session in minutes, None while active."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() / 60


class HeartbeatResult(BaseModel):
    """
    Result of Heartbeat.

    `session` is the session the client should keep using: the bumped one for
    ACTIVE, the replacement for RENEWED, None for EXPIRED.
    """

    status: HeartbeatStatus
    session: Optional[Session] = None
    previous_session_id: Optional[str] = None


class LoginActivity(BaseModel):
    """One authentication attempt. Only successful rows count as activity."""

    user_id: str = Field(..., description="User identifier")
    timestamp: datetime = Field(..., description="Attempt time (UTC)")
    successful: bool = Field(default=True, description="Login succeeded")
    method: str = Field(default="credentials", description="Login method")
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    failure_reason: Optional[str] = None


class InteractionEvent(BaseModel):
    """
    A timestamped player event inside a watch (play, pause, seek...).

    Player clients write camelCase keys (eventTime, videoTime); both spellings
    are accepted.
    """

    event: str
    event_time: datetime = Field(validation_alias=AliasChoices("event_time", "eventTime"))
    video_time: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("video_time", "videoTime")
    )


class WatchEvent(BaseModel):
    """
    One watch-progress record.

    `percent_watched` is stored as received. Legacy producers send 0-1
    fractions, newer ones send 0-100; use core.quality.normalize_percent
    before aggregating.
    """

    id: Optional[str] = Field(None, description="Watch record identifier")
    video_id: str = Field(..., description="Video identifier")
    session_id: Optional[str] = Field(None, description="User session (None for guests)")
    start_time: datetime = Field(..., description="Watch start time (UTC)")
    end_time: Optional[datetime] = Field(None, description="Watch end time (UTC)")
    seconds_watched: float = Field(default=0.0, description="Seconds actually watched")
    percent_watched: float = Field(default=0.0, description="Raw watch percentage")
    interaction_log: list[InteractionEvent] = Field(default_factory=list)
