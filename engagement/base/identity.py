# ==============================================================================
# Identity Resolver Abstract Base Class
# ==============================================================================
"""
Contract for turning request credentials into a user id.

The session lifecycle only needs to know who is calling when it has to open a
replacement session. Token issuance and validation rules live with the
concrete resolver (see infrastructure/identity.py).
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class IdentityStatus(str, Enum):
    """Result of resolving credentials."""

    AUTHENTICATED = "authenticated"
    ABSENT = "absent"
    INVALID = "invalid"


class Identity(BaseModel):
    """Resolved caller identity. user_id is set only when authenticated."""

    status: IdentityStatus
    user_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def absent(cls) -> "Identity":
        return cls(status=IdentityStatus.ABSENT)

    @classmethod
    def invalid(cls, reason: str) -> "Identity":
        return cls(status=IdentityStatus.INVALID, reason=reason)

    @classmethod
    def authenticated(cls, user_id: str) -> "Identity":
        return cls(status=IdentityStatus.AUTHENTICATED, user_id=user_id)


class IdentityResolver(ABC):
    """Resolves credentials (e.g. an Authorization header value) to an Identity."""

    @abstractmethod
    def resolve(self, credentials: Optional[str]) -> Identity:
        """
        Resolve credentials.

        Must not raise for bad credentials: return Identity.invalid() instead.
        """
        ...


class NoIdentityResolver(IdentityResolver):
    """Resolver for callers without authentication; everyone is absent."""

    def resolve(self, credentials: Optional[str]) -> Identity:
        return Identity.absent()
