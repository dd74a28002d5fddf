# ==============================================================================
# JWT Identity Resolver
# ==============================================================================
"""
Resolve a bearer access token to a user id with PyJWT.

The token is verified with the configured secret and algorithm. The user id
is taken from the "id" claim, falling back to "sub".
"""

import logging
from typing import Optional

import jwt

from engagement.base.identity import Identity, IdentityResolver
from engagement.utils.config import AuthSettings, get_settings

logger = logging.getLogger(__name__)

BEARER_SCHEME = "bearer"


def extract_bearer_token(credentials: Optional[str]) -> Optional[str]:
    """
    Get the token from an Authorization header value.

    Accepts "Bearer <token>" (any case) or a bare token. A scheme with no
    token ("Bearer", "Bearer ") counts as no credentials.
    """
    if not credentials:
        return None
    parts = credentials.split()
    if parts and parts[0].lower() == BEARER_SCHEME:
        parts = parts[1:]
    if not parts:
        return None
    return " ".join(parts)


class JwtIdentityResolver(IdentityResolver):
    """IdentityResolver for HS256 (or configured algorithm) access tokens."""

    def __init__(self, settings: AuthSettings | None = None):
        self._settings = settings or get_settings().auth

    def resolve(self, credentials: Optional[str]) -> Identity:
        token = extract_bearer_token(credentials)
        if token is None:
            return Identity.absent()
        if not self._settings.access_token_secret:
            logger.warning("Access token received but AUTH_ACCESS_TOKEN_SECRET is not set")
            return Identity.invalid("token verification is not configured")

        try:
            payload = jwt.decode(
                token,
                self._settings.access_token_secret,
                algorithms=[self._settings.algorithm],
            )
        except jwt.ExpiredSignatureError:
            return Identity.invalid("token has expired")
        except jwt.InvalidTokenError as e:
            return Identity.invalid(f"invalid token: {e}")

        user_id = payload.get("id") or payload.get("sub")
        if not user_id:
            return Identity.invalid("token has no user id")
        return Identity.authenticated(str(user_id))
