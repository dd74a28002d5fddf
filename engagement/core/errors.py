# ==============================================================================
# Error Taxonomy
# ==============================================================================
"""
Exceptions raised by the session lifecycle and analytics layers.

All exceptions inherit from EngagementError, which carries a stable error
code and a details dict so a caller layer can map them to its own status
codes without string matching.

Bad analytics rows are not exceptions: they are skipped and counted in a
DataQualityReport (see core/quality.py).
"""

from typing import Any, Optional


class EngagementError(Exception):
    """
    Base exception for the engagement package.

    Attributes:
        message: Human-readable error message
        code: Stable machine-readable error code
        details: Extra context for the caller
        retryable: True when repeating the same call may succeed
    """

    retryable = False

    def __init__(
        self,
        message: str,
        code: str = "ENGAGEMENT_ERROR",
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a serializable dict."""
        return {
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
            **self.details,
        }


class NotFoundError(EngagementError):
    """Resource does not exist or is not in the required state."""

    def __init__(self, resource: str, resource_id: Optional[Any] = None, reason: str = ""):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} {resource_id} not found"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"resource": resource, "resource_id": resource_id},
        )


class ForbiddenError(EngagementError):
    """Caller does not own the resource being mutated."""

    def __init__(self, resource: str, resource_id: Optional[Any] = None):
        super().__init__(
            f"Not allowed to modify {resource} {resource_id}",
            code="FORBIDDEN",
            details={"resource": resource, "resource_id": resource_id},
        )


class InvalidRangeError(EngagementError):
    """Requested date range is malformed or granularity is unsupported."""

    def __init__(self, message: str):
        super().__init__(message, code="INVALID_RANGE")


class StoreUnavailableError(EngagementError):
    """Transient persistence failure; the caller may retry."""

    retryable = True

    def __init__(self, store: str, message: Optional[str] = None):
        super().__init__(
            message or f"{store} is unavailable",
            code="STORE_UNAVAILABLE",
            details={"store": store},
        )
