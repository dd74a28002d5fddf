# ==============================================================================
# Retry Configuration
# ==============================================================================
"""
Shared retry configuration for store resilience.

Provides reusable retry decorators with exponential backoff for handling
transient failures talking to PostgreSQL and Valkey.

Standard retry: 10 attempts over ~60 seconds (schema setup, maintenance)
Light retry: 3 attempts over ~7 seconds (request path: heartbeats, reports)

Request-path operations use `store_call`, which applies the light policy and
turns an exhausted retry into StoreUnavailableError.
"""

import functools
import logging
from typing import Callable, Tuple, Type, TypeVar

import psycopg2
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from engagement.core.errors import StoreUnavailableError

T = TypeVar("T")

# ==============================================================================
# Retry Constants
# ==============================================================================

# Exponential backoff: 1s, 2s, 4s, 8s, 16s, 32s, 32s, 32s, 32s, 32s = ~63s total
RETRY_ATTEMPTS = 10
RETRY_WAIT_MIN = 1  # seconds
RETRY_WAIT_MAX = 32  # seconds (cap for exponential backoff)

# Exponential backoff: 1s, 2s, 4s = ~7s total
RETRY_ATTEMPTS_LIGHT = 3

# Valkey retry configuration (used by redis-py client)
VALKEY_RETRIES = 3

POSTGRES_RETRY_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    psycopg2.OperationalError,
    psycopg2.InterfaceError,
)

REDIS_RETRY_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    RedisConnectionError,
    RedisTimeoutError,
)

STORE_RETRY_EXCEPTIONS = POSTGRES_RETRY_EXCEPTIONS + REDIS_RETRY_EXCEPTIONS


# ==============================================================================
# Logging Callbacks
# ==============================================================================


def log_retry_attempt(logger: logging.Logger, attempts: int = RETRY_ATTEMPTS):
    """
    Create a callback that logs retry attempts.

    Args:
        logger: Logger instance to use for logging
        attempts: Total attempts of the policy, shown in the message

    Returns:
        Callback function for tenacity's before_sleep parameter
    """

    def _log_retry(retry_state: RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Retry attempt %d/%d after error: %s",
            retry_state.attempt_number,
            attempts,
            exception,
        )

    return _log_retry


# ==============================================================================
# Retry Decorators
# ==============================================================================


def retry_standard(exception_types: Tuple[Type[Exception], ...], logger: logging.Logger):
    """
    Create a standard retry decorator (10 attempts, ~60 seconds).

    Example:
        @retry_standard(POSTGRES_RETRY_EXCEPTIONS, logger)
        def ensure_schema():
            ...
    """
    return retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX),
        retry=retry_if_exception_type(exception_types),
        before_sleep=log_retry_attempt(logger, RETRY_ATTEMPTS),
        reraise=True,
    )


def retry_light(exception_types: Tuple[Type[Exception], ...], logger: logging.Logger):
    """
    Create a light retry decorator (3 attempts, ~7 seconds).

    Use this on the request path, where callers are waiting.
    """
    return retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS_LIGHT),
        wait=wait_exponential(multiplier=1, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX),
        retry=retry_if_exception_type(exception_types),
        before_sleep=log_retry_attempt(logger, RETRY_ATTEMPTS_LIGHT),
        reraise=True,
    )


def store_call(store_name: str, logger: logging.Logger) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorate a store operation with light retry and error translation.

    Transient connection errors are retried; once the retries are exhausted
    the error is raised as StoreUnavailableError so callers can tell a
    retryable outage apart from a logic failure.

    Args:
        store_name: Name used in the error message (e.g. "postgresql")
        logger: Logger for retry attempts
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        retrying = retry_light(STORE_RETRY_EXCEPTIONS, logger)(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            try:
                return retrying(*args, **kwargs)
            except STORE_RETRY_EXCEPTIONS as e:
                logger.error("%s unavailable during %s: %s", store_name, func.__name__, e)
                raise StoreUnavailableError(store_name, str(e)) from e

        return wrapper

    return decorator
