"""
Error hierarchy and retry helpers for outbound calls.

Transient errors (network hiccups, 429, 5xx) are retried with exponential
backoff through tenacity; permanent errors (bad input, auth, rejected
orders) are raised immediately.

Usage:
    from hypobot.core.retry import retry_transient, classify_http_error

    @retry_transient(max_attempts=3)
    async def fetch():
        try:
            ...
        except httpx.HTTPError as e:
            raise classify_http_error(e, "gamma") from e
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Optional, Type, TypeVar

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)

log = structlog.get_logger()


# =============================================================================
# Error Type Hierarchy
# =============================================================================


class ErrorCategory(str, Enum):
    """Classification of error types for retry decisions."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class HypobotError(Exception):
    """Base exception for all hypobot errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


class TransientError(HypobotError):
    """Error that may succeed on retry."""

    category = ErrorCategory.TRANSIENT


class NetworkError(TransientError):
    """Connection refused, reset, DNS failure."""


class RateLimitError(TransientError):
    """HTTP 429 from an upstream API."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, cause)
        self.retry_after = retry_after


class TimeoutError(TransientError):
    """Upstream call timed out."""


class ServiceUnavailableError(TransientError):
    """Upstream answered with a 5xx status."""


class PermanentError(HypobotError):
    """Error that will NOT succeed on retry."""

    category = ErrorCategory.PERMANENT


class ValidationError(PermanentError):
    """Caller supplied invalid input."""


class AuthenticationError(PermanentError):
    """Credentials missing or rejected (401/403)."""


class ResourceNotFoundError(PermanentError):
    """Requested resource does not exist (404)."""


def classify_http_error(error: Exception, context: str = "") -> HypobotError:
    """Map an httpx exception onto the hypobot error hierarchy.

    Args:
        error: Exception raised by httpx.
        context: Short name of the upstream service for the message.

    Returns:
        The matching HypobotError (not raised).
    """
    prefix = f"{context}: " if context else ""

    if isinstance(error, httpx.TimeoutException):
        return TimeoutError(f"{prefix}request timed out", cause=error)

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        message = f"{prefix}HTTP {status}"
        if status == 429:
            retry_after = error.response.headers.get("retry-after")
            try:
                seconds = float(retry_after) if retry_after else None
            except ValueError:
                seconds = None
            return RateLimitError(message, retry_after=seconds, cause=error)
        if status >= 500:
            return ServiceUnavailableError(message, cause=error)
        if status in (401, 403):
            return AuthenticationError(message, cause=error)
        if status == 404:
            return ResourceNotFoundError(message, cause=error)
        return PermanentError(message, cause=error)

    if isinstance(error, httpx.TransportError):
        return NetworkError(f"{prefix}{error.__class__.__name__}", cause=error)

    return HypobotError(f"{prefix}{error}", cause=error)


# =============================================================================
# Retry Configuration
# =============================================================================

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MIN_WAIT_SECONDS = 1.0
DEFAULT_MAX_WAIT_SECONDS = 10.0
DEFAULT_EXPONENTIAL_MULTIPLIER = 1.0
DEFAULT_JITTER = False


@dataclass
class RetryConfig:
    """Retry behaviour, usually built from the ``[retry]`` config section.

    Attributes:
        max_attempts: Attempts including the first call.
        min_wait_seconds: Lower bound of the backoff.
        max_wait_seconds: Upper bound of the backoff.
        exponential_multiplier: Backoff multiplier.
        jitter: Randomize waits.
        retry_on: Exception types that trigger a retry.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    min_wait_seconds: float = DEFAULT_MIN_WAIT_SECONDS
    max_wait_seconds: float = DEFAULT_MAX_WAIT_SECONDS
    exponential_multiplier: float = DEFAULT_EXPONENTIAL_MULTIPLIER
    jitter: bool = DEFAULT_JITTER
    retry_on: tuple[Type[Exception], ...] = field(
        default_factory=lambda: (TransientError,)
    )

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "RetryConfig":
        return cls(
            max_attempts=int(config_dict.get("max_attempts", DEFAULT_MAX_ATTEMPTS)),
            min_wait_seconds=float(
                config_dict.get("min_wait_seconds", DEFAULT_MIN_WAIT_SECONDS)
            ),
            max_wait_seconds=float(
                config_dict.get("max_wait_seconds", DEFAULT_MAX_WAIT_SECONDS)
            ),
            exponential_multiplier=float(
                config_dict.get("exponential_multiplier", DEFAULT_EXPONENTIAL_MULTIPLIER)
            ),
            jitter=bool(config_dict.get("jitter", DEFAULT_JITTER)),
        )


# =============================================================================
# Retry Decorators
# =============================================================================

F = TypeVar("F", bound=Callable[..., Any])


def _log_retry(log_context: Optional[dict[str, Any]] = None) -> Callable[[RetryCallState], None]:
    context = log_context or {}

    def callback(state: RetryCallState) -> None:
        exception = state.outcome.exception() if state.outcome else None
        log.warning(
            "retry_attempt",
            attempt=state.attempt_number,
            error=str(exception) if exception else None,
            error_type=type(exception).__name__ if exception else None,
            wait_seconds=state.next_action.sleep if state.next_action else 0,
            **context,
        )

    return callback


def retry_transient(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    min_wait: float = DEFAULT_MIN_WAIT_SECONDS,
    max_wait: float = DEFAULT_MAX_WAIT_SECONDS,
    multiplier: float = DEFAULT_EXPONENTIAL_MULTIPLIER,
    jitter: bool = DEFAULT_JITTER,
    retry_on: tuple[Type[Exception], ...] = (TransientError,),
    log_context: Optional[dict[str, Any]] = None,
) -> Callable[[F], F]:
    """Retry a function on transient errors with exponential backoff.

    The last exception is re-raised once attempts are exhausted.

    Example:
        @retry_transient(max_attempts=5, log_context={"client": "gamma"})
        async def get_markets():
            ...
    """

    def decorator(func: F) -> F:
        callback = _log_retry(log_context)

        if jitter:
            wait_strategy = wait_random_exponential(
                multiplier=multiplier, min=min_wait, max=max_wait
            )
        else:
            wait_strategy = wait_exponential(
                multiplier=multiplier, min=min_wait, max=max_wait
            )

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_strategy,
                retry=retry_if_exception_type(retry_on),
                before_sleep=callback,
                reraise=True,
            ):
                with attempt:
                    return await func(*args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore

        return retry(  # type: ignore
            stop=stop_after_attempt(max_attempts),
            wait=wait_strategy,
            retry=retry_if_exception_type(retry_on),
            before_sleep=callback,
            reraise=True,
        )(func)

    return decorator


def retry_with_config(
    config: RetryConfig,
    log_context: Optional[dict[str, Any]] = None,
) -> Callable[[F], F]:
    """Same as retry_transient, parameterized from a RetryConfig."""
    return retry_transient(
        max_attempts=config.max_attempts,
        min_wait=config.min_wait_seconds,
        max_wait=config.max_wait_seconds,
        multiplier=config.exponential_multiplier,
        jitter=config.jitter,
        retry_on=config.retry_on,
        log_context=log_context,
    )
