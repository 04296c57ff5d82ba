"""Core framework infrastructure - config, logging, lifecycle, retry."""

from hypobot.core.config import ConfigManager
from hypobot.core.logging import get_logger, setup_logging
from hypobot.core.lifecycle import (
    BaseComponent,
    HealthCheckable,
    HealthCheckResult,
    HealthStatus,
)
from hypobot.core.retry import (
    AuthenticationError,
    HypobotError,
    NetworkError,
    PermanentError,
    RateLimitError,
    ResourceNotFoundError,
    RetryConfig,
    ServiceUnavailableError,
    TimeoutError,
    TransientError,
    ValidationError,
    classify_http_error,
    retry_transient,
    retry_with_config,
)

__all__ = [
    # Config
    "ConfigManager",
    # Logging
    "setup_logging",
    "get_logger",
    # Lifecycle
    "BaseComponent",
    "HealthCheckResult",
    "HealthStatus",
    "HealthCheckable",
    # Retry - Config
    "RetryConfig",
    # Retry - Errors
    "HypobotError",
    "TransientError",
    "NetworkError",
    "RateLimitError",
    "TimeoutError",
    "ServiceUnavailableError",
    "PermanentError",
    "ValidationError",
    "AuthenticationError",
    "ResourceNotFoundError",
    # Retry - Decorators
    "retry_transient",
    "retry_with_config",
    # Retry - Utilities
    "classify_http_error",
]
