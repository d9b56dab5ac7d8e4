"""Core infrastructure - config, logging, cancellation, retry."""

from dsqlkit.core.cancellation import Deadline
from dsqlkit.core.config import ConfigError, ConfigManager, DsqlSettings, PoolSettings
from dsqlkit.core.logging import get_logger, setup_logging
from dsqlkit.core.retry import (
    ConflictClassification,
    DsqlkitError,
    RetryCancelledError,
    RetryExecutor,
    RetryLimitExceededError,
    RetryPolicy,
    RetryStats,
    TransientConflictError,
    classify_own_errors,
    retry_on_conflict,
)

__all__ = [
    # Config
    "ConfigManager",
    "ConfigError",
    "DsqlSettings",
    "PoolSettings",
    # Logging
    "setup_logging",
    "get_logger",
    # Cancellation
    "Deadline",
    # Retry - Errors
    "DsqlkitError",
    "TransientConflictError",
    "RetryLimitExceededError",
    "RetryCancelledError",
    # Retry - Policy & executor
    "ConflictClassification",
    "RetryPolicy",
    "RetryStats",
    "RetryExecutor",
    "classify_own_errors",
    "retry_on_conflict",
]
