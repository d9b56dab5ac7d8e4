"""
Retry logic for optimistic concurrency control (OCC) conflicts.

This module provides:
- Error type hierarchy for retry outcomes
- RetryPolicy describing attempt count and exponential backoff with jitter
- RetryExecutor, a tenacity-backed loop with a pluggable conflict classifier
- retry_on_conflict decorator for functions that should always be retried

Usage:
    from dsqlkit.core.retry import RetryExecutor, RetryPolicy
    from dsqlkit.integrations.dsql.errors import classify_dsql_error

    executor = RetryExecutor(RetryPolicy(max_attempts=5), classify_dsql_error)
    row = executor.execute(lambda: conn.execute(sql).fetchone())
"""

import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from dsqlkit.core.cancellation import Deadline

log = structlog.get_logger()

T = TypeVar("T")


# =============================================================================
# Error Type Hierarchy
# =============================================================================


class ConflictClassification(str, Enum):
    """Judgment on whether a failed operation may be re-run unchanged."""

    TRANSIENT = "transient"  # OCC abort, nothing persisted - retry
    TERMINAL = "terminal"  # Anything else - surface immediately


class DsqlkitError(Exception):
    """Base exception for all dsqlkit errors."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


class TransientConflictError(DsqlkitError):
    """An OCC abort signaled by the database.

    Raised by code that detects a conflict itself rather than receiving one
    from the driver. Always classified as transient.
    """


class RetryLimitExceededError(DsqlkitError):
    """Every attempt failed with a transient conflict."""

    def __init__(
        self,
        message: str,
        attempts: int,
        cause: Optional[BaseException] = None,
        stats: Optional["RetryStats"] = None,
    ):
        super().__init__(message, cause)
        self.attempts = attempts
        self.stats = stats

    @property
    def last_error(self) -> Optional[BaseException]:
        return self.cause


class RetryCancelledError(DsqlkitError):
    """The caller's deadline expired or it cancelled while backing off."""

    def __init__(
        self,
        message: str,
        attempts: int,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause)
        self.attempts = attempts


# =============================================================================
# Retry Policy
# =============================================================================

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_BACKOFF_SECONDS = 0.010
DEFAULT_JITTER_FRACTION = 0.5

Classifier = Callable[[BaseException], ConflictClassification]


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration.

    Attributes:
        max_attempts: Total invocations allowed, including the first.
        base_backoff_seconds: Sleep before the second attempt; doubles after
            every further conflict.
        jitter_fraction: Upper bound of the random extra sleep as a fraction
            of the current backoff. Must be in [0, 1).
        seed: Optional seed for the per-call jitter generator.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_backoff_seconds: float = DEFAULT_BASE_BACKOFF_SECONDS
    jitter_fraction: float = DEFAULT_JITTER_FRACTION
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_backoff_seconds < 0:
            raise ValueError(
                f"base_backoff_seconds must be >= 0, got {self.base_backoff_seconds}"
            )
        if not 0 <= self.jitter_fraction < 1:
            raise ValueError(
                f"jitter_fraction must be in [0, 1), got {self.jitter_fraction}"
            )

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "RetryPolicy":
        """Create a RetryPolicy from a config section.

        Accepts ``base_backoff_ms`` (as written in TOML) or
        ``base_backoff_seconds``.
        """
        if "base_backoff_ms" in config_dict:
            base = float(config_dict["base_backoff_ms"]) / 1000.0
        else:
            base = float(
                config_dict.get("base_backoff_seconds", DEFAULT_BASE_BACKOFF_SECONDS)
            )
        seed = config_dict.get("seed")
        return cls(
            max_attempts=int(config_dict.get("max_attempts", DEFAULT_MAX_ATTEMPTS)),
            base_backoff_seconds=base,
            jitter_fraction=float(
                config_dict.get("jitter_fraction", DEFAULT_JITTER_FRACTION)
            ),
            seed=int(seed) if seed is not None else None,
        )

    def backoff(self, attempt: int) -> float:
        """Deterministic backoff after the given zero-based failed attempt."""
        return self.base_backoff_seconds * (2**attempt)

    def sleep_for(self, attempt: int, rng: random.Random) -> float:
        """Backoff plus a random component in [0, backoff * jitter_fraction)."""
        base = self.backoff(attempt)
        if self.jitter_fraction == 0 or base == 0:
            return base
        return base + rng.uniform(0, base * self.jitter_fraction)


@dataclass
class RetryStats:
    """Statistics about a single execute() call."""

    attempts: int = 0
    sleeps: int = 0
    total_wait_seconds: float = 0.0
    last_error: Optional[BaseException] = None


class wait_policy_backoff(wait_base):
    """tenacity wait strategy driven by a RetryPolicy.

    tenacity numbers attempts from 1, so the first sleep uses
    ``policy.backoff(0)``.
    """

    def __init__(self, policy: RetryPolicy, rng: random.Random) -> None:
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.policy.sleep_for(retry_state.attempt_number - 1, self.rng)


# =============================================================================
# Executor
# =============================================================================


class RetryExecutor:
    """Re-run an operation while it fails with transient conflicts.

    The operation must leave no observable effect when it fails with a
    conflict; the executor cannot verify this.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        classifier: Optional[Classifier] = None,
        sleep: Optional[Callable[[float], None]] = None,
        log_context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Initialize the executor.

        Args:
            policy: Retry policy. Defaults to RetryPolicy().
            classifier: Maps an exception to a ConflictClassification. Defaults
                to treating only TransientConflictError as transient.
            sleep: Replacement for the backoff sleep, mainly for tests. When a
                deadline is passed to execute() it is checked after each sleep.
            log_context: Extra fields bound to every log event.
        """
        self.policy = policy or RetryPolicy()
        self.classifier = classifier or classify_own_errors
        self._sleep = sleep
        self._log = log.bind(**(log_context or {}))

    def execute(
        self,
        operation: Callable[[], T],
        cancel: Optional[Deadline] = None,
        step: Optional[str] = None,
    ) -> T:
        """Run operation, retrying transient conflicts with backoff.

        Args:
            operation: Zero-argument callable.
            cancel: Optional deadline; expiry interrupts the backoff sleep.
            step: Name used in log events and error messages.

        Returns:
            Whatever operation returns on its first successful call.

        Raises:
            RetryLimitExceededError: max_attempts transient failures in a row.
            RetryCancelledError: the deadline expired or was cancelled.
            Exception: any terminal failure from operation, unchanged.
        """
        stats = RetryStats()
        label = step or getattr(operation, "__name__", "operation")
        bound = self._log.bind(step=label)

        if cancel is not None and cancel.is_cancelled:
            raise RetryCancelledError(f"{label}: cancelled before first attempt", 0)

        def attempt() -> T:
            stats.attempts += 1
            return operation()

        def is_transient(exc: BaseException) -> bool:
            if self.classifier(exc) is ConflictClassification.TRANSIENT:
                stats.last_error = exc
                return True
            return False

        def before_sleep(state: RetryCallState) -> None:
            exception = state.outcome.exception() if state.outcome else None
            bound.warning(
                "retry_attempt",
                attempt=state.attempt_number,
                max_attempts=self.policy.max_attempts,
                error=str(exception) if exception else None,
                error_type=type(exception).__name__ if exception else None,
                wait_seconds=state.next_action.sleep if state.next_action else 0,
            )

        def sleep(seconds: float) -> None:
            stats.sleeps += 1
            stats.total_wait_seconds += seconds
            if cancel is None:
                (self._sleep or time.sleep)(seconds)
                return
            if self._sleep is not None:
                self._sleep(seconds)
                interrupted = cancel.is_cancelled
            else:
                interrupted = cancel.wait(seconds)
            if interrupted:
                bound.warning("retry_cancelled", attempts=stats.attempts)
                raise RetryCancelledError(
                    f"{label}: cancelled after {stats.attempts} attempts",
                    stats.attempts,
                    cause=stats.last_error,
                )

        retrying = Retrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_policy_backoff(self.policy, random.Random(self.policy.seed)),
            retry=retry_if_exception(is_transient),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=False,
        )

        try:
            return retrying(attempt)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            bound.error(
                "retry_limit_exceeded",
                attempts=stats.attempts,
                error=str(last),
                total_wait_seconds=round(stats.total_wait_seconds, 4),
            )
            raise RetryLimitExceededError(
                f"{label}: retry limit exceeded after {stats.attempts} attempts",
                stats.attempts,
                cause=last,
                stats=stats,
            ) from last


def classify_own_errors(error: BaseException) -> ConflictClassification:
    """Classifier that only trusts TransientConflictError."""
    if isinstance(error, TransientConflictError):
        return ConflictClassification.TRANSIENT
    return ConflictClassification.TERMINAL


def retry_on_conflict(
    policy: Optional[RetryPolicy] = None,
    classifier: Optional[Classifier] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator that runs the wrapped function through a RetryExecutor.

    Example:
        @retry_on_conflict(RetryPolicy(max_attempts=3), classify_dsql_error)
        def record_version(conn, version):
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        executor = RetryExecutor(policy, classifier, log_context={"func": func.__name__})

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return executor.execute(lambda: func(*args, **kwargs), step=func.__name__)

        return wrapper

    return decorator
