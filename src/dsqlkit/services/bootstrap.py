"""Version Table Bootstrapper - idempotent setup of the migration ledger.

This service:
- Creates the ledger table if it does not exist
- Inserts the version 0 sentinel row when the ledger is empty
- Tolerates any number of processes running the same bootstrap at once

Each step is retried on its own through a RetryExecutor instead of running
all three in one transaction. Under DSQL's OCC a stampede of racing
transactional bootstraps keeps aborting each other, while separately
idempotent steps converge.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

from dsqlkit.core.cancellation import Deadline
from dsqlkit.core.logging import get_logger
from dsqlkit.core.retry import (
    ConflictClassification,
    DsqlkitError,
    RetryExecutor,
    RetryPolicy,
)
from dsqlkit.integrations.dsql.errors import classify_dsql_error, is_unique_violation
from dsqlkit.services.ledger import LedgerSQL

log = get_logger("bootstrap")

T = TypeVar("T")


class BootstrapStep(str, Enum):
    """Bootstrap steps, named in errors and log events."""

    CREATE_TABLE = "create_table"
    CHECK_LEDGER = "check_ledger"
    INSERT_SENTINEL = "insert_sentinel"


class BootstrapError(DsqlkitError):
    """The ledger could not be confirmed. Migrations must not run."""

    def __init__(
        self,
        step: BootstrapStep,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause)
        self.step = step


class SentinelOutcome(str, Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class BootstrapResult:
    """What ensure() found and did."""

    table_name: str
    created_sentinel: bool = False
    duplicate_resolved: bool = False

    @property
    def was_noop(self) -> bool:
        return not self.created_sentinel and not self.duplicate_resolved


_STEP_MESSAGES = {
    BootstrapStep.CREATE_TABLE: "create ledger table",
    BootstrapStep.CHECK_LEDGER: "check ledger table",
    BootstrapStep.INSERT_SENTINEL: "insert ledger sentinel row",
}


class VersionTableBootstrapper:
    """Ensures the ledger table exists and holds the sentinel row.

    Safe to call any number of times, from any number of processes.

    Usage:
        bootstrapper = VersionTableBootstrapper(RetryExecutor(policy, classify_dsql_error))
        with factory.connect() as conn:
            bootstrapper.ensure(conn, cancel=Deadline(120))
    """

    def __init__(
        self,
        executor: Optional[RetryExecutor] = None,
        table_name: str = "goose_db_version",
    ) -> None:
        """Initialize the bootstrapper.

        Args:
            executor: Retry executor for each step. Defaults to the standard
                policy with the DSQL classifier.
            table_name: Ledger table name.
        """
        self._executor = executor or RetryExecutor(RetryPolicy(), classify_dsql_error)
        self._sql = LedgerSQL(table_name)
        self._log = log.bind(table=table_name)

    @property
    def table_name(self) -> str:
        return self._sql.table_name

    def ensure(self, connection: Any, cancel: Optional[Deadline] = None) -> BootstrapResult:
        """Make sure the ledger exists and is non-empty.

        Args:
            connection: DB-API style connection in autocommit mode (psycopg).
            cancel: Deadline bounding all retries.

        Returns:
            BootstrapResult describing what happened.

        Raises:
            BootstrapError: a step failed terminally, ran out of retries, or
                was cancelled. ``step`` names which one.
        """
        if getattr(connection, "autocommit", True) is False:
            raise BootstrapError(
                BootstrapStep.CREATE_TABLE,
                "bootstrap needs an autocommit connection (DSQL forbids DDL and DML in one transaction)",
            )

        self._run(
            BootstrapStep.CREATE_TABLE,
            lambda: connection.execute(self._sql.create_table),
            cancel,
        )
        self._log.debug("ledger_table_ensured")

        has_rows = self._run(
            BootstrapStep.CHECK_LEDGER,
            lambda: self._ledger_has_rows(connection),
            cancel,
        )
        if has_rows:
            self._log.info("ledger_ready", action="none")
            return BootstrapResult(self.table_name)

        outcome = self._run(
            BootstrapStep.INSERT_SENTINEL,
            lambda: self._insert_sentinel(connection),
            cancel,
        )
        self._log.info("ledger_ready", action=outcome.value)
        return BootstrapResult(
            self.table_name,
            created_sentinel=outcome is SentinelOutcome.INSERTED,
            duplicate_resolved=outcome is SentinelOutcome.DUPLICATE,
        )

    def _run(
        self,
        step: BootstrapStep,
        operation: Callable[[], T],
        cancel: Optional[Deadline],
    ) -> T:
        try:
            return self._executor.execute(operation, cancel=cancel, step=step.value)
        except Exception as e:
            self._log.error(
                "bootstrap_failed",
                step=step.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise BootstrapError(step, _STEP_MESSAGES[step], cause=e) from e

    def _ledger_has_rows(self, connection: Any) -> bool:
        row = connection.execute(self._sql.has_rows).fetchone()
        return bool(row[0])

    def _insert_sentinel(self, connection: Any) -> SentinelOutcome:
        """Insert the sentinel, treating a racing peer's insert as success."""
        try:
            cursor = connection.execute(self._sql.insert_sentinel)
        except Exception as e:
            conflict = self._executor.classifier(e) is ConflictClassification.TRANSIENT
            if not (conflict or is_unique_violation(e)):
                raise
            if self._ledger_has_rows(connection):
                self._log.info("sentinel_already_present", error=str(e))
                return SentinelOutcome.DUPLICATE
            raise

        if cursor.rowcount == 0:
            # A peer's sentinel became visible between our check and insert
            self._log.info("sentinel_already_present")
            return SentinelOutcome.DUPLICATE

        self._log.info("sentinel_inserted")
        return SentinelOutcome.INSERTED
