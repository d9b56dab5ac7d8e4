"""Migration Runner - applies versioned SQL migrations to a bootstrapped ledger.

Migrations are goose-format SQL files named ``NNNNN_description.sql``::

    -- +goose Up
    CREATE TABLE tuple (store TEXT NOT NULL, object_id TEXT NOT NULL);

    -- +goose StatementBegin
    CREATE FUNCTION ... ;
    -- +goose StatementEnd

    -- +goose Down
    DROP TABLE tuple;

Migrations are applied in version order and recorded in the ledger table.
DSQL runs each DDL statement in its own transaction, so every statement is
executed separately in autocommit mode and retried on OCC conflicts. A
migration that fails halfway leaves its earlier statements applied and no
ledger row; write statements that tolerate a re-run (IF NOT EXISTS).
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dsqlkit.core.cancellation import Deadline
from dsqlkit.core.logging import get_logger
from dsqlkit.core.retry import DsqlkitError, RetryExecutor, RetryPolicy
from dsqlkit.integrations.dsql.errors import classify_dsql_error
from dsqlkit.services.ledger import SENTINEL_VERSION, LedgerSQL, VersionRow

log = get_logger("migrator")

_FILENAME = re.compile(r"^(\d+)_([A-Za-z0-9_\-]+)\.sql$")
_ANNOTATION = re.compile(r"^--\s*\+goose\s+(\w+(?:\s+\w+)?)\s*$", re.IGNORECASE)


class MigrationError(DsqlkitError):
    """Migration discovery or execution failed."""

    def __init__(
        self,
        message: str,
        version: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause)
        self.version = version


@dataclass(frozen=True)
class Migration:
    """One parsed migration file."""

    version: int
    name: str
    path: Path
    up_statements: tuple[str, ...] = ()
    down_statements: tuple[str, ...] = ()


@dataclass
class MigrationStatus:
    """Ledger version and what is left to apply."""

    current_version: int
    latest_version: int
    pending: list[Migration] = field(default_factory=list)

    @property
    def up_to_date(self) -> bool:
        return not self.pending


def _strip_line_comment(line: str) -> str:
    """Drop a trailing ``--`` comment that is not inside a quoted string."""
    quote: Optional[str] = None
    for i, char in enumerate(line):
        if quote:
            if char == quote:
                quote = None
        elif char in ("'", '"'):
            quote = char
        elif line.startswith("--", i):
            return line[:i]
    return line


def parse_migration(path: Path) -> Migration:
    """Parse a goose SQL file into Up and Down statement lists.

    Raises:
        MigrationError: bad file name, missing Up section, or an unterminated
            StatementBegin block.
    """
    match = _FILENAME.match(path.name)
    if not match:
        raise MigrationError(f"migration file name must look like 00001_name.sql: {path.name}")
    version = int(match.group(1))
    if version == SENTINEL_VERSION:
        raise MigrationError(f"version 0 is reserved for the ledger sentinel: {path.name}", version)

    sections: dict[str, list[str]] = {"up": [], "down": []}
    current: Optional[str] = None
    buffer: list[str] = []
    in_block = False

    def flush() -> None:
        statement = "\n".join(buffer).strip()
        if statement and current:
            sections[current].append(statement)
        buffer.clear()

    for line in path.read_text(encoding="utf-8").splitlines():
        annotation = _ANNOTATION.match(line.strip())
        if annotation:
            keyword = annotation.group(1).lower()
            if keyword in ("up", "down"):
                flush()
                current = keyword
            elif keyword == "statementbegin":
                flush()
                in_block = True
            elif keyword == "statementend":
                flush()
                in_block = False
            # "NO TRANSACTION" and unknown annotations are accepted as-is
            continue

        if current is None:
            continue
        if line.strip().startswith("--") and not in_block:
            continue

        buffer.append(line)
        if not in_block and _strip_line_comment(line).rstrip().endswith(";"):
            flush()

    if in_block:
        raise MigrationError(f"unterminated StatementBegin in {path.name}", version)
    flush()

    if not sections["up"]:
        raise MigrationError(f"no -- +goose Up statements in {path.name}", version)

    return Migration(
        version=version,
        name=match.group(2),
        path=path,
        up_statements=tuple(sections["up"]),
        down_statements=tuple(sections["down"]),
    )


def current_version_from_rows(rows: list[VersionRow]) -> int:
    """Latest applied version, walking the ledger newest first.

    A row with is_applied=false marks that version as rolled back, so older
    applied rows for the same version are skipped.
    """
    rolled_back: set[int] = set()
    for row in rows:
        if row.version_id in rolled_back:
            continue
        if row.is_applied:
            return row.version_id
        rolled_back.add(row.version_id)
    return SENTINEL_VERSION


class MigrationRunner:
    """Applies pending migrations from a directory.

    The ledger must already exist and contain the sentinel row; run
    VersionTableBootstrapper.ensure() first.

    Usage:
        runner = MigrationRunner(Path("migrations"))
        applied = runner.up(conn)
    """

    def __init__(
        self,
        migrations_dir: Path,
        executor: Optional[RetryExecutor] = None,
        table_name: str = "goose_db_version",
    ) -> None:
        self._dir = Path(migrations_dir)
        self._executor = executor or RetryExecutor(RetryPolicy(), classify_dsql_error)
        self._sql = LedgerSQL(table_name)
        self._log = log.bind(migrations_dir=str(self._dir))

    def load(self) -> list[Migration]:
        """Parse every migration file, sorted by version.

        Raises:
            MigrationError: missing directory or duplicate versions.
        """
        if not self._dir.is_dir():
            raise MigrationError(f"migrations directory not found: {self._dir}")

        migrations = [parse_migration(p) for p in sorted(self._dir.glob("*.sql"))]
        migrations.sort(key=lambda m: m.version)

        seen: dict[int, Path] = {}
        for migration in migrations:
            if migration.version in seen:
                raise MigrationError(
                    f"duplicate migration version {migration.version}: "
                    f"{seen[migration.version].name} and {migration.path.name}",
                    migration.version,
                )
            seen[migration.version] = migration.path
        return migrations

    def ledger_rows(self, connection: Any, cancel: Optional[Deadline] = None) -> list[VersionRow]:
        """Read the ledger, newest first, after checking it was bootstrapped."""

        def read() -> list[VersionRow]:
            exists = connection.execute(
                self._sql.table_exists, (self._sql.table_name,)
            ).fetchone()
            if not exists or not exists[0]:
                raise MigrationError(
                    f"ledger table {self._sql.table_name} does not exist; bootstrap first"
                )
            return [VersionRow.from_row(r) for r in connection.execute(self._sql.select_rows).fetchall()]

        rows = self._executor.execute(read, cancel=cancel, step="read_ledger")
        if not rows:
            raise MigrationError(
                f"ledger table {self._sql.table_name} is empty; bootstrap first"
            )
        return rows

    def current_version(self, connection: Any, cancel: Optional[Deadline] = None) -> int:
        return current_version_from_rows(self.ledger_rows(connection, cancel))

    def status(self, connection: Any, cancel: Optional[Deadline] = None) -> MigrationStatus:
        migrations = self.load()
        current = self.current_version(connection, cancel)
        return MigrationStatus(
            current_version=current,
            latest_version=migrations[-1].version if migrations else SENTINEL_VERSION,
            pending=[m for m in migrations if m.version > current],
        )

    def up(self, connection: Any, cancel: Optional[Deadline] = None) -> list[Migration]:
        """Apply every pending migration in order.

        Returns:
            The migrations applied by this call.

        Raises:
            MigrationError: a statement failed or ran out of retries.
        """
        status = self.status(connection, cancel)
        if status.up_to_date:
            self._log.info("migrations_up_to_date", version=status.current_version)
            return []

        applied: list[Migration] = []
        for migration in status.pending:
            self._apply(connection, migration, cancel)
            applied.append(migration)

        self._log.info(
            "migrations_complete",
            applied=len(applied),
            version=applied[-1].version,
        )
        return applied

    def _apply(self, connection: Any, migration: Migration, cancel: Optional[Deadline]) -> None:
        bound = self._log.bind(version=migration.version, migration=migration.name)
        bound.info("applying_migration", statements=len(migration.up_statements))

        for index, statement in enumerate(migration.up_statements, start=1):
            try:
                self._executor.execute(
                    lambda: connection.execute(statement),
                    cancel=cancel,
                    step=f"{migration.version}:{index}",
                )
            except Exception as e:
                bound.error("migration_failed", statement=index, error=str(e))
                raise MigrationError(
                    f"migration {migration.path.name} failed at statement {index}",
                    migration.version,
                    cause=e,
                ) from e

        try:
            self._executor.execute(
                lambda: connection.execute(self._sql.insert_version, (migration.version, True)),
                cancel=cancel,
                step=f"{migration.version}:record",
            )
        except Exception as e:
            bound.error("migration_record_failed", error=str(e))
            raise MigrationError(
                f"record version {migration.version} in {self._sql.table_name}",
                migration.version,
                cause=e,
            ) from e

        bound.info("migration_applied")
