"""
dsqlkit application wiring.

Runs the startup sequence against one DSQL cluster:
1. Request a fresh IAM token and open a connection
2. Bootstrap the migration ledger (table + sentinel row)
3. Apply pending migrations
4. Close the connection

The whole sequence runs under one Deadline so a retry storm cannot hang the
process. SIGTERM/SIGINT cancel the active deadline.
"""
import signal
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

import structlog

from dsqlkit.core.cancellation import Deadline
from dsqlkit.core.config import ConfigManager, DsqlSettings
from dsqlkit.core.retry import RetryExecutor
from dsqlkit.integrations.dsql.auth import TokenProvider
from dsqlkit.integrations.dsql.connection import ConnectionFactory
from dsqlkit.integrations.dsql.errors import classify_dsql_error
from dsqlkit.services.bootstrap import BootstrapResult, VersionTableBootstrapper
from dsqlkit.services.migrator import Migration, MigrationRunner, MigrationStatus


@dataclass
class MigrateReport:
    """Outcome of a full bootstrap-and-migrate run."""

    bootstrap: BootstrapResult
    applied: list[Migration] = field(default_factory=list)
    version: int = 0


class MigrationApp:
    """Wires settings, token provider, connection factory, bootstrapper and runner.

    Usage:
        app = MigrationApp.from_config(ConfigManager(Path("config/default.toml")))
        report = app.migrate()
    """

    def __init__(
        self,
        settings: DsqlSettings,
        token_provider: Optional[TokenProvider] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        bootstrapper: Optional[VersionTableBootstrapper] = None,
        runner: Optional[MigrationRunner] = None,
    ) -> None:
        self._settings = settings
        executor = RetryExecutor(settings.retry, classify_dsql_error)

        self._factory = connection_factory or ConnectionFactory(
            settings,
            token_provider or TokenProvider(expires_in=settings.token_expires_in),
        )
        self._bootstrapper = bootstrapper or VersionTableBootstrapper(
            executor, settings.table_name
        )
        self._runner = runner or MigrationRunner(
            settings.migrations_dir, executor, settings.table_name
        )
        self._active: Optional[Deadline] = None
        self._log = structlog.get_logger("dsqlkit.app")

    @classmethod
    def from_config(cls, config: ConfigManager) -> "MigrationApp":
        return cls(DsqlSettings.from_config(config))

    @property
    def settings(self) -> DsqlSettings:
        return self._settings

    @contextmanager
    def _session(self, operation: str) -> Iterator[tuple[Any, Deadline]]:
        deadline = Deadline(self._settings.timeout_seconds)
        self._active = deadline
        self._log.info(
            "session_started",
            operation=operation,
            timeout_seconds=self._settings.timeout_seconds,
        )
        try:
            conn = self._factory.connect()
            try:
                yield conn, deadline
            finally:
                conn.close()
        finally:
            self._active = None

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel whatever sequence is running now."""
        if self._active is not None:
            self._log.warning("cancel_requested", reason=reason)
            self._active.cancel(reason)

    def install_signal_handlers(self) -> None:
        """Cancel the running sequence on SIGTERM/SIGINT."""

        def handler(signum: int, frame: Any) -> None:
            self.cancel(signal.Signals(signum).name)

        signal.signal(signal.SIGTERM, handler)
        signal.signal(signal.SIGINT, handler)

    def bootstrap(self) -> BootstrapResult:
        """Ensure the ledger only."""
        with self._session("bootstrap") as (conn, deadline):
            return self._bootstrapper.ensure(conn, cancel=deadline)

    def migrate(self) -> MigrateReport:
        """Bootstrap the ledger, then apply pending migrations.

        Migrations are never attempted if the bootstrap raises.
        """
        with self._session("migrate") as (conn, deadline):
            result = self._bootstrapper.ensure(conn, cancel=deadline)
            applied = self._runner.up(conn, cancel=deadline)
            version = self._runner.current_version(conn, cancel=deadline)

        self._log.info("migrate_complete", applied=len(applied), version=version)
        return MigrateReport(bootstrap=result, applied=applied, version=version)

    def status(self) -> MigrationStatus:
        with self._session("status") as (conn, deadline):
            return self._runner.status(conn, cancel=deadline)
