"""
Unit tests for MigrationApp.

The app is wired to the fake cluster through ConnectionFactory's connect
hook, so the full token -> connect -> bootstrap -> migrate -> close
sequence runs without AWS or a database.
"""

import signal

import pytest

from dsqlkit.app import MigrateReport, MigrationApp
from dsqlkit.core.config import ConfigManager
from dsqlkit.core.retry import RetryExecutor, RetryLimitExceededError
from dsqlkit.integrations.dsql.auth import AuthError
from dsqlkit.integrations.dsql.connection import ConnectionFactory
from dsqlkit.integrations.dsql.errors import classify_dsql_error
from dsqlkit.services.bootstrap import BootstrapError, BootstrapStep, VersionTableBootstrapper
from dsqlkit.services.migrator import MigrationRunner


@pytest.fixture
def make_app(settings, mock_token_provider, executor):
    def build(db) -> MigrationApp:
        factory = ConnectionFactory(settings, mock_token_provider, connect=db.connect)
        return MigrationApp(
            settings,
            connection_factory=factory,
            bootstrapper=VersionTableBootstrapper(executor, settings.table_name),
            runner=MigrationRunner(settings.migrations_dir, executor, settings.table_name),
        )

    return build


class TestMigrate:
    """Test MigrationApp.migrate."""

    def test_fresh_database(self, make_app, fake_db, mock_token_provider):
        report = make_app(fake_db).migrate()

        assert isinstance(report, MigrateReport)
        assert report.bootstrap.created_sentinel
        assert [m.version for m in report.applied] == [1, 2]
        assert report.version == 2
        assert [r.version_id for r in fake_db.rows] == [0, 1, 2]
        assert mock_token_provider.generate.call_count == 1

    def test_connection_closed(self, make_app, fake_db):
        make_app(fake_db).migrate()

        assert len(fake_db.connections) == 1
        assert fake_db.connections[0].closed

    def test_second_run_is_noop(self, make_app, fake_db):
        app = make_app(fake_db)
        app.migrate()

        report = app.migrate()

        assert report.bootstrap.was_noop
        assert report.applied == []
        assert report.version == 2
        assert fake_db.sentinel_count == 1

    def test_bootstrap_failure_skips_migrations(self, make_app, fake_db):
        fake_db.inject("has_rows", times=100)

        with pytest.raises(BootstrapError) as exc_info:
            make_app(fake_db).migrate()

        assert exc_info.value.step is BootstrapStep.CHECK_LEDGER
        assert isinstance(exc_info.value.cause, RetryLimitExceededError)
        assert fake_db.executed == []
        assert fake_db.calls["table_exists"] == 0
        assert fake_db.connections[0].closed

    def test_auth_failure_never_connects(self, make_app, fake_db, mock_token_provider):
        mock_token_provider.generate.side_effect = AuthError("expired credentials")

        with pytest.raises(AuthError):
            make_app(fake_db).migrate()

        assert fake_db.connections == []
        assert mock_token_provider.generate.call_count == 1


class TestOtherCommands:
    def test_bootstrap_only(self, make_app, fake_db):
        result = make_app(fake_db).bootstrap()

        assert result.created_sentinel
        assert fake_db.executed == []

    def test_status(self, make_app, bootstrapped_db):
        bootstrapped_db.seed_version(1)

        status = make_app(bootstrapped_db).status()

        assert status.current_version == 1
        assert [m.version for m in status.pending] == [2]


class TestCancellation:
    def test_cancel_without_session_is_harmless(self, make_app, fake_db):
        make_app(fake_db).cancel("SIGTERM")

    def test_cancel_interrupts_backoff(self, settings, mock_token_provider, zero_jitter_policy, fake_db):
        app = None

        def cancel_on_sleep(seconds):
            app.cancel("SIGTERM")

        executor = RetryExecutor(zero_jitter_policy, classify_dsql_error, sleep=cancel_on_sleep)
        app = MigrationApp(
            settings,
            connection_factory=ConnectionFactory(settings, mock_token_provider, connect=fake_db.connect),
            bootstrapper=VersionTableBootstrapper(executor),
            runner=MigrationRunner(settings.migrations_dir, executor),
        )
        fake_db.inject("create_table", times=100)

        with pytest.raises(BootstrapError, match="cancelled"):
            app.migrate()

        assert fake_db.calls["create_table"] == 1

    def test_signal_handlers_installed(self, make_app, fake_db, monkeypatch):
        installed = {}
        monkeypatch.setattr(signal, "signal", lambda sig, handler: installed.setdefault(sig, handler))

        make_app(fake_db).install_signal_handlers()

        assert set(installed) == {signal.SIGTERM, signal.SIGINT}


class TestFromConfig:
    def test_builds_from_config(self, migrations_dir):
        config = ConfigManager()
        config.set("database.uri", "dsql://admin@abc123.dsql.us-east-1.on.aws/postgres")
        config.set("database.timeout_seconds", 30)
        config.set("migrations.dir", str(migrations_dir))

        app = MigrationApp.from_config(config)

        assert app.settings.timeout_seconds == 30.0
        assert app.settings.migrations_dir == migrations_dir
