"""Shared pytest fixtures for dsqlkit tests.

This file provides common fixtures used across all test modules:
- Fake DSQL cluster and connections
- Deterministic retry executors that record sleeps instead of sleeping
- Settings and migration directory fixtures
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from dsqlkit.core.config import DsqlSettings
from dsqlkit.core.retry import RetryExecutor, RetryPolicy
from dsqlkit.integrations.dsql.errors import classify_dsql_error
from tests.fixtures.fake_dsql import FakeDsql

TEST_URI = "dsql://admin@abc123.dsql.us-east-1.on.aws/postgres?region=us-east-1"


class SleepRecorder:
    """Drop-in for time.sleep that only records requested durations."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def count(self) -> int:
        return len(self.calls)


# =============================================================================
# Retry Fixtures
# =============================================================================


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def zero_jitter_policy() -> RetryPolicy:
    """Deterministic policy: 5 attempts, 10ms base, no jitter."""
    return RetryPolicy(max_attempts=5, base_backoff_seconds=0.010, jitter_fraction=0.0)


@pytest.fixture
def executor(zero_jitter_policy, sleeps) -> RetryExecutor:
    """DSQL-classifying executor that never really sleeps."""
    return RetryExecutor(zero_jitter_policy, classify_dsql_error, sleep=sleeps)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def fake_db() -> FakeDsql:
    """Fresh, empty fake cluster for each test."""
    return FakeDsql()


@pytest.fixture
def bootstrapped_db() -> FakeDsql:
    """Fake cluster whose ledger already holds the sentinel row."""
    db = FakeDsql()
    db.seed_sentinel()
    return db


@pytest.fixture
def mock_token_provider() -> MagicMock:
    provider = MagicMock()
    provider.generate.return_value = "signed-token"
    return provider


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def migrations_dir(tmp_path) -> Path:
    """Directory with two goose migrations."""
    path = tmp_path / "migrations"
    path.mkdir()
    (path / "00001_create_store.sql").write_text(
        "-- +goose Up\n"
        "CREATE TABLE IF NOT EXISTS store (id TEXT PRIMARY KEY, name TEXT NOT NULL);\n"
        "\n"
        "-- +goose Down\n"
        "DROP TABLE store;\n"
    )
    (path / "00002_add_tuple.sql").write_text(
        "-- +goose Up\n"
        "CREATE TABLE IF NOT EXISTS tuple (store TEXT NOT NULL, object_id TEXT NOT NULL);\n"
        "CREATE INDEX ASYNC IF NOT EXISTS idx_tuple_store ON tuple (store);\n"
        "\n"
        "-- +goose Down\n"
        "DROP TABLE tuple;\n"
    )
    return path


@pytest.fixture
def settings(migrations_dir, zero_jitter_policy) -> DsqlSettings:
    return DsqlSettings(
        uri=TEST_URI,
        timeout_seconds=5.0,
        migrations_dir=migrations_dir,
        retry=zero_jitter_policy,
    )
