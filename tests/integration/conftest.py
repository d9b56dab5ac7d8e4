"""Integration test fixtures.

Builds settings for a real cluster from the environment. Every test gets
its own ledger table and migration tables, dropped afterwards.
"""

import os
import uuid
from pathlib import Path

import pytest

from dsqlkit.core.config import DsqlSettings
from dsqlkit.integrations.dsql.connection import ConnectionFactory

ENDPOINT = os.environ.get("DSQLKIT_TEST_CLUSTER_ENDPOINT")
REGION = os.environ.get("AWS_REGION")


def pytest_collection_modifyitems(config, items):
    if ENDPOINT and REGION:
        return
    skip = pytest.mark.skip(reason="DSQLKIT_TEST_CLUSTER_ENDPOINT and AWS_REGION not set")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def suffix() -> str:
    return uuid.uuid4().hex[:12]


@pytest.fixture
def migrations_dir(tmp_path, suffix) -> Path:
    path = tmp_path / "migrations"
    path.mkdir()
    (path / "00001_create_items.sql").write_text(
        "-- +goose Up\n"
        f"CREATE TABLE IF NOT EXISTS items_{suffix} (id TEXT PRIMARY KEY, name TEXT);\n"
        "\n"
        "-- +goose Down\n"
        f"DROP TABLE items_{suffix};\n"
    )
    (path / "00002_index_items.sql").write_text(
        "-- +goose Up\n"
        f"CREATE INDEX ASYNC IF NOT EXISTS idx_items_{suffix}_name ON items_{suffix} (name);\n"
    )
    return path


@pytest.fixture
def cluster_settings(suffix, migrations_dir) -> DsqlSettings:
    return DsqlSettings(
        uri=f"dsql://admin@{ENDPOINT}/postgres?region={REGION}",
        timeout_seconds=120.0,
        migrations_dir=migrations_dir,
        table_name=f"dsqlkit_ledger_{suffix}",
    )


@pytest.fixture
def factory(cluster_settings, suffix):
    factory = ConnectionFactory(cluster_settings)
    yield factory
    with factory.connect() as conn:
        conn.execute(f"DROP TABLE IF EXISTS {cluster_settings.table_name}")
        conn.execute(f"DROP TABLE IF EXISTS items_{suffix}")
