"""
Integration tests against a real Aurora DSQL cluster.

Tests verify:
- Token authentication and a round trip query
- Many processes bootstrapping the same ledger at once
- Bootstrap followed by migrations, twice
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from dsqlkit.app import MigrationApp
from dsqlkit.core.retry import RetryExecutor, RetryPolicy
from dsqlkit.integrations.dsql.errors import classify_dsql_error
from dsqlkit.services.bootstrap import VersionTableBootstrapper
from dsqlkit.services.ledger import LedgerSQL

pytestmark = pytest.mark.integration


def test_connect_with_token(factory):
    with factory.connect() as conn:
        assert conn.execute("SELECT 1").fetchone() == (1,)


def test_concurrent_bootstrap_leaves_one_sentinel(factory, cluster_settings):
    racers = 8
    policy = RetryPolicy(max_attempts=10, base_backoff_seconds=0.050)

    def bootstrap():
        bootstrapper = VersionTableBootstrapper(
            RetryExecutor(policy, classify_dsql_error), cluster_settings.table_name
        )
        with factory.connect() as conn:
            return bootstrapper.ensure(conn)

    with ThreadPoolExecutor(max_workers=racers) as pool:
        results = list(pool.map(lambda _: bootstrap(), range(racers)))

    assert len(results) == racers
    with factory.connect() as conn:
        count = conn.execute(LedgerSQL(cluster_settings.table_name).count_sentinels).fetchone()
    assert count == (1,)


def test_migrate_twice(factory, cluster_settings):
    app = MigrationApp(cluster_settings, connection_factory=factory)

    first = app.migrate()
    second = app.migrate()

    assert first.version == 2
    assert [m.version for m in first.applied] == [1, 2]
    assert second.applied == []
    assert second.bootstrap.was_noop
