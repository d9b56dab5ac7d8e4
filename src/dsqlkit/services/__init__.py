"""Services - ledger bootstrap and migration runner."""

from dsqlkit.services.bootstrap import (
    BootstrapError,
    BootstrapResult,
    BootstrapStep,
    VersionTableBootstrapper,
)
from dsqlkit.services.ledger import SENTINEL_ID, SENTINEL_VERSION, LedgerSQL, VersionRow
from dsqlkit.services.migrator import (
    Migration,
    MigrationError,
    MigrationRunner,
    MigrationStatus,
    parse_migration,
)

__all__ = [
    "BootstrapError",
    "BootstrapResult",
    "BootstrapStep",
    "VersionTableBootstrapper",
    "SENTINEL_ID",
    "SENTINEL_VERSION",
    "LedgerSQL",
    "VersionRow",
    "Migration",
    "MigrationError",
    "MigrationRunner",
    "MigrationStatus",
    "parse_migration",
]
