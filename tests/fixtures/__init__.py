"""Test fixtures for dsqlkit tests.

This package provides:
- FakeDsql, an in-memory cluster holding the migration ledger
- Helpers to build OCC and unique-violation errors
"""

from .fake_dsql import (
    FakeConnection,
    FakeCursor,
    FakeDbError,
    FakeDsql,
    occ_error,
    unique_violation,
)

__all__ = [
    "FakeConnection",
    "FakeCursor",
    "FakeDbError",
    "FakeDsql",
    "occ_error",
    "unique_violation",
]
