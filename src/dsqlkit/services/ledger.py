"""Migration-version ledger table shared by the bootstrapper and the runner.

The layout matches goose's ``goose_db_version`` table, except that DSQL has
no SERIAL/IDENTITY columns: ``id`` defaults to the commit time in epoch
microseconds. The runner reads the latest version ordered by ``id DESC``, so
the identifier has to be monotonically comparable, not merely unique.

The sentinel row is the exception: it is always written with ``id = 0``.
DSQL runs at snapshot isolation and only detects write-write conflicts on
the same key; it never re-validates the ``WHERE NOT EXISTS`` read. With a
fixed key, racing bootstraps collide on the primary key (OC000 or 23505)
instead of each committing their own version 0 row. Epoch ids are never 0,
so the sentinel still sorts last under ``ORDER BY id DESC``.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

SENTINEL_VERSION = 0
SENTINEL_ID = 0

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


@dataclass(frozen=True)
class VersionRow:
    """One entry of the ledger."""

    id: int
    version_id: int
    is_applied: bool
    tstamp: Optional[datetime] = None

    @property
    def is_sentinel(self) -> bool:
        return self.version_id == SENTINEL_VERSION and self.is_applied

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> "VersionRow":
        return cls(
            id=int(row[0]),
            version_id=int(row[1]),
            is_applied=bool(row[2]),
            tstamp=row[3] if len(row) > 3 else None,
        )


class LedgerSQL:
    """SQL statements for one ledger table name."""

    def __init__(self, table_name: str = "goose_db_version") -> None:
        if not _IDENTIFIER.match(table_name):
            raise ValueError(f"invalid ledger table name: {table_name!r}")
        self.table_name = table_name

    @property
    def create_table(self) -> str:
        return f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                id BIGINT PRIMARY KEY DEFAULT (EXTRACT(EPOCH FROM now()) * 1000000)::BIGINT,
                version_id BIGINT NOT NULL,
                is_applied BOOLEAN NOT NULL,
                tstamp TIMESTAMP DEFAULT now()
            )
        """

    @property
    def has_rows(self) -> str:
        return f"SELECT EXISTS (SELECT 1 FROM {self.table_name})"

    @property
    def insert_sentinel(self) -> str:
        # Fixed key so racing inserts conflict; conditional so a retry after
        # a peer's insert adds nothing
        return (
            f"INSERT INTO {self.table_name} (id, version_id, is_applied) "
            f"SELECT {SENTINEL_ID}, {SENTINEL_VERSION}, TRUE "
            f"WHERE NOT EXISTS (SELECT 1 FROM {self.table_name})"
        )

    @property
    def count_sentinels(self) -> str:
        return (
            f"SELECT COUNT(*) FROM {self.table_name} "
            f"WHERE version_id = {SENTINEL_VERSION} AND is_applied"
        )

    @property
    def table_exists(self) -> str:
        return "SELECT to_regclass(%s) IS NOT NULL"

    @property
    def select_rows(self) -> str:
        return (
            f"SELECT id, version_id, is_applied, tstamp FROM {self.table_name} "
            f"ORDER BY id DESC"
        )

    @property
    def insert_version(self) -> str:
        return f"INSERT INTO {self.table_name} (version_id, is_applied) VALUES (%s, %s)"
