"""
Error classification for Aurora DSQL.

DSQL aborts conflicting transactions at commit time. It reports them as
SQLSTATE 40001 with an OCC code in the message:

- OC000: mutation conflict (two transactions wrote the same rows)
- OC001: schema conflict (catalog changed under the transaction)

Structured codes exposed by the driver are preferred. Text matching is only
used when the error carries no code, and only for the exact signatures above.
"""

import re
from typing import Iterator, Optional

from psycopg import errors as pg_errors

from dsqlkit.core.retry import (
    ConflictClassification,
    DsqlkitError,
    TransientConflictError,
)

SERIALIZATION_FAILURE = "40001"
UNIQUE_VIOLATION = "23505"
OCC_MUTATION_CONFLICT = "OC000"
OCC_SCHEMA_CONFLICT = "OC001"

OCC_SQLSTATES = frozenset(
    {SERIALIZATION_FAILURE, OCC_MUTATION_CONFLICT, OCC_SCHEMA_CONFLICT}
)

_OCC_SIGNATURE = re.compile(r"\b(OC000|OC001|40001)\b")

# How far to follow __cause__ when a driver error was wrapped
_MAX_CHAIN_DEPTH = 5


def sqlstate_of(error: BaseException) -> Optional[str]:
    """Return the SQLSTATE carried by a driver error, if any.

    psycopg 3 uses ``sqlstate``, psycopg2 ``pgcode``.
    """
    for attr in ("sqlstate", "pgcode"):
        code = getattr(error, attr, None)
        if code:
            return str(code)
    return None


def _error_chain(error: BaseException) -> Iterator[BaseException]:
    current: Optional[BaseException] = error
    depth = 0
    while current is not None and depth < _MAX_CHAIN_DEPTH:
        yield current
        current = current.__cause__
        depth += 1


def _is_occ(error: BaseException) -> bool:
    if isinstance(error, (TransientConflictError, pg_errors.SerializationFailure)):
        return True
    code = sqlstate_of(error)
    if code is not None:
        return code in OCC_SQLSTATES
    return bool(_OCC_SIGNATURE.search(str(error)))


def classify_dsql_error(error: BaseException) -> ConflictClassification:
    """Classify an exception raised by a DSQL statement.

    Our own terminal errors (retry exhaustion, bootstrap failure) are never
    transient, even though they wrap a conflict.
    """
    if isinstance(error, DsqlkitError) and not isinstance(error, TransientConflictError):
        return ConflictClassification.TERMINAL
    if any(_is_occ(e) for e in _error_chain(error)):
        return ConflictClassification.TRANSIENT
    return ConflictClassification.TERMINAL


def is_occ_conflict(error: BaseException) -> bool:
    return classify_dsql_error(error) is ConflictClassification.TRANSIENT


def is_unique_violation(error: BaseException) -> bool:
    """True for duplicate-key errors (a peer inserted the same key first)."""
    for e in _error_chain(error):
        if isinstance(e, pg_errors.UniqueViolation) or sqlstate_of(e) == UNIQUE_VIOLATION:
            return True
    return False
