"""Classify database errors raised when two writers race on the same row."""
from __future__ import annotations

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm.exc import StaleDataError

# Postgres serialization_failure / deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_write_conflict(exc: BaseException) -> bool:
    """True when retrying from fresh state is the right response.

    StaleDataError is the ORM's version_id_col check failing; the DBAPI cases
    cover backends that detect the conflict themselves.
    """
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in _RETRYABLE_SQLSTATES:
            return True
        if "database is locked" in str(orig).lower():
            return True
    return False
