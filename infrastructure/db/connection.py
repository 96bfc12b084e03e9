from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence

from domain.errors import StoreBusyError, StoreError

# Primary result codes, see https://www.sqlite.org/rescode.html.
SQLITE_BUSY = 5
SQLITE_LOCKED = 6


def classify_sqlite_error(exc: sqlite3.Error) -> StoreError:
    """
    Wrap a raw `sqlite3` error into one of the two store error variants.

    The decision depends only on the primary result code. Extended codes
    such as SQLITE_BUSY_SNAPSHOT carry the primary code in the low byte.
    """

    code = getattr(exc, "sqlite_errorcode", None)
    if code is None:
        # Before Python 3.11 the code is not exposed, only the message.
        message = str(exc).lower()
        busy = "database is locked" in message or "database is busy" in message
    else:
        busy = (code & 0xFF) in (SQLITE_BUSY, SQLITE_LOCKED)

    if busy:
        return StoreBusyError(str(exc), cause=exc)
    return StoreError(str(exc), cause=exc)


@contextmanager
def translate_errors() -> Iterator[None]:
    """Re-raise any `sqlite3.Error` as a `StoreError`."""

    try:
        yield
    except sqlite3.Error as exc:
        raise classify_sqlite_error(exc) from exc


class SqliteRepository:
    """
    Shared plumbing for repositories bound to one open connection.

    The connection is owned by the transaction; repositories never commit.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with translate_errors():
            return self._conn.execute(sql, params)

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[tuple]:
        with translate_errors():
            return self._conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[tuple]:
        with translate_errors():
            return self._conn.execute(sql, params).fetchall()
