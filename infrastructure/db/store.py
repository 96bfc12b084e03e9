from __future__ import annotations

import logging
import queue
import sqlite3
import threading
from typing import List, Optional

from domain.errors import StoreError

from .connection import translate_errors
from .phase_repository_sqlite import SqlitePhaseRepository
from .team_repository_sqlite import SqliteTeamRepository
from .vote_repository_sqlite import SqliteVoteRepository

logger = logging.getLogger(__name__)


class SqliteTransaction:
    """
    An open `BEGIN IMMEDIATE` transaction.

    The repositories on this object all share the transaction's connection,
    so reads observe the transaction's own writes.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self.teams = SqliteTeamRepository(conn)
        self.votes = SqliteVoteRepository(conn)
        self.phases = SqlitePhaseRepository(conn)

    def commit(self) -> None:
        with translate_errors():
            self._conn.execute("COMMIT")

    def rollback(self) -> None:
        with translate_errors():
            # After some errors SQLite has already rolled back on its own.
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")


class SqliteSession:
    """
    A single connection to the database.

    A session is used by one thread at a time; workers check them out of a
    `SessionPool`.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def begin(self) -> SqliteTransaction:
        # Take the write lock up front. Every request is treated as a writer,
        # so contention surfaces here as SQLITE_BUSY rather than half-way.
        with translate_errors():
            self._conn.execute("BEGIN IMMEDIATE")
        return SqliteTransaction(self._conn)

    def close(self) -> None:
        with translate_errors():
            self._conn.close()


class SqliteStore:
    """
    Opens sessions against one SQLite database file.

    SQLite supports only a single writer at a time, and opening a session
    writes (journal mode, schema), so sessions are opened one at a time.
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 30) -> None:
        self._db_path = db_path
        self._busy_timeout_ms = busy_timeout_ms
        self._open_lock = threading.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    def open_session(self) -> SqliteSession:
        with self._open_lock:
            with translate_errors():
                conn = sqlite3.connect(
                    self._db_path,
                    timeout=self._busy_timeout_ms / 1000,
                    isolation_level=None,
                    check_same_thread=False,
                )
            try:
                self._initialize(conn)
            except StoreError:
                conn.close()
                raise

        logger.info("Opened database session on %s", self._db_path)
        return SqliteSession(conn)

    def _initialize(self, conn: sqlite3.Connection) -> None:
        # WAL lets readers and the writer proceed side by side. The busy
        # timeout lets them wait for each other a little bit; the transaction
        # runner retries beyond that.
        with translate_errors():
            conn.execute("PRAGMA locking_mode = NORMAL")
            conn.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout_ms)}")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA foreign_keys = TRUE")

            conn.execute("BEGIN IMMEDIATE")
            try:
                SqliteTeamRepository.ensure_tables(conn)
                SqliteVoteRepository.ensure_tables(conn)
                SqlitePhaseRepository.ensure_tables(conn)
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")


class SessionPool:
    """
    At most `size` sessions, shared by the worker threads.

    Sessions are opened lazily. A request checks one out for the length of
    its transaction and hands it back afterwards. A session that failed with
    a fatal store error is discarded, and its slot opens a fresh one on next
    use.
    """

    def __init__(self, store: SqliteStore, size: int) -> None:
        if size < 1:
            raise ValueError("size must be at least 1")
        self._store = store
        # An empty slot is None. Last in, first out keeps the fewest
        # sessions busy under light load.
        self._slots: queue.LifoQueue = queue.LifoQueue(maxsize=size)
        for _ in range(size):
            self._slots.put(None)
        self._lock = threading.Lock()
        self._open: List[SqliteSession] = []

    @property
    def open_sessions(self) -> List[SqliteSession]:
        with self._lock:
            return list(self._open)

    def acquire(self) -> SqliteSession:
        """Check out a session, blocking while all of them are in use."""

        session: Optional[SqliteSession] = self._slots.get()
        if session is not None:
            return session
        try:
            session = self._store.open_session()
        except BaseException:
            self._slots.put(None)
            raise
        with self._lock:
            self._open.append(session)
        return session

    def release(self, session: SqliteSession) -> None:
        self._slots.put(session)

    def discard(self, session: SqliteSession) -> None:
        """Close a checked out session that can't be trusted anymore."""

        with self._lock:
            if session in self._open:
                self._open.remove(session)
        try:
            session.close()
        except StoreError:
            logger.exception("Failed to close discarded database session")
        else:
            logger.info("Discarded database session")
        self._slots.put(None)

    def close_all(self) -> None:
        with self._lock:
            sessions, self._open = self._open, []
        for session in sessions:
            try:
                session.close()
            except StoreError:
                logger.exception("Failed to close database session")

        # Leave the pool usable, with every idle slot empty.
        drained = 0
        while True:
            try:
                self._slots.get_nowait()
            except queue.Empty:
                break
            drained += 1
        for _ in range(drained):
            self._slots.put(None)
