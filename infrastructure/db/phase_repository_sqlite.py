from __future__ import annotations

import sqlite3
from typing import Optional

from domain.models import Phase
from domain.repositories import PhaseRepository

from .connection import SqliteRepository


class SqlitePhaseRepository(SqliteRepository, PhaseRepository):
    """
    SQLite-backed implementation of `PhaseRepository`.

    The `progress` table is an append-only log of phase changes; the newest
    row is the current phase.
    """

    @staticmethod
    def ensure_tables(conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS progress (
                id INTEGER PRIMARY KEY,
                created_at TEXT NOT NULL,
                phase TEXT NOT NULL
            )
            """
        )

    def get_current_phase(self) -> Optional[str]:
        row = self._fetchone("SELECT phase FROM progress ORDER BY id DESC LIMIT 1")
        if not row:
            return None
        return row[0]

    def set_current_phase(self, phase: Phase) -> None:
        self._execute(
            """
            INSERT INTO progress (phase, created_at)
            VALUES (?, strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
            """,
            (phase.value,),
        )
