from __future__ import annotations

import sqlite3
from collections import defaultdict
from typing import Dict, List, Optional

from domain.models import Team
from domain.repositories import TeamRepository

from .connection import SqliteRepository


class SqliteTeamRepository(SqliteRepository, TeamRepository):
    """
    SQLite-backed implementation of `TeamRepository`.

    Owns the `teams` and `team_memberships` tables and maps rows to the
    `Team` domain model, with members in the order they joined.
    """

    @staticmethod
    def ensure_tables(conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS teams (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                creator_email TEXT NOT NULL,
                description TEXT NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE (name)
            )
            """
        )
        # Every person can be in a given team at most once. They can be in
        # multiple teams, and a team can have multiple members.
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS team_memberships (
                id INTEGER PRIMARY KEY,
                team_id INTEGER NOT NULL REFERENCES teams (id),
                member_email TEXT NOT NULL,
                UNIQUE (team_id, member_email)
            )
            """
        )

    @staticmethod
    def _to_domain(row: tuple, members: List[str]) -> Team:
        return Team(
            id=int(row[0]),
            name=row[1],
            creator_email=row[2],
            description=row[3],
            created_at=row[4],
            members=members,
        )

    def _get_members(self, team_id: int) -> List[str]:
        rows = self._fetchall(
            """
            SELECT member_email
            FROM team_memberships
            WHERE team_id = ?
            ORDER BY id ASC
            """,
            (team_id,),
        )
        return [row[0] for row in rows]

    def get_team(self, team_id: int) -> Optional[Team]:
        row = self._fetchone(
            "SELECT id, name, creator_email, description, created_at FROM teams WHERE id = ?",
            (team_id,),
        )
        if not row:
            return None
        return self._to_domain(row, self._get_members(team_id))

    def get_all_teams(self) -> List[Team]:
        members: Dict[int, List[str]] = defaultdict(list)
        for team_id, member_email in self._fetchall(
            "SELECT team_id, member_email FROM team_memberships ORDER BY id ASC"
        ):
            members[team_id].append(member_email)

        rows = self._fetchall(
            """
            SELECT id, name, creator_email, description, created_at
            FROM teams
            ORDER BY lower(name) ASC, id ASC
            """
        )
        return [self._to_domain(row, members.get(row[0], [])) for row in rows]

    def find_team_by_name(self, name: str) -> Optional[Team]:
        row = self._fetchone(
            """
            SELECT id, name, creator_email, description, created_at
            FROM teams
            WHERE lower(name) = lower(?)
            """,
            (name,),
        )
        if not row:
            return None
        return self._to_domain(row, self._get_members(row[0]))

    def count_teams_by_creator(self, creator_email: str) -> int:
        row = self._fetchone(
            "SELECT count(1) FROM teams WHERE creator_email = ?",
            (creator_email,),
        )
        return int(row[0])

    def add_team(self, name: str, creator_email: str, description: str) -> int:
        cur = self._execute(
            """
            INSERT INTO teams (name, creator_email, description, created_at)
            VALUES (?, ?, ?, strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
            """,
            (name, creator_email, description),
        )
        return int(cur.lastrowid)

    def delete_team(self, team_id: int) -> None:
        self._execute("DELETE FROM teams WHERE id = ?", (team_id,))

    def add_team_member(self, team_id: int, member_email: str) -> None:
        self._execute(
            """
            INSERT INTO team_memberships (team_id, member_email)
            VALUES (?, ?)
            ON CONFLICT DO NOTHING
            """,
            (team_id, member_email),
        )

    def remove_team_member(self, team_id: int, member_email: str) -> None:
        self._execute(
            "DELETE FROM team_memberships WHERE team_id = ? AND member_email = ?",
            (team_id, member_email),
        )

    def get_teams_for_member(self, member_email: str) -> List[int]:
        rows = self._fetchall(
            "SELECT team_id FROM team_memberships WHERE member_email = ? ORDER BY team_id",
            (member_email,),
        )
        return [int(row[0]) for row in rows]
