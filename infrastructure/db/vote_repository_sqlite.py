from __future__ import annotations

import sqlite3
from typing import Dict, List

from domain.models import Vote
from domain.repositories import VoteRepository

from .connection import SqliteRepository


class SqliteVoteRepository(SqliteRepository, VoteRepository):
    """
    SQLite-backed implementation of `VoteRepository`.

    Manages the `votes` table and the `cheaters` table of voters who tried
    to vote for their own team.
    """

    @staticmethod
    def ensure_tables(conn: sqlite3.Connection) -> None:
        # Every voter can vote at most once on a team. Without this, you
        # could sidestep the quadratic voting property.
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS votes (
                id INTEGER PRIMARY KEY,
                voter_email TEXT NOT NULL,
                team_id INTEGER NOT NULL REFERENCES teams (id),
                points INTEGER NOT NULL,
                UNIQUE (voter_email, team_id)
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS cheaters (
                voter_email TEXT PRIMARY KEY,
                flagged_at TEXT NOT NULL
            )
            """
        )

    def get_votes_by_voter(self, voter_email: str) -> Dict[int, int]:
        rows = self._fetchall(
            "SELECT team_id, points FROM votes WHERE voter_email = ? ORDER BY team_id",
            (voter_email,),
        )
        return {int(team_id): int(points) for team_id, points in rows}

    def delete_votes_by_voter(self, voter_email: str) -> None:
        self._execute("DELETE FROM votes WHERE voter_email = ?", (voter_email,))

    def delete_votes_for_team(self, team_id: int) -> None:
        self._execute("DELETE FROM votes WHERE team_id = ?", (team_id,))

    def add_vote(self, vote: Vote) -> None:
        self._execute(
            "INSERT INTO votes (voter_email, team_id, points) VALUES (?, ?, ?)",
            (vote.voter_email, vote.team_id, vote.points),
        )

    def get_points_per_team(self) -> Dict[int, int]:
        rows = self._fetchall(
            """
            SELECT teams.id, coalesce(sum(votes.points), 0)
            FROM teams
            LEFT JOIN votes ON votes.team_id = teams.id
            GROUP BY teams.id
            """
        )
        return {int(team_id): int(points) for team_id, points in rows}

    def flag_cheater(self, voter_email: str) -> None:
        self._execute(
            """
            INSERT INTO cheaters (voter_email, flagged_at)
            VALUES (?, strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
            ON CONFLICT (voter_email) DO NOTHING
            """,
            (voter_email,),
        )

    def get_cheaters(self) -> List[str]:
        rows = self._fetchall("SELECT voter_email FROM cheaters ORDER BY voter_email")
        return [row[0] for row in rows]
