from __future__ import annotations

from typing import Dict, List, Optional, Protocol

from .models import Phase, Team, Vote


class TeamRepository(Protocol):
    """
    Abstraction over teams and their memberships.

    Implementations are bound to a single open transaction; every call reads
    and writes through it.
    """

    def get_team(self, team_id: int) -> Optional[Team]:
        """Return the team with its members, or None if not found."""

        ...

    def get_all_teams(self) -> List[Team]:
        """Return all teams with their members, ordered by name."""

        ...

    def find_team_by_name(self, name: str) -> Optional[Team]:
        """Case-insensitive lookup by team name."""

        ...

    def count_teams_by_creator(self, creator_email: str) -> int:
        ...

    def add_team(self, name: str, creator_email: str, description: str) -> int:
        """Persist a new team and return its store-assigned id."""

        ...

    def delete_team(self, team_id: int) -> None:
        ...

    def add_team_member(self, team_id: int, member_email: str) -> None:
        """Add a member. Adding an existing member again does nothing."""

        ...

    def remove_team_member(self, team_id: int, member_email: str) -> None:
        ...

    def get_teams_for_member(self, member_email: str) -> List[int]:
        """Return the ids of all teams the given person is a member of."""

        ...


class VoteRepository(Protocol):
    """Persistence for votes and the set of flagged cheaters."""

    def get_votes_by_voter(self, voter_email: str) -> Dict[int, int]:
        """Return the voter's stored points, keyed by team id."""

        ...

    def delete_votes_by_voter(self, voter_email: str) -> None:
        ...

    def delete_votes_for_team(self, team_id: int) -> None:
        ...

    def add_vote(self, vote: Vote) -> None:
        ...

    def get_points_per_team(self) -> Dict[int, int]:
        """Return the sum of all stored points, keyed by team id."""

        ...

    def flag_cheater(self, voter_email: str) -> None:
        """
        Mark a voter as a cheater.

        The flag is permanent; flagging an already flagged voter is a no-op.
        """

        ...

    def get_cheaters(self) -> List[str]:
        ...


class PhaseRepository(Protocol):
    def get_current_phase(self) -> Optional[str]:
        """Return the persisted phase name, if any was ever stored."""

        ...

    def set_current_phase(self, phase: Phase) -> None:
        ...


class Transaction(Protocol):
    """
    One open unit of work against the store.

    The repositories exposed here read and write through this transaction,
    so they see its own uncommitted writes.
    """

    teams: TeamRepository
    votes: VoteRepository
    phases: PhaseRepository

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


class Session(Protocol):
    """A connection to the store that transactions are started on."""

    def begin(self) -> Transaction:
        ...

    def close(self) -> None:
        ...
