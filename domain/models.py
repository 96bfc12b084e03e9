from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class Phase(Enum):
    """
    Progress of the hackathon.

    The phases form a linear sequence; the administrator moves the event
    one step forward or back at a time.
    """

    REGISTRATION = "registration"
    PRESENTATION = "presentation"
    EVALUATION = "evaluation"
    REVELATION = "revelation"
    CELEBRATION = "celebration"

    @classmethod
    def parse(cls, name: Optional[str]) -> Phase:
        """Parse a persisted phase name, defaulting to registration."""

        for phase in cls:
            if phase.value == name:
                return phase
        return cls.REGISTRATION

    def next(self) -> Phase:
        phases = list(Phase)
        index = phases.index(self)
        return phases[min(index + 1, len(phases) - 1)]

    def prev(self) -> Phase:
        phases = list(Phase)
        index = phases.index(self)
        return phases[max(index - 1, 0)]


def can_see_outcome(phase: Phase, is_admin: bool) -> bool:
    """
    Whether to display the outcome of the vote.

    In the revelation phase only the admin gets to see the totals, so
    nobody can run ahead and check who won during the ceremony.
    Afterwards everybody can check at their own pace.
    """

    if phase == Phase.REVELATION:
        return is_admin
    return phase == Phase.CELEBRATION


class AntiCheatPolicy(Enum):
    """How votes on a voter's own team are neutralized."""

    # Keep self-votes, negated. Negative points are allowed.
    FLIP = "flip"
    # Drop self-votes. Negative points are rejected.
    ZERO = "zero"


@dataclass
class User:
    """
    The person making a request.

    Users are not persisted; the identity comes from an authenticating proxy
    and is re-resolved on every request.
    """

    email: str
    is_admin: bool = False

    def can_see_outcome(self, phase: Phase) -> bool:
        return can_see_outcome(phase, self.is_admin)


@dataclass
class Team:
    id: int
    name: str
    creator_email: str
    description: str
    created_at: Optional[str] = None
    members: List[str] = field(default_factory=list)


@dataclass
class Vote:
    voter_email: str
    team_id: int
    points: int


@dataclass
class TeamResult:
    """A team's position in the final tally."""

    rank: int
    team: Team
    points: int
