from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from domain.models import Phase, TeamResult, User
from domain.repositories import PhaseRepository, TeamRepository, VoteRepository

from .phases import load_phase
from .results import OperationResult
from .voting import (
    coins_spent,
    max_points_per_team,
    results_display_order,
    shuffle_teams_for_voter,
    tally,
)

MAX_NAME_BYTES = 65
MAX_DESCRIPTION_BYTES = 120

# Letters, digits, spaces and a bit of punctuation. No markup, no control
# characters, no newlines.
_ALLOWED_TEXT_RE = re.compile(r"[\w \-.,:;!?'()&+/#@*]*")

# Teams are frozen once the evaluation starts.
TEAM_EDIT_PHASES = (Phase.REGISTRATION, Phase.PRESENTATION)


@dataclass
class TeamView:
    """A team as presented to one particular user."""

    id: int
    name: str
    description: str
    creator: str
    members: List[str]
    is_member: bool


@dataclass
class OverviewResult(OperationResult):
    """Everything the index page shows to a user."""

    phase: Phase = Phase.REGISTRATION
    user: Optional[User] = None
    teams: List[TeamView] = field(default_factory=list)
    coins_to_spend: int = 0
    coins_left: int = 0
    max_points_per_team: int = 0
    votes: Dict[int, int] = field(default_factory=dict)
    results: Optional[List[TeamResult]] = None
    cheaters: Optional[List[str]] = None


def _validate_text(value: str, what: str, max_bytes: int, required: bool) -> Optional[str]:
    if required and not value:
        return f"The {what} cannot be empty."
    if len(value.encode("utf-8")) > max_bytes:
        return f"The {what} can be at most {max_bytes} bytes."
    if not _ALLOWED_TEXT_RE.fullmatch(value):
        return (
            f"The {what} can only contain letters, digits, spaces, "
            f"and the punctuation - _ . , : ; ! ? ' ( ) & + / # @ *."
        )
    return None


def display_email(email: str, suffix: str) -> str:
    """Strip the organization's email suffix when listing people."""

    if suffix and email.endswith(suffix) and len(email) > len(suffix):
        return email[: -len(suffix)]
    return email


def _check_team_phase(phase_repo: PhaseRepository) -> Optional[OperationResult]:
    if load_phase(phase_repo) not in TEAM_EDIT_PHASES:
        return OperationResult.conflict("Teams can no longer be changed in this phase.")
    return None


def create_team(
    user: User,
    name: str,
    description: str,
    team_repo: TeamRepository,
    phase_repo: PhaseRepository,
    max_teams_per_creator: int,
) -> OperationResult:
    """
    Create a team with the user as its only member.

    On success the result carries the id of the new team.
    """

    closed = _check_team_phase(phase_repo)
    if closed:
        return closed

    name = name.strip()
    description = description.strip()
    error = _validate_text(name, "team name", MAX_NAME_BYTES, required=True)
    error = error or _validate_text(
        description, "description", MAX_DESCRIPTION_BYTES, required=False
    )
    if error:
        return OperationResult.bad_request(error)

    if team_repo.count_teams_by_creator(user.email) >= max_teams_per_creator:
        return OperationResult.bad_request(
            f"You can create at most {max_teams_per_creator} team(s)."
        )

    if team_repo.find_team_by_name(name) is not None:
        return OperationResult.conflict(f"A team named {name!r} already exists.")

    team_id = team_repo.add_team(name, user.email, description)
    team_repo.add_team_member(team_id, user.email)
    return OperationResult.ok(team_id=team_id)


def join_team(
    user: User,
    team_id: int,
    team_repo: TeamRepository,
    phase_repo: PhaseRepository,
) -> OperationResult:
    closed = _check_team_phase(phase_repo)
    if closed:
        return closed

    if team_repo.get_team(team_id) is None:
        return OperationResult.not_found("This team no longer exists.")

    team_repo.add_team_member(team_id, user.email)
    return OperationResult.ok(team_id=team_id)


def leave_team(
    user: User,
    team_id: int,
    team_repo: TeamRepository,
    phase_repo: PhaseRepository,
) -> OperationResult:
    """
    Leave a team.

    The last member cannot leave; a team never exists without members, so
    they have to delete the team instead.
    """

    closed = _check_team_phase(phase_repo)
    if closed:
        return closed

    team = team_repo.get_team(team_id)
    if team is None:
        return OperationResult.not_found("This team no longer exists.")
    if user.email not in team.members:
        return OperationResult.conflict("You are not a member of this team.")
    if len(team.members) == 1:
        return OperationResult.conflict(
            "You are the last member of this team, delete it instead."
        )

    team_repo.remove_team_member(team_id, user.email)
    return OperationResult.ok(team_id=team_id)


def delete_team(
    user: User,
    team_id: int,
    team_repo: TeamRepository,
    vote_repo: VoteRepository,
    phase_repo: PhaseRepository,
) -> OperationResult:
    """Delete a team. Only its sole remaining member can do this."""

    closed = _check_team_phase(phase_repo)
    if closed:
        return closed

    team = team_repo.get_team(team_id)
    if team is None:
        return OperationResult.not_found("This team no longer exists.")
    if team.members != [user.email]:
        return OperationResult.conflict(
            "Only a team's last remaining member can delete it."
        )

    team_repo.remove_team_member(team_id, user.email)
    vote_repo.delete_votes_for_team(team_id)
    team_repo.delete_team(team_id)
    return OperationResult.ok(team_id=team_id)


def build_overview(
    user: User,
    team_repo: TeamRepository,
    vote_repo: VoteRepository,
    phase_repo: PhaseRepository,
    coins_to_spend: int,
    email_suffix: str = "",
) -> OverviewResult:
    """
    Collect the state of the hackathon as the given user may see it.

    - In the evaluation phase the teams are in the user's personal order,
      otherwise sorted by name.
    - Results only appear when the user may see the outcome; the list of
      cheaters only for the administrator.
    """

    phase = load_phase(phase_repo)
    teams = team_repo.get_all_teams()
    if phase == Phase.EVALUATION:
        teams = shuffle_teams_for_voter(user.email, teams)

    views = [
        TeamView(
            id=team.id,
            name=team.name,
            description=team.description,
            creator=display_email(team.creator_email, email_suffix),
            members=[display_email(m, email_suffix) for m in team.members],
            is_member=user.email in team.members,
        )
        for team in teams
    ]

    votes = vote_repo.get_votes_by_voter(user.email)
    overview = OverviewResult(
        phase=phase,
        user=user,
        teams=views,
        coins_to_spend=coins_to_spend,
        coins_left=coins_to_spend - coins_spent(votes),
        max_points_per_team=max_points_per_team(coins_to_spend),
        votes=votes,
    )

    if user.can_see_outcome(phase):
        overview.results = results_display_order(tally(team_repo, vote_repo), phase)
        if user.is_admin:
            overview.cheaters = vote_repo.get_cheaters()

    return overview
