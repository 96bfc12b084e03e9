"""
Quadratic voting.

Every voter gets a budget of coins. Awarding `p` points to a team costs `p²`
coins, so spreading points over several teams buys more influence than
piling them onto one. Votes on one's own team are neutralized and the voter
is flagged as a cheater.
"""
from __future__ import annotations

import hashlib
import logging
import math
import re
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from domain.models import AntiCheatPolicy, Phase, Team, TeamResult, User, Vote
from domain.repositories import PhaseRepository, TeamRepository, VoteRepository

from .phases import load_phase
from .results import OperationResult

logger = logging.getLogger(__name__)

I64_MIN = -(2**63)
I64_MAX = 2**63 - 1

# Form fields carrying points are named `team-<id>`.
FIELD_PREFIX = "team-"

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")
_TEAM_ID_RE = re.compile(r"[1-9][0-9]*")


def max_points_per_team(coins_to_spend: int) -> int:
    """The most points a voter can give a single team with their budget."""

    return math.isqrt(max(coins_to_spend, 0))


def parse_points(raw: str) -> Optional[int]:
    """
    Parse a point value from a form field.

    A blank field means zero. Anything else must be a plain decimal integer
    that fits in a signed 64-bit integer, otherwise None is returned.
    """

    text = raw.strip()
    if text == "":
        return 0
    if not _INTEGER_RE.fullmatch(text):
        return None
    value = int(text)
    if value < I64_MIN or value > I64_MAX:
        return None
    return value


def parse_team_id(raw: str) -> Optional[int]:
    """Parse a team id written as a plain positive decimal, or return None."""

    if not _TEAM_ID_RE.fullmatch(raw):
        return None
    team_id = int(raw)
    if team_id > I64_MAX:
        return None
    return team_id


def parse_ballot(form: Mapping[str, str]) -> Tuple[Dict[int, int], Optional[str]]:
    """
    Extract the `team id -> points` mapping from a submitted form.

    Returns the mapping and an error message; on error the mapping is empty.
    Fields that are not vote fields are ignored.
    """

    points: Dict[int, int] = {}
    for key, raw in form.items():
        if not key.startswith(FIELD_PREFIX):
            continue
        team_id = parse_team_id(key[len(FIELD_PREFIX):])
        if team_id is None:
            return {}, f"Invalid team in field {key!r}."
        value = parse_points(raw)
        if value is None:
            return {}, f"Points must be an integer, got {raw!r}."
        points[team_id] = value
    return points, None


def quadratic_cost(points: Iterable[int]) -> Optional[int]:
    """
    Total coins needed for the given point values.

    The arithmetic is checked against the signed 64-bit range; if any
    intermediate value leaves it, None is returned instead of a total.
    """

    total = 0
    for p in points:
        square = p * p
        if square > I64_MAX:
            return None
        total += square
        if total > I64_MAX:
            return None
    return total


def validate_ballot(
    points: Mapping[int, int],
    coins_to_spend: int,
    policy: AntiCheatPolicy,
) -> Optional[str]:
    if policy == AntiCheatPolicy.ZERO and any(p < 0 for p in points.values()):
        # Spending coins to destroy someone's reputation is not allowed.
        return "Points cannot be negative."

    cost = quadratic_cost(points.values())
    if cost is None:
        return "That is way too many points."
    if cost > coins_to_spend:
        return (
            f"These votes cost {cost} coins, "
            f"but you only have {coins_to_spend} coins to spend."
        )
    return None


def neutralize_self_votes(
    points: Mapping[int, int],
    own_team_ids: Iterable[int],
    policy: AntiCheatPolicy,
) -> Tuple[Dict[int, int], bool]:
    """
    Strip any points the voter awarded to their own teams.

    Returns the adjusted points and whether any self-vote was found. Under
    `FLIP` such points are made negative, under `ZERO` they are dropped.
    """

    adjusted = dict(points)
    cheated = False
    for team_id in own_team_ids:
        value = adjusted.get(team_id, 0)
        if value == 0:
            continue
        cheated = True
        adjusted[team_id] = -abs(value) if policy == AntiCheatPolicy.FLIP else 0
    return adjusted, cheated


def submit_vote(
    user: User,
    points: Mapping[int, int],
    team_repo: TeamRepository,
    vote_repo: VoteRepository,
    phase_repo: PhaseRepository,
    coins_to_spend: int,
    policy: AntiCheatPolicy,
) -> OperationResult:
    """
    Replace the user's votes with `points`.

    Nothing is written unless the whole ballot is valid. A resubmission
    replaces the previous ballot entirely, it is never merged with it.
    """

    if load_phase(phase_repo) != Phase.EVALUATION:
        return OperationResult.conflict("Voting is not open.")

    error = validate_ballot(points, coins_to_spend, policy)
    if error:
        return OperationResult.bad_request(error)

    for team_id, value in points.items():
        if value != 0 and team_repo.get_team(team_id) is None:
            return OperationResult.conflict(
                "One of the teams no longer exists, reload the page and try again."
            )

    own_team_ids = team_repo.get_teams_for_member(user.email)
    final_points, cheated = neutralize_self_votes(points, own_team_ids, policy)
    if cheated:
        logger.warning("Voter %s tried to vote for their own team", user.email)
        vote_repo.flag_cheater(user.email)

    vote_repo.delete_votes_by_voter(user.email)
    for team_id, value in sorted(final_points.items()):
        # Zero votes carry no information, don't store them.
        if value == 0:
            continue
        vote_repo.add_vote(Vote(voter_email=user.email, team_id=team_id, points=value))

    return OperationResult.ok()


def rank_teams(teams: Iterable[Team], points_per_team: Mapping[int, int]) -> List[TeamResult]:
    """
    Rank teams by total points, highest first.

    Ties are ordered by team id, and share a rank. Ranks are dense: the next
    distinct total gets the next rank number.
    """

    ordered = sorted(teams, key=lambda t: (-points_per_team.get(t.id, 0), t.id))
    results: List[TeamResult] = []
    rank = 0
    previous: Optional[int] = None
    for team in ordered:
        total = points_per_team.get(team.id, 0)
        if total != previous:
            rank += 1
            previous = total
        results.append(TeamResult(rank=rank, team=team, points=total))
    return results


def tally(team_repo: TeamRepository, vote_repo: VoteRepository) -> List[TeamResult]:
    return rank_teams(team_repo.get_all_teams(), vote_repo.get_points_per_team())


def results_display_order(results: List[TeamResult], phase: Phase) -> List[TeamResult]:
    """
    Order results for display.

    During the revelation the list is reversed, so the winners can be
    revealed last. Ranks and totals are unaffected.
    """

    if phase == Phase.REVELATION:
        return list(reversed(results))
    return list(results)


def shuffle_key(voter_email: str, team_id: int) -> int:
    """A stable pseudo-random sort key for a team, as seen by one voter."""

    digest = hashlib.sha256(f"{voter_email}\x00{team_id}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def shuffle_teams_for_voter(voter_email: str, teams: Iterable[Team]) -> List[Team]:
    """
    Order teams for a voter's ballot.

    Every voter sees the teams in a different order, so the teams listed
    first don't get an advantage. The order only depends on the voter and
    the team ids, so it is the same on every page load.
    """

    return sorted(teams, key=lambda t: (shuffle_key(voter_email, t.id), t.id))


def coins_spent(votes: Mapping[int, int]) -> int:
    return sum(p * p for p in votes.values())
