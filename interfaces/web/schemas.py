"""
Response models for the web interface.

The index is served as JSON; rendering it is left to whatever front end
sits in front of the app.
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel

from application.services import OverviewResult


class TeamResponse(BaseModel):
    id: int
    name: str
    description: str
    creator: str
    members: List[str]
    is_member: bool
    # The points the current user gave this team, if any.
    points: int = 0


class ResultResponse(BaseModel):
    rank: int
    team_id: int
    name: str
    points: int


class OverviewResponse(BaseModel):
    phase: str
    email: str
    is_admin: bool
    teams: List[TeamResponse]
    coins_to_spend: int
    coins_left: int
    max_points_per_team: int
    results: Optional[List[ResultResponse]] = None
    cheaters: Optional[List[str]] = None


def to_overview_response(overview: OverviewResult) -> OverviewResponse:
    results = None
    if overview.results is not None:
        results = [
            ResultResponse(
                rank=r.rank,
                team_id=r.team.id,
                name=r.team.name,
                points=r.points,
            )
            for r in overview.results
        ]

    return OverviewResponse(
        phase=overview.phase.value,
        email=overview.user.email if overview.user else "",
        is_admin=bool(overview.user and overview.user.is_admin),
        teams=[
            TeamResponse(
                id=t.id,
                name=t.name,
                description=t.description,
                creator=t.creator,
                members=t.members,
                is_member=t.is_member,
                points=overview.votes.get(t.id, 0),
            )
            for t in overview.teams
        ],
        coins_to_spend=overview.coins_to_spend,
        coins_left=overview.coins_left,
        max_points_per_team=overview.max_points_per_team,
        results=results,
        cheaters=overview.cheaters,
    )
