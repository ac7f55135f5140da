"""
Response schemas for the FPL API endpoints we consume.

Validated at the client boundary so a malformed upstream payload fails fast
with FPLAPISchemaError instead of leaking missing fields into the cache.
Only the fields the service reads are declared; everything else is ignored.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _UpstreamModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TeamResponse(_UpstreamModel):
    id: int
    name: str
    short_name: str


class ElementResponse(_UpstreamModel):
    """A player ("element") from bootstrap-static."""

    id: int
    web_name: str
    first_name: str
    second_name: str
    team: int
    element_type: int
    form: Optional[str] = None
    points_per_game: Optional[str] = None
    total_points: int = 0
    selected_by_percent: Optional[str] = None
    now_cost: Optional[int] = None
    status: Optional[str] = None
    news: Optional[str] = None
    chance_of_playing_next_round: Optional[int] = None


class EventResponse(_UpstreamModel):
    """A gameweek ("event") from bootstrap-static."""

    id: int
    name: str
    deadline_time: datetime
    is_current: bool = False
    is_next: bool = False
    finished: bool = False


class BootstrapStaticResponse(_UpstreamModel):
    teams: List[TeamResponse]
    elements: List[ElementResponse]
    events: List[EventResponse]


class FixtureResponse(_UpstreamModel):
    id: int
    event: Optional[int] = None
    team_h: int
    team_a: int
    kickoff_time: Optional[datetime] = None
    started: Optional[bool] = False
    finished: bool = False
    team_h_score: Optional[int] = None
    team_a_score: Optional[int] = None


class LiveStatsResponse(_UpstreamModel):
    minutes: int = 0
    goals_scored: int = 0
    assists: int = 0
    bonus: int = 0
    total_points: int = 0


class LiveElementResponse(_UpstreamModel):
    id: int
    stats: LiveStatsResponse


class EventLiveResponse(_UpstreamModel):
    elements: List[LiveElementResponse]


class ElementSummaryResponse(_UpstreamModel):
    """Player detail: upcoming fixtures plus this and previous seasons' history."""

    fixtures: List[Dict[str, Any]] = Field(default_factory=list)
    history: List[Dict[str, Any]] = Field(default_factory=list)
    history_past: List[Dict[str, Any]] = Field(default_factory=list)
