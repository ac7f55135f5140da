"""
Cache-resident views of FPL data.

Recomputed from upstream payloads on every refresh and replaced whole. None of
them carries a fetch timestamp, so unchanged upstream data produces
byte-identical cache values.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Position(str, Enum):
    GKP = "GKP"
    DEF = "DEF"
    MID = "MID"
    FWD = "FWD"


# Upstream element_type -> position
POSITION_BY_ELEMENT_TYPE: Dict[int, Position] = {
    1: Position.GKP,
    2: Position.DEF,
    3: Position.MID,
    4: Position.FWD,
}


class _Entity(BaseModel):
    model_config = ConfigDict(frozen=True)


class Team(_Entity):
    id: int
    name: str
    short_name: str


class Player(_Entity):
    id: int
    web_name: str
    full_name: str
    team_id: int
    position: Position
    form: Optional[str] = None
    points_per_game: Optional[str] = None
    total_points: int = 0
    selected_by_percent: Optional[str] = None
    now_cost: Optional[int] = None
    status: Optional[str] = None
    news: Optional[str] = None
    chance_of_playing_next_round: Optional[int] = None


class Gameweek(_Entity):
    id: int
    name: str
    deadline_time: datetime
    is_current: bool = False
    is_next: bool = False
    finished: bool = False


class Fixture(_Entity):
    id: int
    gameweek_id: Optional[int] = None
    home_team_id: int
    away_team_id: int
    kickoff_time: Optional[datetime] = None
    started: bool = False
    finished: bool = False
    # Only populated once the fixture is finished
    home_score: Optional[int] = None
    away_score: Optional[int] = None

    def has_kicked_off(self, now: datetime) -> bool:
        return self.kickoff_time is not None and self.kickoff_time <= now

    def is_in_progress(self, now: datetime) -> bool:
        return self.has_kicked_off(now) and not self.finished


class PlayerGameweekStats(_Entity):
    minutes: int = 0
    goals_scored: int = 0
    assists: int = 0
    bonus: int = 0
    total_points: int = 0


class LiveGameweek(_Entity):
    gameweek_id: int
    players: Dict[int, PlayerGameweekStats] = Field(default_factory=dict)


class PlayerDetail(_Entity):
    player_id: int
    fixtures: List[Dict[str, Any]] = Field(default_factory=list)
    history: List[Dict[str, Any]] = Field(default_factory=list)
    history_past: List[Dict[str, Any]] = Field(default_factory=list)
