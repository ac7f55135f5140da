"""
Game state classification.

Derives the current operational state from fixtures and gameweeks on every
call; nothing is stored between calls. Precedence is significant:
live-match > post-match > pre-deadline > regular > off-season.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from config import Config
from services.fpl_data import FPLDataService, pick_single
from services.models import Fixture, Gameweek

logger = logging.getLogger(__name__)


class GameState(str, Enum):
    """Game state enumeration."""
    LIVE_MATCH = "live-match"  # A fixture has kicked off and is not finished
    POST_MATCH = "post-match"  # A fixture ended within the post-match window
    PRE_DEADLINE = "pre-deadline"  # Next transfer deadline is close
    REGULAR = "regular"  # Season in progress, nothing time-critical
    OFF_SEASON = "off-season"  # No current or next gameweek


@dataclass
class GameStateResult:
    state: GameState
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def gameweek_id(self) -> Optional[int]:
        return self.details.get("gameweek_id")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class GameStateClassifier:
    """Maps fixture and gameweek data to a GameState."""

    def __init__(self, data_service: FPLDataService, config: Config):
        self.data_service = data_service
        self.match_duration = timedelta(hours=config.match_duration_hours)
        self.post_match_window = timedelta(hours=config.post_match_window_hours)
        self.pre_deadline_window = timedelta(hours=config.pre_deadline_window_hours)

    def live_fixtures(self, fixtures: List[Fixture], now: datetime) -> List[Fixture]:
        return [f for f in fixtures if f.is_in_progress(now)]

    def recently_finished(self, fixtures: List[Fixture], now: datetime) -> List[Fixture]:
        """Finished fixtures whose estimated end (kickoff + match duration) is inside the look-back window."""
        window_start = now - self.post_match_window
        recent = []
        for fixture in fixtures:
            if not fixture.finished or fixture.kickoff_time is None:
                continue
            estimated_end = fixture.kickoff_time + self.match_duration
            if window_start < estimated_end <= now:
                recent.append(fixture)
        return recent

    def deadline_is_near(self, next_gameweek: Optional[Gameweek], now: datetime) -> bool:
        if next_gameweek is None:
            return False
        return now <= next_gameweek.deadline_time <= now + self.pre_deadline_window

    def evaluate(
        self,
        fixtures: List[Fixture],
        gameweeks: List[Gameweek],
        now: datetime,
    ) -> GameStateResult:
        """Pure classification of already-fetched data."""
        current_gw = pick_single(gameweeks, "is_current")
        next_gw = pick_single(gameweeks, "is_next")
        current_id = current_gw.id if current_gw else None

        live = self.live_fixtures(fixtures, now)
        if live:
            earliest = min(live, key=lambda f: f.kickoff_time)
            # A live match can belong to the next gameweek before upstream flips is_current
            return GameStateResult(GameState.LIVE_MATCH, {
                "active_since": _iso(earliest.kickoff_time),
                "gameweek_id": earliest.gameweek_id if earliest.gameweek_id is not None else current_id,
                "live_fixture_ids": [f.id for f in live],
            })

        recent = self.recently_finished(fixtures, now)
        if recent:
            latest = max(recent, key=lambda f: f.kickoff_time)
            return GameStateResult(GameState.POST_MATCH, {
                "gameweek_id": latest.gameweek_id if latest.gameweek_id is not None else current_id,
                "recent_matches": [
                    {
                        "id": f.id,
                        "home_team": f.home_team_id,
                        "away_team": f.away_team_id,
                        "kickoff": _iso(f.kickoff_time),
                    }
                    for f in recent
                ],
            })

        if self.deadline_is_near(next_gw, now):
            return GameStateResult(GameState.PRE_DEADLINE, {
                "next_gameweek_id": next_gw.id,
                "next_deadline": _iso(next_gw.deadline_time),
                "gameweek_id": current_id,
            })

        if current_gw or next_gw:
            return GameStateResult(GameState.REGULAR, {
                "current_gameweek_id": current_id,
                "next_gameweek_id": next_gw.id if next_gw else None,
                "gameweek_id": current_id,
            })

        return GameStateResult(GameState.OFF_SEASON, {})

    async def classify(self, now: Optional[datetime] = None) -> GameStateResult:
        """
        Classify the current state from cached (or freshly fetched) data.

        Never raises: when data cannot be obtained the state is REGULAR,
        which is neither the cheapest nor the most aggressive refresh tier.
        """
        try:
            now = now or self.data_service.now()
            fixtures = await self.data_service.get_fixtures()
            gameweeks = await self.data_service.get_gameweeks()
            result = self.evaluate(fixtures, gameweeks, now)
        except Exception as e:
            logger.error("Game state classification failed, assuming regular", extra={
                "error": str(e),
                "error_type": type(e).__name__,
            }, exc_info=True)
            return GameStateResult(GameState.REGULAR, {"error": str(e)})

        logger.debug("Game state classified", extra={"state": result.state.value})
        return result
