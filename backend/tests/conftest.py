"""
backend/tests/conftest.py

Purpose:
    Shared fixtures: a fake upstream client serving a small matchday, a frozen
    clock, and the service components wired against an in-memory cache.
"""

from __future__ import annotations

import asyncio
import sys
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

import pytest

_SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from cache.store import MemoryCacheStore
from config import Config
from database.refresh_log import RefreshLog
from fpl_api.client import FPLAPIError
from fpl_api.schemas import (
    BootstrapStaticResponse,
    ElementSummaryResponse,
    EventLiveResponse,
    FixtureResponse,
)
from refresh.game_state import GameStateClassifier
from refresh.orchestrator import RefreshOrchestrator
from services.fpl_data import FPLDataService

# Saturday of gameweek 4: fixture 1 finished at ~13:30, fixture 2 kicked off at 14:00
MATCHDAY = datetime(2024, 9, 14, 15, 0, tzinfo=timezone.utc)
# Monday after gameweek 4, nothing time-critical
MIDWEEK = datetime(2024, 9, 16, 12, 0, tzinfo=timezone.utc)
# 22 hours before the gameweek 5 deadline
DEADLINE_EVE = datetime(2024, 9, 20, 12, 0, tzinfo=timezone.utc)


def element(player_id, web_name, team, element_type, total_points=0):
    return {
        "id": player_id,
        "web_name": web_name,
        "first_name": web_name,
        "second_name": "Test",
        "team": team,
        "element_type": element_type,
        "form": "5.0",
        "points_per_game": "4.5",
        "total_points": total_points,
        "selected_by_percent": "10.0",
        "now_cost": 80,
        "status": "a",
        "news": "",
        "chance_of_playing_next_round": None,
        # Unused upstream fields are ignored
        "photo": "12345.jpg",
    }


def bootstrap_payload():
    return {
        "teams": [
            {"id": 1, "name": "Arsenal", "short_name": "ARS"},
            {"id": 2, "name": "Chelsea", "short_name": "CHE"},
            {"id": 3, "name": "Liverpool", "short_name": "LIV"},
            {"id": 4, "name": "Man City", "short_name": "MCI"},
        ],
        "elements": [
            element(1, "Raya", 1, 1, 20),
            element(2, "Saka", 1, 3, 30),
            element(3, "Palmer", 2, 3, 35),
            element(4, "Salah", 3, 3, 40),
            element(5, "Haaland", 4, 4, 45),
            element(6, "Gabriel", 1, 2, 18),
            # Managers (element_type 5) have no position
            element(99, "Arteta", 1, 5),
        ],
        "events": [
            {"id": 3, "name": "Gameweek 3", "deadline_time": "2024-08-31T10:00:00Z", "finished": True},
            {"id": 4, "name": "Gameweek 4", "deadline_time": "2024-09-14T10:00:00Z", "is_current": True},
            {"id": 5, "name": "Gameweek 5", "deadline_time": "2024-09-21T10:00:00Z", "is_next": True},
        ],
    }


def fixture(fixture_id, event, team_h, team_a, kickoff, started=False, finished=False, score=(None, None)):
    return {
        "id": fixture_id,
        "event": event,
        "team_h": team_h,
        "team_a": team_a,
        "kickoff_time": kickoff,
        "started": started,
        "finished": finished,
        "team_h_score": score[0],
        "team_a_score": score[1],
    }


def fixtures_payload(second_match_finished=False):
    return [
        fixture(1, 4, 1, 2, "2024-09-14T11:30:00Z", True, True, (2, 1)),
        fixture(2, 4, 3, 4, "2024-09-14T14:00:00Z", True, second_match_finished,
                (1, 1) if second_match_finished else (0, 0)),
        fixture(3, 5, 2, 3, "2024-09-21T14:00:00Z"),
        fixture(4, 3, 4, 1, "2024-08-31T14:00:00Z", True, True, (1, 1)),
    ]


def live_payload():
    return {
        4: {
            "elements": [
                {"id": 2, "stats": {"minutes": 90, "goals_scored": 1, "assists": 0, "bonus": 3, "total_points": 9}},
                {"id": 4, "stats": {"minutes": 60, "goals_scored": 0, "assists": 1, "bonus": 0, "total_points": 5}},
            ]
        }
    }


class FakeFPLClient:
    """In-memory stand-in for FPLAPIClient; counts calls per endpoint."""

    def __init__(self, bootstrap=None, fixtures=None, live=None, summaries=None):
        self.bootstrap = bootstrap or bootstrap_payload()
        self.fixtures = fixtures if fixtures is not None else fixtures_payload()
        self.live = live if live is not None else live_payload()
        self.summaries = summaries or {}
        self.calls = Counter()
        self.fail = False
        self.delay = 0.0
        self.closed = False

    async def _call(self, name):
        self.calls[name] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise FPLAPIError(f"{name} unavailable", endpoint=name, status_code=503)

    async def get_bootstrap_static(self):
        await self._call("bootstrap")
        return BootstrapStaticResponse.model_validate(self.bootstrap)

    async def get_fixtures(self):
        await self._call("fixtures")
        return [FixtureResponse.model_validate(f) for f in self.fixtures]

    async def get_event_live(self, gameweek):
        await self._call("event_live")
        return EventLiveResponse.model_validate(self.live.get(gameweek, {"elements": []}))

    async def get_element_summary(self, player_id):
        await self._call("element_summary")
        return ElementSummaryResponse.model_validate(self.summaries.get(player_id, {}))

    async def close(self):
        self.closed = True


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def config():
    return Config(
        cache_backend="memory",
        cron_secret="test-secret",
        warm_cache_on_startup=False,
        min_request_interval=0.0,
        job_timeout_seconds=5,
        supabase_url="",
        supabase_key="",
        supabase_service_key=None,
    )


@pytest.fixture
def clock():
    return FrozenClock(MATCHDAY)


@pytest.fixture
def fpl_client():
    return FakeFPLClient()


@pytest.fixture
def cache():
    # Fixed monotonic time: entries never expire and remaining TTLs are exact
    return MemoryCacheStore(clock=lambda: 1000.0)


@pytest.fixture
def data_service(fpl_client, cache, config, clock):
    return FPLDataService(fpl_client, cache, config, clock=clock)


@pytest.fixture
def classifier(data_service, config):
    return GameStateClassifier(data_service, config)


@pytest.fixture
def refresh_log():
    return RefreshLog()


@pytest.fixture
def orchestrator(data_service, classifier, refresh_log, config):
    return RefreshOrchestrator(data_service, classifier, refresh_log, config)
