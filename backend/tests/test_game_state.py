"""
backend/tests/test_game_state.py

Purpose:
    Game state classification: precedence, window boundaries, off-season,
    and the never-raise fallback to regular.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import DEADLINE_EVE, MATCHDAY, MIDWEEK
from refresh.game_state import GameState
from services.models import Fixture, Gameweek


def _gameweeks(current=4, next_=5, next_deadline=datetime(2024, 9, 21, 10, 0, tzinfo=timezone.utc)):
    gameweeks = []
    if current is not None:
        gameweeks.append(Gameweek(
            id=current, name=f"Gameweek {current}",
            deadline_time=next_deadline - timedelta(days=7), is_current=True,
        ))
    if next_ is not None:
        gameweeks.append(Gameweek(id=next_, name=f"Gameweek {next_}", deadline_time=next_deadline, is_next=True))
    return gameweeks


def _fixture(fixture_id, kickoff, finished=False, gameweek_id=4):
    return Fixture(
        id=fixture_id,
        gameweek_id=gameweek_id,
        home_team_id=1,
        away_team_id=2,
        kickoff_time=kickoff,
        started=kickoff <= MATCHDAY,
        finished=finished,
    )


def test_live_match_takes_precedence(classifier) -> None:
    fixtures = [
        _fixture(1, MATCHDAY - timedelta(hours=3), finished=True),
        _fixture(2, MATCHDAY - timedelta(minutes=30)),
    ]
    # Deadline also close, live still wins
    gameweeks = _gameweeks(next_deadline=MATCHDAY + timedelta(hours=2))

    result = classifier.evaluate(fixtures, gameweeks, MATCHDAY)

    assert result.state == GameState.LIVE_MATCH
    assert result.gameweek_id == 4
    assert result.details["live_fixture_ids"] == [2]
    assert result.details["active_since"] == (MATCHDAY - timedelta(minutes=30)).isoformat()


def test_live_gameweek_comes_from_the_live_fixture(classifier) -> None:
    fixtures = [_fixture(7, MATCHDAY - timedelta(minutes=10), gameweek_id=5)]
    result = classifier.evaluate(fixtures, _gameweeks(), MATCHDAY)
    assert result.gameweek_id == 5


def test_post_match_after_final_whistle(classifier) -> None:
    fixtures = [_fixture(1, MATCHDAY - timedelta(hours=3), finished=True)]

    result = classifier.evaluate(fixtures, _gameweeks(), MATCHDAY)

    assert result.state == GameState.POST_MATCH
    assert result.gameweek_id == 4
    assert [m["id"] for m in result.details["recent_matches"]] == [1]


def test_post_match_window_boundary(classifier) -> None:
    # Estimated end = kickoff + 2h; window is the last 4h, exclusive at the far end
    just_outside = [_fixture(1, MATCHDAY - timedelta(hours=6), finished=True)]
    just_inside = [_fixture(1, MATCHDAY - timedelta(hours=6) + timedelta(seconds=1), finished=True)]

    assert classifier.evaluate(just_outside, _gameweeks(), MATCHDAY).state == GameState.REGULAR
    assert classifier.evaluate(just_inside, _gameweeks(), MATCHDAY).state == GameState.POST_MATCH


def test_finished_early_is_not_post_match_until_estimated_end(classifier) -> None:
    # Upstream marked it finished, but kickoff + 2h is still in the future
    fixtures = [_fixture(1, MATCHDAY - timedelta(hours=1), finished=True)]
    assert classifier.evaluate(fixtures, _gameweeks(), MATCHDAY).state == GameState.REGULAR


def test_unfinished_fixture_in_the_past_is_live(classifier) -> None:
    fixtures = [_fixture(1, MATCHDAY - timedelta(hours=5))]
    assert classifier.evaluate(fixtures, _gameweeks(), MATCHDAY).state == GameState.LIVE_MATCH


@pytest.mark.parametrize(
    "hours_to_deadline, expected",
    [
        (23, GameState.PRE_DEADLINE),
        (24, GameState.PRE_DEADLINE),
        (25, GameState.REGULAR),
        (-1, GameState.REGULAR),
    ],
)
def test_pre_deadline_window(classifier, hours_to_deadline, expected) -> None:
    gameweeks = _gameweeks(next_deadline=MIDWEEK + timedelta(hours=hours_to_deadline))
    result = classifier.evaluate([], gameweeks, MIDWEEK)
    assert result.state == expected
    if expected == GameState.PRE_DEADLINE:
        assert result.details["next_gameweek_id"] == 5


def test_regular_details(classifier) -> None:
    result = classifier.evaluate([], _gameweeks(), MIDWEEK)
    assert result.state == GameState.REGULAR
    assert result.details == {"current_gameweek_id": 4, "next_gameweek_id": 5, "gameweek_id": 4}


def test_off_season_without_current_or_next(classifier) -> None:
    result = classifier.evaluate([], _gameweeks(current=None, next_=None), MIDWEEK)
    assert result.state == GameState.OFF_SEASON
    assert result.details == {}


def test_before_season_start_is_regular_with_next_only(classifier) -> None:
    result = classifier.evaluate([], _gameweeks(current=None, next_=1), MIDWEEK)
    assert result.state == GameState.REGULAR
    assert result.details["next_gameweek_id"] == 1
    assert result.gameweek_id is None


@pytest.mark.asyncio
async def test_classify_reads_through_the_data_service(classifier, clock, fpl_client) -> None:
    assert (await classifier.classify()).state == GameState.LIVE_MATCH

    clock.now = DEADLINE_EVE
    assert (await classifier.classify()).state == GameState.LIVE_MATCH  # fixture 2 never finished

    fpl_client.fixtures[1]["finished"] = True
    await classifier.data_service.refresh_fixtures()
    assert (await classifier.classify()).state == GameState.PRE_DEADLINE
    assert fpl_client.calls["bootstrap"] == 1


@pytest.mark.asyncio
async def test_classify_falls_back_to_regular_on_failure(classifier, fpl_client) -> None:
    fpl_client.fail = True

    result = await classifier.classify()

    assert result.state == GameState.REGULAR
    assert "unavailable" in result.details["error"]


@pytest.mark.asyncio
async def test_classify_accepts_explicit_time(classifier) -> None:
    result = await classifier.classify(now=datetime(2024, 9, 14, 9, 0, tzinfo=timezone.utc))
    # Before any kickoff that day, with the gameweek 5 deadline a week away
    assert result.state == GameState.REGULAR
