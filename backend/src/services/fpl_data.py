"""
FPL data service: the read path consumers use.

Every read goes cache first; on a miss it fetches upstream, transforms, stores
with the TTL policy's lifetime, and returns. Cache failures degrade to upstream
fetches. Upstream failures propagate as FPLAPIError, except that a plain
(non-forced) read serves the last-known copy when one exists.

Cache keys (the store adds its own namespace prefix):
    teams, players[:team:{id}][:pos:{POS}], gameweeks,
    fixtures, fixtures:gw:{id}, fixtures:results:gw:{id},
    player:{id}:detail, gameweek:{id}:live, stale:{key}
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import TypeAdapter, ValidationError

from cache.store import CacheStore, CacheUnavailableError
from cache.ttl_policy import ResourceKind, ttl
from config import Config
from fpl_api.client import FPLAPIClient, FPLAPIError
from fpl_api.schemas import (
    BootstrapStaticResponse,
    ElementResponse,
    EventResponse,
    FixtureResponse,
    TeamResponse,
)
from services.models import (
    POSITION_BY_ELEMENT_TYPE,
    Fixture,
    Gameweek,
    LiveGameweek,
    Player,
    PlayerDetail,
    PlayerGameweekStats,
    Position,
    Team,
)

logger = logging.getLogger(__name__)

TEAMS_KEY = "teams"
PLAYERS_KEY = "players"
GAMEWEEKS_KEY = "gameweeks"
FIXTURES_KEY = "fixtures"
STALE_PREFIX = "stale:"


def players_key(team_id: Optional[int] = None, position: Optional[Position] = None) -> str:
    key = PLAYERS_KEY
    if team_id is not None:
        key += f":team:{team_id}"
    if position is not None:
        key += f":pos:{position.value}"
    return key


def fixtures_key(gameweek_id: Optional[int] = None) -> str:
    return FIXTURES_KEY if gameweek_id is None else f"{FIXTURES_KEY}:gw:{gameweek_id}"


def fixture_results_key(gameweek_id: int) -> str:
    return f"{FIXTURES_KEY}:results:gw:{gameweek_id}"


def player_detail_key(player_id: int) -> str:
    return f"player:{player_id}:detail"


def live_gameweek_key(gameweek_id: int) -> str:
    return f"gameweek:{gameweek_id}:live"


class _Codec:
    """JSON (de)serialization for one cached value type."""

    def __init__(self, value_type: Any):
        self.adapter = TypeAdapter(value_type)

    def dumps(self, value: Any) -> str:
        return self.adapter.dump_json(value).decode("utf-8")

    def loads(self, raw: str) -> Any:
        return self.adapter.validate_json(raw)


TEAMS_CODEC = _Codec(List[Team])
PLAYERS_CODEC = _Codec(List[Player])
GAMEWEEKS_CODEC = _Codec(List[Gameweek])
FIXTURES_CODEC = _Codec(List[Fixture])
PLAYER_DETAIL_CODEC = _Codec(PlayerDetail)
LIVE_GAMEWEEK_CODEC = _Codec(LiveGameweek)


@dataclass(frozen=True)
class BootstrapViews:
    """Entities derived from one bootstrap-static payload."""
    teams: List[Team]
    players: List[Player]
    gameweeks: List[Gameweek]


def _team_from(team: TeamResponse) -> Team:
    return Team(id=team.id, name=team.name, short_name=team.short_name)


def _player_from(element: ElementResponse) -> Optional[Player]:
    position = POSITION_BY_ELEMENT_TYPE.get(element.element_type)
    if position is None:
        return None
    return Player(
        id=element.id,
        web_name=element.web_name,
        full_name=f"{element.first_name} {element.second_name}",
        team_id=element.team,
        position=position,
        form=element.form,
        points_per_game=element.points_per_game,
        total_points=element.total_points,
        selected_by_percent=element.selected_by_percent,
        now_cost=element.now_cost,
        status=element.status,
        news=element.news,
        chance_of_playing_next_round=element.chance_of_playing_next_round,
    )


def _gameweek_from(event: EventResponse) -> Gameweek:
    return Gameweek(
        id=event.id,
        name=event.name,
        deadline_time=event.deadline_time,
        is_current=event.is_current,
        is_next=event.is_next,
        finished=event.finished,
    )


def _fixture_from(fixture: FixtureResponse) -> Fixture:
    finished = bool(fixture.finished)
    return Fixture(
        id=fixture.id,
        gameweek_id=fixture.event,
        home_team_id=fixture.team_h,
        away_team_id=fixture.team_a,
        kickoff_time=fixture.kickoff_time,
        started=bool(fixture.started),
        finished=finished,
        home_score=fixture.team_h_score if finished else None,
        away_score=fixture.team_a_score if finished else None,
    )


def build_bootstrap_views(bootstrap: BootstrapStaticResponse) -> BootstrapViews:
    """Transform a bootstrap payload into sorted entity lists."""
    players = []
    skipped = 0
    for element in bootstrap.elements:
        player = _player_from(element)
        if player is None:
            skipped += 1
            continue
        players.append(player)
    if skipped:
        logger.debug("Skipped elements with unknown position", extra={"count": skipped})
    return BootstrapViews(
        teams=sorted((_team_from(t) for t in bootstrap.teams), key=lambda t: t.id),
        players=sorted(players, key=lambda p: p.id),
        gameweeks=sorted((_gameweek_from(e) for e in bootstrap.events), key=lambda g: g.id),
    )


def keep_finished_fixtures(previous: Dict[int, Fixture], fresh: List[Fixture]) -> List[Fixture]:
    """Fixtures never regress from finished to unfinished; keep the cached result if upstream flips back."""
    result = []
    for fixture in fresh:
        cached = previous.get(fixture.id)
        if cached is not None and cached.finished and not fixture.finished:
            logger.warning("Fixture regressed from finished, keeping cached result", extra={
                "fixture_id": fixture.id,
                "gameweek": fixture.gameweek_id,
            })
            result.append(cached)
        else:
            result.append(fixture)
    return result


def pick_single(gameweeks: List[Gameweek], flag: str) -> Optional[Gameweek]:
    """The gameweek with ``flag`` set; at most one is expected, the lowest id wins otherwise."""
    matches = [gw for gw in gameweeks if getattr(gw, flag)]
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning("More than one gameweek flagged", extra={
            "flag": flag,
            "gameweeks": [gw.id for gw in matches],
        })
    return min(matches, key=lambda gw: gw.id)


class FPLDataService:
    """Cache-backed access to teams, players, gameweeks, fixtures and live stats."""

    def __init__(
        self,
        fpl_client: FPLAPIClient,
        cache: CacheStore,
        config: Config,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.fpl_client = fpl_client
        self.cache = cache
        self.config = config
        self.stale_ttl = config.stale_ttl_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    # Cache plumbing

    async def _cache_get(self, key: str) -> Optional[str]:
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning("Cache read failed, treating as miss", extra={"key": key, "error": str(e)})
            return None

    async def _cache_store(self, entries: Dict[str, str], ttl_seconds: int) -> None:
        """Write entries plus their last-known copies. Failures only cost a future miss."""
        if not entries:
            return
        try:
            await self.cache.set_many(entries, ttl_seconds)
            await self.cache.set_many(
                {f"{STALE_PREFIX}{key}": value for key, value in entries.items()},
                max(self.stale_ttl, ttl_seconds),
            )
            logger.debug("Cached entries", extra={"keys": sorted(entries), "ttl": ttl_seconds})
        except Exception as e:
            logger.warning("Cache write failed", extra={"keys": sorted(entries), "error": str(e)})

    async def _cache_delete_matching(self, pattern: str) -> int:
        try:
            keys = await self.cache.keys_matching(pattern)
            return await self.cache.delete(*keys) if keys else 0
        except Exception as e:
            logger.warning("Cache invalidation failed", extra={"pattern": pattern, "error": str(e)})
            return 0

    def _decode(self, key: str, codec: _Codec, raw: str) -> Any:
        try:
            return codec.loads(raw)
        except (ValidationError, ValueError) as e:
            logger.warning("Discarding unreadable cache entry", extra={"key": key, "error": str(e)})
            return None

    async def _read_through(
        self,
        key: str,
        codec: _Codec,
        loader: Callable[[], Awaitable[Any]],
        force_refresh: bool = False,
    ) -> Any:
        if not force_refresh:
            raw = await self._cache_get(key)
            if raw is not None:
                value = self._decode(key, codec, raw)
                if value is not None:
                    return value

        try:
            return await loader()
        except FPLAPIError as e:
            if force_refresh:
                raise
            raw = await self._cache_get(f"{STALE_PREFIX}{key}")
            value = self._decode(key, codec, raw) if raw is not None else None
            if value is None:
                raise
            logger.warning("Upstream failed, serving last-known value", extra={"key": key, "error": str(e)})
            return value

    async def _cached_fixtures(self) -> Optional[List[Fixture]]:
        """Fixtures already in the cache; never calls upstream."""
        raw = await self._cache_get(FIXTURES_KEY)
        if raw is None:
            return None
        return self._decode(FIXTURES_KEY, FIXTURES_CODEC, raw)

    async def _previous_fixtures(self) -> List[Fixture]:
        """Last fixtures written, falling back to the last-known copy once the entry expires."""
        fixtures = await self._cached_fixtures()
        if fixtures is None:
            raw = await self._cache_get(f"{STALE_PREFIX}{FIXTURES_KEY}")
            if raw is not None:
                fixtures = self._decode(FIXTURES_KEY, FIXTURES_CODEC, raw)
        return fixtures or []

    async def live_state_active(self, fixtures: Optional[List[Fixture]] = None) -> bool:
        """
        Whether a match is in progress, judged from the fixtures given or cached.

        Used to pick TTLs, so it never triggers an upstream call of its own.
        """
        if fixtures is None:
            fixtures = await self._cached_fixtures()
        if not fixtures:
            return False
        now = self.now()
        return any(f.is_in_progress(now) for f in fixtures)

    # Bootstrap-derived resources

    async def _load_bootstrap(self) -> BootstrapViews:
        bootstrap = await self.fpl_client.get_bootstrap_static()
        views = build_bootstrap_views(bootstrap)
        ttl_seconds = ttl(ResourceKind.BOOTSTRAP, await self.live_state_active())

        # Filtered player views were derived from the previous list
        await self._cache_delete_matching(f"{PLAYERS_KEY}:*")
        await self._cache_store({
            TEAMS_KEY: TEAMS_CODEC.dumps(views.teams),
            PLAYERS_KEY: PLAYERS_CODEC.dumps(views.players),
            GAMEWEEKS_KEY: GAMEWEEKS_CODEC.dumps(views.gameweeks),
        }, ttl_seconds)
        return views

    async def refresh_bootstrap(self) -> BootstrapViews:
        """Force one bootstrap fetch and rewrite teams, players and gameweeks."""
        return await self._load_bootstrap()

    async def get_teams(self, force_refresh: bool = False) -> List[Team]:
        async def load():
            return (await self._load_bootstrap()).teams
        return await self._read_through(TEAMS_KEY, TEAMS_CODEC, load, force_refresh)

    async def get_players(
        self,
        team_id: Optional[int] = None,
        position: Optional[Union[Position, str]] = None,
        force_refresh: bool = False,
    ) -> List[Player]:
        """
        Get players, optionally filtered by team and/or position.

        Filtered views are derived from the unfiltered list and cached under
        their own keys, so repeating the same filtered query is a cache hit.

        Raises:
            ValueError: If position is not one of GKP/DEF/MID/FWD
        """
        pos = Position(position.upper()) if isinstance(position, str) else position

        if team_id is None and pos is None:
            async def load_all():
                return (await self._load_bootstrap()).players
            return await self._read_through(PLAYERS_KEY, PLAYERS_CODEC, load_all, force_refresh)

        key = players_key(team_id, pos)

        async def load_filtered():
            players = await self.get_players(force_refresh=force_refresh)
            filtered = [
                p for p in players
                if (team_id is None or p.team_id == team_id) and (pos is None or p.position == pos)
            ]
            ttl_seconds = ttl(ResourceKind.BOOTSTRAP, await self.live_state_active())
            await self._cache_store({key: PLAYERS_CODEC.dumps(filtered)}, ttl_seconds)
            return filtered

        return await self._read_through(key, PLAYERS_CODEC, load_filtered, force_refresh)

    async def get_gameweeks(self, force_refresh: bool = False) -> List[Gameweek]:
        async def load():
            return (await self._load_bootstrap()).gameweeks
        return await self._read_through(GAMEWEEKS_KEY, GAMEWEEKS_CODEC, load, force_refresh)

    async def get_current_gameweek(self, force_refresh: bool = False) -> Optional[Gameweek]:
        return pick_single(await self.get_gameweeks(force_refresh=force_refresh), "is_current")

    async def get_next_gameweek(self, force_refresh: bool = False) -> Optional[Gameweek]:
        return pick_single(await self.get_gameweeks(force_refresh=force_refresh), "is_next")

    # Fixtures

    async def _load_fixtures(self) -> List[Fixture]:
        fresh = sorted((_fixture_from(f) for f in await self.fpl_client.get_fixtures()), key=lambda f: f.id)
        previous = await self._previous_fixtures()
        fixtures = keep_finished_fixtures({f.id: f for f in previous}, fresh)

        by_gameweek: Dict[int, List[Fixture]] = {}
        for fixture in fixtures:
            if fixture.gameweek_id is not None:
                by_gameweek.setdefault(fixture.gameweek_id, []).append(fixture)

        entries = {FIXTURES_KEY: FIXTURES_CODEC.dumps(fixtures)}
        for gameweek_id, gw_fixtures in by_gameweek.items():
            entries[fixtures_key(gameweek_id)] = FIXTURES_CODEC.dumps(gw_fixtures)
            entries[fixture_results_key(gameweek_id)] = FIXTURES_CODEC.dumps(
                [f for f in gw_fixtures if f.finished]
            )

        ttl_seconds = ttl(ResourceKind.FIXTURES, await self.live_state_active(fixtures))
        await self._cache_store(entries, ttl_seconds)
        logger.debug("Fixtures cached", extra={
            "fixtures_count": len(fixtures),
            "gameweeks": len(by_gameweek),
            "ttl": ttl_seconds,
        })
        return fixtures

    async def refresh_fixtures(self) -> List[Fixture]:
        """Force one fixtures fetch and rewrite every fixtures and results key."""
        return await self._load_fixtures()

    async def get_fixtures(self, gameweek_id: Optional[int] = None, force_refresh: bool = False) -> List[Fixture]:
        if gameweek_id is None:
            return await self._read_through(FIXTURES_KEY, FIXTURES_CODEC, self._load_fixtures, force_refresh)

        key = fixtures_key(gameweek_id)

        async def load_gameweek():
            fixtures = await self.get_fixtures(force_refresh=force_refresh)
            selected = [f for f in fixtures if f.gameweek_id == gameweek_id]
            ttl_seconds = ttl(ResourceKind.FIXTURES, await self.live_state_active(fixtures))
            await self._cache_store({key: FIXTURES_CODEC.dumps(selected)}, ttl_seconds)
            return selected

        return await self._read_through(key, FIXTURES_CODEC, load_gameweek, force_refresh)

    async def get_fixture_results(self, gameweek_id: int, force_refresh: bool = False) -> List[Fixture]:
        """Finished fixtures of a gameweek, with scores."""
        key = fixture_results_key(gameweek_id)

        async def load():
            fixtures = await self.get_fixtures(gameweek_id, force_refresh=force_refresh)
            results = [f for f in fixtures if f.finished]
            ttl_seconds = ttl(ResourceKind.FIXTURES, await self.live_state_active())
            await self._cache_store({key: FIXTURES_CODEC.dumps(results)}, ttl_seconds)
            return results

        return await self._read_through(key, FIXTURES_CODEC, load, force_refresh)

    # Per-player and per-gameweek resources

    async def get_player_detail(self, player_id: int, force_refresh: bool = False) -> PlayerDetail:
        key = player_detail_key(player_id)

        async def load():
            summary = await self.fpl_client.get_element_summary(player_id)
            detail = PlayerDetail(
                player_id=player_id,
                fixtures=summary.fixtures,
                history=summary.history,
                history_past=summary.history_past,
            )
            ttl_seconds = ttl(ResourceKind.PLAYER_DETAIL, await self.live_state_active())
            await self._cache_store({key: PLAYER_DETAIL_CODEC.dumps(detail)}, ttl_seconds)
            return detail

        return await self._read_through(key, PLAYER_DETAIL_CODEC, load, force_refresh)

    async def refresh_cached_player_details(self) -> Dict[str, int]:
        """Re-fetch every player detail currently cached. Failures are counted, not raised."""
        try:
            keys = await self.cache.keys_matching(player_detail_key("*"))
        except Exception as e:
            logger.warning("Could not list cached player details", extra={"error": str(e)})
            return {"refreshed": 0, "failed": 0}

        player_ids = []
        for key in keys:
            try:
                player_ids.append(int(key.split(":")[1]))
            except (IndexError, ValueError):
                continue

        results = await asyncio.gather(
            *(self.get_player_detail(pid, force_refresh=True) for pid in player_ids),
            return_exceptions=True,
        )
        failed = [pid for pid, res in zip(player_ids, results) if isinstance(res, Exception)]
        if failed:
            logger.warning("Player detail refresh failed for some players", extra={"player_ids": failed})
        return {"refreshed": len(player_ids) - len(failed), "failed": len(failed)}

    async def get_live_gameweek(self, gameweek_id: int, force_refresh: bool = False) -> LiveGameweek:
        key = live_gameweek_key(gameweek_id)

        async def load():
            live = await self.fpl_client.get_event_live(gameweek_id)
            value = LiveGameweek(
                gameweek_id=gameweek_id,
                players={
                    element.id: PlayerGameweekStats(**element.stats.model_dump())
                    for element in live.elements
                },
            )
            ttl_seconds = ttl(ResourceKind.LIVE_STATS, await self.live_state_active())
            await self._cache_store({key: LIVE_GAMEWEEK_CODEC.dumps(value)}, ttl_seconds)
            return value

        return await self._read_through(key, LIVE_GAMEWEEK_CODEC, load, force_refresh)

    async def is_gameweek_active(self) -> bool:
        """True when a fixture of the current (or next) gameweek has kicked off and is not finished."""
        try:
            gameweeks = await self.get_gameweeks()
            gameweek_ids = {
                gw.id for gw in (pick_single(gameweeks, "is_current"), pick_single(gameweeks, "is_next"))
                if gw is not None
            }
            if not gameweek_ids:
                return False
            fixtures = await self.get_fixtures()
        except FPLAPIError as e:
            logger.error("Could not determine whether gameweek is active", extra={"error": str(e)})
            return False

        now = self.now()
        return any(f.gameweek_id in gameweek_ids and f.is_in_progress(now) for f in fixtures)

    async def match_schedule(self, window_hours: float = 24) -> Dict[str, Any]:
        """
        Whether matches are live now or kick off soon, for gating live polling.

        Args:
            window_hours: How far ahead a kickoff counts as upcoming

        Returns:
            Dict with hasActiveMatches, hasUpcomingMatches and nextMatch
            (the earliest future kickoff, or None)
        """
        fixtures = await self.get_fixtures()
        now = self.now()
        horizon = now + timedelta(hours=window_hours)

        active = [f for f in fixtures if f.is_in_progress(now)]
        future = sorted(
            (f for f in fixtures if f.kickoff_time is not None and f.kickoff_time > now and not f.started),
            key=lambda f: f.kickoff_time,
        )
        next_match = None
        if future:
            first = future[0]
            next_match = {
                "id": first.id,
                "gameweek_id": first.gameweek_id,
                "home_team_id": first.home_team_id,
                "away_team_id": first.away_team_id,
                "kickoff_time": first.kickoff_time.isoformat(),
            }
        return {
            "hasActiveMatches": bool(active),
            "hasUpcomingMatches": any(f.kickoff_time <= horizon for f in future),
            "nextMatch": next_match,
        }

    async def describe_cache(self, pattern: str = "*") -> Dict[str, List[Dict[str, Any]]]:
        """Cached keys grouped by resource type, with remaining TTL in seconds."""
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        try:
            for key in sorted(await self.cache.keys_matching(pattern)):
                if key.startswith(STALE_PREFIX):
                    continue
                group = key.split(":", 1)[0]
                grouped.setdefault(group, []).append({
                    "key": key,
                    "ttl": await self.cache.remaining_ttl(key),
                })
        except CacheUnavailableError as e:
            logger.warning("Cache listing failed", extra={"pattern": pattern, "error": str(e)})
            return {}
        return grouped
