"""
Refresh Orchestrator - tiered cache refresh jobs.

Each job is triggered externally (cron hitting the trigger API, or a script),
consults the game state classifier, and either skips or force-refreshes the
resources its tier owns. Jobs hold no locks and may overlap: every write is a
whole-value replacement of the same upstream truth, so the worst case is a
redundant fetch.

Cadence (set by the external scheduler):
    live          ~15 min   only during live matches
    post-match    ~30 min   only in the post-match window
    pre-deadline  ~60 min   only in the 24h before the next deadline
    regular       ~2 h      always
    full          daily     always, every resource kind
    manual        on demand as full, records who triggered it
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from config import Config
from database.refresh_log import RefreshLog, RefreshRecord
from refresh.game_state import GameState, GameStateClassifier
from services.fpl_data import FPLDataService, pick_single

logger = logging.getLogger(__name__)


class RefreshType(str, Enum):
    """Refresh tier enumeration."""
    LIVE = "live"
    POST_MATCH = "post-match"
    PRE_DEADLINE = "pre-deadline"
    REGULAR = "regular"
    FULL = "full"
    MANUAL = "manual"


@dataclass
class RefreshResult:
    refreshed: bool
    state: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"refreshed": self.refreshed, "state": self.state, "details": self.details}


def _skipped(observed: GameState) -> RefreshResult:
    return RefreshResult(False, "skipped", {"observed_state": observed.value})


class RefreshOrchestrator:
    """Runs refresh tiers against the data service."""

    def __init__(
        self,
        data_service: FPLDataService,
        classifier: GameStateClassifier,
        refresh_log: RefreshLog,
        config: Config,
    ):
        self.data_service = data_service
        self.classifier = classifier
        self.refresh_log = refresh_log
        self.config = config
        self._jobs: Dict[RefreshType, Callable[..., Awaitable[RefreshResult]]] = {
            RefreshType.LIVE: self._live_refresh,
            RefreshType.POST_MATCH: self._post_match_refresh,
            RefreshType.PRE_DEADLINE: self._pre_deadline_refresh,
            RefreshType.REGULAR: self._regular_refresh,
            RefreshType.FULL: self._full_refresh,
            RefreshType.MANUAL: self._manual_refresh,
        }

    async def run_job(self, refresh_type: Union[RefreshType, str], **kwargs) -> RefreshResult:
        """
        Run one tier with a timeout; never raises for job failures.

        Args:
            refresh_type: Tier to run
            **kwargs: Passed to the tier (manual takes triggered_by)

        Returns:
            RefreshResult; failures and timeouts come back as state "error"

        Raises:
            ValueError: If refresh_type is not a known tier
        """
        refresh_type = RefreshType(refresh_type)
        job = self._jobs[refresh_type]
        timeout = self.config.job_timeout_seconds

        try:
            result = await asyncio.wait_for(job(**kwargs), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("Refresh job timed out", extra={
                "refresh_type": refresh_type.value,
                "timeout_seconds": timeout,
            })
            result = RefreshResult(False, "error", {"error": f"Timed out after {timeout}s"})
        except Exception as e:
            logger.error("Refresh job failed", extra={
                "refresh_type": refresh_type.value,
                "error": str(e),
                "error_type": type(e).__name__,
            }, exc_info=True)
            result = RefreshResult(False, "error", {"error": str(e)})

        if result.refreshed or result.state == "error":
            await self.refresh_log.record(RefreshRecord(
                type=refresh_type.value,
                state=result.state,
                details=result.details,
            ))
        else:
            logger.info("Refresh skipped", extra={
                "refresh_type": refresh_type.value,
                "state": result.state,
            })
        return result

    async def perform_live_refresh(self) -> RefreshResult:
        return await self.run_job(RefreshType.LIVE)

    async def perform_post_match_refresh(self) -> RefreshResult:
        return await self.run_job(RefreshType.POST_MATCH)

    async def perform_pre_deadline_refresh(self) -> RefreshResult:
        return await self.run_job(RefreshType.PRE_DEADLINE)

    async def perform_regular_refresh(self) -> RefreshResult:
        return await self.run_job(RefreshType.REGULAR)

    async def perform_full_refresh(self) -> RefreshResult:
        return await self.run_job(RefreshType.FULL)

    async def perform_manual_refresh(self, triggered_by: str) -> RefreshResult:
        return await self.run_job(RefreshType.MANUAL, triggered_by=triggered_by)

    async def _live_refresh(self) -> RefreshResult:
        """Live stats and scores for the gameweek with matches in progress."""
        classification = await self.classifier.classify()
        if classification.state != GameState.LIVE_MATCH:
            return _skipped(classification.state)

        gameweek_id = classification.gameweek_id
        if gameweek_id is None:
            return RefreshResult(False, "no-current-gameweek")

        logger.info("Performing live refresh", extra={"gameweek": gameweek_id})
        await asyncio.gather(
            self.data_service.get_live_gameweek(gameweek_id, force_refresh=True),
            self.data_service.get_fixtures(gameweek_id, force_refresh=True),
        )
        return RefreshResult(True, GameState.LIVE_MATCH.value, {
            "gameweek_id": gameweek_id,
            "live_fixture_ids": classification.details.get("live_fixture_ids", []),
        })

    async def _post_match_refresh(self) -> RefreshResult:
        """Final scores, results and live stats once matches have ended."""
        classification = await self.classifier.classify()
        # Live takes precedence in classification, so post-match here also means not live
        if classification.state != GameState.POST_MATCH:
            return _skipped(classification.state)

        gameweek_id = classification.gameweek_id
        if gameweek_id is None:
            return RefreshResult(False, "no-current-gameweek")

        logger.info("Performing post-match refresh", extra={"gameweek": gameweek_id})
        # One fixtures fetch rewrites fixtures and results keys together
        _, fixtures = await asyncio.gather(
            self.data_service.get_live_gameweek(gameweek_id, force_refresh=True),
            self.data_service.refresh_fixtures(),
        )
        results = [f for f in fixtures if f.gameweek_id == gameweek_id and f.finished]
        return RefreshResult(True, GameState.POST_MATCH.value, {
            "gameweek_id": gameweek_id,
            "finished_fixtures": len(results),
        })

    async def _pre_deadline_refresh(self) -> RefreshResult:
        """Players and gameweeks (injuries, prices, deadlines) before the transfer deadline."""
        classification = await self.classifier.classify()
        if classification.state != GameState.PRE_DEADLINE:
            return _skipped(classification.state)

        logger.info("Performing pre-deadline refresh", extra={
            "next_gameweek": classification.details.get("next_gameweek_id"),
        })
        views = await self.data_service.refresh_bootstrap()
        return RefreshResult(True, GameState.PRE_DEADLINE.value, {
            "next_gameweek_id": classification.details.get("next_gameweek_id"),
            "deadline": classification.details.get("next_deadline"),
            "players_count": len(views.players),
        })

    async def _regular_refresh(self) -> RefreshResult:
        """Bootstrap and fixtures regardless of state; reports the state it observed."""
        logger.info("Performing regular refresh")
        await asyncio.gather(
            self.data_service.refresh_bootstrap(),
            self.data_service.refresh_fixtures(),
        )
        classification = await self.classifier.classify()
        return RefreshResult(True, classification.state.value, dict(classification.details))

    async def _full_refresh(self, state_label: str = RefreshType.FULL.value, triggered_by: Optional[str] = None) -> RefreshResult:
        """Every resource kind: bootstrap, fixtures, current live stats, cached player details."""
        logger.info("Performing full refresh", extra={"triggered_by": triggered_by})
        views, _ = await asyncio.gather(
            self.data_service.refresh_bootstrap(),
            self.data_service.refresh_fixtures(),
        )

        current = pick_single(views.gameweeks, "is_current")
        tasks = [self.data_service.refresh_cached_player_details()]
        if current is not None:
            tasks.append(self.data_service.get_live_gameweek(current.id, force_refresh=True))
        player_details, *_ = await asyncio.gather(*tasks)

        classification = await self.classifier.classify()
        details: Dict[str, Any] = {
            **classification.details,
            "observed_state": classification.state.value,
            "current_gameweek_id": current.id if current else None,
            "player_details": player_details,
        }
        if triggered_by is not None:
            details["triggered_by"] = triggered_by
        return RefreshResult(True, state_label, details)

    async def _manual_refresh(self, triggered_by: str) -> RefreshResult:
        logger.info("Manual refresh triggered", extra={"triggered_by": triggered_by})
        return await self._full_refresh(state_label=RefreshType.MANUAL.value, triggered_by=triggered_by)
