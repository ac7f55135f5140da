"""
Refresh trigger API: endpoints an external scheduler (cron) hits to run refresh
tiers, plus read-only state and cache status for operators.
"""

import hmac
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env and ensure backend/src is on path
backend_dir = Path(__file__).resolve().parent.parent.parent
load_dotenv(backend_dir / ".env")
sys.path.insert(0, str(backend_dir / "src"))

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from main import FPLRefreshService
from refresh.orchestrator import RefreshType

logger = logging.getLogger(__name__)

# Tiers reachable through /api/cron/refresh/{tier}; manual has its own route
SCHEDULED_TIERS = {
    RefreshType.LIVE.value,
    RefreshType.POST_MATCH.value,
    RefreshType.PRE_DEADLINE.value,
    RefreshType.REGULAR.value,
    RefreshType.FULL.value,
}


class UnauthorizedError(Exception):
    pass


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_service(request: Request) -> FPLRefreshService:
    return request.app.state.service


def require_cron_secret(request: Request, service: FPLRefreshService = Depends(get_service)) -> None:
    """Bearer token check; an unset CRON_SECRET rejects every request."""
    secret = service.config.cron_secret
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if not secret or scheme.lower() != "bearer" or not hmac.compare_digest(token, secret):
        raise UnauthorizedError()


def create_app(service: Optional[FPLRefreshService] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        service: Pre-built service (tests); otherwise one is created at startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.service = service or FPLRefreshService()
        await app.state.service.ensure_initialized()
        try:
            yield
        finally:
            await app.state.service.shutdown()

    app = FastAPI(title="FPL Cache Refresh API", version="1.0.0", lifespan=lifespan)
    if service is not None:
        app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UnauthorizedError)
    async def unauthorized_handler(request: Request, exc: UnauthorizedError):
        logger.warning("Unauthorized trigger request", extra={"path": request.url.path})
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    @app.exception_handler(Exception)
    async def error_handler(request: Request, exc: Exception):
        logger.error("Request failed", extra={
            "path": request.url.path,
            "error": str(exc),
            "error_type": type(exc).__name__,
        }, exc_info=True)
        return JSONResponse(status_code=500, content={
            "success": False,
            "error": str(exc),
            "timestamp": _timestamp(),
        })

    auth = [Depends(require_cron_secret)]

    @app.api_route("/api/cron/refresh/manual", methods=["GET", "POST"], dependencies=auth)
    async def trigger_manual_refresh(
        triggered_by: str = Query(..., min_length=1, description="Who requested the refresh"),
        service: FPLRefreshService = Depends(get_service),
    ):
        result = await service.orchestrator.perform_manual_refresh(triggered_by)
        return {"success": result.state != "error", **result.to_dict(), "timestamp": _timestamp()}

    @app.api_route("/api/cron/refresh/{tier}", methods=["GET", "POST"], dependencies=auth)
    async def trigger_refresh(tier: str, service: FPLRefreshService = Depends(get_service)):
        if tier not in SCHEDULED_TIERS:
            raise HTTPException(status_code=404, detail=f"Unknown refresh tier: {tier}")
        result = await service.orchestrator.run_job(tier)
        return {"success": result.state != "error", **result.to_dict(), "timestamp": _timestamp()}

    @app.get("/api/cron/check-match-schedule", dependencies=auth)
    async def check_match_schedule(service: FPLRefreshService = Depends(get_service)):
        return await service.data_service.match_schedule()

    @app.get("/api/cron/state", dependencies=auth)
    async def current_state(service: FPLRefreshService = Depends(get_service)):
        classification = await service.classifier.classify()
        return {
            "state": classification.state.value,
            "details": classification.details,
            "timestamp": _timestamp(),
        }

    @app.get("/api/cache/status", dependencies=auth)
    async def cache_status(service: FPLRefreshService = Depends(get_service)):
        return {
            "keys": await service.data_service.describe_cache(),
            "recent_refreshes": [r.to_row() for r in service.refresh_log.recent(10)],
            "timestamp": _timestamp(),
        }

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
