#!/usr/bin/env python3
"""
FPL Cache Refresh Service - Main Entry Point

Wires the FPL API client, cache store, data service, game state classifier
and refresh orchestrator together, and serves the refresh trigger API.
Refresh cadence comes from an external scheduler calling the trigger
endpoints; the process itself runs no timers.
"""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import uvicorn

# Load .env from backend directory before Config() is used
from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from cache.store import CacheStore, create_cache_store
from config import Config
from database.refresh_log import RefreshLog
from database.supabase_client import SupabaseClient
from fpl_api.client import FPLAPIClient
from refresh.game_state import GameStateClassifier
from refresh.orchestrator import RefreshOrchestrator
from services.fpl_data import FPLDataService
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


class FPLRefreshService:
    """Owns the service components and their one-time initialization."""

    def __init__(
        self,
        config: Optional[Config] = None,
        fpl_client: Optional[FPLAPIClient] = None,
        cache: Optional[CacheStore] = None,
        refresh_log: Optional[RefreshLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or Config()
        self.fpl_client = fpl_client or FPLAPIClient(self.config)
        self.cache = cache or create_cache_store(self.config)
        self.refresh_log = refresh_log or RefreshLog(self._create_db_client())
        self.data_service = FPLDataService(self.fpl_client, self.cache, self.config, clock=clock)
        self.classifier = GameStateClassifier(self.data_service, self.config)
        self.orchestrator = RefreshOrchestrator(
            self.data_service, self.classifier, self.refresh_log, self.config
        )
        self.initialized = False
        self._init_lock = asyncio.Lock()

    def _create_db_client(self) -> Optional[SupabaseClient]:
        if not self.config.supabase_enabled:
            logger.info("Supabase not configured, refresh log kept in memory only")
            return None
        return SupabaseClient(self.config)

    async def ensure_initialized(self) -> bool:
        """
        Initialize once; concurrent callers wait for the same initialization.

        A failed cache warm-up is logged and leaves the service uninitialized,
        so the next call tries again; a scheduled full or regular refresh
        fills the cache meanwhile.

        Returns:
            True when this call performed the initialization
        """
        if self.initialized:
            return False
        async with self._init_lock:
            if self.initialized:
                return False
            logger.info("Initializing FPL Refresh Service", extra={
                "environment": self.config.environment,
                "cache_backend": self.config.cache_backend,
            })
            if self.config.warm_cache_on_startup:
                result = await self.orchestrator.perform_full_refresh()
                if result.state == "error":
                    logger.error("Cache warm-up failed, service left uninitialized", extra={
                        "error": result.details.get("error"),
                    })
                    return False
            self.initialized = True
            logger.info("FPL Refresh Service initialized")
            return True

    async def shutdown(self):
        """Close upstream and cache connections."""
        logger.info("Shutting down FPL Refresh Service")
        await self.fpl_client.close()
        await self.cache.close()


def main():
    """Main entry point."""
    config = Config()
    setup_logging(config)
    try:
        uvicorn.run(
            "api.main:app",
            host=config.api_host,
            port=config.api_port,
            log_config=None,
        )
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except Exception as e:
        logger.error("Service crashed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
