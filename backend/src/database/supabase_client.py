"""
Supabase client for the refresh log.

Refresh records are append-only rows in ``refresh_logs``; the latest one is
mirrored into ``system_meta`` under ``last_refresh`` for cheap polling.
"""

import json
import logging
from typing import Any, Dict, Optional

from supabase import Client, create_client

from config import Config

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Client for interacting with Supabase database."""

    def __init__(self, config: Config):
        self.config = config
        self.client: Optional[Client] = None
        self._initialize_client()

    def _initialize_client(self):
        """Initialize Supabase client."""
        if not self.config.supabase_url or not (self.config.supabase_key or self.config.supabase_service_key):
            raise ValueError("Supabase URL and key are required")

        # Use service key if available for inserts behind RLS, otherwise use anon key
        key = self.config.supabase_service_key or self.config.supabase_key

        self.client = create_client(
            self.config.supabase_url,
            key
        )

        logger.info("Initialized Supabase client", extra={
            "url": self.config.supabase_url,
            "using_service_key": bool(self.config.supabase_service_key)
        })

    def insert_refresh_log(self, row: Dict[str, Any]):
        """
        Append a refresh record.

        Args:
            row: Dict with type, state, details, created_at
        """
        result = self.client.table("refresh_logs").insert(row).execute()
        return result.data

    def upsert_last_refresh(self, summary: Dict[str, Any]):
        """
        Record the latest refresh in system_meta.

        Args:
            summary: Dict with timestamp, type, state
        """
        result = self.client.table("system_meta").upsert(
            {"key": "last_refresh", "value": json.dumps(summary)},
            on_conflict="key"
        ).execute()
        return result.data
