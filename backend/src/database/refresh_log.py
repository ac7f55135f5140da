"""
Append-only log of refresh outcomes.

Persisted to Supabase when configured; always written to the application log
and kept in a short in-process history. A failed write never fails the job
that produced the record.
"""

import asyncio
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from database.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshRecord:
    type: str  # live, post-match, pre-deadline, regular, full, manual
    state: str
    details: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


class RefreshLog:
    """Writes RefreshRecords to Supabase (optional) and keeps the latest in memory."""

    def __init__(self, db_client: Optional[SupabaseClient] = None, history_size: int = 100):
        self.db_client = db_client
        self._history: Deque[RefreshRecord] = deque(maxlen=history_size)

    async def record(self, record: RefreshRecord) -> None:
        self._history.append(record)
        logger.info("Refresh recorded", extra={
            "refresh_type": record.type,
            "state": record.state,
            "details": record.details,
        })
        if self.db_client is None:
            return
        try:
            # supabase-py is synchronous; keep it off the event loop
            await asyncio.to_thread(self.db_client.insert_refresh_log, record.to_row())
            await asyncio.to_thread(self.db_client.upsert_last_refresh, {
                "timestamp": record.created_at,
                "type": record.type,
                "state": record.state,
            })
        except Exception as e:
            logger.error("Refresh log write failed", extra={
                "refresh_type": record.type,
                "error": str(e),
            })

    def recent(self, limit: int = 20) -> List[RefreshRecord]:
        """Newest first."""
        return list(reversed(self._history))[:limit]
