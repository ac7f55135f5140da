#!/usr/bin/env python3
"""
Gate for live polling pipelines.

Exits 0 when matches are in progress or kick off within the next 24 hours,
otherwise 1, so a CI or cron pipeline can skip the live tier between matchdays.

Usage:
    python3 scripts/check_match_schedule.py && python3 scripts/refresh_data.py --tier live
"""

import asyncio
import json
import sys
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")

backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir / "src"))

from config import Config
from main import FPLRefreshService
from utils.logger import setup_logging


async def check_schedule() -> int:
    config = Config()
    setup_logging(config)
    service = FPLRefreshService(config)
    try:
        schedule = await service.data_service.match_schedule()
    finally:
        await service.shutdown()

    print(json.dumps(schedule, indent=2))
    return 0 if schedule["hasActiveMatches"] or schedule["hasUpcomingMatches"] else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(check_schedule()))
