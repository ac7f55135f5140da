#!/usr/bin/env python3
"""
Script to manually run one refresh tier in-process.

Useful when the trigger API is not deployed, or from a plain crontab:

    */15 * * * *  python3 scripts/refresh_data.py --tier live

Prints the result as JSON and exits 1 when the job reports an error.

Usage:
    python3 scripts/refresh_data.py --tier regular
    python3 scripts/refresh_data.py --tier manual --triggered-by alice
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config
from main import FPLRefreshService
from refresh.orchestrator import RefreshType
from utils.logger import setup_logging


async def refresh_data(tier: str, triggered_by: str) -> int:
    """Run a single refresh tier; returns the process exit code."""
    config = Config()
    setup_logging(config)

    service = FPLRefreshService(config)
    try:
        if tier == RefreshType.MANUAL.value:
            result = await service.orchestrator.perform_manual_refresh(triggered_by)
        else:
            result = await service.orchestrator.run_job(tier)
    finally:
        await service.shutdown()

    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 1 if result.state == "error" else 0


def main():
    parser = argparse.ArgumentParser(description="Run one cache refresh tier")
    parser.add_argument(
        "--tier",
        choices=[t.value for t in RefreshType],
        default=RefreshType.REGULAR.value,
        help="Refresh tier to run (default: regular)",
    )
    parser.add_argument(
        "--triggered-by",
        default="cli",
        help="Recorded with manual refreshes",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(refresh_data(args.tier, args.triggered_by)))


if __name__ == "__main__":
    main()
