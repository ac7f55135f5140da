#!/usr/bin/env python3
"""
Show what is in the cache: keys grouped by resource type with remaining TTL,
plus the game state the refresh tiers would currently see.

Usage:
    python3 scripts/cache_dashboard.py
    python3 scripts/cache_dashboard.py --pattern "fixtures:*"
"""

import argparse
import asyncio
import sys
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")

backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir / "src"))

from config import Config
from main import FPLRefreshService
from utils.logger import setup_logging


def _format_ttl(seconds):
    if seconds is None:
        return "expired"
    if seconds < 0:
        return "no expiry"
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours}h {minutes:02d}m {secs:02d}s"


async def show_dashboard(pattern: str):
    config = Config()
    setup_logging(config)
    service = FPLRefreshService(config)

    try:
        grouped = await service.data_service.describe_cache(pattern)
        # Classify from cache only when something is cached, otherwise this would fetch upstream
        classification = await service.classifier.classify() if grouped else None
    finally:
        await service.shutdown()

    print("=" * 70)
    print(f"FPL cache ({config.cache_backend}, prefix '{config.cache_key_prefix}')")
    print("=" * 70)

    if classification is not None:
        print(f"\nGame state: {classification.state.value}")
        for name, value in classification.details.items():
            print(f"  {name}: {value}")

    if not grouped:
        print(f"\nNo cached keys match '{pattern}'")
        return

    total = 0
    for group in sorted(grouped):
        entries = grouped[group]
        total += len(entries)
        print(f"\n{group} ({len(entries)})")
        for entry in entries:
            print(f"  {entry['key']:<45} {_format_ttl(entry['ttl'])}")

    print(f"\nTotal: {total} keys")


def main():
    parser = argparse.ArgumentParser(description="List cached keys with remaining TTL")
    parser.add_argument("--pattern", default="*", help="Glob over keys without the namespace prefix")
    args = parser.parse_args()
    asyncio.run(show_dashboard(args.pattern))


if __name__ == "__main__":
    main()
