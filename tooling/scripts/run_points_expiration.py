"""Run the loyalty points expiration sweep once.

Intended usage: schedule via cron when the in-process sweeper is disabled,
or run by hand after correcting a program's expiration window.

Example:
    python tooling/scripts/run_points_expiration.py --trigger cron --hotel-id <uuid>
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire due loyalty points once")
    parser.add_argument(
        "--trigger",
        default="manual",
        help="Label recorded in the sweep summary to describe the invocation source.",
    )
    parser.add_argument(
        "--hotel-id",
        default=None,
        help="Restrict the sweep to one hotel's members.",
    )
    return parser.parse_args()


async def _run(trigger: str, hotel_id: str | None) -> dict[str, Any]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from hotel_loyalty.db.session import async_session  # type: ignore import-position
    from hotel_loyalty.jobs.loyalty import run_points_expiration  # type: ignore import-position

    return await run_points_expiration(
        session_factory=async_session,
        hotel_id=hotel_id,
        triggered_by=trigger,
    )


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.trigger, args.hotel_id))
    logger.success(
        "Loyalty points expiration run completed",
        processed=summary.get("processed", 0),
        failed=summary.get("failed", 0),
        points_expired=summary.get("points_expired", 0),
        trigger=args.trigger,
    )
    return 1 if summary.get("failed") else 0


if __name__ == "__main__":
    sys.exit(main())
