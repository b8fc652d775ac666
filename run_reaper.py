#!/usr/bin/env python
"""Timeout Reaper 실행 스크립트

사용법:
    python run_reaper.py                 # TASK_REAPER_INTERVAL_SECONDS 주기로 실행 (기본 60초)
    python run_reaper.py --interval 30   # 30초 주기
    python run_reaper.py --once          # 한 번만 스캔하고 종료 (cron 등 외부 스케줄러용)

같은 Redis를 바라보는 reaper는 하나만 띄운다.
"""

import argparse
import asyncio
import sys

from dotenv import load_dotenv


async def _scan_once() -> None:
    from taskplane.tasks.reaper import TimeoutReaper
    from taskplane.tasks.redis_client import close_redis

    try:
        result = await TimeoutReaper().run_once()
        print(f"processing={result.processing} waiting={result.waiting}")
    finally:
        await close_redis()


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(description="Task Timeout Reaper")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="스캔 주기 (초)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="한 번만 스캔하고 종료",
    )

    args = parser.parse_args()

    if args.once:
        asyncio.run(_scan_once())
        return

    from taskplane.tasks.reaper import run_reaper

    try:
        asyncio.run(run_reaper(interval=args.interval))
    except KeyboardInterrupt:
        print("\nReaper stopped.")
        sys.exit(0)


if __name__ == "__main__":
    main()
