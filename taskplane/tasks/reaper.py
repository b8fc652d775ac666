"""Timeout Reaper (주기적 타임아웃 스캔)"""

from __future__ import annotations

import asyncio
import logging

from taskplane.tasks.service import TaskService, TimeoutScanResult, get_task_service

logger = logging.getLogger(__name__)


class TimeoutReaper:
    """
    run_timeout_scan을 주기적으로 실행한다.

    한 프로세스 안에서는 스캔이 순차 실행되어 겹치지 않는다.
    여러 프로세스에서 동시에 띄우지 않는 것은 배포 쪽 책임이다.
    """

    def __init__(self, service: TaskService | None = None, interval: float | None = None):
        self.service = service or get_task_service()
        if interval is None:
            interval = self.service.settings.reaper_interval_seconds
        self.interval = interval
        self._running = False

    async def run_once(self) -> TimeoutScanResult:
        result = await self.service.run_timeout_scan()
        if result.processing or result.waiting:
            logger.info(
                f"Timeout scan finished: processing={result.processing} waiting={result.waiting}"
            )
        return result

    async def run(self) -> None:
        self._running = True
        logger.info(f"Timeout reaper started. interval={self.interval}s")

        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("Timeout reaper cancelled.")
                break
            except Exception as e:
                logger.error(f"Timeout scan error: {e}")
            await asyncio.sleep(self.interval)

        logger.info("Timeout reaper stopped.")

    async def stop(self) -> None:
        self._running = False


async def run_reaper(interval: float | None = None) -> None:
    """Reaper를 실행하는 헬퍼 함수."""
    from dotenv import load_dotenv
    load_dotenv()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    reaper = TimeoutReaper(interval=interval)

    try:
        await reaper.run()
    except KeyboardInterrupt:
        await reaper.stop()
