"""Task Consumer (큐 polling 기반 작업 실행기)"""

from __future__ import annotations

import asyncio
import importlib
import logging
import uuid
from typing import List, Sequence

from taskplane.tasks.models import Task, TaskState, TaskType
from taskplane.tasks.registry import get_worker, list_workers
from taskplane.tasks.service import TaskService, get_task_service

logger = logging.getLogger(__name__)


class TaskConsumer:
    """작업을 claim하여 등록된 Worker로 실행하는 소비자"""

    ERROR_SLEEP_SECONDS = 1.0

    def __init__(
        self,
        service: TaskService | None = None,
        worker_id: str | None = None,
        poll_interval: float | None = None,
    ):
        self.service = service or get_task_service()
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        if poll_interval is None:
            poll_interval = self.service.settings.poll_interval_seconds
        self.poll_interval = poll_interval
        self._running = False

    async def run(self, task_types: List[TaskType] | None = None) -> None:
        """
        작업을 반복해서 소비한다.

        Args:
            task_types: 처리할 작업 유형 목록 (기본: 등록된 모든 Worker)
        """
        if task_types is None:
            task_types = list_workers()

        if not task_types:
            logger.warning("No workers registered. Exiting.")
            return

        self._running = True
        logger.info(
            f"Consumer {self.worker_id} started. Listening to: {[t.value for t in task_types]}"
        )

        while self._running:
            try:
                processed = await self._consume_once(task_types)
                if not processed:
                    await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                logger.info(f"Consumer {self.worker_id} cancelled.")
                break
            except Exception as e:
                logger.error(f"Consumer error: {e}")
                await asyncio.sleep(self.ERROR_SLEEP_SECONDS)

        logger.info(f"Consumer {self.worker_id} stopped.")

    async def stop(self) -> None:
        """Consumer를 중지한다."""
        self._running = False

    async def _consume_once(self, task_types: Sequence[TaskType]) -> int:
        """유형별로 한 건씩 claim하여 실행하고, 실행한 작업 수를 반환한다."""
        processed = 0
        for task_type in task_types:
            task = await self.service.claim_next(task_type, self.worker_id)
            if task is None:
                continue
            await self._process_task(task)
            processed += 1
        return processed

    async def _process_task(self, task: Task) -> None:
        """작업을 실행하고 결과에 따라 종료 또는 재시도한다."""
        try:
            worker = get_worker(task, self.service)
        except KeyError as e:
            logger.error(f"Task {task.task_id} has no worker: {e}")
            await self.service.finish_task(task, TaskState.FAIL, f"no worker registered for {task.type.value}")
            return

        try:
            await worker.run()
        except Exception as e:
            logger.error(
                f"Task failed: type={task.type.value} target={task.target_name} "
                f"id={task.task_id} attempts={task.attempts} error={e}"
            )
            await self._handle_failure(task, e)
            return

        await self.service.finish_task(task, TaskState.SUCCESS, "task finished")

    async def _handle_failure(self, task: Task, error: Exception) -> None:
        task.error = f"{type(error).__name__}: {error}"
        message = f"attempt {task.attempts} failed: {task.error}"
        if task.attempts < self.service.retry_limit_for(task.type):
            await self.service.retry_task(task, message)
        else:
            await self.service.finish_task(task, TaskState.FAIL, message)


def import_worker_modules(modules: Sequence[str]) -> None:
    """Worker가 정의된 모듈을 import하여 registry에 등록되게 한다."""
    for module in modules:
        importlib.import_module(module)


async def run_consumer(
    task_types: List[str] | None = None,
    worker_id: str | None = None,
    modules: Sequence[str] = (),
) -> None:
    """Consumer를 실행하는 헬퍼 함수."""
    from dotenv import load_dotenv
    load_dotenv()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    import_worker_modules(modules)
    types = [TaskType(t) for t in task_types] if task_types else None
    consumer = TaskConsumer(worker_id=worker_id)

    try:
        await consumer.run(task_types=types)
    except KeyboardInterrupt:
        await consumer.stop()


if __name__ == "__main__":
    asyncio.run(run_consumer())
