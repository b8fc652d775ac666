"""작업 수명주기 관리 (생성/할당/재시도/타임아웃/종료/로그)"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from pydantic import BaseModel

from taskplane.tasks.config import TaskPolicy, TaskSettings, get_policy, get_settings
from taskplane.tasks.log_store import (
    BaseLogStore,
    ObjectNotAppendableError,
    PositionMismatchError,
    RedisLogStore,
)
from taskplane.tasks.models import TERMINAL_STATES, Task, TaskState, TaskType
from taskplane.tasks.queue import BaseTaskQueue, RedisTaskQueue
from taskplane.tasks.store import BaseTaskStore, RedisTaskStore

logger = logging.getLogger(__name__)

LOG_METADATA = {"Content-Type": "text/plain; charset=utf-8"}


class InvalidTaskStateError(ValueError):
    """종료 상태가 아닌 값으로 작업을 종료하려는 경우"""


class TimeoutScanResult(BaseModel):
    """타임아웃 스캔에서 처리한 작업 수"""
    processing: int = 0
    waiting: int = 0


class TaskService:
    """
    작업 수명주기를 관리한다.

    - create_task: 중복 방지 후 생성, 큐에 추가
    - claim_next: 큐에서 꺼내 processing으로 전이 (worker 실행 권한 획득)
    - retry_task: waiting으로 되돌리고 큐에 다시 추가
    - run_timeout_scan: 오래 멈춘 작업 재시도 또는 timeout 처리
    - append_task_log / finish_task: 로그 기록, 종료 및 history 이관

    큐의 pop이 실행 권한에 대한 유일한 상호배제 수단이다.
    저장소/큐에서 발생한 예외는 그대로 전파한다.
    """

    def __init__(
        self,
        store: BaseTaskStore,
        queue: BaseTaskQueue,
        log_store: BaseLogStore,
        settings: TaskSettings | None = None,
        policies: Dict[TaskType, TaskPolicy] | None = None,
    ):
        self.store = store
        self.queue = queue
        self.log_store = log_store
        self.settings = settings or get_settings()
        self.policies = policies

    def policy_for(self, task_type: TaskType) -> TaskPolicy:
        return get_policy(task_type, self.policies)

    def retry_limit_for(self, task_type: TaskType) -> int:
        policy = self.policy_for(task_type)
        if policy.retry_limit is not None:
            return policy.retry_limit
        return self.settings.max_attempts

    async def _push(self, task: Task) -> int:
        return await self.queue.push(self.policy_for(task.type).queue_name, task.task_id)

    async def create_task(self, task: Task, enqueue_if_existing: bool = False) -> Task:
        """
        작업을 생성한다.

        같은 (type, target_name)의 활성 작업이 있으면 새로 만들지 않고 기존 작업을 반환한다.
        enqueue_if_existing이 True이고 기존 작업이 waiting이면 큐에 다시 넣어 둔다.
        """
        existing = await self.store.find_active_by_key(task.type, task.target_name)
        if existing is None:
            created = await self.store.insert(task)
            if created.task_id == task.task_id:
                queue_size = await self._push(created)
                logger.info(
                    f"Task created: type={created.type.value} target={created.target_name} "
                    f"id={created.task_id} queue_size={queue_size}"
                )
                return created
            # 동시 생성 경쟁에서 졌다
            existing = created

        if enqueue_if_existing and existing.state == TaskState.WAITING:
            # waiting 작업이 큐에 남아 있도록 보장한다
            queue_size = await self._push(existing)
            logger.info(
                f"Task re-enqueued: type={existing.type.value} target={existing.target_name} "
                f"id={existing.task_id} queue_size={queue_size}"
            )
        return existing

    async def retry_task(self, task: Task, append_log: str | None = None) -> None:
        """작업을 waiting으로 되돌리고 큐에 다시 넣는다."""
        if append_log:
            await self._append_log(task, append_log)
        task.state = TaskState.WAITING
        # 타임아웃 판단이 updated_at 기준이므로 반드시 갱신한다
        task.touch()
        if not await self.store.save(task):
            logger.warning(
                f"Retry skipped, task already finished: type={task.type.value} "
                f"target={task.target_name} id={task.task_id}"
            )
            return
        queue_size = await self._push(task)
        logger.info(
            f"Task retried: type={task.type.value} target={task.target_name} "
            f"id={task.task_id} attempts={task.attempts} queue_size={queue_size}"
        )

    async def find_task(self, task_id: str) -> Optional[Task]:
        """활성 작업을 먼저 찾고, 없으면 history에서 찾는다."""
        task = await self.store.find_by_id(task_id)
        if task is not None:
            return task
        return await self.store.find_history(task_id)

    async def find_task_log(self, task: Task) -> Optional[str]:
        return await self.log_store.read(task.log_path)

    async def claim_next(self, task_type: TaskType, worker_id: str | None = None) -> Optional[Task]:
        """
        큐에서 다음 작업을 꺼내 실행 상태로 만든다.

        Returns:
            processing으로 전이된 작업. 큐가 비었거나 레코드가 없으면 None.
        """
        task_id = await self.queue.pop(self.policy_for(task_type).queue_name)
        if task_id is None:
            return None

        task = await self.store.find_by_id(task_id)
        if task is None:
            logger.warning(f"Skipping dangling queue entry: type={task_type.value} id={task_id}")
            return None

        task.set_execute_worker(worker_id)
        task.state = TaskState.PROCESSING
        task.attempts += 1
        task.touch()
        if not await self.store.save(task):
            # pop과 저장 사이에 다른 쪽이 종료시켰다
            logger.warning(f"Skipping finished task: type={task_type.value} id={task_id}")
            return None
        logger.info(
            f"Task claimed: type={task.type.value} target={task.target_name} "
            f"id={task.task_id} attempts={task.attempts} worker={task.execute_worker}"
        )
        return task

    async def run_timeout_scan(self) -> TimeoutScanResult:
        """
        오래 멈춘 작업을 복구한다.

        1. processing 상태로 processing_timeout 이상 갱신이 없는 작업
           - 재시도 한도를 넘었으면 timeout으로 종료 (timeout_exempt 유형 제외)
           - 아니면 재시도 (이전 시도가 있었으면 새 로그 경로 사용)
        2. waiting 상태로 waiting_timeout 이상 머문 작업
           - 큐에서 유실되었을 수 있으므로 시도 횟수와 무관하게 재시도
        """
        tasks = await self.store.find_stale(TaskState.PROCESSING, self.settings.processing_timeout)
        for task in tasks:
            policy = self.policy_for(task.type)
            if task.attempts >= self.retry_limit_for(task.type) and not policy.timeout_exempt:
                await self.finish_task(task, TaskState.TIMEOUT)
                logger.warning(
                    f"Task timed out: type={task.type.value} target={task.target_name} "
                    f"id={task.task_id} attempts={task.attempts} set to timeout"
                )
                continue
            if task.attempts >= 1:
                task.reset_log_path()
            await self.retry_task(task)
            logger.warning(
                f"Processing task stalled: type={task.type.value} target={task.target_name} "
                f"id={task.task_id} attempts={task.attempts} will retry again"
            )

        waiting_tasks = await self.store.find_stale(TaskState.WAITING, self.settings.waiting_timeout)
        for task in waiting_tasks:
            await self.retry_task(task)
            logger.warning(
                f"Waiting task stalled: type={task.type.value} target={task.target_name} "
                f"id={task.task_id} attempts={task.attempts} waiting too long"
            )

        return TimeoutScanResult(processing=len(tasks), waiting=len(waiting_tasks))

    async def append_task_log(self, task: Task, append_log: str) -> None:
        """상태 변경 없이 로그를 추가하고 작업을 저장한다."""
        await self._append_log(task, append_log)
        task.touch()
        if not await self.store.save(task):
            logger.warning(
                f"Log appended to finished task: type={task.type.value} "
                f"target={task.target_name} id={task.task_id}"
            )

    async def finish_task(
        self,
        task: Task,
        state: TaskState,
        append_log: str | None = None,
    ) -> None:
        """작업을 종료 상태로 만들고 history로 이관한다."""
        if state not in TERMINAL_STATES:
            raise InvalidTaskStateError(f"Not a terminal state: {state}")
        if append_log:
            await self._append_log(task, append_log)
        task.state = state
        task.touch()
        if not await self.store.archive(task):
            # 이미 다른 실행이 종료시킨 작업. history는 그대로 둔다.
            logger.warning(
                f"Finish skipped, task already finished: type={task.type.value} "
                f"target={task.target_name} id={task.task_id} state={state.value}"
            )
            return
        logger.info(
            f"Task finished: type={task.type.value} target={task.target_name} "
            f"id={task.task_id} attempts={task.attempts} state={state.value}"
        )

    async def _append_log(self, task: Task, append_log: str) -> None:
        """
        task.log_store_position 위치에 로그를 이어 붙인다.

        위치 불일치 또는 append 불가 blob이면 기존 내용을 버리고 덮어쓴다.
        로그가 어긋났다는 이유로 작업 진행이 막히지 않도록 하기 위함이다.
        """
        data = (append_log + "\n").encode("utf-8")
        try:
            next_position = await self.log_store.append_at(
                task.log_path,
                data,
                task.log_store_position,
                LOG_METADATA,
            )
        except (PositionMismatchError, ObjectNotAppendableError) as e:
            logger.warning(
                f"Log append conflict, overwriting: type={task.type.value} "
                f"target={task.target_name} id={task.task_id} path={task.log_path} error={e}"
            )
            task.log_store_position = await self.log_store.overwrite(task.log_path, data)
            return
        if next_position:
            task.log_store_position = next_position


# 싱글톤 인스턴스
_service: TaskService | None = None


def get_task_service() -> TaskService:
    """Redis 기반 TaskService 싱글톤을 반환한다."""
    global _service
    if _service is None:
        settings = get_settings()
        _service = TaskService(
            store=RedisTaskStore(history_ttl=settings.history_ttl_seconds),
            queue=RedisTaskQueue(),
            log_store=RedisLogStore(),
            settings=settings,
        )
    return _service
