"""Task 저장소 (Redis Hash 기반)"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from taskplane.tasks.models import ACTIVE_STATES, Task, TaskState, TaskType, utc_now
from taskplane.tasks.redis_client import get_redis, redis_key


class TaskStoreConflictError(RuntimeError):
    """(type, target_name) 인덱스를 확보하지 못한 경우"""


class BaseTaskStore(ABC):
    """
    작업 레코드 저장소 인터페이스.

    활성 레코드와 history(종료된 작업)를 분리해서 관리한다.
    insert는 (type, target_name) 기준의 원자적 find-or-create를 보장해야 한다.
    """

    @abstractmethod
    async def find_by_id(self, task_id: str) -> Optional[Task]:
        """활성 작업을 조회한다."""

    @abstractmethod
    async def find_history(self, task_id: str) -> Optional[Task]:
        """종료되어 이관된 작업을 조회한다."""

    @abstractmethod
    async def find_active_by_key(self, task_type: TaskType, target_name: str) -> Optional[Task]:
        """(type, target_name)에 해당하는 활성 작업을 조회한다."""

    @abstractmethod
    async def insert(self, task: Task) -> Task:
        """
        새 작업을 저장한다.

        같은 키의 활성 작업이 이미 있으면 저장하지 않고 그 작업을 반환한다.
        """

    @abstractmethod
    async def save(self, task: Task) -> bool:
        """
        활성 작업 레코드를 갱신한다.

        활성 레코드가 없으면 (이미 history로 이관되었으면) 기록하지 않고 False를
        반환한다. 새 레코드는 insert로만 만든다.
        """

    @abstractmethod
    async def archive(self, task: Task) -> bool:
        """
        작업을 history로 이관하고 활성 레코드를 제거한다.

        활성 레코드가 없으면 history를 덮어쓰지 않고 False를 반환한다.
        """

    @abstractmethod
    async def find_stale(self, state: TaskState, older_than: timedelta) -> List[Task]:
        """updated_at이 older_than 이상 지난 state 상태의 작업을 조회한다."""


class RedisTaskStore(BaseTaskStore):
    """Redis Hash 기반 작업 저장소

    키 구성:
        task:{id}                       활성 작업 (Hash)
        task_history:{id}               종료된 작업 (Hash, history_ttl 적용)
        task_target:{type}:{target}     중복 방지 인덱스 (String -> task_id)
        tasks_by_state:{state}          타임아웃 조회용 (Sorted Set, score=updated_at)
    """

    TASK_PREFIX = "task:"
    HISTORY_PREFIX = "task_history:"
    TARGET_PREFIX = "task_target:"
    STATE_PREFIX = "tasks_by_state:"
    INSERT_RETRIES = 3
    WRITE_RETRIES = 5

    def __init__(self, redis_client: redis.Redis | None = None, history_ttl: int = 0):
        self.redis = redis_client or get_redis()
        self.history_ttl = history_ttl

    def _task_key(self, task_id: str) -> str:
        return redis_key(self.TASK_PREFIX, task_id)

    def _history_key(self, task_id: str) -> str:
        return redis_key(self.HISTORY_PREFIX, task_id)

    def _target_key(self, task_type: TaskType, target_name: str) -> str:
        return redis_key(self.TARGET_PREFIX, task_type.value, target_name)

    def _state_key(self, state: TaskState) -> str:
        return redis_key(self.STATE_PREFIX, state.value)

    async def find_by_id(self, task_id: str) -> Optional[Task]:
        data = await self.redis.hgetall(self._task_key(task_id))
        if not data:
            return None
        return self._deserialize(data)

    async def find_history(self, task_id: str) -> Optional[Task]:
        data = await self.redis.hgetall(self._history_key(task_id))
        if not data:
            return None
        return self._deserialize(data)

    async def find_active_by_key(self, task_type: TaskType, target_name: str) -> Optional[Task]:
        task_id = await self.redis.get(self._target_key(task_type, target_name))
        if task_id is None:
            return None
        return await self.find_by_id(task_id)

    async def insert(self, task: Task) -> Task:
        """
        SET NX로 인덱스를 선점한 쪽만 작업을 남긴다.

        레코드를 먼저 기록한 뒤 인덱스를 잡으므로, 인덱스가 가리키는 작업은
        항상 조회 가능하다. 선점에 실패하면 기록한 레코드를 지운다.
        """
        target_key = self._target_key(task.type, task.target_name)
        await self._write(task)

        for _ in range(self.INSERT_RETRIES):
            if await self.redis.set(target_key, task.task_id, nx=True):
                return task

            owner_id = await self.redis.get(target_key)
            if owner_id is None:
                # 그 사이에 기존 작업이 종료됨
                continue
            if owner_id == task.task_id:
                return task
            owner = await self.find_by_id(owner_id)
            if owner is not None:
                await self._discard(task)
                return owner
            # 레코드가 사라진 인덱스는 정리 후 재시도
            await self._delete_if_owner(target_key, owner_id)

        await self._discard(task)
        raise TaskStoreConflictError(
            f"Could not acquire index for {task.type.value}:{task.target_name}"
        )

    async def save(self, task: Task) -> bool:
        """WATCH로 활성 레코드가 남아 있을 때만 갱신한다."""
        task_key = self._task_key(task.task_id)
        for _ in range(self.WRITE_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(task_key)
                    if not await pipe.exists(task_key):
                        return False
                    pipe.multi()
                    self._queue_write(pipe, task)
                    await pipe.execute()
                    return True
                except WatchError:
                    # 그 사이에 이관되었거나 다른 writer가 갱신했다. 다시 확인한다.
                    continue
        raise TaskStoreConflictError(f"Could not save task {task.task_id}")

    async def archive(self, task: Task) -> bool:
        task_key = self._task_key(task.task_id)
        target_key = self._target_key(task.type, task.target_name)
        history_key = self._history_key(task.task_id)

        for _ in range(self.WRITE_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(task_key, target_key)
                    if not await pipe.exists(task_key):
                        return False
                    owner_id = await pipe.get(target_key)

                    pipe.multi()
                    pipe.hset(history_key, mapping=self._serialize(task))
                    if self.history_ttl > 0:
                        pipe.expire(history_key, self.history_ttl)
                    pipe.delete(task_key)
                    for state in ACTIVE_STATES:
                        pipe.zrem(self._state_key(state), task.task_id)
                    if owner_id == task.task_id:
                        pipe.delete(target_key)
                    await pipe.execute()
                    return True
                except WatchError:
                    continue
        raise TaskStoreConflictError(f"Could not archive task {task.task_id}")

    async def find_stale(self, state: TaskState, older_than: timedelta) -> List[Task]:
        cutoff = (utc_now() - older_than).timestamp()
        task_ids = await self.redis.zrangebyscore(self._state_key(state), "-inf", f"({cutoff}")

        tasks: List[Task] = []
        for task_id in task_ids:
            task = await self.find_by_id(task_id)
            if task is not None and task.state == state:
                tasks.append(task)
        return tasks

    async def _write(self, task: Task) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            self._queue_write(pipe, task)
            await pipe.execute()

    def _queue_write(self, pipe, task: Task) -> None:
        """레코드와 상태 인덱스 갱신 명령을 pipeline에 쌓는다."""
        pipe.hset(self._task_key(task.task_id), mapping=self._serialize(task))
        for state in ACTIVE_STATES:
            pipe.zrem(self._state_key(state), task.task_id)
        if task.state in ACTIVE_STATES:
            pipe.zadd(
                self._state_key(task.state),
                {task.task_id: task.updated_at.timestamp()},
            )

    async def _discard(self, task: Task) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._task_key(task.task_id))
            for state in ACTIVE_STATES:
                pipe.zrem(self._state_key(state), task.task_id)
            await pipe.execute()

    async def _delete_if_owner(self, target_key: str, owner_id: str) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(target_key)
                if await pipe.get(target_key) != owner_id:
                    return
                pipe.multi()
                pipe.delete(target_key)
                await pipe.execute()
            except WatchError:
                # 다른 생성자가 먼저 인덱스를 바꿨다. 호출자가 다시 확인한다.
                return

    def _serialize(self, task: Task) -> Dict[str, str]:
        """Task를 Redis Hash 형식으로 직렬화한다."""
        return {
            "task_id": task.task_id,
            "type": task.type.value,
            "target_name": task.target_name,
            "state": task.state.value,
            "attempts": str(task.attempts),
            "log_path": task.log_path,
            "log_store_position": str(task.log_store_position),
            "execute_worker": task.execute_worker or "",
            "data": json.dumps(task.data, ensure_ascii=False),
            "error": task.error or "",
            "created_at": task.created_at.isoformat(),
            "updated_at": task.updated_at.isoformat(),
        }

    def _deserialize(self, data: Dict[str, Any]) -> Task:
        """Redis Hash 데이터를 Task로 역직렬화한다."""
        return Task(
            task_id=data["task_id"],
            type=TaskType(data["type"]),
            target_name=data["target_name"],
            state=TaskState(data["state"]),
            attempts=int(data.get("attempts") or 0),
            log_path=data["log_path"],
            log_store_position=int(data.get("log_store_position") or 0),
            execute_worker=data.get("execute_worker") or None,
            data=json.loads(data["data"]) if data.get("data") else {},
            error=data.get("error") or None,
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
