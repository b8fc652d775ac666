"""In-memory 저장소/큐 구현 (테스트 및 단일 노드용)"""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import timedelta
from typing import Deque, Dict, List, Optional, Set, Tuple

from taskplane.tasks.log_store import BaseLogStore, ObjectNotAppendableError, PositionMismatchError
from taskplane.tasks.models import Task, TaskState, TaskType, utc_now
from taskplane.tasks.queue import BaseTaskQueue
from taskplane.tasks.store import BaseTaskStore


class InMemoryTaskStore(BaseTaskStore):
    """dict 기반 작업 저장소. 저장/조회 시 사본을 주고받는다."""

    def __init__(self) -> None:
        self._tasks: Dict[str, Task] = {}
        self._history: Dict[str, Task] = {}
        self._targets: Dict[Tuple[TaskType, str], str] = {}
        self._lock = asyncio.Lock()

    async def find_by_id(self, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def find_history(self, task_id: str) -> Optional[Task]:
        task = self._history.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def find_active_by_key(self, task_type: TaskType, target_name: str) -> Optional[Task]:
        task_id = self._targets.get((task_type, target_name))
        if task_id is None:
            return None
        return await self.find_by_id(task_id)

    async def insert(self, task: Task) -> Task:
        key = (task.type, task.target_name)
        async with self._lock:
            owner_id = self._targets.get(key)
            if owner_id is not None and owner_id in self._tasks:
                return self._tasks[owner_id].model_copy(deep=True)
            self._targets[key] = task.task_id
            self._tasks[task.task_id] = task.model_copy(deep=True)
        return task

    async def save(self, task: Task) -> bool:
        async with self._lock:
            if task.task_id not in self._tasks:
                return False
            self._tasks[task.task_id] = task.model_copy(deep=True)
            return True

    async def archive(self, task: Task) -> bool:
        key = (task.type, task.target_name)
        async with self._lock:
            if task.task_id not in self._tasks:
                return False
            self._history[task.task_id] = task.model_copy(deep=True)
            self._tasks.pop(task.task_id, None)
            if self._targets.get(key) == task.task_id:
                del self._targets[key]
            return True

    async def find_stale(self, state: TaskState, older_than: timedelta) -> List[Task]:
        cutoff = utc_now() - older_than
        return [
            task.model_copy(deep=True)
            for task in self._tasks.values()
            if task.state == state and task.updated_at < cutoff
        ]


class InMemoryTaskQueue(BaseTaskQueue):
    """이름별 deque 기반 작업 큐"""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[str]] = {}
        self._members: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def push(self, name: str, task_id: str) -> int:
        async with self._lock:
            queue = self._queues.setdefault(name, deque())
            members = self._members.setdefault(name, set())
            if task_id not in members:
                members.add(task_id)
                queue.append(task_id)
            return len(queue)

    async def pop(self, name: str) -> Optional[str]:
        async with self._lock:
            queue = self._queues.get(name)
            if not queue:
                return None
            task_id = queue.popleft()
            self._members[name].discard(task_id)
            return task_id

    async def size(self, name: str) -> int:
        return len(self._queues.get(name, ()))


class InMemoryLogStore(BaseLogStore):
    """bytearray 기반 로그 저장소"""

    def __init__(self) -> None:
        self._blobs: Dict[str, bytearray] = {}
        self._not_appendable: Set[str] = set()
        self.metadata: Dict[str, Dict[str, str]] = {}

    def put(self, path: str, data: bytes, appendable: bool = True) -> None:
        """blob을 직접 기록한다. appendable=False면 이후 append가 거부된다."""
        self._blobs[path] = bytearray(data)
        if appendable:
            self._not_appendable.discard(path)
        else:
            self._not_appendable.add(path)

    async def append_at(
        self,
        path: str,
        data: bytes,
        position: int,
        metadata: Dict[str, str] | None = None,
    ) -> Optional[int]:
        if path in self._not_appendable:
            raise ObjectNotAppendableError(path)
        blob = self._blobs.setdefault(path, bytearray())
        if len(blob) != position:
            raise PositionMismatchError(path, position, len(blob))
        blob.extend(data)
        if metadata:
            self.metadata[path] = dict(metadata)
        return len(blob)

    async def overwrite(self, path: str, data: bytes) -> int:
        self._blobs[path] = bytearray(data)
        self._not_appendable.discard(path)
        return len(data)

    async def read(self, path: str) -> Optional[str]:
        blob = self._blobs.get(path)
        if blob is None:
            return None
        return blob.decode("utf-8")
