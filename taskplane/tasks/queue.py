"""Task Queue (Redis List 기반)"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from taskplane.tasks.redis_client import get_redis, redis_key


class BaseTaskQueue(ABC):
    """
    이름별 FIFO 작업 큐 인터페이스.

    push는 이미 큐에 있는 task_id를 다시 넣지 않는다. 같은 push를 반복해도
    큐 항목은 하나만 남는다.
    """

    @abstractmethod
    async def push(self, name: str, task_id: str) -> int:
        """task_id를 큐에 넣고 현재 큐 길이를 반환한다."""

    @abstractmethod
    async def pop(self, name: str) -> Optional[str]:
        """가장 오래된 task_id를 꺼낸다. 비어 있으면 None."""

    @abstractmethod
    async def size(self, name: str) -> int:
        """큐 길이를 반환한다."""


class RedisTaskQueue(BaseTaskQueue):
    """Redis List 기반 작업 큐

    task_queue:{name}   FIFO 목록 (RPUSH / LPOP)

    큐 상태는 List 하나에만 둔다. push는 LPOS 확인과 RPUSH를 WATCH/MULTI로
    묶고, pop은 LPOP 한 번이다.
    """

    QUEUE_PREFIX = "task_queue:"

    def __init__(self, redis_client: redis.Redis | None = None):
        self.redis = redis_client or get_redis()

    def _queue_key(self, name: str) -> str:
        return redis_key(self.QUEUE_PREFIX, name)

    async def push(self, name: str, task_id: str) -> int:
        key = self._queue_key(name)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    if await pipe.lpos(key, task_id) is not None:
                        return await pipe.llen(key)
                    pipe.multi()
                    pipe.rpush(key, task_id)
                    results = await pipe.execute()
                    return results[0]
                except WatchError:
                    # 그 사이에 큐가 바뀌었다. 중복 여부를 다시 확인한다.
                    continue

    async def pop(self, name: str) -> Optional[str]:
        return await self.redis.lpop(self._queue_key(name))

    async def size(self, name: str) -> int:
        return await self.redis.llen(self._queue_key(name))
