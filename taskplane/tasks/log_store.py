"""작업 로그 저장소 (append 전용 blob)"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from taskplane.tasks.redis_client import get_redis, redis_key


class LogStoreError(RuntimeError):
    """로그 저장소 오류"""


class PositionMismatchError(LogStoreError):
    """append 위치가 blob 길이와 다른 경우"""

    def __init__(self, path: str, position: int, length: int) -> None:
        super().__init__(
            f"Position is not equal to file length: path={path} position={position} length={length}"
        )
        self.path = path
        self.position = position
        self.length = length


class ObjectNotAppendableError(LogStoreError):
    """append를 지원하지 않는 blob인 경우"""

    def __init__(self, path: str) -> None:
        super().__init__(f"The object is not appendable: path={path}")
        self.path = path


class BaseLogStore(ABC):
    """로그 blob 저장소 인터페이스. 위치(position)는 모두 바이트 단위다."""

    @abstractmethod
    async def append_at(
        self,
        path: str,
        data: bytes,
        position: int,
        metadata: Dict[str, str] | None = None,
    ) -> Optional[int]:
        """
        blob 길이가 position과 같을 때만 data를 이어 붙인다.

        Returns:
            append 이후의 blob 길이 (알 수 없으면 None)

        Raises:
            PositionMismatchError: blob 길이가 position과 다른 경우
            ObjectNotAppendableError: append할 수 없는 blob인 경우
        """

    @abstractmethod
    async def overwrite(self, path: str, data: bytes) -> int:
        """blob 내용을 data로 교체하고 새 길이를 반환한다."""

    @abstractmethod
    async def read(self, path: str) -> Optional[str]:
        """blob 내용을 텍스트로 반환한다. 없으면 None."""


class RedisLogStore(BaseLogStore):
    """Redis String 기반 로그 저장소

    task_log:{path}        로그 내용 (APPEND)
    task_log_meta:{path}   Content-Type 등 메타데이터 (Hash)
    """

    LOG_PREFIX = "task_log:"
    META_PREFIX = "task_log_meta:"

    def __init__(self, redis_client: redis.Redis | None = None):
        self.redis = redis_client or get_redis()

    def _log_key(self, path: str) -> str:
        return redis_key(self.LOG_PREFIX, path)

    def _meta_key(self, path: str) -> str:
        return redis_key(self.META_PREFIX, path)

    async def append_at(
        self,
        path: str,
        data: bytes,
        position: int,
        metadata: Dict[str, str] | None = None,
    ) -> Optional[int]:
        key = self._log_key(path)
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                key_type = await pipe.type(key)
                if key_type not in ("none", "string"):
                    raise ObjectNotAppendableError(path)
                length = await pipe.strlen(key)
                if length != position:
                    raise PositionMismatchError(path, position, length)

                pipe.multi()
                pipe.append(key, data)
                if metadata:
                    pipe.hset(self._meta_key(path), mapping=metadata)
                results = await pipe.execute()
            except WatchError as exc:
                # WATCH 이후 다른 writer가 blob을 바꿨다
                raise PositionMismatchError(path, position, -1) from exc
        return results[0]

    async def overwrite(self, path: str, data: bytes) -> int:
        key = self._log_key(path)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(key, data)
            pipe.strlen(key)
            results = await pipe.execute()
        return results[1]

    async def read(self, path: str) -> Optional[str]:
        return await self.redis.get(self._log_key(path))
