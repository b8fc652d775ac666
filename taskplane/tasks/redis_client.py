"""Redis 클라이언트 관리"""

from __future__ import annotations

import os
from typing import Optional

import redis.asyncio as redis


_redis_client: Optional[redis.Redis] = None


def get_redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379")


def get_key_prefix() -> str:
    """여러 배포가 같은 Redis를 공유할 때 사용하는 키 네임스페이스"""
    return os.getenv("REDIS_KEY_PREFIX", "")


def redis_key(prefix: str, *parts: str) -> str:
    """네임스페이스가 적용된 Redis 키를 만든다.

    사용 예:
        redis_key("task:", task_id)                  # "task:abc"
        redis_key("task_target:", "build", "pkg1")   # "task_target:build:pkg1"
    """
    return f"{get_key_prefix()}{prefix}{':'.join(parts)}"


def get_redis() -> redis.Redis:
    """Redis 클라이언트 싱글톤을 반환한다.

    응답은 str로 디코딩된다 (decode_responses=True). 로그 blob도 UTF-8 텍스트로 다룬다.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            get_redis_url(),
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    """Redis 연결을 종료한다."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
