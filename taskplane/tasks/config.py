"""작업 정책 및 설정"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Dict, Optional

from pydantic import BaseModel

from taskplane.tasks.models import TaskType


class TaskSettings(BaseModel):
    """타임아웃/재시도 설정 (환경변수로 재정의 가능)"""
    processing_timeout: timedelta = timedelta(minutes=10)
    waiting_timeout: timedelta = timedelta(minutes=30)
    max_attempts: int = 3
    history_ttl_seconds: int = 0  # 0이면 만료 없음
    reaper_interval_seconds: float = 60.0
    poll_interval_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "TaskSettings":
        """환경변수에서 설정을 읽는다."""
        return cls(
            processing_timeout=timedelta(
                seconds=float(os.getenv("TASK_PROCESSING_TIMEOUT_SECONDS", "600"))
            ),
            waiting_timeout=timedelta(
                seconds=float(os.getenv("TASK_WAITING_TIMEOUT_SECONDS", "1800"))
            ),
            max_attempts=int(os.getenv("TASK_MAX_ATTEMPTS", "3")),
            history_ttl_seconds=int(os.getenv("TASK_HISTORY_TTL_SECONDS", "0")),
            reaper_interval_seconds=float(os.getenv("TASK_REAPER_INTERVAL_SECONDS", "60")),
            poll_interval_seconds=float(os.getenv("TASK_POLL_INTERVAL_SECONDS", "1")),
        )


@lru_cache
def get_settings() -> TaskSettings:
    """TaskSettings 싱글톤을 반환한다."""
    return TaskSettings.from_env()


@dataclass(frozen=True)
class TaskPolicy:
    """작업 유형별 정책"""
    queue_name: str
    # 무기한 실행되는 작업은 processing 타임아웃으로 종료시키지 않는다
    timeout_exempt: bool = False
    # None이면 TaskSettings.max_attempts를 따른다
    retry_limit: Optional[int] = None


TASK_POLICIES: Dict[TaskType, TaskPolicy] = {
    TaskType.SYNC: TaskPolicy(queue_name="sync"),
    TaskType.BUILD: TaskPolicy(queue_name="build"),
    TaskType.CHANGES_STREAM: TaskPolicy(queue_name="changes_stream", timeout_exempt=True),
    TaskType.TRIGGER_HOOK: TaskPolicy(queue_name="trigger_hook"),
    TaskType.UPDATE_PROXY_CACHE: TaskPolicy(queue_name="update_proxy_cache"),
}


def get_policy(task_type: TaskType, policies: Dict[TaskType, TaskPolicy] | None = None) -> TaskPolicy:
    """
    task_type에 해당하는 정책을 반환한다.

    Raises:
        KeyError: 정책이 등록되지 않은 task_type인 경우
    """
    policies = TASK_POLICIES if policies is None else policies
    if task_type not in policies:
        raise KeyError(f"No policy for task type: {task_type}")
    return policies[task_type]
