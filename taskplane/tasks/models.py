"""Task 모델 정의"""

from __future__ import annotations

import os
import socket
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TaskState(str, Enum):
    """작업 상태"""
    WAITING = "waiting"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAIL = "fail"
    TIMEOUT = "timeout"


TERMINAL_STATES = frozenset({TaskState.SUCCESS, TaskState.FAIL, TaskState.TIMEOUT})
ACTIVE_STATES = frozenset({TaskState.WAITING, TaskState.PROCESSING})


class TaskType(str, Enum):
    """작업 유형"""
    SYNC = "sync"
    BUILD = "build"
    CHANGES_STREAM = "changes_stream"
    TRIGGER_HOOK = "trigger_hook"
    UPDATE_PROXY_CACHE = "update_proxy_cache"


def default_worker_id() -> str:
    """현재 프로세스의 worker 식별자 (hostname:pid)"""
    return f"{socket.gethostname()}:{os.getpid()}"


def build_log_path(task_type: TaskType, target_name: str, task_id: str, suffix: str = "") -> str:
    """작업 로그 blob 경로를 생성한다."""
    stamp = utc_now().strftime("%Y/%m/%d%H%M")
    return f"/tasks/{task_type.value}/{target_name}/{stamp}-{task_id}{suffix}.log"


class Task(BaseModel):
    """작업 레코드

    활성 상태(waiting, processing)인 동안 TaskService가 소유하고,
    종료 상태로 전이되면 history로 이관되어 더 이상 변경되지 않는다.
    """
    task_id: str
    type: TaskType
    target_name: str
    state: TaskState = TaskState.WAITING
    attempts: int = Field(default=0, ge=0)
    log_path: str
    log_store_position: int = Field(default=0, ge=0)
    execute_worker: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        task_type: TaskType,
        target_name: str,
        data: Dict[str, Any] | None = None,
        task_id: str | None = None,
    ) -> "Task":
        """waiting 상태의 새 작업을 만든다."""
        if task_id is None:
            task_id = uuid.uuid4().hex
        now = utc_now()
        return cls(
            task_id=task_id,
            type=task_type,
            target_name=target_name,
            log_path=build_log_path(task_type, target_name, task_id),
            data=data or {},
            created_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def set_execute_worker(self, worker_id: str | None = None) -> None:
        self.execute_worker = worker_id or default_worker_id()

    def reset_log_path(self) -> None:
        """재시도용으로 새 로그 blob을 사용하도록 경로와 위치를 초기화한다."""
        self.log_path = build_log_path(
            self.type, self.target_name, self.task_id, suffix=f"-{self.attempts}"
        )
        self.log_store_position = 0

    def touch(self) -> None:
        self.updated_at = utc_now()
