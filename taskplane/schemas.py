from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from taskplane.tasks.models import Task, TaskState, TaskType


# ============================================================
# Task 관련 스키마
# ============================================================

class TaskCreateRequest(BaseModel):
    """작업 생성 요청"""
    type: TaskType
    target_name: str = Field(min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    enqueue_if_existing: bool = False


class TaskStatusResponse(BaseModel):
    """작업 상태 조회 응답"""
    task_id: str
    type: TaskType
    target_name: str
    state: TaskState
    attempts: int
    execute_worker: Optional[str] = None
    error: Optional[str] = None
    log_url: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: Task) -> "TaskStatusResponse":
        return cls(
            task_id=task.task_id,
            type=task.type,
            target_name=task.target_name,
            state=task.state,
            attempts=task.attempts,
            execute_worker=task.execute_worker,
            error=task.error,
            log_url=f"/api/tasks/{task.task_id}/log",
            created_at=task.created_at,
            updated_at=task.updated_at,
        )


class TaskLogResponse(BaseModel):
    """작업 로그 조회 응답"""
    task_id: str
    log_path: str
    content: Optional[str] = None
