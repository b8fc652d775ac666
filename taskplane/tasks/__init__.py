"""비동기 작업 수명주기 관리 (큐 기반 할당, 타임아웃 복구, 작업 로그)"""

from taskplane.tasks.config import TaskPolicy, TaskSettings, get_settings
from taskplane.tasks.models import Task, TaskState, TaskType
from taskplane.tasks.registry import get_worker, register_worker
from taskplane.tasks.service import TaskService, TimeoutScanResult, get_task_service

__all__ = [
    "Task",
    "TaskState",
    "TaskType",
    "TaskPolicy",
    "TaskSettings",
    "get_settings",
    "TaskService",
    "TimeoutScanResult",
    "get_task_service",
    "register_worker",
    "get_worker",
]
