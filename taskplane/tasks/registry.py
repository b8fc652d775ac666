"""Worker Registry (Worker 자동 등록)"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Type

from taskplane.tasks.models import TaskType

if TYPE_CHECKING:
    from taskplane.tasks.models import Task
    from taskplane.tasks.service import TaskService
    from taskplane.tasks.workers.base import BaseWorker

# Worker 클래스 레지스트리
WORKER_REGISTRY: Dict[TaskType, Type["BaseWorker"]] = {}


def register_worker(task_type: TaskType):
    """
    Worker 클래스를 레지스트리에 등록하는 데코레이터.

    사용 예:
        @register_worker(TaskType.BUILD)
        class BuildWorker(BaseWorker):
            async def run(self) -> None:
                ...
    """
    def decorator(cls: Type["BaseWorker"]) -> Type["BaseWorker"]:
        WORKER_REGISTRY[TaskType(task_type)] = cls
        return cls
    return decorator


def unregister_worker(task_type: TaskType) -> None:
    WORKER_REGISTRY.pop(TaskType(task_type), None)


def get_worker(task: "Task", service: "TaskService") -> "BaseWorker":
    """
    task.type에 해당하는 Worker 인스턴스를 생성한다.

    Raises:
        KeyError: 등록되지 않은 task type인 경우
    """
    if task.type not in WORKER_REGISTRY:
        raise KeyError(f"Unknown task type: {task.type.value}")

    worker_cls = WORKER_REGISTRY[task.type]
    return worker_cls(task, service)


def list_workers() -> list[TaskType]:
    """등록된 모든 Worker 타입을 반환한다."""
    return list(WORKER_REGISTRY.keys())
