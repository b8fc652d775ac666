"""BaseWorker 추상 클래스"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, TYPE_CHECKING

if TYPE_CHECKING:
    from taskplane.tasks.models import Task
    from taskplane.tasks.service import TaskService


class BaseWorker(ABC):
    """
    모든 Worker의 부모 클래스.

    Worker는 실제 작업만 수행한다. 작업 할당과 종료/재시도 처리는
    TaskConsumer가 담당하므로 run()은 실패 시 예외를 던지기만 하면 된다.

    사용 예:
        @register_worker(TaskType.BUILD)
        class BuildWorker(BaseWorker):
            async def run(self) -> None:
                await self.append_log("build started")
                ...
    """

    def __init__(self, task: "Task", service: "TaskService"):
        self.task = task
        self.service = service

    @property
    def task_id(self) -> str:
        return self.task.task_id

    @property
    def payload(self) -> Dict[str, Any]:
        return self.task.data

    @abstractmethod
    async def run(self) -> None:
        """작업을 실행한다."""
        pass

    async def append_log(self, text: str) -> None:
        """작업 로그를 추가한다 (updated_at도 함께 갱신됨)."""
        await self.service.append_task_log(self.task, text)
