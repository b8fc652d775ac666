"""Task 생성/조회/재시도 라우터"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from taskplane.schemas import TaskCreateRequest, TaskLogResponse, TaskStatusResponse
from taskplane.tasks.models import Task
from taskplane.tasks.service import TaskService, get_task_service

router = APIRouter()


@router.post("/tasks", response_model=TaskStatusResponse)
async def create_task(
    payload: TaskCreateRequest,
    service: TaskService = Depends(get_task_service),
) -> TaskStatusResponse:
    """작업을 생성한다. 같은 대상의 활성 작업이 있으면 그 작업을 반환한다."""
    task = Task.create(payload.type, payload.target_name, payload.data)
    task = await service.create_task(task, payload.enqueue_if_existing)
    return TaskStatusResponse.from_task(task)


@router.get("/tasks/{task_id}", response_model=TaskStatusResponse)
async def get_task_status(
    task_id: str,
    service: TaskService = Depends(get_task_service),
) -> TaskStatusResponse:
    """작업 상태를 조회한다 (Polling용)."""
    task = await service.find_task(task_id)

    if not task:
        raise HTTPException(status_code=404, detail="Task not found")

    return TaskStatusResponse.from_task(task)


@router.get("/tasks/{task_id}/log", response_model=TaskLogResponse)
async def get_task_log(
    task_id: str,
    service: TaskService = Depends(get_task_service),
) -> TaskLogResponse:
    """작업 로그를 조회한다."""
    task = await service.find_task(task_id)

    if not task:
        raise HTTPException(status_code=404, detail="Task not found")

    content = await service.find_task_log(task)
    return TaskLogResponse(task_id=task.task_id, log_path=task.log_path, content=content)


@router.post("/tasks/{task_id}/retry", response_model=TaskStatusResponse)
async def retry_task(
    task_id: str,
    service: TaskService = Depends(get_task_service),
) -> TaskStatusResponse:
    """활성 작업을 waiting으로 되돌리고 큐에 다시 넣는다."""
    # 종료된(history) 작업은 재시도 대상이 아니다
    task = await service.store.find_by_id(task_id)

    if not task:
        raise HTTPException(status_code=404, detail="Active task not found")

    await service.retry_task(task, "retry requested")
    return TaskStatusResponse.from_task(task)
