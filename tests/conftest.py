"""Shared test fixtures."""

from __future__ import annotations

from datetime import timedelta

import fakeredis
import pytest

from taskplane.tasks.config import TaskSettings
from taskplane.tasks.memory import InMemoryLogStore, InMemoryTaskQueue, InMemoryTaskStore
from taskplane.tasks.models import Task, TaskState, TaskType, utc_now
from taskplane.tasks.service import TaskService


@pytest.fixture()
def settings():
    return TaskSettings()


@pytest.fixture()
def store():
    return InMemoryTaskStore()


@pytest.fixture()
def queue():
    return InMemoryTaskQueue()


@pytest.fixture()
def log_store():
    return InMemoryLogStore()


@pytest.fixture()
def service(store, queue, log_store, settings):
    return TaskService(store=store, queue=queue, log_store=log_store, settings=settings)


@pytest.fixture()
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    # FakeAsyncRedis 인스턴스들은 같은 가상 서버를 공유한다
    await client.flushall()
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture()
def seed_task(store):
    """저장소에 상태/시도 횟수/경과 시간을 지정한 작업을 직접 기록한다."""

    async def _seed(
        task_type: TaskType = TaskType.BUILD,
        target_name: str = "pkg1",
        state: TaskState = TaskState.PROCESSING,
        attempts: int = 0,
        idle_minutes: float = 0,
    ) -> Task:
        task = Task.create(task_type, target_name)
        task.state = state
        task.attempts = attempts
        task.updated_at = utc_now() - timedelta(minutes=idle_minutes)
        await store.insert(task)
        await store.save(task)
        return task

    return _seed
