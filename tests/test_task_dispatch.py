from __future__ import annotations

from taskplane.tasks.memory import InMemoryTaskStore
from taskplane.tasks.models import Task, TaskState, TaskType
from taskplane.tasks.service import TaskService


async def test_create_task_persists_and_enqueues(service, store, queue):
    task = Task.create(TaskType.BUILD, "pkg1")

    created = await service.create_task(task)

    assert created.task_id == task.task_id
    assert (await store.find_by_id(task.task_id)).state == TaskState.WAITING
    assert await queue.size("build") == 1


async def test_create_task_dedups_active_task(service, queue):
    first = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))
    second = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))

    assert second.task_id == first.task_id
    assert await queue.size("build") == 1


async def test_create_task_does_not_enqueue_existing_without_flag(service, queue):
    first = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))
    # 큐 항목이 유실된 상황
    assert await queue.pop("build") == first.task_id

    again = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))

    assert again.task_id == first.task_id
    assert await queue.size("build") == 0


async def test_create_task_reenqueues_waiting_task_with_flag(service, queue):
    first = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))
    await queue.pop("build")

    again = await service.create_task(Task.create(TaskType.BUILD, "pkg1"), enqueue_if_existing=True)
    # 반복 호출해도 큐 항목은 하나
    await service.create_task(Task.create(TaskType.BUILD, "pkg1"), enqueue_if_existing=True)

    assert again.task_id == first.task_id
    assert await queue.size("build") == 1
    assert await queue.pop("build") == first.task_id


async def test_create_task_does_not_reenqueue_processing_task(service, queue):
    first = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))
    await service.claim_next(TaskType.BUILD)

    again = await service.create_task(Task.create(TaskType.BUILD, "pkg1"), enqueue_if_existing=True)

    assert again.task_id == first.task_id
    assert again.state == TaskState.PROCESSING
    assert await queue.size("build") == 0


async def test_same_target_different_type_is_separate_task(service, queue):
    build = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))
    sync = await service.create_task(Task.create(TaskType.SYNC, "pkg1"))

    assert build.task_id != sync.task_id
    assert await queue.size("build") == 1
    assert await queue.size("sync") == 1


async def test_finished_task_frees_dedup_key(service):
    first = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))
    claimed = await service.claim_next(TaskType.BUILD)
    await service.finish_task(claimed, TaskState.SUCCESS)

    second = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))

    assert second.task_id != first.task_id


class LateLookupStore(InMemoryTaskStore):
    """조회 시점에는 없다가 insert 시점에 다른 생성자가 먼저 만든 상황"""

    async def find_active_by_key(self, task_type, target_name):
        return None


async def test_create_task_losing_insert_race_returns_owner(queue, log_store, settings):
    store = LateLookupStore()
    service = TaskService(store=store, queue=queue, log_store=log_store, settings=settings)
    owner = Task.create(TaskType.BUILD, "pkg1")
    await store.insert(owner)

    result = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))

    assert result.task_id == owner.task_id
    assert await queue.size("build") == 0


async def test_claim_next_empty_queue(service):
    assert await service.claim_next(TaskType.BUILD) is None


async def test_claim_next_skips_dangling_entry(service, queue):
    await queue.push("build", "missing-task")

    assert await service.claim_next(TaskType.BUILD) is None
    assert await queue.size("build") == 0


async def test_claim_next_marks_processing(service, store):
    task = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))

    claimed = await service.claim_next(TaskType.BUILD, worker_id="worker-1")

    assert claimed.task_id == task.task_id
    assert claimed.state == TaskState.PROCESSING
    assert claimed.attempts == 1
    assert claimed.execute_worker == "worker-1"
    assert claimed.updated_at >= task.updated_at

    stored = await store.find_by_id(task.task_id)
    assert stored.state == TaskState.PROCESSING
    assert stored.attempts == 1


async def test_claim_next_only_one_claimer_wins(service):
    await service.create_task(Task.create(TaskType.BUILD, "pkg1"))

    first = await service.claim_next(TaskType.BUILD)
    second = await service.claim_next(TaskType.BUILD)

    assert first is not None
    assert second is None


async def test_attempts_increase_on_every_claim(service):
    await service.create_task(Task.create(TaskType.BUILD, "pkg1"))

    seen = []
    for _ in range(3):
        claimed = await service.claim_next(TaskType.BUILD)
        seen.append(claimed.attempts)
        await service.retry_task(claimed)

    assert seen == [1, 2, 3]


async def test_claim_next_ignores_archived_task(service, store, queue):
    task = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))
    claimed = await service.claim_next(TaskType.BUILD)
    await service.finish_task(claimed, TaskState.FAIL)
    # 종료 이후 남은 큐 항목
    await queue.push("build", task.task_id)

    assert await service.claim_next(TaskType.BUILD) is None
    assert (await store.find_history(task.task_id)).state == TaskState.FAIL


async def test_claim_next_uses_type_partition(service):
    await service.create_task(Task.create(TaskType.SYNC, "pkg1"))

    assert await service.claim_next(TaskType.BUILD) is None
    assert (await service.claim_next(TaskType.SYNC)).type == TaskType.SYNC


async def test_late_worker_cannot_revive_finished_task(service, store, queue):
    task = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))
    slow = await service.claim_next(TaskType.BUILD, "slow")
    # 타임아웃 스캔이 멈춘 실행을 재시도시켰다
    await service.retry_task(await store.find_by_id(task.task_id))
    fast = await service.claim_next(TaskType.BUILD, "fast")
    await service.finish_task(fast, TaskState.SUCCESS)

    await service.append_task_log(slow, "still running")
    await service.retry_task(slow)
    await service.finish_task(slow, TaskState.FAIL)

    assert await store.find_by_id(task.task_id) is None
    history = await store.find_history(task.task_id)
    assert history.state == TaskState.SUCCESS
    assert history.execute_worker == "fast"
    assert await queue.size("build") == 0
    assert (await service.run_timeout_scan()).processing == 0


async def test_claim_next_skips_task_finished_after_pop(service, store, queue, monkeypatch):
    task = await service.create_task(Task.create(TaskType.BUILD, "pkg1"))
    snapshot = await store.find_by_id(task.task_id)
    snapshot.state = TaskState.FAIL
    await store.archive(snapshot)
    await queue.push("build", task.task_id)

    async def find_before_archive(task_id):
        # 조회 시점에는 아직 활성 레코드였던 경우
        return snapshot.model_copy(update={"state": TaskState.WAITING})

    monkeypatch.setattr(store, "find_by_id", find_before_archive)

    assert await service.claim_next(TaskType.BUILD) is None
    assert task.task_id not in store._tasks
