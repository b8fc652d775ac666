from __future__ import annotations

from datetime import timedelta

import pytest

from taskplane.tasks.config import TASK_POLICIES, TaskSettings, get_policy
from taskplane.tasks.models import Task, TaskState, TaskType


def test_create_task_defaults():
    task = Task.create(TaskType.BUILD, "pkg1", {"version": "1.0.0"})

    assert len(task.task_id) == 32
    assert task.state == TaskState.WAITING
    assert task.attempts == 0
    assert task.log_store_position == 0
    assert task.execute_worker is None
    assert task.data == {"version": "1.0.0"}
    assert task.created_at == task.updated_at
    assert task.log_path.startswith("/tasks/build/pkg1/")
    assert task.log_path.endswith(f"-{task.task_id}.log")


def test_create_task_with_explicit_id():
    task = Task.create(TaskType.SYNC, "@scope/name", task_id="abc")

    assert task.task_id == "abc"
    assert task.log_path.startswith("/tasks/sync/@scope/name/")


def test_reset_log_path_uses_attempt_suffix_and_rewinds_position():
    task = Task.create(TaskType.BUILD, "pkg1")
    task.attempts = 2
    task.log_store_position = 120
    old_path = task.log_path

    task.reset_log_path()

    assert task.log_path != old_path
    assert task.log_path.endswith(f"-{task.task_id}-2.log")
    assert task.log_store_position == 0


def test_set_execute_worker():
    task = Task.create(TaskType.BUILD, "pkg1")

    task.set_execute_worker()
    assert ":" in task.execute_worker

    task.set_execute_worker("worker-1")
    assert task.execute_worker == "worker-1"


@pytest.mark.parametrize(
    "state,terminal",
    [
        (TaskState.WAITING, False),
        (TaskState.PROCESSING, False),
        (TaskState.SUCCESS, True),
        (TaskState.FAIL, True),
        (TaskState.TIMEOUT, True),
    ],
)
def test_is_terminal(state, terminal):
    task = Task.create(TaskType.BUILD, "pkg1")
    task.state = state
    assert task.is_terminal is terminal


def test_attempts_cannot_be_negative():
    with pytest.raises(ValueError):
        Task(task_id="x", type=TaskType.BUILD, target_name="pkg1", log_path="/x.log", attempts=-1)


def test_touch_moves_updated_at_forward():
    task = Task.create(TaskType.BUILD, "pkg1")
    task.updated_at = task.updated_at - timedelta(minutes=5)
    before = task.updated_at

    task.touch()

    assert task.updated_at > before


def test_settings_defaults():
    settings = TaskSettings()

    assert settings.processing_timeout == timedelta(minutes=10)
    assert settings.waiting_timeout == timedelta(minutes=30)
    assert settings.max_attempts == 3


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("TASK_PROCESSING_TIMEOUT_SECONDS", "60")
    monkeypatch.setenv("TASK_WAITING_TIMEOUT_SECONDS", "120")
    monkeypatch.setenv("TASK_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("TASK_HISTORY_TTL_SECONDS", "86400")

    settings = TaskSettings.from_env()

    assert settings.processing_timeout == timedelta(seconds=60)
    assert settings.waiting_timeout == timedelta(seconds=120)
    assert settings.max_attempts == 5
    assert settings.history_ttl_seconds == 86400


def test_every_task_type_has_a_policy():
    for task_type in TaskType:
        assert get_policy(task_type).queue_name == task_type.value


def test_only_changes_stream_is_timeout_exempt():
    exempt = [t for t, p in TASK_POLICIES.items() if p.timeout_exempt]
    assert exempt == [TaskType.CHANGES_STREAM]


def test_get_policy_unknown_type():
    with pytest.raises(KeyError):
        get_policy(TaskType.BUILD, policies={})
