from __future__ import annotations

import queue
import random
import threading
from datetime import timedelta
from pathlib import Path

import allure
import pytest

from shipyard.errors import (
    AttemptsExceededError,
    TaskAlreadyStartedError,
    TaskNotFoundError,
    TaskStateConflictError,
)
from shipyard.queue.models import TaskCreate, TaskStatus, TaskType
from shipyard.queue.repository import TaskQueueRepository

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Dispatch Order & Lifecycle"),
]


def test_enqueue_creates_pending_task_with_defaults(repository: TaskQueueRepository) -> None:
    task = repository.enqueue(TaskType.TRIAGE, {"issue": 42})

    assert task.status == TaskStatus.PENDING
    assert task.priority == 5
    assert task.attempts == 0
    assert task.max_attempts == 3
    assert task.remaining_attempts == 3
    assert task.payload == {"issue": 42}
    assert task.started_at is None
    assert task.completed_at is None
    assert task.scheduled_at == task.created_at
    assert task.created_at.tzinfo is not None


def test_enqueue_rejects_zero_max_attempts(repository: TaskQueueRepository) -> None:
    with pytest.raises(ValueError, match="max_attempts"):
        repository.enqueue(TaskType.FIX, max_attempts=0)


def test_enqueue_task_keeps_explicit_id_and_project(repository: TaskQueueRepository) -> None:
    task = repository.enqueue_task(
        TaskCreate(
            task_type=TaskType.ENHANCEMENT,
            payload=["a", "b"],
            project_id="proj-1",
            task_id="task-fixed",
        ),
    )

    assert task.task_id == "task-fixed"
    assert repository.get_task("task-fixed").project_id == "proj-1"
    assert repository.get_task("task-fixed").payload == ["a", "b"]


def test_higher_priority_is_dispatched_first(repository: TaskQueueRepository, clock) -> None:
    low = repository.enqueue(TaskType.TRIAGE, priority=7)
    clock.advance(1)
    high = repository.enqueue(TaskType.TRIAGE, priority=9)

    pending = repository.list_pending()

    assert [task.task_id for task in pending] == [high.task_id, low.task_id]


def test_equal_priority_is_fifo_even_with_identical_timestamps(
    repository: TaskQueueRepository,
) -> None:
    ids = [repository.enqueue(TaskType.FIX, priority=5).task_id for _ in range(5)]

    assert [task.task_id for task in repository.list_pending()] == ids


def test_list_pending_respects_limit(repository: TaskQueueRepository) -> None:
    for _ in range(4):
        repository.enqueue(TaskType.FIX)

    assert len(repository.list_pending(limit=2)) == 2
    assert repository.list_pending(limit=0) == []


def test_list_pending_hides_future_tasks_until_due(
    repository: TaskQueueRepository,
    clock,
) -> None:
    later = repository.enqueue(
        TaskType.DEPLOYMENT,
        priority=10,
        scheduled_at=clock() + timedelta(minutes=5),
    )
    now = repository.enqueue(TaskType.DEPLOYMENT, priority=1)

    assert [task.task_id for task in repository.list_pending()] == [now.task_id]
    assert [task.task_id for task in repository.list_active()] == [later.task_id, now.task_id]

    clock.advance(301)
    assert [task.task_id for task in repository.list_pending()] == [later.task_id, now.task_id]


def test_scheduled_at_can_be_ignored(db_path: Path, clock) -> None:
    repo = TaskQueueRepository(db_path, clock=clock, honor_scheduled_at=False)
    repo.init_schema()
    try:
        task = repo.enqueue(TaskType.FIX, scheduled_at=clock() + timedelta(hours=1))
        assert [item.task_id for item in repo.list_pending()] == [task.task_id]
    finally:
        repo.close()


def test_list_active_merges_pending_and_processing(
    repository: TaskQueueRepository,
    clock,
) -> None:
    processing = repository.enqueue(TaskType.FIX, priority=3)
    repository.start(processing.task_id)
    clock.advance(1)
    pending = repository.enqueue(TaskType.FIX, priority=8)
    done = repository.enqueue(TaskType.FIX, priority=9)
    repository.start(done.task_id)
    repository.complete(done.task_id)

    active = repository.list_active()

    assert [task.task_id for task in active] == [pending.task_id, processing.task_id]
    assert [task.status for task in active] == [TaskStatus.PENDING, TaskStatus.PROCESSING]


def test_start_consumes_an_attempt(repository: TaskQueueRepository) -> None:
    task = repository.enqueue(TaskType.TRIAGE)

    started = repository.start(task.task_id)

    assert started.status == TaskStatus.PROCESSING
    assert started.attempts == 1
    assert started.started_at is not None
    assert repository.list_pending() == []


def test_start_unknown_task_raises_not_found(repository: TaskQueueRepository) -> None:
    with pytest.raises(TaskNotFoundError):
        repository.start("missing")


def test_start_twice_reports_already_started(repository: TaskQueueRepository) -> None:
    task = repository.enqueue(TaskType.TRIAGE)
    repository.start(task.task_id)

    with pytest.raises(TaskAlreadyStartedError):
        repository.start(task.task_id)
    assert repository.get_task(task.task_id).attempts == 1


def test_start_with_exhausted_attempts_leaves_record_unchanged(
    repository: TaskQueueRepository,
) -> None:
    task = repository.enqueue(TaskType.FIX, max_attempts=1)
    repository.start(task.task_id)
    repository.fail(task.task_id, "boom", requeue=True)
    before = repository.get_task(task.task_id)
    assert before.status == TaskStatus.FAILED

    with pytest.raises(AttemptsExceededError) as excinfo:
        repository.start(task.task_id)

    assert excinfo.value.attempts == 1
    assert excinfo.value.max_attempts == 1
    assert repository.get_task(task.task_id) == before


def test_fail_with_requeue_returns_task_to_pending(repository: TaskQueueRepository) -> None:
    task = repository.enqueue(TaskType.FIX, max_attempts=3)
    repository.start(task.task_id)

    requeued = repository.fail(task.task_id, "provider 503", requeue=True)

    assert requeued.status == TaskStatus.PENDING
    assert requeued.attempts == 1
    assert requeued.error == "provider 503"
    assert requeued.started_at is None
    assert [item.task_id for item in repository.list_pending()] == [task.task_id]


def test_requeue_honors_retry_schedule(repository: TaskQueueRepository, clock) -> None:
    task = repository.enqueue(TaskType.FIX)
    repository.start(task.task_id)

    repository.fail(
        task.task_id,
        "later",
        requeue=True,
        scheduled_at=clock() + timedelta(seconds=30),
    )

    assert repository.list_pending() == []
    clock.advance(30)
    assert [item.task_id for item in repository.list_pending()] == [task.task_id]


def test_fail_without_requeue_is_terminal(repository: TaskQueueRepository) -> None:
    task = repository.enqueue(TaskType.FIX)
    repository.start(task.task_id)

    failed = repository.fail(task.task_id, "bad input")

    assert failed.status == TaskStatus.FAILED
    assert failed.completed_at is not None
    assert repository.list_active() == []


def test_requeue_on_last_attempt_fails_terminally(repository: TaskQueueRepository) -> None:
    task = repository.enqueue(TaskType.FIX, max_attempts=2)
    for _ in range(2):
        repository.start(task.task_id)
        last = repository.fail(task.task_id, "flaky", requeue=True)

    assert last.status == TaskStatus.FAILED
    assert last.attempts == 2
    assert last.remaining_attempts == 0


def test_fail_on_pending_task_conflicts(repository: TaskQueueRepository) -> None:
    task = repository.enqueue(TaskType.FIX)

    with pytest.raises(TaskStateConflictError):
        repository.fail(task.task_id, "nope")


def test_complete_is_idempotent_for_same_result(repository: TaskQueueRepository) -> None:
    task = repository.enqueue(TaskType.DEPLOYMENT)
    repository.start(task.task_id)

    first = repository.complete(task.task_id, {"url": "https://demo.example"})
    second = repository.complete(task.task_id, {"url": "https://demo.example"})

    assert first.status == TaskStatus.COMPLETED
    assert second == first
    events = repository.get_task_details(task.task_id).events
    assert [event.event_type for event in events].count("completed") == 1


def test_complete_with_different_result_conflicts(repository: TaskQueueRepository) -> None:
    task = repository.enqueue(TaskType.DEPLOYMENT)
    repository.start(task.task_id)
    repository.complete(task.task_id, {"url": "a"})

    with pytest.raises(TaskStateConflictError):
        repository.complete(task.task_id, {"url": "b"})


def test_complete_pending_task_conflicts(repository: TaskQueueRepository) -> None:
    task = repository.enqueue(TaskType.DEPLOYMENT)

    with pytest.raises(TaskStateConflictError):
        repository.complete(task.task_id)


def test_task_details_record_every_transition(repository: TaskQueueRepository) -> None:
    task = repository.enqueue(TaskType.FIX, max_attempts=2)
    repository.start(task.task_id)
    repository.fail(task.task_id, "retry me", requeue=True)
    repository.start(task.task_id)
    repository.complete(task.task_id, "ok")

    details = repository.get_task_details(task.task_id)

    assert details.task.status == TaskStatus.COMPLETED
    assert details.task.result == "ok"
    assert [event.event_type for event in details.events] == [
        "enqueued",
        "started",
        "requeued",
        "started",
        "completed",
    ]
    assert details.events[1].details["attempt"] == 1
    assert details.events[3].details["attempt"] == 2
    assert details.events[2].status_to == TaskStatus.PENDING


def test_list_tasks_filters_and_orders_newest_first(
    repository: TaskQueueRepository,
    clock,
) -> None:
    first = repository.enqueue(TaskType.FIX, project_id="alpha")
    clock.advance(1)
    second = repository.enqueue(TaskType.TRIAGE, project_id="beta")
    clock.advance(1)
    third = repository.enqueue(TaskType.FIX, project_id="alpha")
    repository.start(third.task_id)

    assert [task.task_id for task in repository.list_tasks()] == [
        third.task_id,
        second.task_id,
        first.task_id,
    ]
    assert [task.task_id for task in repository.list_tasks(project_id="alpha")] == [
        third.task_id,
        first.task_id,
    ]
    assert [task.task_id for task in repository.list_tasks(status=TaskStatus.PENDING)] == [
        second.task_id,
        first.task_id,
    ]


def test_stats_counts_statuses_and_open_priorities(
    repository: TaskQueueRepository,
    clock,
) -> None:
    oldest = repository.enqueue(TaskType.FIX, priority=1)
    clock.advance(5)
    repository.enqueue(TaskType.FIX, priority=9)
    running = repository.enqueue(TaskType.FIX, priority=9)
    repository.start(running.task_id)
    done = repository.enqueue(TaskType.FIX, priority=3)
    repository.start(done.task_id)
    repository.complete(done.task_id)

    stats = repository.stats()

    assert stats.total == 4
    assert stats.by_status[TaskStatus.PENDING] == 2
    assert stats.by_status[TaskStatus.PROCESSING] == 1
    assert stats.by_status[TaskStatus.COMPLETED] == 1
    assert stats.by_status[TaskStatus.FAILED] == 0
    assert stats.open_by_priority == {9: 2, 1: 1}
    assert stats.oldest_pending_created_at == oldest.created_at


def test_concurrent_start_has_exactly_one_winner(db_path: Path) -> None:
    seed = TaskQueueRepository(db_path)
    seed.init_schema()
    task = seed.enqueue(TaskType.DEPLOYMENT)
    seed.close()

    workers = 6
    barrier = threading.Barrier(workers)
    outcomes: queue.Queue[str] = queue.Queue()

    def _claim() -> None:
        repo = TaskQueueRepository(db_path)
        try:
            barrier.wait(timeout=5)
            repo.start(task.task_id)
            outcomes.put("won")
        except TaskAlreadyStartedError:
            outcomes.put("lost")
        finally:
            repo.close()

    threads = [threading.Thread(target=_claim) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    results = [outcomes.get_nowait() for _ in range(workers)]
    assert results.count("won") == 1
    assert results.count("lost") == workers - 1

    check = TaskQueueRepository(db_path)
    try:
        final = check.get_task(task.task_id)
    finally:
        check.close()
    assert final.status == TaskStatus.PROCESSING
    assert final.attempts == 1


@pytest.mark.parametrize("seed", [7, 2026, 31337])
def test_listings_stay_in_dispatch_order_under_random_load(
    repository: TaskQueueRepository,
    clock,
    seed: int,
) -> None:
    rng = random.Random(seed)
    enqueued = []
    for _ in range(40):
        clock.advance(rng.choice([0, 0, 1, 7, 45]))
        enqueued.append(repository.enqueue(TaskType.TRIAGE, priority=rng.randint(0, 9)))
    started = {task.task_id for task in rng.sample(enqueued, 8)}
    for task_id in started:
        repository.start(task_id)

    insertion = {task.task_id: index for index, task in enumerate(enqueued)}

    def dispatch_key(task) -> tuple[int, object, int]:
        return (-task.priority, task.created_at, insertion[task.task_id])

    expected_active = sorted(enqueued, key=dispatch_key)
    expected_pending = [task for task in expected_active if task.task_id not in started]

    assert [task.task_id for task in repository.list_pending(limit=100)] == [
        task.task_id for task in expected_pending
    ]
    assert [task.task_id for task in repository.list_active(limit=100)] == [
        task.task_id for task in expected_active
    ]
