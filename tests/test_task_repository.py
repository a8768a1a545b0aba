from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure

from sec13f_collector.orchestrator.models import (
    FailureClass,
    TaskCreate,
    TaskFilter,
    TaskStatus,
    TaskType,
)
from sec13f_collector.orchestrator.repository import TaskRepository
from sec13f_collector.orchestrator.services import TaskService
from sec13f_collector.orchestrator.state_machine import INTERRUPTED_MESSAGE, Transition

pytestmark = [
    allure.epic("Task Orchestrator"),
    allure.feature("Task Store"),
]


def _scrape_task(repository: TaskRepository, cik: str = "320193") -> str:
    return repository.insert_task(
        TaskCreate(task_type=TaskType.SCRAPE_HOLDINGS.value, parameters={"cik": cik}),
    ).task_id


def _retry_transition(now: datetime, *, retry_count: int = 1) -> Transition:
    return Transition(
        status=TaskStatus.RETRY,
        retry_count=retry_count,
        message="HTTP 503",
        next_execute_time=now + timedelta(hours=1),
        end_time=None,
        failure_class=FailureClass.FETCH_ERROR,
    )


def test_insert_task_creates_pending_task_with_event(task_repository: TaskRepository) -> None:
    task = task_repository.insert_task(
        TaskCreate(task_type=TaskType.HOLDING_MERGE.value, parameters={"filing_id": 7}),
    )

    assert task.status is TaskStatus.PENDING
    assert task.retry_count == 0
    assert task.parameters == {"filing_id": 7}
    assert task.next_execute_time is None

    details = task_repository.get_task_details(task.task_id)
    assert details is not None
    assert [event.event_type for event in details.events] == ["created"]
    assert details.events[0].status_to is TaskStatus.PENDING


def test_created_event_satisfies_task_foreign_key(task_repository: TaskRepository) -> None:
    with task_repository.engine.connect() as connection:
        assert connection.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1

    task_id = TaskService(repository=task_repository).create_task(
        TaskType.HOLDING_MERGE.value,
        {"filing_id": 1},
    )

    details = task_repository.get_task_details(task_id)
    assert details is not None
    assert details.task.status is TaskStatus.PENDING
    assert [event.event_type for event in details.events] == ["created"]


def test_caller_supplied_task_id_is_kept(task_repository: TaskRepository) -> None:
    task = task_repository.insert_task(
        TaskCreate(task_type=TaskType.SCRAPE_HOLDINGS.value, task_id="scrape-apple"),
    )

    assert task.task_id == "scrape-apple"
    assert task_repository.get_task("scrape-apple") is not None
    assert task_repository.get_task("missing") is None


def test_claim_moves_pending_task_to_running(task_repository: TaskRepository) -> None:
    task_id = _scrape_task(task_repository)
    now = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)

    claimed = task_repository.claim_task(task_id, now=now)

    assert claimed is not None
    assert claimed.status is TaskStatus.RUNNING
    assert claimed.start_time == now
    assert task_repository.claim_task(task_id, now=now) is None


def test_concurrent_claims_have_exactly_one_winner(
    db_path: Path,
    task_repository: TaskRepository,
) -> None:
    task_id = _scrape_task(task_repository)
    contenders = 6
    barrier = threading.Barrier(contenders)
    results: list[bool] = []
    errors: list[BaseException] = []
    results_lock = threading.Lock()

    def _claim() -> None:
        repository = TaskRepository(db_path)
        try:
            barrier.wait(timeout=5)
            claimed = repository.claim_task(task_id)
            with results_lock:
                results.append(claimed is not None)
        except Exception as error:  # noqa: BLE001
            with results_lock:
                errors.append(error)
        finally:
            repository.close()

    threads = [threading.Thread(target=_claim) for _ in range(contenders)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert results.count(True) == 1
    assert results.count(False) == contenders - 1
    details = task_repository.get_task_details(task_id)
    assert details is not None
    assert [event.event_type for event in details.events].count("claimed") == 1


def test_retry_task_is_not_due_until_backoff_elapses(task_repository: TaskRepository) -> None:
    now = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)
    task_id = _scrape_task(task_repository)
    assert task_repository.claim_task(task_id, now=now) is not None
    assert task_repository.apply_transition(
        task_id=task_id,
        transition=_retry_transition(now),
        expected_retry_count=0,
    )

    stored = task_repository.get_task(task_id)
    assert stored is not None
    assert stored.status is TaskStatus.RETRY
    assert stored.retry_count == 1
    assert stored.next_execute_time == now + timedelta(hours=1)
    assert stored.failure_class is FailureClass.FETCH_ERROR

    assert task_repository.select_due_tasks(now + timedelta(minutes=30)) == []
    assert task_repository.claim_task(task_id, now=now + timedelta(minutes=30)) is None

    later = now + timedelta(hours=1, seconds=1)
    assert [task.task_id for task in task_repository.select_due_tasks(later)] == [task_id]
    claimed = task_repository.claim_task(task_id, now=later)
    assert claimed is not None
    assert claimed.next_execute_time is None
    assert claimed.retry_count == 1


def test_due_tasks_come_back_in_creation_order(task_repository: TaskRepository) -> None:
    first = _scrape_task(task_repository, "1")
    second = _scrape_task(task_repository, "2")
    third = _scrape_task(task_repository, "3")

    due = task_repository.select_due_tasks(datetime.now(tz=UTC) + timedelta(seconds=1))

    assert [task.task_id for task in due] == [first, second, third]
    limited = task_repository.select_due_tasks(datetime.now(tz=UTC), limit=2)
    assert [task.task_id for task in limited] == [first, second]


def test_apply_transition_is_compare_and_set(task_repository: TaskRepository) -> None:
    now = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)
    task_id = _scrape_task(task_repository)
    task_repository.claim_task(task_id, now=now)

    assert not task_repository.apply_transition(
        task_id=task_id,
        transition=_retry_transition(now, retry_count=3),
        expected_retry_count=2,
    )
    completed = Transition(
        status=TaskStatus.COMPLETED,
        retry_count=0,
        message="done",
        next_execute_time=None,
        end_time=now,
        failure_class=None,
    )
    assert task_repository.apply_transition(
        task_id=task_id,
        transition=completed,
        expected_retry_count=0,
        details={"stored": 2},
    )
    assert not task_repository.apply_transition(
        task_id=task_id,
        transition=completed,
        expected_retry_count=0,
    )

    details = task_repository.get_task_details(task_id)
    assert details is not None
    assert details.task.status is TaskStatus.COMPLETED
    assert details.task.end_time == now
    assert [event.event_type for event in details.events] == ["created", "claimed", "completed"]
    assert details.events[-1].details["stored"] == 2


def test_recover_interrupted_tasks_fails_running_tasks(
    db_path: Path,
    task_repository: TaskRepository,
) -> None:
    running = _scrape_task(task_repository, "1")
    pending = _scrape_task(task_repository, "2")
    task_repository.claim_task(running)

    restarted = TaskRepository(db_path)
    try:
        recovered = restarted.recover_interrupted_tasks()
    finally:
        restarted.close()

    assert recovered == [running]
    failed = task_repository.get_task(running)
    assert failed is not None
    assert failed.status is TaskStatus.FAILED
    assert failed.message == INTERRUPTED_MESSAGE
    assert failed.end_time is not None
    untouched = task_repository.get_task(pending)
    assert untouched is not None
    assert untouched.status is TaskStatus.PENDING


def test_list_tasks_filters_by_status_and_type(task_repository: TaskRepository) -> None:
    scrape = _scrape_task(task_repository)
    merge = task_repository.insert_task(
        TaskCreate(task_type=TaskType.HOLDING_MERGE.value, parameters={"filing_id": 1}),
    ).task_id
    task_repository.claim_task(scrape)

    running = task_repository.list_tasks(TaskFilter(status=TaskStatus.RUNNING))
    merges = task_repository.list_tasks(TaskFilter(task_type=TaskType.HOLDING_MERGE.value))
    everything = task_repository.list_tasks()

    assert [task.task_id for task in running] == [scrape]
    assert [task.task_id for task in merges] == [merge]
    assert [task.task_id for task in everything] == [merge, scrape]
