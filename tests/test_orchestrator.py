from __future__ import annotations

import threading
from datetime import UTC, date, datetime, timedelta

import allure
import httpx
import pytest

from sec13f_collector.handlers.scrape_holdings import ScrapeHoldingsHandler
from sec13f_collector.ingestion.repository import FilingRepository
from sec13f_collector.ingestion.validator import DataValidator
from sec13f_collector.orchestrator.models import (
    FailureClass,
    TaskCreate,
    TaskOutcome,
    TaskStatus,
    TaskType,
    TaskView,
)
from sec13f_collector.orchestrator.registry import HandlerRegistry, TaskDispatcher
from sec13f_collector.orchestrator.repository import TaskRepository
from sec13f_collector.orchestrator.scheduler import TaskOrchestrator
from sec13f_collector.orchestrator.services import TaskService
from sec13f_collector.orchestrator.state_machine import INTERRUPTED_MESSAGE, RetryPolicy

from filing_samples import EdgarStub, full_submission, submissions_response

pytestmark = [
    allure.epic("Task Orchestrator"),
    allure.feature("Scheduling Loop"),
]

ACCESSION = "0000320193-24-000001"
SUBMISSIONS_URL = "https://data.sec.gov/submissions/CIK0000320193.json"
SUBMISSION_TEXT_URL = (
    "https://www.sec.gov/Archives/edgar/data/0000320193/000032019324000001/"
    f"{ACCESSION}.txt"
)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class BlockingHandler:
    task_type = TaskType.HOLDING_MERGE

    def __init__(self) -> None:
        self.release = threading.Event()
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def handle_task(self, task: TaskView) -> TaskOutcome:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        self.release.wait(timeout=5)
        with self._lock:
            self.active -= 1
        return TaskOutcome.succeeded(f"merged {task.parameters['filing_id']}")


class ExplodingHandler:
    task_type = TaskType.HOLDING_MERGE

    def handle_task(self, task: TaskView) -> TaskOutcome:
        raise RuntimeError(f"disk full while handling {task.task_id}")


def _orchestrator(
    repository: TaskRepository,
    *handlers: object,
    pool_size: int = 3,
    clock: FakeClock | None = None,
) -> TaskOrchestrator:
    registry = HandlerRegistry()
    for handler in handlers:
        registry.register(handler)  # type: ignore[arg-type]
    kwargs = {"clock": clock} if clock is not None else {}
    return TaskOrchestrator(
        repository=repository,
        dispatcher=TaskDispatcher(registry),
        retry_policy=RetryPolicy(max_retries=3),
        pool_size=pool_size,
        poll_interval_seconds=0.01,
        **kwargs,
    )


def test_unparseable_document_retries_three_times_then_fails(
    task_repository: TaskRepository,
    filing_repository: FilingRepository,
) -> None:
    clock = FakeClock(datetime(2026, 10, 18, 8, 0, tzinfo=UTC))
    empty_table = full_submission(ACCESSION, "<informationTable></informationTable>")
    stub = EdgarStub(
        {
            SUBMISSIONS_URL: submissions_response(ACCESSION),
            SUBMISSION_TEXT_URL: httpx.Response(200, content=empty_table.encode()),
        },
    )
    handler = ScrapeHoldingsHandler(
        edgar=stub.client(),
        filings=filing_repository,
        validator=DataValidator(today=lambda: date(2026, 10, 18)),
        tasks=task_repository,
    )
    orchestrator = _orchestrator(task_repository, handler, pool_size=1, clock=clock)
    task_id = task_repository.insert_task(
        TaskCreate(task_type=TaskType.SCRAPE_HOLDINGS.value, parameters={"cik": "320193"}),
    ).task_id

    observed: list[tuple[TaskStatus, int]] = []
    try:
        for _ in range(4):
            assert orchestrator.tick().claimed == 1
            orchestrator.drain()
            task = task_repository.get_task(task_id)
            assert task is not None
            observed.append((task.status, task.retry_count))
            if task.status is TaskStatus.RETRY:
                assert task.next_execute_time == clock.now + timedelta(hours=1)
                assert orchestrator.tick().claimed == 0
            clock.advance(timedelta(hours=1, seconds=1))

        assert orchestrator.tick().idle
    finally:
        orchestrator.shutdown()

    assert observed == [
        (TaskStatus.RETRY, 1),
        (TaskStatus.RETRY, 2),
        (TaskStatus.RETRY, 3),
        (TaskStatus.FAILED, 3),
    ]
    assert stub.requested.count(SUBMISSIONS_URL) == 4
    assert filing_repository.list_filings() == []
    final = task_repository.get_task(task_id)
    assert final is not None
    assert final.failure_class is FailureClass.PARSE_EMPTY
    assert final.next_execute_time is None
    assert final.message is not None and "No holdings" in final.message


def test_saturated_pool_leaves_excess_tasks_pending(task_repository: TaskRepository) -> None:
    handler = BlockingHandler()
    orchestrator = _orchestrator(task_repository, handler, pool_size=2)
    task_ids = [
        task_repository.insert_task(
            TaskCreate(task_type=TaskType.HOLDING_MERGE.value, parameters={"filing_id": index}),
        ).task_id
        for index in range(1, 6)
    ]

    try:
        first = orchestrator.tick()
        assert (first.due, first.claimed, first.deferred) == (5, 2, 3)

        saturated = orchestrator.tick()
        assert (saturated.due, saturated.claimed, saturated.deferred) == (3, 0, 3)
        pending = [
            task_id
            for task_id in task_ids
            if (task := task_repository.get_task(task_id)) is not None
            and task.status is TaskStatus.PENDING
        ]
        assert pending == task_ids[2:]

        handler.release.set()
        orchestrator.drain()
        for _ in range(3):
            orchestrator.tick()
            orchestrator.drain()
    finally:
        handler.release.set()
        orchestrator.shutdown()

    assert handler.peak <= 2
    final_tasks = [task_repository.get_task(task_id) for task_id in task_ids]
    assert {task.status for task in final_tasks if task is not None} == {TaskStatus.COMPLETED}
    summary = orchestrator.summary()
    assert summary.completed == 5
    assert summary.claimed == 5


def test_unregistered_task_type_fails_closed(task_repository: TaskRepository) -> None:
    orchestrator = _orchestrator(task_repository)
    task_id = task_repository.insert_task(
        TaskCreate(task_type=TaskType.SCRAPE_FINANCIAL_REPORT.value, parameters={"cik": "1"}),
    ).task_id

    try:
        orchestrator.tick()
        orchestrator.drain()
    finally:
        orchestrator.shutdown()

    task = task_repository.get_task(task_id)
    assert task is not None
    assert task.status is TaskStatus.RETRY
    assert task.retry_count == 1
    assert task.failure_class is FailureClass.NO_HANDLER
    details = task_repository.get_task_details(task_id)
    assert details is not None
    assert details.events[-1].event_type == "retry_scheduled"
    assert details.events[-1].details["reason_code"] == "no_handler"


def test_handler_exception_becomes_failed_outcome(task_repository: TaskRepository) -> None:
    orchestrator = _orchestrator(task_repository, ExplodingHandler())
    task = task_repository.insert_task(
        TaskCreate(task_type=TaskType.HOLDING_MERGE.value, parameters={"filing_id": 1}),
    )
    claimed = task_repository.claim_task(task.task_id)
    assert claimed is not None

    summary = orchestrator.execute(claimed)

    assert summary.persisted
    assert summary.status is TaskStatus.RETRY
    assert summary.failure_class is FailureClass.HANDLER_ERROR
    assert "disk full" in summary.message


def test_start_recovers_tasks_left_running(task_repository: TaskRepository) -> None:
    task = task_repository.insert_task(TaskCreate(task_type=TaskType.HOLDING_MERGE.value))
    task_repository.claim_task(task.task_id)
    orchestrator = _orchestrator(task_repository)

    recovered = orchestrator.start()

    assert recovered == [task.task_id]
    stored = task_repository.get_task(task.task_id)
    assert stored is not None
    assert stored.status is TaskStatus.FAILED
    assert stored.message == INTERRUPTED_MESSAGE
    assert orchestrator.summary().recovered == 1


def test_run_forever_stops_after_max_ticks(task_repository: TaskRepository) -> None:
    handler = BlockingHandler()
    handler.release.set()
    orchestrator = _orchestrator(task_repository, handler)
    task_repository.insert_task(
        TaskCreate(task_type=TaskType.HOLDING_MERGE.value, parameters={"filing_id": 1}),
    )

    summary = orchestrator.run_forever(max_ticks=2)

    assert summary.ticks == 2
    assert summary.completed == 1
    assert summary.idle_ticks == 1


def test_trigger_schedule_now_runs_a_tick(task_repository: TaskRepository) -> None:
    handler = BlockingHandler()
    handler.release.set()
    orchestrator = _orchestrator(task_repository, handler)
    service = TaskService(repository=task_repository, orchestrator=orchestrator)
    task_id = service.submit_holding_merge(42)

    try:
        tick = service.trigger_schedule_now()
        orchestrator.drain()
    finally:
        orchestrator.shutdown()

    assert tick is not None
    assert tick.claimed == 1
    task = service.get_task(task_id)
    assert task is not None
    assert task.status is TaskStatus.COMPLETED
    assert task.message == "merged 42"


def test_orchestrator_rejects_empty_pool(task_repository: TaskRepository) -> None:
    with pytest.raises(ValueError, match="pool_size"):
        _orchestrator(task_repository, pool_size=0)
