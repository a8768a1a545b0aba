"""Fixed-interval scheduling loop feeding a bounded worker pool."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from sec13f_collector.config import Settings
from sec13f_collector.ingestion.storage.common import utc_now
from sec13f_collector.orchestrator.failure_classifier import classify_failure
from sec13f_collector.orchestrator.models import FailureClass, TaskStatus, TaskView
from sec13f_collector.orchestrator.registry import TaskDispatcher
from sec13f_collector.orchestrator.repository import TaskRepository
from sec13f_collector.orchestrator.state_machine import (
    BackoffPolicy,
    RetryPolicy,
    resolve_outcome,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TickSummary:
    """What one scheduling pass did."""

    due: int = 0
    claimed: int = 0
    lost_claims: int = 0
    deferred: int = 0

    @property
    def idle(self) -> bool:
        return self.due == 0


@dataclass(slots=True)
class ExecutionSummary:
    """Persisted result of one execution attempt."""

    task_id: str
    status: TaskStatus
    retry_count: int
    message: str
    failure_class: FailureClass | None
    persisted: bool


@dataclass(slots=True)
class OrchestratorRunSummary:
    """Aggregate counters for CLI reporting."""

    ticks: int = 0
    idle_ticks: int = 0
    recovered: int = 0
    claimed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0


class TaskOrchestrator:
    """Polls the task store, claims due tasks, and runs them on a thread pool.

    The store is the only queue: a due task that does not fit into the pool's
    free capacity stays PENDING/RETRY until a later tick.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskRepository,
        dispatcher: TaskDispatcher,
        retry_policy: RetryPolicy | None = None,
        pool_size: int = 3,
        poll_interval_seconds: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if pool_size < 1:
            raise ValueError("pool_size must be >= 1.")
        self.repository = repository
        self.dispatcher = dispatcher
        self.retry_policy = retry_policy or RetryPolicy()
        self.pool_size = pool_size
        self.poll_interval_seconds = poll_interval_seconds
        self.clock = clock
        self._executor: ThreadPoolExecutor | None = None
        self._in_flight: dict[str, Future[ExecutionSummary]] = {}
        self._lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._stats = OrchestratorRunSummary()
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        repository: TaskRepository,
        dispatcher: TaskDispatcher,
    ) -> TaskOrchestrator:
        orchestrator_settings = settings.orchestrator
        return cls(
            repository=repository,
            dispatcher=dispatcher,
            retry_policy=RetryPolicy(
                max_retries=orchestrator_settings.max_retries,
                backoff=BackoffPolicy(
                    base_seconds=orchestrator_settings.retry_base_seconds,
                    multiplier=orchestrator_settings.retry_multiplier,
                    max_seconds=orchestrator_settings.retry_max_seconds,
                ),
            ),
            pool_size=orchestrator_settings.worker_pool_size,
            poll_interval_seconds=orchestrator_settings.poll_interval_seconds,
        )

    @property
    def in_flight(self) -> int:
        with self._lock:
            return sum(1 for future in self._in_flight.values() if not future.done())

    def free_capacity(self) -> int:
        return max(0, self.pool_size - self.in_flight)

    def start(self) -> list[str]:
        """Fail tasks a previous process left RUNNING."""

        recovered = self.repository.recover_interrupted_tasks(now=self.clock())
        with self._lock:
            self._stats.recovered += len(recovered)
        return recovered

    def tick(self) -> TickSummary:
        """Claim due tasks up to free pool capacity and submit them."""

        with self._tick_lock:
            now = self.clock()
            due_tasks = self.repository.select_due_tasks(now)
            summary = TickSummary(due=len(due_tasks))
            with self._lock:
                self._stats.ticks += 1
                if summary.idle:
                    self._stats.idle_ticks += 1
            if summary.idle:
                logger.debug("Scheduling tick: no due tasks")
                return summary

            free = self.free_capacity()
            for index, task in enumerate(due_tasks):
                if free <= 0:
                    summary.deferred = len(due_tasks) - index
                    break
                claimed = self.repository.claim_task(task.task_id, now=now)
                if claimed is None:
                    summary.lost_claims += 1
                    continue
                self._submit(claimed)
                summary.claimed += 1
                free -= 1

            with self._lock:
                self._stats.claimed += summary.claimed
            logger.info(
                "Scheduling tick: due=%s claimed=%s deferred=%s lost=%s",
                summary.due,
                summary.claimed,
                summary.deferred,
                summary.lost_claims,
            )
            return summary

    def trigger_schedule_now(self) -> TickSummary:
        """Run one scheduling pass immediately instead of waiting for the interval."""

        return self.tick()

    def execute(self, task: TaskView) -> ExecutionSummary:
        """Dispatch one claimed task and persist its resulting transition."""

        outcome = self.dispatcher.dispatch(task)
        details = dict(outcome.details)
        if not outcome.success:
            classification = classify_failure(outcome.cause, declared=outcome.failure_class)
            outcome.failure_class = classification.failure_class
            details.update(classification.to_event_details())
            _log_failure(task, outcome.message, classification.failure_class)

        transition = resolve_outcome(
            status=TaskStatus.RUNNING,
            retry_count=task.retry_count,
            outcome=outcome,
            policy=self.retry_policy,
            now=self.clock(),
        )
        persisted = self.repository.apply_transition(
            task_id=task.task_id,
            transition=transition,
            expected_retry_count=task.retry_count,
            details=details,
        )
        if persisted:
            self._record(transition.status)
            logger.info(
                "Task %s (%s) -> %s: %s",
                task.task_id,
                task.task_type,
                transition.status.value,
                transition.message,
            )
        return ExecutionSummary(
            task_id=task.task_id,
            status=transition.status,
            retry_count=transition.retry_count,
            message=transition.message,
            failure_class=transition.failure_class,
            persisted=persisted,
        )

    def drain(self, timeout: float | None = None) -> None:
        """Block until in-flight executions finish."""

        with self._lock:
            futures = list(self._in_flight.values())
        if futures:
            wait(futures, timeout=timeout)

    def run_once(self) -> OrchestratorRunSummary:
        """Recover, run a single tick, and wait for its executions."""

        self.start()
        try:
            self.tick()
            self.drain()
        finally:
            self.shutdown()
        return self.summary()

    def run_forever(self, *, max_ticks: int | None = None) -> OrchestratorRunSummary:
        """Tick every poll interval until stopped by a signal or ``max_ticks``."""

        self.start()
        ticks = 0
        with self._signal_handlers():
            try:
                while not self._stop_requested:
                    try:
                        self.tick()
                    except Exception:  # noqa: BLE001
                        logger.exception("Scheduling tick failed")
                    ticks += 1
                    if max_ticks is not None and ticks >= max_ticks:
                        break
                    self._sleep_with_stop(self.poll_interval_seconds)
            finally:
                if self._stop_signal_name is not None:
                    logger.info(
                        "Stop requested by %s, waiting for in-flight tasks",
                        self._stop_signal_name,
                    )
                self.shutdown()
        return self.summary()

    def request_stop(self) -> None:
        self._request_stop(signal_name="request")

    def shutdown(self, *, wait_for_tasks: bool = True) -> None:
        with self._lock:
            executor = self._executor
            self._executor = None
        if executor is not None:
            executor.shutdown(wait=wait_for_tasks)

    def summary(self) -> OrchestratorRunSummary:
        with self._lock:
            stats = self._stats
            return OrchestratorRunSummary(
                ticks=stats.ticks,
                idle_ticks=stats.idle_ticks,
                recovered=stats.recovered,
                claimed=stats.claimed,
                completed=stats.completed,
                retried=stats.retried,
                failed=stats.failed,
            )

    def _submit(self, task: TaskView) -> None:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.pool_size,
                    thread_name_prefix="sec13f-worker",
                )
            future = self._executor.submit(self.execute, task)
            self._in_flight[task.task_id] = future
        future.add_done_callback(lambda done, task_id=task.task_id: self._release(task_id, done))

    def _release(self, task_id: str, future: Future[ExecutionSummary]) -> None:
        with self._lock:
            if self._in_flight.get(task_id) is future:
                del self._in_flight[task_id]
        error = future.exception()
        if error is not None:
            logger.error(
                "Task %s left RUNNING after execution error: %s",
                task_id,
                error,
                exc_info=error,
            )

    def _record(self, status: TaskStatus) -> None:
        with self._lock:
            if status is TaskStatus.COMPLETED:
                self._stats.completed += 1
            elif status is TaskStatus.RETRY:
                self._stats.retried += 1
            elif status is TaskStatus.FAILED:
                self._stats.failed += 1

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self._request_stop(signal_name=name)

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            pass
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)

    def _request_stop(self, *, signal_name: str) -> None:
        self._stop_requested = True
        self._stop_signal_name = signal_name


def _log_failure(task: TaskView, message: str, failure_class: FailureClass) -> None:
    if failure_class is FailureClass.PARSE_EMPTY:
        logger.warning("Task %s: no parsing strategy produced records: %s", task.task_id, message)
    elif failure_class is FailureClass.FETCH_ERROR:
        logger.warning("Task %s: fetch failed: %s", task.task_id, message)
    else:
        logger.warning(
            "Task %s failed (%s): %s",
            task.task_id,
            failure_class.value,
            message,
        )
