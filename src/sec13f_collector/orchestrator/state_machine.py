"""Task lifecycle transitions and retry backoff as pure functions.

PENDING -> RUNNING -> COMPLETED
                   -> RETRY -> RUNNING ...   (while retry_count < max_retries)
                   -> FAILED                 (terminal, retries exhausted)

``next_execute_time`` is only ever set on the transition into RETRY and is
cleared by every other transition.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sec13f_collector.orchestrator.models import FailureClass, TaskOutcome, TaskStatus

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING}),
    TaskStatus.RETRY: frozenset({TaskStatus.RUNNING}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.RETRY, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}
DISPATCHABLE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.RETRY})
INTERRUPTED_MESSAGE = "Execution was interrupted by a process restart"


class InvalidTransition(ValueError):
    """Requested status change is not part of the lifecycle."""


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    """Delay before retry ``n`` (1-based): ``min(max, base * multiplier ** (n - 1))``."""

    base_seconds: float = 3_600.0
    multiplier: float = 1.0
    max_seconds: float = 86_400.0

    def __post_init__(self) -> None:
        if self.base_seconds < 0:
            raise ValueError("Backoff base_seconds must be >= 0.")
        if self.multiplier < 1:
            raise ValueError("Backoff multiplier must be >= 1.")
        if self.max_seconds < self.base_seconds:
            raise ValueError("Backoff max_seconds must be >= base_seconds.")

    def delay(self, retry_number: int) -> timedelta:
        exponent = max(retry_number - 1, 0)
        seconds = min(self.max_seconds, self.base_seconds * (self.multiplier**exponent))
        return timedelta(seconds=seconds)


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """How many failed attempts are retried before a task is FAILED."""

    max_retries: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0.")


@dataclass(slots=True, frozen=True)
class Transition:
    """Field values to persist when leaving RUNNING."""

    status: TaskStatus
    retry_count: int
    message: str
    next_execute_time: datetime | None
    end_time: datetime | None
    failure_class: FailureClass | None


def check_transition(current: TaskStatus, target: TaskStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(f"Illegal task transition {current.value} -> {target.value}")


def is_due(status: TaskStatus, next_execute_time: datetime | None, now: datetime) -> bool:
    """PENDING is always due; RETRY is due once its backoff has elapsed."""

    if status is TaskStatus.PENDING:
        return True
    if status is TaskStatus.RETRY:
        return next_execute_time is None or next_execute_time <= now
    return False


def resolve_outcome(
    *,
    status: TaskStatus,
    retry_count: int,
    outcome: TaskOutcome,
    policy: RetryPolicy,
    now: datetime,
) -> Transition:
    """Decide the post-execution state of a RUNNING task."""

    if status is not TaskStatus.RUNNING:
        raise InvalidTransition(f"Only running tasks can be resolved, got {status.value}")

    if outcome.success:
        return Transition(
            status=TaskStatus.COMPLETED,
            retry_count=retry_count,
            message=outcome.message,
            next_execute_time=None,
            end_time=now,
            failure_class=None,
        )

    if retry_count < policy.max_retries:
        next_retry = retry_count + 1
        return Transition(
            status=TaskStatus.RETRY,
            retry_count=next_retry,
            message=outcome.message,
            next_execute_time=now + policy.backoff.delay(next_retry),
            end_time=None,
            failure_class=outcome.failure_class,
        )

    return Transition(
        status=TaskStatus.FAILED,
        retry_count=retry_count,
        message=outcome.message,
        next_execute_time=None,
        end_time=now,
        failure_class=outcome.failure_class,
    )
