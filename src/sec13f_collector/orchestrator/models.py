"""Domain models for the persisted task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    RETRY = "retry"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.COMPLETED, TaskStatus.FAILED}


class TaskType(str, Enum):
    """Kinds of work the orchestrator knows how to schedule."""

    SCRAPE_HOLDINGS = "scrape_holdings"
    HOLDING_MERGE = "holding_merge"
    SCRAPE_FINANCIAL_REPORT = "scrape_financial_report"


class FailureClass(str, Enum):
    """Normalized failure kinds recorded on failed attempts."""

    FETCH_ERROR = "fetch_error"
    PARSE_EMPTY = "parse_empty"
    VALIDATION_REJECTED = "validation_rejected"
    NO_HANDLER = "no_handler"
    INVALID_PARAMETERS = "invalid_parameters"
    HANDLER_ERROR = "handler_error"


@dataclass(slots=True)
class TaskCreate:
    """Input payload for creating a task."""

    task_type: str
    parameters: dict[str, Any] = field(default_factory=dict)
    task_id: str | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for the scheduler, handlers, and CLI."""

    task_id: str
    task_type: str
    status: TaskStatus
    parameters: dict[str, Any]
    message: str | None
    retry_count: int
    failure_class: FailureClass | None
    start_time: datetime | None
    next_execute_time: datetime | None
    end_time: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with event stream."""

    task: TaskView
    events: list[TaskEventView]


@dataclass(slots=True)
class TaskFilter:
    """Listing filter; unset fields match everything."""

    status: TaskStatus | None = None
    task_type: str | None = None
    limit: int = 50


@dataclass(slots=True)
class TaskOutcome:
    """What a handler reports back for one execution attempt."""

    success: bool
    message: str
    cause: BaseException | None = None
    failure_class: FailureClass | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def succeeded(cls, message: str, **details: Any) -> TaskOutcome:
        return cls(success=True, message=message, details=details)

    @classmethod
    def failed(
        cls,
        message: str,
        *,
        cause: BaseException | None = None,
        failure_class: FailureClass | None = None,
        **details: Any,
    ) -> TaskOutcome:
        return cls(
            success=False,
            message=message,
            cause=cause,
            failure_class=failure_class,
            details=details,
        )
