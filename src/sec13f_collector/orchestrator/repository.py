"""Persistent task store for the orchestrator."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import and_, or_
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from sec13f_collector.ingestion.storage.alembic_runner import upgrade_head
from sec13f_collector.ingestion.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from sec13f_collector.ingestion.storage.sqlmodel_models import TaskEventRow, TaskRow
from sec13f_collector.orchestrator.models import (
    FailureClass,
    TaskCreate,
    TaskDetails,
    TaskEventView,
    TaskFilter,
    TaskStatus,
    TaskView,
)
from sec13f_collector.orchestrator.state_machine import (
    INTERRUPTED_MESSAGE,
    Transition,
    check_transition,
    is_due,
)

logger = logging.getLogger(__name__)

_TRANSITION_EVENTS = {
    TaskStatus.COMPLETED: "completed",
    TaskStatus.RETRY: "retry_scheduled",
    TaskStatus.FAILED: "failed",
}


class TaskRepository:
    """Task persistence facade backed by SQLModel + SQLite.

    Every status change is a compare-and-set UPDATE, so concurrent writers
    observe at most one winner per transition.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def insert_task(self, payload: TaskCreate) -> TaskView:
        """Create a PENDING task."""

        now = utc_now()
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = TaskRow(
                task_id=task_id,
                task_type=payload.task_type,
                status=TaskStatus.PENDING.value,
                parameters_json=json.dumps(payload.parameters, ensure_ascii=False, sort_keys=True),
                retry_count=0,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="created",
                status_from=None,
                status_to=TaskStatus.PENDING,
                details={"task_type": payload.task_type},
            )
            session.commit()
            session.refresh(row)
            logger.info("Task created: task_id=%s type=%s", task_id, payload.task_type)
            return _to_task_view(row)

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
            return _to_task_view(row) if row is not None else None

    def list_tasks(self, task_filter: TaskFilter | None = None) -> list[TaskView]:
        """List recent tasks, newest first."""

        task_filter = task_filter or TaskFilter()
        with Session(self.engine) as session:
            statement = (
                select(TaskRow)
                .order_by(col(TaskRow.created_at).desc(), col(TaskRow.id).desc())
                .limit(task_filter.limit)
            )
            if task_filter.status is not None:
                statement = statement.where(TaskRow.status == task_filter.status.value)
            if task_filter.task_type is not None:
                statement = statement.where(TaskRow.task_type == task_filter.task_type)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def has_task(self, task_type: str, parameters: dict[str, Any]) -> bool:
        """True when a task of this type with exactly these parameters exists in any status."""

        parameters_json = json.dumps(parameters, ensure_ascii=False, sort_keys=True)
        with Session(self.engine) as session:
            statement = (
                select(TaskRow.id)
                .where(TaskRow.task_type == task_type)
                .where(TaskRow.parameters_json == parameters_json)
                .limit(1)
            )
            return session.exec(statement).first() is not None

    def select_due_tasks(self, now: datetime, *, limit: int | None = None) -> list[TaskView]:
        """PENDING tasks plus RETRY tasks whose backoff has elapsed, oldest first."""

        db_now = to_db_datetime(now)
        with Session(self.engine) as session:
            statement = (
                select(TaskRow)
                .where(
                    or_(
                        col(TaskRow.status) == TaskStatus.PENDING.value,
                        and_(
                            col(TaskRow.status) == TaskStatus.RETRY.value,
                            or_(
                                col(TaskRow.next_execute_time).is_(None),
                                col(TaskRow.next_execute_time) <= db_now,
                            ),
                        ),
                    ),
                )
                .order_by(col(TaskRow.created_at).asc(), col(TaskRow.id).asc())
            )
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def claim_task(self, task_id: str, *, now: datetime | None = None) -> TaskView | None:
        """Atomically move a due task to RUNNING; None when another claimer won."""

        now = now or utc_now()
        with Session(self.engine) as session:
            candidate = session.exec(
                select(TaskRow).where(TaskRow.task_id == task_id),
            ).one_or_none()
            if candidate is None:
                return None
            previous = TaskStatus(candidate.status)
            next_execute_time = (
                to_utc_aware_datetime(candidate.next_execute_time)
                if candidate.next_execute_time is not None
                else None
            )
            if not is_due(previous, next_execute_time, now):
                return None

            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.status) == previous.value,
                    col(TaskRow.retry_count) == candidate.retry_count,
                )
                .values(
                    status=TaskStatus.RUNNING.value,
                    start_time=to_db_datetime(now),
                    next_execute_time=None,
                    end_time=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None

            self._add_event(
                session=session,
                task_id=task_id,
                event_type="claimed",
                status_from=previous,
                status_to=TaskStatus.RUNNING,
                details={"retry_count": candidate.retry_count},
            )
            session.commit()
            claimed = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one()
            return _to_task_view(claimed)

    def apply_transition(
        self,
        *,
        task_id: str,
        transition: Transition,
        expected_retry_count: int,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Persist the outcome of a RUNNING task; False when the task is no longer ours."""

        check_transition(TaskStatus.RUNNING, transition.status)
        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.status) == TaskStatus.RUNNING.value,
                    col(TaskRow.retry_count) == expected_retry_count,
                )
                .values(
                    status=transition.status.value,
                    retry_count=transition.retry_count,
                    message=transition.message,
                    failure_class=(
                        transition.failure_class.value
                        if transition.failure_class is not None
                        else None
                    ),
                    next_execute_time=(
                        to_db_datetime(transition.next_execute_time)
                        if transition.next_execute_time is not None
                        else None
                    ),
                    end_time=(
                        to_db_datetime(transition.end_time)
                        if transition.end_time is not None
                        else None
                    ),
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.warning(
                    "Transition to %s lost for task %s: not running at retry_count=%s",
                    transition.status.value,
                    task_id,
                    expected_retry_count,
                )
                return False

            event_details: dict[str, Any] = {
                "message": transition.message,
                "retry_count": transition.retry_count,
            }
            if transition.next_execute_time is not None:
                event_details["next_execute_time"] = to_utc_aware_datetime(
                    transition.next_execute_time,
                ).isoformat()
            event_details.update(details or {})
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=_TRANSITION_EVENTS[transition.status],
                status_from=TaskStatus.RUNNING,
                status_to=transition.status,
                details=event_details,
            )
            session.commit()
            return True

    def recover_interrupted_tasks(self, *, now: datetime | None = None) -> list[str]:
        """Force tasks left RUNNING by a dead process to FAILED."""

        now = now or utc_now()
        recovered: list[str] = []
        with Session(self.engine) as session:
            task_ids = session.exec(
                select(TaskRow.task_id).where(TaskRow.status == TaskStatus.RUNNING.value),
            ).all()
            for task_id in task_ids:
                result = session.exec(
                    sa_update(TaskRow)
                    .where(
                        col(TaskRow.task_id) == task_id,
                        col(TaskRow.status) == TaskStatus.RUNNING.value,
                    )
                    .values(
                        status=TaskStatus.FAILED.value,
                        message=INTERRUPTED_MESSAGE,
                        next_execute_time=None,
                        end_time=to_db_datetime(now),
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    continue
                self._add_event(
                    session=session,
                    task_id=task_id,
                    event_type="interrupted",
                    status_from=TaskStatus.RUNNING,
                    status_to=TaskStatus.FAILED,
                    details={"message": INTERRUPTED_MESSAGE},
                )
                recovered.append(task_id)
            session.commit()
        if recovered:
            logger.warning("Recovered %s interrupted tasks: %s", len(recovered), recovered)
        return recovered

    def get_task_details(self, task_id: str) -> TaskDetails | None:
        """Return task details with event stream."""

        with Session(self.engine) as session:
            task = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
            if task is None:
                return None
            event_rows = session.exec(
                select(TaskEventRow)
                .where(TaskEventRow.task_id == task_id)
                .order_by(col(TaskEventRow.created_at).asc(), col(TaskEventRow.id).asc()),
            ).all()
            task_view = _to_task_view(task)

        events: list[TaskEventView] = []
        for row in event_rows:
            details: dict[str, Any] = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=TaskStatus(row.status_from) if row.status_from else None,
                    status_to=TaskStatus(row.status_to) if row.status_to else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return TaskDetails(task=task_view, events=events)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, Any],
    ) -> None:
        session.add(
            TaskEventRow(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True, default=str)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def _to_task_view(row: TaskRow) -> TaskView:
    parameters = json.loads(row.parameters_json) if row.parameters_json else {}
    return TaskView(
        task_id=row.task_id,
        task_type=row.task_type,
        status=TaskStatus(row.status),
        parameters=parameters if isinstance(parameters, dict) else {},
        message=row.message,
        retry_count=row.retry_count,
        failure_class=FailureClass(row.failure_class) if row.failure_class else None,
        start_time=_optional_utc(row.start_time),
        next_execute_time=_optional_utc(row.next_execute_time),
        end_time=_optional_utc(row.end_time),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _optional_utc(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None
