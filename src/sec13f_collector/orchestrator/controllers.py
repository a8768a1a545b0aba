"""Controllers for task and orchestrator CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from sec13f_collector.config import Settings
from sec13f_collector.handlers import build_default_registry
from sec13f_collector.http.edgar import EdgarClient
from sec13f_collector.http.fetcher import RateLimitedFetcher
from sec13f_collector.ingestion.repository import FilingRepository
from sec13f_collector.ingestion.validator import DataValidator
from sec13f_collector.orchestrator.models import TaskFilter, TaskStatus, TaskView
from sec13f_collector.orchestrator.registry import TaskDispatcher
from sec13f_collector.orchestrator.repository import TaskRepository
from sec13f_collector.orchestrator.scheduler import TaskOrchestrator
from sec13f_collector.orchestrator.services import TaskService


@dataclass(slots=True)
class TaskCreateCommand:
    """Create a task of any known type."""

    db_path: Path | None
    task_type: str
    parameters_json: str = "{}"


@dataclass(slots=True)
class ScrapeCommand:
    """Queue a scrape of one filer."""

    db_path: Path | None
    cik: str
    company_name: str | None = None
    accession_number: str | None = None


@dataclass(slots=True)
class MergeCommand:
    """Queue a holdings merge of one stored filing."""

    db_path: Path | None
    filing_id: int


@dataclass(slots=True)
class ListTasksCommand:
    """List tasks filtered by status and type."""

    db_path: Path | None
    status: str | None
    task_type: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    """Show task details with its event trail."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class RunOrchestratorCommand:
    """Run the scheduling loop."""

    db_path: Path | None
    once: bool
    max_ticks: int | None


class TaskCliController:
    """Coordinates task submission, inspection, and the orchestrator loop."""

    def create_task(self, command: TaskCreateCommand) -> list[str]:
        parameters = _parse_parameters(command.parameters_json)
        settings = Settings.from_env(db_path=command.db_path)
        with _task_repository(settings) as repository:
            service = TaskService(repository=repository)
            task_id = service.create_task(command.task_type, parameters)
            task = service.get_task(task_id)
        return _created_lines(task)

    def submit_scrape(self, command: ScrapeCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _task_repository(settings) as repository:
            service = TaskService(repository=repository)
            task_id = service.submit_scrape(
                command.cik,
                command.company_name,
                accession_number=command.accession_number,
            )
            task = service.get_task(task_id)
        return _created_lines(task)

    def submit_merge(self, command: MergeCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _task_repository(settings) as repository:
            service = TaskService(repository=repository)
            task_id = service.submit_holding_merge(command.filing_id)
            task = service.get_task(task_id)
        return _created_lines(task)

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        task_filter = TaskFilter(
            status=_parse_status(command.status),
            task_type=command.task_type,
            limit=command.limit,
        )
        with _task_repository(settings) as repository:
            tasks = TaskService(repository=repository).list_tasks(task_filter)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            next_run = task.next_execute_time.isoformat() if task.next_execute_time else "-"
            lines.append(
                f"  {task.task_id} type={task.task_type} status={task.status.value} "
                f"retries={task.retry_count} next_execute_time={next_run}",
            )
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _task_repository(settings) as repository:
            details = repository.get_task_details(command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Type: {task.task_type}",
            f"Status: {task.status.value}",
            f"Retries: {task.retry_count}",
            f"Parameters: {json.dumps(task.parameters, sort_keys=True)}",
            f"Failure class: {task.failure_class.value if task.failure_class else '-'}",
            f"Message: {task.message or '-'}",
            f"Next execute time: {_iso(task.next_execute_time)}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def run_orchestrator(self, command: RunOrchestratorCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with (
            _task_repository(settings) as tasks,
            _filing_repository(settings) as filings,
            RateLimitedFetcher.from_settings(settings.fetcher) as fetcher,
        ):
            registry = build_default_registry(
                edgar=EdgarClient.from_settings(settings.fetcher, fetcher),
                filings=filings,
                validator=DataValidator(settings=settings.validation),
                tasks=tasks,
                enqueue_merge=settings.orchestrator.enqueue_merge_after_scrape,
            )
            orchestrator = TaskOrchestrator.from_settings(
                settings,
                repository=tasks,
                dispatcher=TaskDispatcher(registry),
            )
            summary = (
                orchestrator.run_once()
                if command.once
                else orchestrator.run_forever(max_ticks=command.max_ticks)
            )

        return [
            "Orchestrator summary: "
            f"ticks={summary.ticks} idle_ticks={summary.idle_ticks} "
            f"recovered={summary.recovered} claimed={summary.claimed} "
            f"completed={summary.completed} retried={summary.retried} failed={summary.failed}",
        ]


def _created_lines(task: TaskView | None) -> list[str]:
    if task is None:
        return ["Task was not stored."]
    return [
        "Task created: "
        f"task_id={task.task_id} type={task.task_type} status={task.status.value}",
    ]


def _parse_parameters(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw or "{}")
    except json.JSONDecodeError as error:
        raise ValueError(f"Task parameters must be a JSON object: {error}") from error
    if not isinstance(parsed, dict):
        raise ValueError("Task parameters must be a JSON object.")
    return parsed


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value is not None else "-"


@contextmanager
def _task_repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _filing_repository(settings: Settings) -> Iterator[FilingRepository]:
    repository = FilingRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    try:
        yield repository
    finally:
        repository.close()
