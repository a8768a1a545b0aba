"""Use-case services for the task queue."""

from __future__ import annotations

from typing import Any

from sec13f_collector.errors import InvalidTaskParameters
from sec13f_collector.orchestrator.models import TaskCreate, TaskFilter, TaskType, TaskView
from sec13f_collector.orchestrator.repository import TaskRepository
from sec13f_collector.orchestrator.scheduler import TaskOrchestrator, TickSummary


class TaskService:
    """Entry point collaborators use to submit and inspect tasks."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        orchestrator: TaskOrchestrator | None = None,
    ) -> None:
        self.repository = repository
        self.orchestrator = orchestrator

    def create_task(self, task_type: str, parameters: dict[str, Any] | None = None) -> str:
        """Persist a PENDING task and return its id."""

        try:
            resolved_type = TaskType(task_type)
        except ValueError as error:
            known = ", ".join(item.value for item in TaskType)
            raise InvalidTaskParameters(
                f"Unknown task type {task_type!r}; expected one of: {known}",
            ) from error
        task = self.repository.insert_task(
            TaskCreate(task_type=resolved_type.value, parameters=dict(parameters or {})),
        )
        return task.task_id

    def get_task(self, task_id: str) -> TaskView | None:
        return self.repository.get_task(task_id)

    def list_tasks(self, task_filter: TaskFilter | None = None) -> list[TaskView]:
        return self.repository.list_tasks(task_filter)

    def submit_scrape(
        self,
        cik: str,
        company_name: str | None = None,
        *,
        accession_number: str | None = None,
    ) -> str:
        """Queue collection of 13F filings for one filer."""

        if not cik.strip():
            raise InvalidTaskParameters("cik is required for scrape_holdings")
        parameters: dict[str, Any] = {"cik": cik.strip()}
        if company_name:
            parameters["company_name"] = company_name
        if accession_number:
            parameters["accession_number"] = accession_number
        return self.create_task(TaskType.SCRAPE_HOLDINGS.value, parameters)

    def submit_holding_merge(self, filing_id: int) -> str:
        """Queue the per-CUSIP merge of one stored filing."""

        if filing_id < 1:
            raise InvalidTaskParameters("filing_id must be a positive integer")
        return self.create_task(TaskType.HOLDING_MERGE.value, {"filing_id": filing_id})

    def trigger_schedule_now(self) -> TickSummary | None:
        """Run one scheduling pass now; no-op without an attached orchestrator."""

        if self.orchestrator is None:
            return None
        return self.orchestrator.trigger_schedule_now()
