"""Handler registry and the dispatcher that routes tasks to handlers."""

from __future__ import annotations

import logging
from typing import Protocol

from sec13f_collector.errors import NoHandler
from sec13f_collector.orchestrator.models import FailureClass, TaskOutcome, TaskType, TaskView

logger = logging.getLogger(__name__)


class TaskHandler(Protocol):
    """Executes one task type; reports failures through the returned outcome."""

    task_type: TaskType

    def handle_task(self, task: TaskView) -> TaskOutcome: ...


class HandlerRegistry:
    """Maps each task type to at most one handler."""

    def __init__(self) -> None:
        self._handlers: dict[TaskType, TaskHandler] = {}

    def register(self, handler: TaskHandler) -> None:
        """Register a handler; a second handler for the same type replaces the first."""

        task_type = TaskType(handler.task_type)
        existing = self._handlers.get(task_type)
        if existing is not None and existing is not handler:
            logger.warning(
                "Replacing handler for %s: %s -> %s",
                task_type.value,
                type(existing).__name__,
                type(handler).__name__,
            )
        self._handlers[task_type] = handler

    def get(self, task_type: str) -> TaskHandler | None:
        try:
            return self._handlers.get(TaskType(task_type))
        except ValueError:
            return None

    def registered_types(self) -> list[TaskType]:
        return sorted(self._handlers, key=lambda item: item.value)

    def __len__(self) -> int:
        return len(self._handlers)


class TaskDispatcher:
    """Routes a claimed task to its handler and turns every failure into an outcome."""

    def __init__(self, registry: HandlerRegistry) -> None:
        self.registry = registry

    def dispatch(self, task: TaskView) -> TaskOutcome:
        handler = self.registry.get(task.task_type)
        if handler is None:
            error = NoHandler(
                f"No handler registered for task type {task.task_type!r}",
                task_type=task.task_type,
            )
            logger.error("Task %s: %s", task.task_id, error)
            return TaskOutcome.failed(
                str(error),
                cause=error,
                failure_class=FailureClass.NO_HANDLER,
            )

        try:
            outcome = handler.handle_task(task)
        except Exception as error:  # noqa: BLE001
            logger.exception("Handler %s raised for task %s", type(handler).__name__, task.task_id)
            return TaskOutcome.failed(f"{type(error).__name__}: {error}", cause=error)
        if outcome is None:
            return TaskOutcome.failed("Handler returned no outcome")
        return outcome
