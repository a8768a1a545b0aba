"""Error taxonomy shared by the fetcher, parser, validator, and task handlers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class PipelineError(Exception):
    """Base error for filing collection work."""

    message: str
    code: str = "pipeline_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class FetchError(PipelineError):
    """External source request failed (transport error or non-2xx status)."""

    code: str = "fetch_error"
    url: str = ""
    status_code: int | None = None


@dataclass(slots=True)
class ParseEmpty(PipelineError):
    """Every parsing strategy returned zero records."""

    code: str = "parse_empty"
    strategies_tried: tuple[str, ...] = ()


@dataclass(slots=True)
class ValidationRejected(PipelineError):
    """Filing failed validation and cannot be stored."""

    code: str = "validation_rejected"
    errors: tuple[str, ...] = ()


@dataclass(slots=True)
class NoHandler(PipelineError):
    """No handler is registered for the task type."""

    code: str = "no_handler"
    task_type: str = ""


@dataclass(slots=True)
class InvalidTaskParameters(PipelineError):
    """Task parameters are missing or malformed for its handler."""

    code: str = "invalid_parameters"


@dataclass(slots=True)
class DuplicateWork(PipelineError):
    """Result already stored under the same natural key."""

    code: str = "duplicate_work"
    natural_key: str = ""
