"""Deterministic classification of handler failures for task history."""

from __future__ import annotations

from dataclasses import dataclass

from sec13f_collector.errors import (
    FetchError,
    InvalidTaskParameters,
    NoHandler,
    ParseEmpty,
    PipelineError,
    ValidationRejected,
)
from sec13f_collector.orchestrator.models import FailureClass

FAILURE_CLASSIFIER_VERSION = 1

_ERROR_TYPE_CLASSES: tuple[tuple[type[PipelineError], FailureClass], ...] = (
    (FetchError, FailureClass.FETCH_ERROR),
    (ParseEmpty, FailureClass.PARSE_EMPTY),
    (ValidationRejected, FailureClass.VALIDATION_REJECTED),
    (NoHandler, FailureClass.NO_HANDLER),
    (InvalidTaskParameters, FailureClass.INVALID_PARAMETERS),
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "connection reset",
    "connection refused",
    "temporary failure",
    "name or service not known",
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None = None

    def to_event_details(self) -> dict[str, object]:
        """Serialize classifier diagnostics for task events."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_failure(
    cause: BaseException | None,
    *,
    declared: FailureClass | None = None,
) -> FailureClassification:
    """Map a failure cause to its class; a handler-declared class wins."""

    if declared is not None:
        return FailureClassification(
            failure_class=declared,
            reason_code=declared.value,
            matched_rule="declared_by_handler",
        )

    if cause is None:
        return FailureClassification(
            failure_class=FailureClass.HANDLER_ERROR,
            reason_code="handler_reported_failure",
            matched_rule="no_cause",
        )

    for error_type, failure_class in _ERROR_TYPE_CLASSES:
        if isinstance(cause, error_type):
            return FailureClassification(
                failure_class=failure_class,
                reason_code=getattr(cause, "code", failure_class.value),
                matched_rule=f"error_type:{error_type.__name__}",
            )

    haystack = str(cause).lower()
    for pattern in _NETWORK_PATTERNS:
        if pattern in haystack:
            return FailureClassification(
                failure_class=FailureClass.FETCH_ERROR,
                reason_code="network_transient",
                matched_rule="network_pattern",
                matched_pattern=pattern,
            )

    return FailureClassification(
        failure_class=FailureClass.HANDLER_ERROR,
        reason_code=type(cause).__name__,
        matched_rule="fallback_handler_error",
    )
