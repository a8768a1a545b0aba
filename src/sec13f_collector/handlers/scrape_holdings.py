"""Collects a filer's 13F filings: fetch, parse, validate, and store."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from sec13f_collector.errors import (
    DuplicateWork,
    FetchError,
    InvalidTaskParameters,
    ParseEmpty,
    PipelineError,
    ValidationRejected,
)
from sec13f_collector.http.edgar import EdgarClient, FilingDocument, FilingRef, format_cik
from sec13f_collector.ingestion.models import DEFAULT_FILING_TYPE, FilingDraft, StoredFiling
from sec13f_collector.ingestion.repository import FilingRepository
from sec13f_collector.ingestion.validator import DataValidator
from sec13f_collector.orchestrator.models import TaskCreate, TaskOutcome, TaskType, TaskView
from sec13f_collector.orchestrator.repository import TaskRepository
from sec13f_collector.parsing.models import ParseHints, ParsedDocument
from sec13f_collector.parsing.parser import parse_document, strategy_names

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ScrapeParameters:
    """Parameters of a ``scrape_holdings`` task."""

    cik: str
    company_name: str | None = None
    accession_number: str | None = None

    @classmethod
    def from_task(cls, task: TaskView) -> ScrapeParameters:
        raw_cik = task.parameters.get("cik")
        if raw_cik is None or not str(raw_cik).strip():
            raise InvalidTaskParameters("scrape_holdings task requires a 'cik' parameter")
        try:
            cik = format_cik(str(raw_cik))
        except ValueError as error:
            raise InvalidTaskParameters(f"Invalid cik parameter: {raw_cik!r}") from error
        company_name = task.parameters.get("company_name")
        accession_number = task.parameters.get("accession_number")
        return cls(
            cik=cik,
            company_name=str(company_name) if company_name else None,
            accession_number=str(accession_number) if accession_number else None,
        )


@dataclass(slots=True)
class ScrapeSummary:
    """Per-task counters reported in the outcome details."""

    listed: int = 0
    stored: int = 0
    skipped: int = 0
    failed: int = 0
    holdings: int = 0
    merges_enqueued: int = 0


class ScrapeHoldingsHandler:
    """Ingests every not-yet-stored 13F filing of one filer.

    Filings already stored under their accession number are skipped before
    any document is fetched, which keeps retries of a partially finished task
    idempotent.
    """

    task_type = TaskType.SCRAPE_HOLDINGS

    def __init__(  # noqa: PLR0913
        self,
        *,
        edgar: EdgarClient,
        filings: FilingRepository,
        validator: DataValidator,
        tasks: TaskRepository | None = None,
        enqueue_merge: bool = True,
    ) -> None:
        self.edgar = edgar
        self.filings = filings
        self.validator = validator
        self.tasks = tasks
        self.enqueue_merge = enqueue_merge

    def handle_task(self, task: TaskView) -> TaskOutcome:
        try:
            params = ScrapeParameters.from_task(task)
        except InvalidTaskParameters as error:
            return TaskOutcome.failed(str(error), cause=error)

        try:
            refs = self._filing_refs(params)
        except FetchError as error:
            return TaskOutcome.failed(
                f"Submission index unavailable for CIK {params.cik}: {error}",
                cause=error,
            )

        summary = ScrapeSummary(listed=len(refs))
        first_failure: PipelineError | None = None
        for ref in refs:
            if self.filings.exists_by_natural_key(ref.accession_number):
                summary.skipped += 1
                summary.merges_enqueued += self._enqueue_missing_merges(ref.accession_number)
                continue
            try:
                stored = self._ingest(params, ref)
            except DuplicateWork:
                summary.skipped += 1
                summary.merges_enqueued += self._enqueue_missing_merges(ref.accession_number)
                continue
            except (FetchError, ParseEmpty, ValidationRejected) as error:
                logger.warning(
                    "Filing %s of CIK %s not ingested (%s): %s",
                    ref.accession_number,
                    params.cik,
                    error.code,
                    error,
                )
                summary.failed += 1
                if first_failure is None:
                    first_failure = error
                continue
            summary.stored += 1
            summary.holdings += stored.holdings_count
            if self._enqueue_merge(stored):
                summary.merges_enqueued += 1

        message = (
            f"CIK {params.cik}: {summary.listed} filings, stored={summary.stored} "
            f"skipped={summary.skipped} failed={summary.failed}"
        )
        if first_failure is not None:
            return TaskOutcome.failed(
                f"{message}; first error: {first_failure}",
                cause=first_failure,
                **asdict(summary),
            )
        return TaskOutcome.succeeded(message, **asdict(summary))

    def _filing_refs(self, params: ScrapeParameters) -> list[FilingRef]:
        refs = self.edgar.list_13f_filings(params.cik)
        if params.accession_number is None:
            return refs
        matching = [ref for ref in refs if ref.accession_number == params.accession_number]
        if matching:
            return matching
        # Older filings drop out of the submission index; fetch them directly.
        return [
            FilingRef(
                accession_number=params.accession_number,
                filing_date=None,
                form_type=DEFAULT_FILING_TYPE,
            ),
        ]

    def _ingest(self, params: ScrapeParameters, ref: FilingRef) -> StoredFiling:
        document, parsed = self._first_parsed_document(params.cik, ref.accession_number)

        draft = FilingDraft(
            cik=document.cik,
            company_name=params.company_name,
            filing_type=ref.form_type,
            filing_date=document.filing_date or ref.filing_date,
            accession_number=ref.accession_number,
            form_file=document.form_file,
            report_period=parsed.as_of_date,
            holdings=parsed.records,
        )
        validation = self.validator.validate_filing(draft)
        if not validation.accepted:
            raise ValidationRejected(
                f"Filing {ref.accession_number} rejected: {validation.result.error_summary}",
                errors=tuple(validation.result.errors),
            )
        if validation.result.warnings or validation.rejected_holdings:
            logger.info(
                "Filing %s accepted with warnings: %s",
                ref.accession_number,
                "; ".join(validation.result.warnings),
            )
        return self.filings.save_filing(validation.filing)

    def _first_parsed_document(
        self,
        cik: str,
        accession_number: str,
    ) -> tuple[FilingDocument, ParsedDocument]:
        """First information table candidate that yields holdings."""

        first_empty: tuple[FilingDocument, ParsedDocument] | None = None
        for document in self.edgar.iter_filing_documents(cik, accession_number):
            parsed = parse_document(
                document.content,
                ParseHints(
                    document_format=document.document_format,
                    report_period=document.report_period,
                ),
            )
            if not parsed.is_empty:
                return document, parsed
            logger.info(
                "No holdings recovered from %s, trying next candidate",
                document.source_url,
            )
            if first_empty is None:
                first_empty = (document, parsed)

        if first_empty is None:
            raise FetchError(
                f"No information table found for accession {accession_number}",
                code="information_table_missing",
                url=self.edgar.submission_url(cik, accession_number),
            )
        document, parsed = first_empty
        raise ParseEmpty(
            f"No holdings recovered from {document.source_url}",
            strategies_tried=strategy_names(parsed.document_format),
        )

    def _enqueue_merge(self, stored: StoredFiling) -> bool:
        if not self.enqueue_merge or self.tasks is None:
            return False
        self.tasks.insert_task(
            TaskCreate(
                task_type=TaskType.HOLDING_MERGE.value,
                parameters={"filing_id": stored.filing_id},
            ),
        )
        return True

    def _enqueue_missing_merges(self, accession_number: str) -> int:
        """Enqueue merges for stored filings whose merge task was never created."""

        if not self.enqueue_merge or self.tasks is None:
            return 0
        enqueued = 0
        for filing_id in self.filings.list_unmerged_filing_ids(accession_number):
            parameters = {"filing_id": filing_id}
            if self.tasks.has_task(TaskType.HOLDING_MERGE.value, parameters):
                continue
            logger.info("Re-enqueueing merge for stored filing %s", filing_id)
            self.tasks.insert_task(
                TaskCreate(task_type=TaskType.HOLDING_MERGE.value, parameters=parameters),
            )
            enqueued += 1
        return enqueued
