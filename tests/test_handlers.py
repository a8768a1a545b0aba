from __future__ import annotations

from datetime import date
from decimal import Decimal

import allure
import httpx
import pytest

from sec13f_collector.errors import InvalidTaskParameters, ParseEmpty, ValidationRejected
from sec13f_collector.handlers import build_default_registry
from sec13f_collector.handlers.holding_merge import HoldingMergeHandler, merge_holdings
from sec13f_collector.handlers.scrape_holdings import ScrapeHoldingsHandler
from sec13f_collector.ingestion.models import FilingDraft, MergedHolding
from sec13f_collector.ingestion.repository import FilingRepository
from sec13f_collector.ingestion.validator import DataValidator
from sec13f_collector.orchestrator.models import TaskCreate, TaskFilter, TaskType, TaskView
from sec13f_collector.orchestrator.repository import TaskRepository
from sec13f_collector.parsing.models import HoldingRecord

from filing_samples import (
    APPLE_INFO_TABLE_XML,
    TWO_HOLDINGS_XML,
    EdgarStub,
    full_submission,
    submissions_response,
)

pytestmark = [
    allure.epic("Task Handlers"),
    allure.feature("Holdings Collection"),
]

CIK = "0000320193"
ACCESSION = "0000320193-24-000001"
OLD_ACCESSION = "0000320193-19-000004"
SUBMISSIONS_URL = f"https://data.sec.gov/submissions/CIK{CIK}.json"


def _filing_url(accession_number: str, file_name: str) -> str:
    folder = accession_number.replace("-", "")
    return f"https://www.sec.gov/Archives/edgar/data/{CIK}/{folder}/{file_name}"


def _archive_url(accession_number: str) -> str:
    return _filing_url(accession_number, f"{accession_number}.txt")


def _scrape_handler(
    stub: EdgarStub,
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> ScrapeHoldingsHandler:
    return ScrapeHoldingsHandler(
        edgar=stub.client(),
        filings=filing_repository,
        validator=DataValidator(today=lambda: date(2026, 10, 18)),
        tasks=task_repository,
    )


def _scrape_task(task_repository: TaskRepository, **parameters: object) -> TaskView:
    return task_repository.insert_task(
        TaskCreate(task_type=TaskType.SCRAPE_HOLDINGS.value, parameters=dict(parameters)),
    )


def test_scrape_stores_filing_and_enqueues_merge(
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    stub = EdgarStub(
        {
            SUBMISSIONS_URL: submissions_response(ACCESSION),
            _archive_url(ACCESSION): httpx.Response(
                200,
                content=full_submission(ACCESSION, APPLE_INFO_TABLE_XML).encode(),
            ),
        },
    )
    handler = _scrape_handler(stub, filing_repository, task_repository)

    outcome = handler.handle_task(_scrape_task(task_repository, cik="320193"))

    assert outcome.success, outcome.message
    assert outcome.message == f"CIK {CIK}: 1 filings, stored=1 skipped=0 failed=0"
    assert outcome.details["holdings"] == 1
    assert outcome.details["merges_enqueued"] == 1

    [stored] = filing_repository.list_filings(cik=CIK)
    assert stored.accession_number == ACCESSION
    assert stored.filing_date == date(2024, 5, 16)
    assert stored.report_period == date(2024, 3, 31)
    assert stored.company_name == "Unknown Company"

    merges = task_repository.list_tasks(TaskFilter(task_type=TaskType.HOLDING_MERGE.value))
    assert [task.parameters for task in merges] == [{"filing_id": stored.filing_id}]


def test_second_scrape_skips_stored_filings_without_fetching_them(
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    stub = EdgarStub(
        {
            SUBMISSIONS_URL: submissions_response(ACCESSION),
            _archive_url(ACCESSION): httpx.Response(
                200,
                content=full_submission(ACCESSION, APPLE_INFO_TABLE_XML).encode(),
            ),
        },
    )
    handler = _scrape_handler(stub, filing_repository, task_repository)
    handler.handle_task(_scrape_task(task_repository, cik=CIK))
    stub.requested.clear()

    outcome = handler.handle_task(_scrape_task(task_repository, cik=CIK))

    assert outcome.success
    assert outcome.details["skipped"] == 1
    assert outcome.details["stored"] == 0
    assert stub.requested == [SUBMISSIONS_URL]
    assert len(filing_repository.list_filings()) == 1


def test_unparseable_table_fails_with_parse_empty(
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    empty_table = full_submission(ACCESSION, "<informationTable></informationTable>")
    stub = EdgarStub(
        {
            SUBMISSIONS_URL: submissions_response(ACCESSION),
            _archive_url(ACCESSION): httpx.Response(200, content=empty_table.encode()),
        },
    )
    handler = _scrape_handler(stub, filing_repository, task_repository)

    outcome = handler.handle_task(_scrape_task(task_repository, cik=CIK))

    assert not outcome.success
    assert isinstance(outcome.cause, ParseEmpty)
    assert outcome.cause.strategies_tried[0] == "xml_structured"
    assert outcome.details["failed"] == 1
    assert "first error: No holdings recovered" in outcome.message
    assert filing_repository.list_filings() == []


def test_filing_without_valid_holdings_is_rejected(
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    negative = APPLE_INFO_TABLE_XML.replace("<value>1000000</value>", "<value>-5</value>")
    stub = EdgarStub(
        {
            SUBMISSIONS_URL: submissions_response(ACCESSION),
            _archive_url(ACCESSION): httpx.Response(
                200,
                content=full_submission(ACCESSION, negative).encode(),
            ),
        },
    )
    handler = _scrape_handler(stub, filing_repository, task_repository)

    outcome = handler.handle_task(_scrape_task(task_repository, cik=CIK))

    assert not outcome.success
    assert isinstance(outcome.cause, ValidationRejected)
    assert "no valid holdings" in outcome.cause.errors


def test_accession_missing_from_index_is_fetched_directly(
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    old_filing = full_submission(OLD_ACCESSION, TWO_HOLDINGS_XML, period="20190331")
    stub = EdgarStub(
        {
            SUBMISSIONS_URL: submissions_response(ACCESSION),
            _archive_url(OLD_ACCESSION): httpx.Response(200, content=old_filing.encode()),
        },
    )
    handler = _scrape_handler(stub, filing_repository, task_repository)

    outcome = handler.handle_task(
        _scrape_task(task_repository, cik=CIK, accession_number=OLD_ACCESSION),
    )

    assert outcome.success, outcome.message
    [stored] = filing_repository.list_filings()
    assert stored.accession_number == OLD_ACCESSION
    assert stored.filing_date == date(2024, 5, 16)
    assert stored.report_period == date(2019, 3, 31)
    assert stored.holdings_count == 2


def test_unparseable_submission_table_falls_back_to_legacy_table_file(
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    garbage = full_submission(ACCESSION, "<informationTable><garbage/></informationTable>")
    stub = EdgarStub(
        {
            SUBMISSIONS_URL: submissions_response(ACCESSION),
            _archive_url(ACCESSION): httpx.Response(200, content=garbage.encode()),
            _filing_url(ACCESSION, "form13fInfoTable.xml"): httpx.Response(
                200,
                content=APPLE_INFO_TABLE_XML.encode(),
            ),
        },
    )
    handler = _scrape_handler(stub, filing_repository, task_repository)

    outcome = handler.handle_task(_scrape_task(task_repository, cik=CIK))

    assert outcome.success, outcome.message
    assert stub.requested == [
        SUBMISSIONS_URL,
        _archive_url(ACCESSION),
        _filing_url(ACCESSION, "form13fInfoTable.xml"),
    ]
    [stored] = filing_repository.list_filings()
    assert stored.holdings_count == 1
    assert stored.report_period == date(2024, 3, 31)
    assert filing_repository.list_holdings(stored.filing_id)[0].cusip == "037833100"


def test_index_filing_date_is_used_when_header_has_none(
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    stub = EdgarStub(
        {
            SUBMISSIONS_URL: submissions_response(ACCESSION),
            _filing_url(ACCESSION, "informationTable.xml"): httpx.Response(
                200,
                content=APPLE_INFO_TABLE_XML.encode(),
            ),
        },
    )
    handler = _scrape_handler(stub, filing_repository, task_repository)

    outcome = handler.handle_task(_scrape_task(task_repository, cik=CIK))

    assert outcome.success, outcome.message
    [stored] = filing_repository.list_filings()
    assert stored.filing_date == date(2024, 5, 15)
    assert stored.form_file == "informationTable.xml"
    assert stored.report_period is None


def test_skipped_filing_without_merge_task_gets_one_enqueued(
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    stored = filing_repository.save_filing(
        FilingDraft(
            cik=CIK,
            company_name="Example Capital",
            filing_type="13F-HR",
            filing_date=date(2024, 5, 16),
            accession_number=ACCESSION,
            form_file=f"{ACCESSION}.txt",
            holdings=[HoldingRecord("Apple Inc", "037833100", Decimal("100"), 10)],
        ),
    )
    stub = EdgarStub({SUBMISSIONS_URL: submissions_response(ACCESSION)})
    handler = _scrape_handler(stub, filing_repository, task_repository)

    first = handler.handle_task(_scrape_task(task_repository, cik=CIK))
    second = handler.handle_task(_scrape_task(task_repository, cik=CIK))

    assert first.success
    assert first.details["skipped"] == 1
    assert first.details["merges_enqueued"] == 1
    assert second.details["merges_enqueued"] == 0
    merges = task_repository.list_tasks(TaskFilter(task_type=TaskType.HOLDING_MERGE.value))
    assert [task.parameters for task in merges] == [{"filing_id": stored.filing_id}]
    assert stub.requested == [SUBMISSIONS_URL, SUBMISSIONS_URL]


def test_skipped_filing_with_merged_view_enqueues_nothing(
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    stored = filing_repository.save_filing(
        FilingDraft(
            cik=CIK,
            company_name="Example Capital",
            filing_type="13F-HR",
            filing_date=date(2024, 5, 16),
            accession_number=ACCESSION,
            form_file=f"{ACCESSION}.txt",
            holdings=[HoldingRecord("Apple Inc", "037833100", Decimal("100"), 10)],
        ),
    )
    filing_repository.replace_merged_holdings(
        stored.filing_id,
        [MergedHolding("037833100", "Apple Inc", Decimal("100"), 10, 1)],
    )
    stub = EdgarStub({SUBMISSIONS_URL: submissions_response(ACCESSION)})
    handler = _scrape_handler(stub, filing_repository, task_repository)

    outcome = handler.handle_task(_scrape_task(task_repository, cik=CIK))

    assert outcome.details["merges_enqueued"] == 0
    assert task_repository.list_tasks(TaskFilter(task_type=TaskType.HOLDING_MERGE.value)) == []


def test_submission_index_outage_fails_the_attempt(
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    handler = _scrape_handler(EdgarStub({}), filing_repository, task_repository)

    outcome = handler.handle_task(_scrape_task(task_repository, cik=CIK))

    assert not outcome.success
    assert outcome.message.startswith(f"Submission index unavailable for CIK {CIK}")


@pytest.mark.parametrize("parameters", [{}, {"cik": "  "}, {"cik": "apple"}])
def test_scrape_requires_a_cik(
    parameters: dict[str, object],
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    stub = EdgarStub({})
    handler = _scrape_handler(stub, filing_repository, task_repository)

    outcome = handler.handle_task(_scrape_task(task_repository, **parameters))

    assert not outcome.success
    assert isinstance(outcome.cause, InvalidTaskParameters)
    assert stub.requested == []


def test_merge_holdings_groups_by_cusip_in_first_seen_order() -> None:
    merged = merge_holdings(
        [
            HoldingRecord("Apple Inc", "037833100", Decimal("100"), 10),
            HoldingRecord("Microsoft Corp", "594918104", Decimal("50"), 5),
            HoldingRecord("APPLE INC COM", "037833100", Decimal("25.5"), None),
        ],
    )

    assert merged == [
        MergedHolding("037833100", "Apple Inc", Decimal("125.5"), 10, 2),
        MergedHolding("594918104", "Microsoft Corp", Decimal("50"), 5, 1),
    ]


def test_holding_merge_handler_writes_merged_view(
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    stored = filing_repository.save_filing(
        FilingDraft(
            cik=CIK,
            company_name="Example Capital",
            filing_type="13F-HR",
            filing_date=date(2024, 5, 15),
            accession_number=ACCESSION,
            form_file=f"{ACCESSION}.txt",
            holdings=[
                HoldingRecord("Apple Inc", "037833100", Decimal("100"), 10),
                HoldingRecord("Apple Inc", "037833100", Decimal("300"), 30),
            ],
        ),
    )
    task = task_repository.insert_task(
        TaskCreate(
            task_type=TaskType.HOLDING_MERGE.value,
            parameters={"filing_id": stored.filing_id},
        ),
    )

    outcome = HoldingMergeHandler(filings=filing_repository).handle_task(task)

    assert outcome.success
    assert outcome.message == f"Filing {stored.filing_id}: merged 2 rows into 1 positions"
    assert filing_repository.list_merged_holdings(stored.filing_id) == [
        MergedHolding("037833100", "Apple Inc", Decimal("400"), 40, 2),
    ]


@pytest.mark.parametrize("filing_id", [None, "abc", 0, 999])
def test_holding_merge_rejects_unknown_filing(
    filing_id: object,
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    task = task_repository.insert_task(
        TaskCreate(task_type=TaskType.HOLDING_MERGE.value, parameters={"filing_id": filing_id}),
    )

    outcome = HoldingMergeHandler(filings=filing_repository).handle_task(task)

    assert not outcome.success
    assert isinstance(outcome.cause, InvalidTaskParameters)


def test_default_registry_covers_collection_handlers(
    filing_repository: FilingRepository,
    task_repository: TaskRepository,
) -> None:
    registry = build_default_registry(
        edgar=EdgarStub({}).client(),
        filings=filing_repository,
        validator=DataValidator(),
        tasks=task_repository,
    )

    assert registry.registered_types() == [TaskType.HOLDING_MERGE, TaskType.SCRAPE_HOLDINGS]
    assert registry.get(TaskType.SCRAPE_FINANCIAL_REPORT.value) is None
