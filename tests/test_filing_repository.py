from __future__ import annotations

from datetime import date
from decimal import Decimal

import allure
import pytest

from sec13f_collector.errors import DuplicateWork
from sec13f_collector.ingestion.models import FilingDraft, MergedHolding
from sec13f_collector.ingestion.repository import FilingRepository
from sec13f_collector.parsing.models import HoldingRecord

pytestmark = [
    allure.epic("Holdings Store"),
    allure.feature("Filing Repository"),
]

ACCESSION = "0000320193-24-000001"


def _draft(accession_number: str = ACCESSION, form_file: str = f"{ACCESSION}.txt") -> FilingDraft:
    return FilingDraft(
        cik="0000320193",
        company_name="Example Capital",
        filing_type="13F-HR",
        filing_date=date(2024, 5, 15),
        accession_number=accession_number,
        form_file=form_file,
        report_period=date(2024, 3, 31),
        holdings=[
            HoldingRecord("Apple Inc", "037833100", Decimal("1000000"), 10000),
            HoldingRecord("Microsoft Corp", "594918104", Decimal("2500000.5"), 5000),
        ],
    )


def test_save_filing_persists_filing_and_holdings(filing_repository: FilingRepository) -> None:
    stored = filing_repository.save_filing(_draft())

    assert stored.filing_id > 0
    assert stored.holdings_count == 2
    assert stored.report_period == date(2024, 3, 31)
    assert filing_repository.get_filing(stored.filing_id) == stored
    assert filing_repository.list_holdings(stored.filing_id) == [
        HoldingRecord("Apple Inc", "037833100", Decimal("1000000"), 10000),
        HoldingRecord("Microsoft Corp", "594918104", Decimal("2500000.5"), 5000),
    ]


def test_exists_by_natural_key(filing_repository: FilingRepository) -> None:
    assert not filing_repository.exists_by_natural_key(ACCESSION)

    filing_repository.save_filing(_draft())

    assert filing_repository.exists_by_natural_key(ACCESSION)
    assert filing_repository.exists_by_natural_key(ACCESSION, f"{ACCESSION}.txt")
    assert not filing_repository.exists_by_natural_key(ACCESSION, "infotable.xml")


def test_duplicate_natural_key_raises_and_keeps_one_row(
    filing_repository: FilingRepository,
) -> None:
    filing_repository.save_filing(_draft())

    with pytest.raises(DuplicateWork) as raised:
        filing_repository.save_filing(_draft())

    assert raised.value.natural_key == f"{ACCESSION}:{ACCESSION}.txt"
    filings = filing_repository.list_filings()
    assert len(filings) == 1
    assert len(filing_repository.list_holdings(filings[0].filing_id)) == 2


def test_same_accession_with_different_form_file_is_a_new_filing(
    filing_repository: FilingRepository,
) -> None:
    filing_repository.save_filing(_draft())
    filing_repository.save_filing(_draft(form_file="informationTable.xml"))

    assert len(filing_repository.list_filings(cik="0000320193")) == 2
    assert filing_repository.list_filings(cik="0000000001") == []


def test_save_filing_requires_filing_date(filing_repository: FilingRepository) -> None:
    draft = _draft()
    draft.filing_date = None

    with pytest.raises(ValueError, match="filing_date"):
        filing_repository.save_filing(draft)


def test_replace_merged_holdings_swaps_previous_view(
    filing_repository: FilingRepository,
) -> None:
    stored = filing_repository.save_filing(_draft())
    filing_repository.replace_merged_holdings(
        stored.filing_id,
        [MergedHolding("037833100", "Apple Inc", Decimal("1"), 1, 1)],
    )

    count = filing_repository.replace_merged_holdings(
        stored.filing_id,
        [
            MergedHolding("037833100", "Apple Inc", Decimal("1000000"), 10000, 2),
            MergedHolding("594918104", "Microsoft Corp", Decimal("2500000"), 5000, 1),
        ],
    )

    assert count == 2
    assert filing_repository.list_merged_holdings(stored.filing_id) == [
        MergedHolding("594918104", "Microsoft Corp", Decimal("2500000"), 5000, 1),
        MergedHolding("037833100", "Apple Inc", Decimal("1000000"), 10000, 2),
    ]
