"""Domain models for filings on their way into the holdings store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sec13f_collector.parsing.models import HoldingRecord

DEFAULT_FILING_TYPE = "13F-HR"
UNKNOWN_COMPANY = "Unknown Company"


@dataclass(slots=True)
class FilingDraft:
    """Parsed filing before validation and storage."""

    cik: str
    company_name: str | None
    filing_type: str | None
    filing_date: date | None
    accession_number: str
    form_file: str = ""
    report_period: date | None = None
    holdings: list[HoldingRecord] = field(default_factory=list)

    @property
    def natural_key(self) -> str:
        return f"{self.accession_number}:{self.form_file}"


@dataclass(slots=True)
class StoredFiling:
    """Filing row as read back from the store."""

    filing_id: int
    cik: str
    company_name: str
    filing_type: str
    filing_date: date
    accession_number: str
    form_file: str
    report_period: date | None
    holdings_count: int


@dataclass(slots=True)
class MergedHolding:
    """Holdings of one filing aggregated per CUSIP."""

    cusip: str
    name_of_issuer: str
    value: Decimal
    shares: int
    source_rows: int
