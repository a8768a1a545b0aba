"""Value types produced by the document parser."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

AS_OF_DATE_MISSING = "as_of_date_missing"
NO_STRATEGY = "none"


class DocumentFormat(str, Enum):
    """Physical encoding of an information table."""

    XML = "xml"
    HTML = "html"


@dataclass(slots=True, frozen=True)
class HoldingRecord:
    """One position reported in an information table."""

    name_of_issuer: str
    cusip: str
    value: Decimal | None = None
    shares: int | None = None


@dataclass(slots=True, frozen=True)
class ParseHints:
    """Caller knowledge about a document: declared format and report period."""

    document_format: DocumentFormat | None = None
    report_period: date | None = None


@dataclass(slots=True)
class ParsedDocument:
    """Parser output; empty when no strategy recovered a record."""

    records: list[HoldingRecord]
    as_of_date: date | None
    strategy: str
    document_format: DocumentFormat
    warnings: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.records
