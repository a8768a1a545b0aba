"""Field-level validation of parsed filings and holdings.

Invalid holdings are stripped from a filing instead of rejecting it; a filing
is rejected only for filing-level errors or when no valid holding is left.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import date

from sec13f_collector.config import ValidationSettings
from sec13f_collector.ingestion.models import (
    DEFAULT_FILING_TYPE,
    UNKNOWN_COMPANY,
    FilingDraft,
)
from sec13f_collector.parsing.models import HoldingRecord
from sec13f_collector.parsing.normalize import is_valid_cusip, normalize_cusip

logger = logging.getLogger(__name__)

ACCESSION_PATTERN = re.compile(r"^\d{10}-\d{2}-\d{6}$")
CIK_PATTERN = re.compile(r"^\d{10}$")
KNOWN_FILING_TYPES = frozenset({"13F-HR", "13F-HR/A", "13F-NT", "13F-NT/A"})
EARLIEST_FILING_DATE = date(1993, 1, 1)

_NON_DIGIT = re.compile(r"\D")


@dataclass(slots=True)
class ValidationResult:
    """Errors and warnings of one subject plus nested per-holding results."""

    subject: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    children: list[ValidationResult] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error_summary(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def summary(self) -> str:
        invalid_children = sum(1 for child in self.children if not child.is_valid)
        child_warnings = sum(len(child.warnings) for child in self.children)
        return (
            f"{self.subject}: errors={len(self.errors)} warnings={len(self.warnings)} "
            f"holdings={len(self.children)} invalid_holdings={invalid_children} "
            f"holding_warnings={child_warnings}"
        )


@dataclass(slots=True)
class FilingValidation:
    """Validated filing: cleaned draft holding only valid records."""

    accepted: bool
    filing: FilingDraft
    result: ValidationResult
    rejected_holdings: int = 0


class DataValidator:
    """Applies shape and plausibility rules to filings and their holdings."""

    def __init__(
        self,
        *,
        settings: ValidationSettings | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.settings = settings or ValidationSettings()
        self._today = today

    def validate_holding(self, record: HoldingRecord) -> tuple[HoldingRecord, ValidationResult]:
        """Validate one holding and return its cleaned copy with the result."""

        name = (record.name_of_issuer or "").strip()
        cusip = normalize_cusip(record.cusip)
        result = ValidationResult(subject=f"holding {cusip or name or '?'}")

        if not name:
            result.add_error("name_of_issuer is required")
        if not cusip:
            result.add_error("cusip is required")
        elif not is_valid_cusip(cusip):
            result.add_error(f"cusip must be 9 letters or digits: {record.cusip!r}")

        if record.value is None:
            result.add_error("value is required")
        elif record.value < 0:
            result.add_error(f"value must not be negative: {record.value}")
        elif record.value > self.settings.max_holding_value:
            result.add_warning(f"value is unusually large: {record.value}")

        shares = record.shares
        if shares is None:
            result.add_warning("shares missing, defaulted to 0")
            shares = 0
        elif shares < 0:
            result.add_error(f"shares must not be negative: {shares}")
        elif shares > self.settings.max_holding_shares:
            result.add_warning(f"shares are unusually large: {shares}")

        cleaned = replace(record, name_of_issuer=name, cusip=cusip, shares=shares)
        return cleaned, result

    def validate_filing(self, draft: FilingDraft) -> FilingValidation:
        """Validate filing-level fields and strip invalid holdings."""

        result = ValidationResult(subject=f"filing {draft.accession_number or '?'}")
        today = self._today()

        cik = self._clean_cik(draft.cik, result)
        company_name = (draft.company_name or "").strip()
        if not company_name:
            result.add_warning(f"company_name missing, defaulted to {UNKNOWN_COMPANY!r}")
            company_name = UNKNOWN_COMPANY

        filing_type = (draft.filing_type or "").strip().upper()
        if not filing_type:
            result.add_warning(f"filing_type missing, defaulted to {DEFAULT_FILING_TYPE}")
            filing_type = DEFAULT_FILING_TYPE
        elif filing_type not in KNOWN_FILING_TYPES:
            result.add_warning(f"unusual filing_type: {filing_type}")

        if draft.filing_date is None:
            result.add_error("filing_date is required")
        elif draft.filing_date > today:
            result.add_error(f"filing_date is in the future: {draft.filing_date.isoformat()}")
        elif draft.filing_date < EARLIEST_FILING_DATE:
            result.add_warning(f"filing_date predates EDGAR: {draft.filing_date.isoformat()}")

        if draft.report_period is None:
            result.add_warning("as-of date (report_period) missing")
        elif draft.report_period > today:
            result.add_error(
                f"report_period is in the future: {draft.report_period.isoformat()}",
            )

        accession = (draft.accession_number or "").strip()
        if not accession:
            result.add_error("accession_number is required")
        elif not ACCESSION_PATTERN.match(accession):
            result.add_error(f"accession_number is malformed: {accession!r}")

        valid_holdings: list[HoldingRecord] = []
        for record in draft.holdings:
            cleaned, holding_result = self.validate_holding(record)
            result.children.append(holding_result)
            if holding_result.is_valid:
                valid_holdings.append(cleaned)

        rejected = len(draft.holdings) - len(valid_holdings)
        if not valid_holdings:
            result.add_error("no valid holdings")
        elif rejected:
            result.add_warning(f"{rejected} invalid holdings removed")

        cleaned_filing = replace(
            draft,
            cik=cik,
            company_name=company_name,
            filing_type=filing_type,
            accession_number=accession,
            holdings=valid_holdings,
        )
        logger.debug("Validated %s", result.summary())
        return FilingValidation(
            accepted=result.is_valid,
            filing=cleaned_filing,
            result=result,
            rejected_holdings=rejected,
        )

    def _clean_cik(self, raw: str | None, result: ValidationResult) -> str:
        digits = _NON_DIGIT.sub("", raw or "")
        if not digits:
            result.add_error("cik is required")
            return ""
        cik = digits.zfill(10)
        if not CIK_PATTERN.match(cik):
            result.add_error(f"cik must have at most 10 digits: {raw!r}")
        return cik
