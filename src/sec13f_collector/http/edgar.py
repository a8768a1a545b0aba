"""SEC EDGAR request sequence for 13F filings."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date

from sec13f_collector.config import FetcherSettings
from sec13f_collector.errors import FetchError
from sec13f_collector.http.fetcher import FetchTarget, RateLimitedFetcher
from sec13f_collector.parsing.models import DocumentFormat
from sec13f_collector.parsing.normalize import parse_date
from sec13f_collector.parsing.parser import detect_format
from sec13f_collector.parsing.submission import (
    extract_effectiveness_date,
    extract_filed_as_of_date,
    extract_form_file,
    extract_information_table,
    extract_period_of_report,
)

logger = logging.getLogger(__name__)

FORM_TYPES_13F = frozenset({"13F-HR", "13F-HR/A"})
LEGACY_TABLE_FILES: tuple[str, ...] = (
    "form13fInfoTable.xml",
    "informationTable.xml",
    "infoTable.xml",
    "form13f.xml",
    "primary_doc.xml",
)
_INFO_TABLE_MARKERS: tuple[str, ...] = ("informationtable", "infotable")
_NON_DIGIT = re.compile(r"\D")


@dataclass(slots=True, frozen=True)
class FilingRef:
    """Entry of a filer's submission index."""

    accession_number: str
    filing_date: date | None
    form_type: str


@dataclass(slots=True)
class FilingDocument:
    """Information table of one filing plus the header facts around it."""

    cik: str
    accession_number: str
    form_file: str
    content: str
    document_format: DocumentFormat
    source_url: str
    filing_date: date | None = None
    report_period: date | None = None


def format_cik(cik: str) -> str:
    """Zero-pad the digits of a CIK to ten characters."""

    digits = _NON_DIGIT.sub("", cik or "")
    if not digits:
        raise ValueError(f"CIK has no digits: {cik!r}")
    return digits.zfill(10)


class EdgarClient:
    """Thin EDGAR facade over the rate-limited fetcher."""

    service_class = "sec"

    def __init__(
        self,
        *,
        fetcher: RateLimitedFetcher,
        data_base_url: str = "https://data.sec.gov",
        archives_base_url: str = "https://www.sec.gov/Archives",
    ) -> None:
        self.fetcher = fetcher
        self.data_base_url = data_base_url.rstrip("/")
        self.archives_base_url = archives_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: FetcherSettings, fetcher: RateLimitedFetcher) -> EdgarClient:
        return cls(
            fetcher=fetcher,
            data_base_url=settings.data_base_url,
            archives_base_url=settings.archives_base_url,
        )

    def list_13f_filings(self, cik: str) -> list[FilingRef]:
        """13F-HR and 13F-HR/A entries of the filer's recent submissions, newest first."""

        cik10 = format_cik(cik)
        url = f"{self.data_base_url}/submissions/CIK{cik10}.json"
        result = self.fetcher.fetch(
            FetchTarget(
                url=url,
                service_class=self.service_class,
                entity_key=cik10,
                document_path="submissions",
            ),
        )
        try:
            payload = json.loads(result.content)
        except json.JSONDecodeError as error:
            raise FetchError(
                f"Invalid submissions JSON for CIK {cik10}",
                code="invalid_payload",
                url=url,
                status_code=result.status_code,
            ) from error

        recent = payload.get("filings", {}).get("recent", {}) if isinstance(payload, dict) else {}
        forms = recent.get("form", [])
        dates = recent.get("filingDate", [])
        accessions = recent.get("accessionNumber", [])

        filings: list[FilingRef] = []
        for index, form in enumerate(forms):
            if form not in FORM_TYPES_13F or index >= len(accessions):
                continue
            filings.append(
                FilingRef(
                    accession_number=accessions[index],
                    filing_date=parse_date(dates[index]) if index < len(dates) else None,
                    form_type=form,
                ),
            )
        logger.info("CIK %s has %s 13F filings in its submission index", cik10, len(filings))
        return filings

    def fetch_filing_document(self, cik: str, accession_number: str) -> FilingDocument:
        """Fetch the first information table candidate of one filing."""

        for document in self.iter_filing_documents(cik, accession_number):
            return document
        raise FetchError(
            f"No information table found for accession {accession_number}",
            code="information_table_missing",
            url=self.submission_url(cik, accession_number),
        )

    def iter_filing_documents(self, cik: str, accession_number: str) -> Iterator[FilingDocument]:
        """Yield the information table candidates of one filing in fallback order.

        The full submission text comes first; the well-known standalone table
        files follow. Candidates are fetched lazily, so a caller that stops at
        the first usable table issues no further requests.
        """

        cik10 = format_cik(cik)
        base_url = self._filing_base_url(cik10, accession_number)
        submission_url = self.submission_url(cik10, accession_number)

        header_form_file: str | None = None
        filing_date: date | None = None
        report_period: date | None = None
        try:
            submission = self._get_text(submission_url, cik10, accession_number)
        except FetchError as error:
            logger.warning(
                "Submission text unavailable for %s, trying legacy files: %s",
                accession_number,
                error,
            )
        else:
            header_form_file = extract_form_file(submission)
            filing_date = extract_effectiveness_date(submission) or extract_filed_as_of_date(
                submission,
            )
            report_period = extract_period_of_report(submission)
            table = extract_information_table(submission)
            if table:
                yield FilingDocument(
                    cik=cik10,
                    accession_number=accession_number,
                    form_file=header_form_file or f"{accession_number}.txt",
                    content=table,
                    document_format=DocumentFormat.XML,
                    source_url=submission_url,
                    filing_date=filing_date,
                    report_period=report_period,
                )
            else:
                logger.info(
                    "No INFORMATION TABLE block in %s, trying legacy files",
                    submission_url,
                )

        for file_name in LEGACY_TABLE_FILES:
            url = f"{base_url}/{file_name}"
            try:
                content = self._get_text(url, cik10, accession_number)
            except FetchError as error:
                logger.debug("Legacy candidate %s unavailable: %s", url, error)
                continue
            lowered = content.lower()
            if not any(marker in lowered for marker in _INFO_TABLE_MARKERS):
                continue
            yield FilingDocument(
                cik=cik10,
                accession_number=accession_number,
                form_file=header_form_file or file_name,
                content=content,
                document_format=detect_format(content),
                source_url=url,
                filing_date=filing_date,
                report_period=report_period,
            )

    def _filing_base_url(self, cik10: str, accession_number: str) -> str:
        folder = accession_number.replace("-", "")
        return f"{self.archives_base_url}/edgar/data/{cik10}/{folder}"

    def submission_url(self, cik: str, accession_number: str) -> str:
        """URL of the full submission text of one filing."""

        base_url = self._filing_base_url(format_cik(cik), accession_number)
        return f"{base_url}/{accession_number}.txt"

    def _get_text(self, url: str, cik10: str, accession_number: str) -> str:
        return self.fetcher.fetch(
            FetchTarget(
                url=url,
                service_class=self.service_class,
                entity_key=cik10,
                document_path=accession_number,
            ),
        ).text
