"""HTML information-table strategies for SEC-rendered 13F tables."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from bs4 import BeautifulSoup, Tag

from sec13f_collector.parsing.models import HoldingRecord
from sec13f_collector.parsing.normalize import (
    build_record,
    clean_html_text,
    clean_number,
    is_valid_cusip,
    normalize_cusip,
    parse_date,
)

logger = logging.getLogger(__name__)

SHARE_TYPE_SHARES = "SH"
MIN_DECOMPOSED_VALUE = 1000
MIN_DECOMPOSED_ISSUER_LENGTH = 3

_ROW_FLAGS = re.IGNORECASE | re.DOTALL
ROW_TEMPLATE_STRICT = re.compile(
    r"<tr[^>]*>\s*"
    r"<td[^>]*class=\"FormData\"[^>]*>([^<]+)</td>\s*"
    r"<td[^>]*class=\"FormData\"[^>]*>([^<]*)</td>\s*"
    r"<td[^>]*class=\"FormData\"[^>]*>([A-Z0-9]{9})</td>\s*"
    r"(?:<td[^>]*>[^<]*</td>\s*)*?"
    r"<td[^>]*class=\"FormDataR\"[^>]*>([0-9,]+)</td>\s*"
    r"<td[^>]*class=\"FormDataR\"[^>]*>([0-9,]+)</td>\s*"
    r"<td[^>]*class=\"FormData\"[^>]*>([A-Z]+)</td>",
    _ROW_FLAGS,
)
ROW_TEMPLATE_RELAXED = re.compile(
    r"<tr[^>]*>\s*"
    r"<td[^>]*>\s*([^<]+?)\s*</td>\s*"
    r"<td[^>]*>[^<]*</td>\s*"
    r"<td[^>]*>\s*([A-Z0-9]{9})\s*</td>\s*"
    r"(?:<td[^>]*>[^<]*</td>\s*)*?"
    r"<td[^>]*>\s*\$?\s*([0-9][0-9,]*)\s*</td>\s*"
    r"<td[^>]*>\s*([0-9][0-9,]*)\s*</td>"
    r"(?:\s*<td[^>]*>\s*([A-Z]*)\s*</td>)?",
    _ROW_FLAGS,
)
_ISSUER_CELL = re.compile(
    r"<td[^>]*class=\"FormData\"[^>]*>([A-Z][A-Z\s&,.-]+)</td>",
    re.IGNORECASE,
)
_CUSIP_CELL = re.compile(r"<td[^>]*class=\"FormData\"[^>]*>([A-Z0-9]{9})</td>", re.IGNORECASE)
_VALUE_CELL = re.compile(r"<td[^>]*class=\"FormDataR\"[^>]*>([0-9,]+)</td>", re.IGNORECASE)
_PERIOD_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"PERIOD\s+ENDING[:\s]+(\d{4}-\d{2}-\d{2})", re.IGNORECASE),
    re.compile(r"PERIOD\s+OF\s+REPORT[:\s]+(\d{4}-\d{2}-\d{2})", re.IGNORECASE),
    re.compile(r"REPORT\s+DATE[:\s]+(\d{4}-\d{2}-\d{2})", re.IGNORECASE),
    re.compile(r"CONFORMED\s+PERIOD\s+OF\s+REPORT[:\s]+(\d{8})", re.IGNORECASE),
    re.compile(r"FOR\s+THE\s+PERIOD\s+ENDED[:\s]+(\d{4}-\d{2}-\d{2})", re.IGNORECASE),
)


@dataclass(slots=True)
class _ColumnMap:
    issuer: int
    cusip: int
    value: int
    shares: int | None = None
    share_type: int | None = None


def parse_structured(document: str) -> list[HoldingRecord]:
    """Locate the header row by its captions and read the rows below it."""

    soup = BeautifulSoup(document, "html.parser")
    records: list[HoldingRecord] = []
    for table in soup.find_all("table"):
        columns: _ColumnMap | None = None
        for row in table.find_all("tr"):
            cells = _expanded_cells(row)
            if columns is None:
                columns = _header_columns(cells)
                continue
            record = _record_from_cells(cells, columns)
            if record is not None:
                records.append(record)
    return records


def parse_row_strict(document: str) -> list[HoldingRecord]:
    """Rows styled with the ``FormData``/``FormDataR`` classes of EDGAR renderings."""

    records: list[HoldingRecord] = []
    for match in ROW_TEMPLATE_STRICT.finditer(document):
        issuer, _title, cusip, value, shares, share_type = (
            clean_html_text(group) for group in match.groups()
        )
        record = build_record(
            issuer=issuer,
            cusip=cusip,
            value=value,
            shares=shares if share_type.upper() == SHARE_TYPE_SHARES else None,
        )
        if record is not None and record.value is not None:
            records.append(record)
    return records


def parse_row_relaxed(document: str) -> list[HoldingRecord]:
    """Unstyled rows: issuer, class, CUSIP, then two numeric cells."""

    records: list[HoldingRecord] = []
    for match in ROW_TEMPLATE_RELAXED.finditer(document):
        issuer, cusip, value, shares, share_type = match.groups()
        keep_shares = not share_type or share_type.upper() == SHARE_TYPE_SHARES
        record = build_record(
            issuer=clean_html_text(issuer),
            cusip=cusip,
            value=value,
            shares=shares if keep_shares else None,
        )
        if record is not None and record.value is not None:
            records.append(record)
    return records


def parse_field_decomposition(document: str) -> list[HoldingRecord]:
    """Collect issuer, CUSIP, and value cells independently and pair them by position.

    Lossy: assumes the three lists appear in the same order and never
    recovers a quantity.
    """

    issuers = [
        text
        for text in (clean_html_text(match) for match in _ISSUER_CELL.findall(document))
        if len(text) > MIN_DECOMPOSED_ISSUER_LENGTH
    ]
    cusips = [
        cusip
        for cusip in (normalize_cusip(match) for match in _CUSIP_CELL.findall(document))
        if is_valid_cusip(cusip)
    ]
    values = [
        text
        for text in _VALUE_CELL.findall(document)
        if (number := clean_number(text)) is not None and number > MIN_DECOMPOSED_VALUE
    ]
    logger.debug(
        "Field decomposition candidates: issuers=%s cusips=%s values=%s",
        len(issuers),
        len(cusips),
        len(values),
    )

    records: list[HoldingRecord] = []
    for issuer, cusip, value in zip(issuers, cusips, values, strict=False):
        record = build_record(issuer=issuer, cusip=cusip, value=value, shares=None)
        if record is not None:
            records.append(record)
    return records


HTML_STRATEGIES: tuple[tuple[str, Callable[[str], list[HoldingRecord]]], ...] = (
    ("html_structured", parse_structured),
    ("html_template_strict", parse_row_strict),
    ("html_template_relaxed", parse_row_relaxed),
    ("html_field_decomposition", parse_field_decomposition),
)


def extract_html_period(document: str) -> date | None:
    for pattern in _PERIOD_PATTERNS:
        match = pattern.search(document)
        if match is None:
            continue
        parsed = parse_date(match.group(1))
        if parsed is not None:
            return parsed
    return None


def _expanded_cells(row: Tag) -> list[str]:
    cells: list[str] = []
    for cell in row.find_all(["td", "th"]):
        text = clean_html_text(cell.get_text(" "))
        try:
            span = max(1, int(cell.get("colspan", 1)))
        except (TypeError, ValueError):
            span = 1
        cells.extend([text] * span)
    return cells


def _header_columns(cells: list[str]) -> _ColumnMap | None:
    issuer = cusip = value = shares = share_type = None
    for index, text in enumerate(cells):
        caption = text.upper()
        compact = caption.replace(" ", "")
        if issuer is None and "NAME OF ISSUER" in caption:
            issuer = index
        elif cusip is None and caption.startswith("CUSIP"):
            cusip = index
        elif value is None and caption.startswith("VALUE"):
            value = index
        elif shares is None and "SHRS OR PRN" in caption:
            shares = index
        elif share_type is None and compact == "SH/PRN":
            share_type = index
    if issuer is None or cusip is None or value is None:
        return None
    return _ColumnMap(
        issuer=issuer,
        cusip=cusip,
        value=value,
        shares=shares,
        share_type=share_type,
    )


def _record_from_cells(cells: list[str], columns: _ColumnMap) -> HoldingRecord | None:
    if len(cells) <= max(columns.issuer, columns.cusip, columns.value):
        return None
    shares = _cell(cells, columns.shares)
    share_type = _cell(cells, columns.share_type)
    if share_type and share_type.upper() != SHARE_TYPE_SHARES:
        shares = None
    record = build_record(
        issuer=cells[columns.issuer],
        cusip=cells[columns.cusip],
        value=cells[columns.value],
        shares=shares,
    )
    if record is None or record.value is None:
        return None
    return record


def _cell(cells: list[str], index: int | None) -> str | None:
    if index is None or index >= len(cells):
        return None
    return cells[index] or None
