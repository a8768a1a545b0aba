"""Normalization of numbers, identifiers, dates, and HTML cell text."""

from __future__ import annotations

import html
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from sec13f_collector.parsing.models import HoldingRecord

CUSIP_PATTERN = re.compile(r"^[0-9A-Z]{9}$")
DATE_LAYOUTS: tuple[str, ...] = ("%Y-%m-%d", "%m/%d/%Y", "%m-%d-%Y", "%Y%m%d")

_NUMBER_NOISE = re.compile(r"[,$\s]")
_NON_ALNUM = re.compile(r"[^0-9A-Za-z]")
_NON_DIGIT = re.compile(r"\D")
_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def clean_number(text: str | None) -> Decimal | None:
    """Parse a reported amount after stripping thousands separators, ``$``, and spaces."""

    if text is None:
        return None
    cleaned = _NUMBER_NOISE.sub("", text)
    if not cleaned:
        return None
    try:
        number = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def clean_integer(text: str | None) -> int | None:
    number = clean_number(text)
    if number is None:
        return None
    return int(number)


def normalize_cusip(text: str | None) -> str:
    """Upper-case and drop everything that is not a letter or digit."""

    if not text:
        return ""
    return _NON_ALNUM.sub("", text).upper()


def is_valid_cusip(text: str) -> bool:
    return bool(CUSIP_PATTERN.match(text))


def parse_date(text: str | None) -> date | None:
    """Parse a date trying the supported layouts in order.

    When no layout matches, the digits of the text are read as ``YYYYMMDD``.
    Returns None when nothing can be recovered.
    """

    if not text:
        return None
    candidate = text.strip()
    for layout in DATE_LAYOUTS:
        try:
            return datetime.strptime(candidate, layout).date()
        except ValueError:
            continue

    digits = _NON_DIGIT.sub("", candidate)
    if len(digits) >= 8:  # noqa: PLR2004
        try:
            return datetime.strptime(digits[:8], "%Y%m%d").date()
        except ValueError:
            return None
    return None


def clean_html_text(text: str | None) -> str:
    """Strip tags, decode entities, and collapse whitespace in a table cell."""

    if not text:
        return ""
    stripped = _TAG.sub("", text)
    decoded = html.unescape(stripped).replace("Â", "").replace("\xa0", " ")
    return _WHITESPACE.sub(" ", decoded).strip()


def build_record(
    *,
    issuer: str | None,
    cusip: str | None,
    value: str | None,
    shares: str | None,
) -> HoldingRecord | None:
    """Assemble a record from raw field text; None without issuer and well-formed CUSIP."""

    name = (issuer or "").strip()
    identifier = normalize_cusip(cusip)
    if not name or not is_valid_cusip(identifier):
        return None
    return HoldingRecord(
        name_of_issuer=name,
        cusip=identifier,
        value=clean_number(value),
        shares=clean_integer(shares),
    )
