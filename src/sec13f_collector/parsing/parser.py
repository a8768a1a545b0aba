"""Format detection and the ordered strategy cascade."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence

from sec13f_collector.parsing.html_table import HTML_STRATEGIES, extract_html_period
from sec13f_collector.parsing.models import (
    AS_OF_DATE_MISSING,
    NO_STRATEGY,
    DocumentFormat,
    HoldingRecord,
    ParsedDocument,
    ParseHints,
)
from sec13f_collector.parsing.xml_table import XML_STRATEGIES, extract_xml_date

logger = logging.getLogger(__name__)

Strategy = tuple[str, Callable[[str], list[HoldingRecord]]]

_XML_DECLARATION = re.compile(r"^\s*<\?xml", re.IGNORECASE)
_HTML_MARKERS = re.compile(r"<!doctype\s+html|<html[\s>]", re.IGNORECASE)
_FORMDATA_TABLE = re.compile(r"class=\"?formdata", re.IGNORECASE)


def detect_format(document: str) -> DocumentFormat:
    """Best-effort guess of the physical encoding; XML when nothing points to HTML."""

    if _XML_DECLARATION.match(document):
        return DocumentFormat.XML
    if _HTML_MARKERS.search(document):
        return DocumentFormat.HTML
    lowered = document.lower()
    if "<meta" in lowered and "<body" in lowered:
        return DocumentFormat.HTML
    if "<table" in lowered and _FORMDATA_TABLE.search(document):
        return DocumentFormat.HTML
    return DocumentFormat.XML


def parse_document(raw: str | bytes, hints: ParseHints | None = None) -> ParsedDocument:
    """Run the strategy cascade for the document's format.

    The first strategy returning at least one record wins. An unparseable
    document yields an empty result rather than an exception.
    """

    hints = hints or ParseHints()
    document = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    document_format = hints.document_format or detect_format(document)

    if document_format is DocumentFormat.HTML:
        strategies: Sequence[Strategy] = HTML_STRATEGIES
        as_of_date = extract_html_period(document)
    else:
        strategies = XML_STRATEGIES
        as_of_date = extract_xml_date(document)

    records, strategy = run_strategies(document, strategies)

    warnings: list[str] = []
    if as_of_date is None:
        as_of_date = hints.report_period
    if as_of_date is None:
        warnings.append(AS_OF_DATE_MISSING)

    if records:
        logger.debug(
            "Parsed %s records with strategy=%s format=%s",
            len(records),
            strategy,
            document_format.value,
        )
    else:
        logger.info("No records recovered from %s document", document_format.value)

    return ParsedDocument(
        records=records,
        as_of_date=as_of_date,
        strategy=strategy,
        document_format=document_format,
        warnings=warnings,
    )


def run_strategies(
    document: str,
    strategies: Sequence[Strategy],
) -> tuple[list[HoldingRecord], str]:
    for name, strategy in strategies:
        records = strategy(document)
        if records:
            return records, name
        logger.debug("Strategy %s found no records", name)
    return [], NO_STRATEGY


def strategy_names(document_format: DocumentFormat) -> tuple[str, ...]:
    strategies = HTML_STRATEGIES if document_format is DocumentFormat.HTML else XML_STRATEGIES
    return tuple(name for name, _ in strategies)
