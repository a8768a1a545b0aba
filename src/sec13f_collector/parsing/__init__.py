"""Recovery of 13F holdings records from XML and HTML information tables.

Each pipeline is an ordered list of pure strategies; the first strategy that
returns at least one record wins.
"""

from sec13f_collector.parsing.models import (
    DocumentFormat,
    HoldingRecord,
    ParsedDocument,
    ParseHints,
)
from sec13f_collector.parsing.parser import detect_format, parse_document

__all__ = [
    "DocumentFormat",
    "HoldingRecord",
    "ParseHints",
    "ParsedDocument",
    "detect_format",
    "parse_document",
]
