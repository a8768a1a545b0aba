"""XML information-table strategies: structured tree walk, then regex templates."""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Callable
from datetime import date
from xml.etree.ElementTree import Element

from defusedxml import DefusedXmlException, ElementTree

from sec13f_collector.parsing.models import HoldingRecord
from sec13f_collector.parsing.normalize import build_record, parse_date

logger = logging.getLogger(__name__)

RECORD_TAGS = frozenset({"infotable", "informationtable"})
ISSUER_TAGS: tuple[str, ...] = ("nameofissuer", "issuer", "issuername", "name")
CUSIP_TAGS: tuple[str, ...] = ("cusip", "cusipnum", "cusipnumber")
VALUE_TAGS: tuple[str, ...] = ("value", "marketvalue", "mktval")
SHARES_TAGS: tuple[str, ...] = (
    "sshprnamt",
    "sharesorprincipalamount",
    "shares",
    "amount",
    "sshprn",
)
SHARES_CONTAINER_TAG = "shrsorprnamt"
DATE_TAGS: tuple[str, ...] = ("filingdate", "reportdate", "periodofreport", "date", "asofdate")

_TEMPLATE_FLAGS = re.DOTALL
TEMPLATE_STANDARD = re.compile(
    r"<nameOfIssuer>\s*(.*?)\s*</nameOfIssuer>.*?<cusip>\s*(.*?)\s*</cusip>"
    r".*?<value>\s*(.*?)\s*</value>.*?<sshPrnamt>\s*(.*?)\s*</sshPrnamt>",
    _TEMPLATE_FLAGS,
)
TEMPLATE_VARIANT_1 = re.compile(
    r"<issuer>\s*(.*?)\s*</issuer>.*?<cusip>\s*(.*?)\s*</cusip>"
    r".*?<marketValue>\s*(.*?)\s*</marketValue>.*?<shares>\s*(.*?)\s*</shares>",
    _TEMPLATE_FLAGS,
)
TEMPLATE_VARIANT_2 = re.compile(
    r"<name>\s*(.*?)\s*</name>.*?<cusipNum>\s*(.*?)\s*</cusipNum>"
    r".*?<mktVal>\s*(.*?)\s*</mktVal>.*?<sshPrn>\s*(.*?)\s*</sshPrn>",
    _TEMPLATE_FLAGS,
)
TEMPLATE_RELAXED = re.compile(
    r"<(?:\w+:)?(?:nameofissuer|issuer|name)>\s*(.*?)\s*</(?:\w+:)?(?:nameofissuer|issuer|name)>"
    r".*?<(?:\w+:)?(?:cusip|cusipnum)>\s*(.*?)\s*</(?:\w+:)?(?:cusip|cusipnum)>"
    r".*?<(?:\w+:)?(?:value|marketvalue|mktval)>\s*(.*?)\s*"
    r"</(?:\w+:)?(?:value|marketvalue|mktval)>"
    r".*?<(?:\w+:)?(?:sshprnamt|shares|amount|sshprn)>\s*(.*?)\s*"
    r"</(?:\w+:)?(?:sshprnamt|shares|amount|sshprn)>",
    _TEMPLATE_FLAGS | re.IGNORECASE,
)
_DATE_PATTERNS = tuple(
    re.compile(rf"<(?:\w+:)?{tag}>\s*(.*?)\s*</(?:\w+:)?{tag}>", re.IGNORECASE | re.DOTALL)
    for tag in DATE_TAGS
)


def parse_structured(document: str) -> list[HoldingRecord]:
    """Walk a well-formed XML tree; empty when the document does not parse."""

    root = _parse_tree(document)
    if root is None:
        return []

    records: list[HoldingRecord] = []
    for element in root.iter():
        if _local_name(element.tag) not in RECORD_TAGS or _contains_nested_record(element):
            continue
        record = _record_from_element(element)
        if record is not None:
            records.append(record)
    return records


def _template_strategy(pattern: re.Pattern[str]) -> Callable[[str], list[HoldingRecord]]:
    def _strategy(document: str) -> list[HoldingRecord]:
        records: list[HoldingRecord] = []
        for match in pattern.finditer(document):
            issuer, cusip, value, shares = (html.unescape(group) for group in match.groups())
            record = build_record(issuer=issuer, cusip=cusip, value=value, shares=shares)
            if record is not None:
                records.append(record)
        return records

    return _strategy


parse_template_standard = _template_strategy(TEMPLATE_STANDARD)
parse_template_variant_1 = _template_strategy(TEMPLATE_VARIANT_1)
parse_template_variant_2 = _template_strategy(TEMPLATE_VARIANT_2)
parse_template_relaxed = _template_strategy(TEMPLATE_RELAXED)

XML_STRATEGIES: tuple[tuple[str, Callable[[str], list[HoldingRecord]]], ...] = (
    ("xml_structured", parse_structured),
    ("xml_template_standard", parse_template_standard),
    ("xml_template_variant_1", parse_template_variant_1),
    ("xml_template_variant_2", parse_template_variant_2),
    ("xml_template_relaxed", parse_template_relaxed),
)


def extract_xml_date(document: str) -> date | None:
    """First parseable date among the known date tags, in tag priority order."""

    for pattern in _DATE_PATTERNS:
        match = pattern.search(document)
        if match is None:
            continue
        parsed = parse_date(match.group(1))
        if parsed is not None:
            return parsed
    return None


def _parse_tree(document: str) -> Element | None:
    try:
        return ElementTree.fromstring(document.strip())
    except ElementTree.ParseError as error:
        logger.debug("XML tree parse failed: %s", error)
        return None
    except DefusedXmlException as error:
        logger.warning("XML document rejected by safe parser: %s", error)
        return None


def _contains_nested_record(element: Element) -> bool:
    return any(
        child is not element and _local_name(child.tag) in RECORD_TAGS for child in element.iter()
    )


def _record_from_element(element: Element) -> HoldingRecord | None:
    issuer = _first_descendant_text(element, ISSUER_TAGS)
    cusip = _first_descendant_text(element, CUSIP_TAGS)
    if not issuer or not cusip:
        return None
    value = _first_descendant_text(element, VALUE_TAGS)
    shares = _shares_text(element)
    return build_record(issuer=issuer, cusip=cusip, value=value, shares=shares)


def _shares_text(element: Element) -> str | None:
    for child in element.iter():
        if _local_name(child.tag) == SHARES_CONTAINER_TAG:
            nested = _first_descendant_text(child, ("sshprnamt",))
            if nested:
                return nested
    return _first_descendant_text(element, SHARES_TAGS)


def _first_descendant_text(element: Element, names: tuple[str, ...]) -> str | None:
    by_name: dict[str, str] = {}
    for child in element.iter():
        if child is element:
            continue
        name = _local_name(child.tag)
        if name in names and name not in by_name:
            text = "".join(child.itertext()).strip()
            if text:
                by_name[name] = text
    for name in names:
        if name in by_name:
            return by_name[name]
    return None


def _local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    if "}" in tag:
        return tag.rsplit("}", 1)[1].lower()
    if ":" in tag:
        return tag.rsplit(":", 1)[1].lower()
    return tag.lower()
