"""Extraction helpers for EDGAR full-submission text files (``<accession>.txt``)."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date

from sec13f_collector.parsing.normalize import parse_date

INFORMATION_TABLE_TYPE = "<TYPE>INFORMATION TABLE"


def extract_information_table(submission: str) -> str | None:
    """Return the XML payload of the INFORMATION TABLE document, if present."""

    in_document = False
    in_text = False
    in_xml = False
    collected: list[str] = []
    for line in submission.splitlines():
        stripped = line.strip()
        if stripped == INFORMATION_TABLE_TYPE:
            in_document = True
            continue
        if not in_document:
            continue
        if stripped.startswith("<TYPE>"):
            break
        if stripped == "<TEXT>":
            in_text = True
            continue
        if not in_text:
            continue
        if stripped == "<XML>":
            in_xml = True
            continue
        if stripped == "</XML>":
            break
        if in_xml:
            collected.append(line)

    payload = "\n".join(collected).strip()
    return payload or None


def extract_effectiveness_date(submission: str) -> date | None:
    return _header_date(submission, "EFFECTIVENESS DATE:")


def extract_period_of_report(submission: str) -> date | None:
    return _header_date(submission, "CONFORMED PERIOD OF REPORT:")


def extract_filed_as_of_date(submission: str) -> date | None:
    return _header_date(submission, "FILED AS OF DATE:")


def extract_form_file(submission: str) -> str | None:
    """File name from the ``<SEC-DOCUMENT>name.txt : timestamp`` header line."""

    for line in _header_lines(submission):
        if line.startswith("<SEC-DOCUMENT>"):
            content = line[len("<SEC-DOCUMENT>") :].strip()
            name, _, _ = content.partition(" : ")
            return name.strip() or None
    return None


def _header_date(submission: str, label: str) -> date | None:
    for line in _header_lines(submission):
        if line.startswith(label):
            return parse_date(line[len(label) :].strip())
    return None


def _header_lines(submission: str) -> Iterator[str]:
    for line in submission.splitlines():
        stripped = line.strip()
        if stripped == "<DOCUMENT>":
            return
        yield stripped
