"""Controllers for offline ingestion CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from sec13f_collector.parsing import DocumentFormat, ParseHints, parse_document


@dataclass(slots=True)
class ParseFileCommand:
    """CLI inputs for parsing a saved information table."""

    path: Path
    document_format: str | None
    limit: int


class IngestionCliController:
    """Runs the document parser against local files."""

    def parse_file(self, command: ParseFileCommand) -> list[str]:
        hints = ParseHints(
            document_format=(
                DocumentFormat(command.document_format.lower())
                if command.document_format
                else None
            ),
        )
        parsed = parse_document(command.path.read_bytes(), hints)
        as_of = parsed.as_of_date.isoformat() if parsed.as_of_date else "-"
        lines = [
            f"Document: {command.path}",
            f"Format: {parsed.document_format.value}",
            f"Strategy: {parsed.strategy}",
            f"As of: {as_of}",
            f"Records: {len(parsed.records)}",
        ]
        if parsed.warnings:
            lines.append(f"Warnings: {', '.join(parsed.warnings)}")
        for record in parsed.records[: command.limit]:
            value = record.value if record.value is not None else "-"
            shares = record.shares if record.shares is not None else "-"
            lines.append(
                f"  {record.cusip} {record.name_of_issuer} value={value} shares={shares}",
            )
        hidden = len(parsed.records) - command.limit
        if hidden > 0:
            lines.append(f"  ... {hidden} more")
        return lines
