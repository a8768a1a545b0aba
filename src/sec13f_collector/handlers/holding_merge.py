"""Per-CUSIP aggregation of one stored filing."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import Decimal

from sec13f_collector.errors import InvalidTaskParameters, ValidationRejected
from sec13f_collector.ingestion.models import MergedHolding
from sec13f_collector.ingestion.repository import FilingRepository
from sec13f_collector.orchestrator.models import TaskOutcome, TaskType, TaskView
from sec13f_collector.parsing.models import HoldingRecord

logger = logging.getLogger(__name__)


def merge_holdings(records: Iterable[HoldingRecord]) -> list[MergedHolding]:
    """Group records by CUSIP summing value and shares; first issuer name wins."""

    merged: dict[str, MergedHolding] = {}
    for record in records:
        value = record.value if record.value is not None else Decimal(0)
        shares = record.shares or 0
        current = merged.get(record.cusip)
        if current is None:
            merged[record.cusip] = MergedHolding(
                cusip=record.cusip,
                name_of_issuer=record.name_of_issuer,
                value=value,
                shares=shares,
                source_rows=1,
            )
            continue
        current.value += value
        current.shares += shares
        current.source_rows += 1
    return list(merged.values())


class HoldingMergeHandler:
    """Rebuilds the merged holdings of a filing from its raw rows."""

    task_type = TaskType.HOLDING_MERGE

    def __init__(self, *, filings: FilingRepository) -> None:
        self.filings = filings

    def handle_task(self, task: TaskView) -> TaskOutcome:
        try:
            filing_id = _filing_id(task)
        except InvalidTaskParameters as error:
            return TaskOutcome.failed(str(error), cause=error)

        filing = self.filings.get_filing(filing_id)
        if filing is None:
            error = InvalidTaskParameters(f"Filing {filing_id} does not exist")
            return TaskOutcome.failed(str(error), cause=error)

        holdings = self.filings.list_holdings(filing_id)
        if not holdings:
            error = ValidationRejected(
                f"Filing {filing_id} has no holdings to merge",
                errors=("no holdings",),
            )
            return TaskOutcome.failed(str(error), cause=error)

        merged = merge_holdings(holdings)
        written = self.filings.replace_merged_holdings(filing_id, merged)
        logger.info(
            "Merged %s holdings of filing %s into %s positions",
            len(holdings),
            filing.accession_number,
            written,
        )
        return TaskOutcome.succeeded(
            f"Filing {filing_id}: merged {len(holdings)} rows into {written} positions",
            filing_id=filing_id,
            source_rows=len(holdings),
            merged=written,
        )


def _filing_id(task: TaskView) -> int:
    raw = task.parameters.get("filing_id")
    try:
        filing_id = int(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError) as error:
        raise InvalidTaskParameters(
            f"holding_merge task requires an integer 'filing_id', got {raw!r}",
        ) from error
    if filing_id < 1:
        raise InvalidTaskParameters(f"filing_id must be positive, got {filing_id}")
    return filing_id
