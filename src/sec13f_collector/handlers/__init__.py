"""Task handlers registered with the orchestrator at startup."""

from __future__ import annotations

from sec13f_collector.handlers.holding_merge import HoldingMergeHandler
from sec13f_collector.handlers.scrape_holdings import ScrapeHoldingsHandler
from sec13f_collector.http.edgar import EdgarClient
from sec13f_collector.ingestion.repository import FilingRepository
from sec13f_collector.ingestion.validator import DataValidator
from sec13f_collector.orchestrator.registry import HandlerRegistry
from sec13f_collector.orchestrator.repository import TaskRepository


def build_default_registry(
    *,
    edgar: EdgarClient,
    filings: FilingRepository,
    validator: DataValidator,
    tasks: TaskRepository | None = None,
    enqueue_merge: bool = True,
) -> HandlerRegistry:
    """Registry with every built-in handler; ``scrape_financial_report`` has none."""

    registry = HandlerRegistry()
    registry.register(
        ScrapeHoldingsHandler(
            edgar=edgar,
            filings=filings,
            validator=validator,
            tasks=tasks,
            enqueue_merge=enqueue_merge,
        ),
    )
    registry.register(HoldingMergeHandler(filings=filings))
    return registry


__all__ = ["HoldingMergeHandler", "ScrapeHoldingsHandler", "build_default_registry"]
