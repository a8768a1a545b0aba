"""CLI entrypoint for sec13f-collector."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from sec13f_collector import __version__
from sec13f_collector.errors import PipelineError
from sec13f_collector.ingestion.controllers import IngestionCliController, ParseFileCommand
from sec13f_collector.orchestrator.controllers import (
    InspectTaskCommand,
    ListTasksCommand,
    MergeCommand,
    RunOrchestratorCommand,
    ScrapeCommand,
    TaskCliController,
    TaskCreateCommand,
)
from sec13f_collector.orchestrator.models import TaskStatus, TaskType

click.rich_click.USE_MARKDOWN = True
INGESTION_CONTROLLER = IngestionCliController()
TASK_CONTROLLER = TaskCliController()

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="sec13f")
@click.option(
    "--log-level",
    envvar="SEC13F_LOG_LEVEL",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging level for the run.",
)
def sec13f(log_level: str) -> None:
    """SEC 13F holdings collector CLI."""

    logging.basicConfig(level=log_level.upper(), format=_LOG_FORMAT)


@sec13f.group()
def tasks() -> None:
    """Task queue commands."""


@tasks.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--type",
    "task_type",
    required=True,
    help=f"Task type: {', '.join(item.value for item in TaskType)}.",
)
@click.option(
    "--params",
    "parameters_json",
    default="{}",
    show_default=True,
    help="Task parameters as a JSON object.",
)
def tasks_create(db_path: Path | None, task_type: str, parameters_json: str) -> None:
    """Create a PENDING task of any type."""

    with _cli_errors():
        _emit_lines(
            TASK_CONTROLLER.create_task(
                TaskCreateCommand(
                    db_path=db_path,
                    task_type=task_type,
                    parameters_json=parameters_json,
                ),
            ),
        )


@tasks.command("scrape")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--cik", required=True, help="Filer CIK, with or without leading zeros.")
@click.option("--company-name", default=None, help="Filer name stored with its filings.")
@click.option(
    "--accession-number",
    default=None,
    help="Collect only this filing, for example 0000320193-24-000001.",
)
def tasks_scrape(
    db_path: Path | None,
    cik: str,
    company_name: str | None,
    accession_number: str | None,
) -> None:
    """Queue collection of a filer's 13F filings."""

    with _cli_errors():
        _emit_lines(
            TASK_CONTROLLER.submit_scrape(
                ScrapeCommand(
                    db_path=db_path,
                    cik=cik,
                    company_name=company_name,
                    accession_number=accession_number,
                ),
            ),
        )


@tasks.command("merge")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--filing-id", type=click.IntRange(min=1), required=True, help="Stored filing id.")
def tasks_merge(db_path: Path | None, filing_id: int) -> None:
    """Queue the per-CUSIP merge of a stored filing."""

    with _cli_errors():
        _emit_lines(
            TASK_CONTROLLER.submit_merge(MergeCommand(db_path=db_path, filing_id=filing_id)),
        )


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([item.value for item in TaskStatus]),
    default=None,
    help="Only tasks in this status.",
)
@click.option("--type", "task_type", default=None, help="Only tasks of this type.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Maximum tasks to show.",
)
def tasks_list(
    db_path: Path | None,
    status: str | None,
    task_type: str | None,
    limit: int,
) -> None:
    """List tasks, newest first."""

    _emit_lines(
        TASK_CONTROLLER.list_tasks(
            ListTasksCommand(
                db_path=db_path,
                status=status,
                task_type=task_type,
                limit=limit,
            ),
        ),
    )


@tasks.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_id")
def tasks_inspect(db_path: Path | None, task_id: str) -> None:
    """Show one task with its event trail."""

    _emit_lines(TASK_CONTROLLER.inspect_task(InspectTaskCommand(db_path=db_path, task_id=task_id)))


@sec13f.group()
def orchestrator() -> None:
    """Scheduling loop commands."""


@orchestrator.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--once", is_flag=True, help="Run a single tick and wait for its tasks.")
@click.option(
    "--max-ticks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many ticks (default: run until interrupted).",
)
def orchestrator_run(db_path: Path | None, once: bool, max_ticks: int | None) -> None:
    """Poll for due tasks and execute them on the worker pool."""

    with _cli_errors():
        _emit_lines(
            TASK_CONTROLLER.run_orchestrator(
                RunOrchestratorCommand(db_path=db_path, once=once, max_ticks=max_ticks),
            ),
        )


@sec13f.command("parse")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "document_format",
    type=click.Choice(["xml", "html"], case_sensitive=False),
    default=None,
    help="Skip format detection.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=0),
    default=20,
    show_default=True,
    help="How many records to print.",
)
def parse(path: Path, document_format: str | None, limit: int) -> None:
    """Parse a saved information table without touching the database."""

    _emit_lines(
        INGESTION_CONTROLLER.parse_file(
            ParseFileCommand(path=path, document_format=document_format, limit=limit),
        ),
    )


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (PipelineError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    sec13f()
