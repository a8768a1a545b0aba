"""Shared test fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from sec13f_collector.ingestion.repository import FilingRepository
from sec13f_collector.orchestrator.repository import TaskRepository


@pytest.fixture(autouse=True)
def _clean_sec13f_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("SEC13F_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "sec13f.db"


@pytest.fixture()
def task_repository(db_path: Path):
    repository = TaskRepository(db_path)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def filing_repository(db_path: Path):
    repository = FilingRepository(db_path)
    repository.init_schema()
    yield repository
    repository.close()
