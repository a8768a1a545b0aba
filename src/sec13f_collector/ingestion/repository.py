"""Holdings store keyed by filing natural key, backed by SQLModel + SQLite."""

from __future__ import annotations

import logging
from decimal import Decimal
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy import exists
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from sec13f_collector.errors import DuplicateWork
from sec13f_collector.ingestion.models import FilingDraft, MergedHolding, StoredFiling
from sec13f_collector.ingestion.storage.alembic_runner import upgrade_head
from sec13f_collector.ingestion.storage.common import build_sqlite_engine, utc_now
from sec13f_collector.ingestion.storage.sqlmodel_models import (
    FilingRow,
    HoldingRow,
    MergedHoldingRow,
)
from sec13f_collector.parsing.models import HoldingRecord

logger = logging.getLogger(__name__)


class FilingRepository:
    """Idempotent persistence of filings, holdings, and merged holdings."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def exists_by_natural_key(self, accession_number: str, form_file: str | None = None) -> bool:
        """True when a filing with this accession number (and form file, if given) is stored."""

        with Session(self.engine) as session:
            statement = select(FilingRow.id).where(FilingRow.accession_number == accession_number)
            if form_file is not None:
                statement = statement.where(FilingRow.form_file == form_file)
            return session.exec(statement.limit(1)).first() is not None

    def list_unmerged_filing_ids(self, accession_number: str) -> list[int]:
        """Ids of stored filings under this accession number that have no merged view yet."""

        with Session(self.engine) as session:
            statement = (
                select(FilingRow.id)
                .where(FilingRow.accession_number == accession_number)
                .where(~exists().where(col(MergedHoldingRow.filing_id) == col(FilingRow.id)))
                .order_by(col(FilingRow.id))
            )
            return [filing_id for filing_id in session.exec(statement).all() if filing_id]

    def save_filing(self, filing: FilingDraft) -> StoredFiling:
        """Insert a validated filing with its holdings in one transaction.

        Raises DuplicateWork when the natural key is already stored.
        """

        if filing.filing_date is None:
            raise ValueError("Validated filing must carry a filing_date.")

        natural_key = filing.natural_key
        with Session(self.engine) as session:
            row = FilingRow(
                cik=filing.cik,
                company_name=filing.company_name or "",
                filing_type=filing.filing_type or "",
                filing_date=filing.filing_date,
                accession_number=filing.accession_number,
                form_file=filing.form_file,
                report_period=filing.report_period,
                holdings_count=len(filing.holdings),
                created_at=utc_now(),
            )
            try:
                session.add(row)
                session.flush()
                if row.id is None:
                    raise RuntimeError("Filing insert did not return a primary key.")
                for holding in filing.holdings:
                    session.add(
                        HoldingRow(
                            filing_id=row.id,
                            name_of_issuer=holding.name_of_issuer,
                            cusip=holding.cusip,
                            value=holding.value if holding.value is not None else Decimal(0),
                            shares=holding.shares or 0,
                        ),
                    )
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise DuplicateWork(
                    f"Filing already stored: {natural_key}",
                    natural_key=natural_key,
                ) from error
            session.refresh(row)
            logger.info(
                "Stored filing %s for CIK %s with %s holdings",
                natural_key,
                filing.cik,
                len(filing.holdings),
            )
            return _to_stored_filing(row)

    def get_filing(self, filing_id: int) -> StoredFiling | None:
        with Session(self.engine) as session:
            row = session.get(FilingRow, filing_id)
            return _to_stored_filing(row) if row is not None else None

    def list_filings(self, *, cik: str | None = None, limit: int = 50) -> list[StoredFiling]:
        with Session(self.engine) as session:
            statement = select(FilingRow).order_by(col(FilingRow.filing_date).desc()).limit(limit)
            if cik is not None:
                statement = statement.where(FilingRow.cik == cik)
            rows = session.exec(statement).all()
        return [_to_stored_filing(row) for row in rows]

    def list_holdings(self, filing_id: int) -> list[HoldingRecord]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(HoldingRow)
                .where(HoldingRow.filing_id == filing_id)
                .order_by(col(HoldingRow.id).asc()),
            ).all()
        return [
            HoldingRecord(
                name_of_issuer=row.name_of_issuer,
                cusip=row.cusip,
                value=Decimal(row.value),
                shares=row.shares,
            )
            for row in rows
        ]

    def replace_merged_holdings(self, filing_id: int, merged: list[MergedHolding]) -> int:
        """Swap the merged view of a filing for a freshly computed one."""

        now = utc_now()
        with Session(self.engine) as session:
            session.exec(
                sa_delete(MergedHoldingRow).where(col(MergedHoldingRow.filing_id) == filing_id),
            )
            for item in merged:
                session.add(
                    MergedHoldingRow(
                        filing_id=filing_id,
                        cusip=item.cusip,
                        name_of_issuer=item.name_of_issuer,
                        value=item.value,
                        shares=item.shares,
                        source_rows=item.source_rows,
                        merged_at=now,
                    ),
                )
            session.commit()
        return len(merged)

    def list_merged_holdings(self, filing_id: int) -> list[MergedHolding]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(MergedHoldingRow)
                .where(MergedHoldingRow.filing_id == filing_id)
                .order_by(col(MergedHoldingRow.value).desc()),
            ).all()
        return [
            MergedHolding(
                cusip=row.cusip,
                name_of_issuer=row.name_of_issuer,
                value=Decimal(row.value),
                shares=row.shares,
                source_rows=row.source_rows,
            )
            for row in rows
        ]


def _to_stored_filing(row: FilingRow) -> StoredFiling:
    return StoredFiling(
        filing_id=row.id or 0,
        cik=row.cik,
        company_name=row.company_name,
        filing_type=row.filing_type,
        filing_date=row.filing_date,
        accession_number=row.accession_number,
        form_file=row.form_file,
        report_period=row.report_period,
        holdings_count=row.holdings_count,
    )
