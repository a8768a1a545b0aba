"""SQLModel ORM tables for the task queue and the holdings store."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("task_id", name="uq_tasks_task_id"),
        Index("idx_tasks_due", "status", "next_execute_time"),
        Index("idx_tasks_task_type", "task_type"),
        Index("idx_tasks_created_at", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    task_id: str
    task_type: str
    status: str
    message: str | None = Field(default=None, sa_column=Column(Text))
    parameters_json: str = Field(
        default="{}",
        sa_column=Column(Text, nullable=False, server_default="{}"),
    )
    retry_count: int = Field(default=0)
    failure_class: str | None = None
    start_time: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    next_execute_time: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    end_time: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskEventRow(SQLModel, table=True):
    __tablename__ = "task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class FilingRow(SQLModel, table=True):
    __tablename__ = "filings"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "accession_number",
            "form_file",
            name="uq_filings_accession_form_file",
        ),
        Index("idx_filings_cik", "cik"),
        Index("idx_filings_accession_number", "accession_number"),
    )

    id: int | None = Field(default=None, primary_key=True)
    cik: str = Field(sa_column=Column(String(10), nullable=False))
    company_name: str
    filing_type: str
    filing_date: date = Field(sa_column=Column(Date, nullable=False))
    accession_number: str
    form_file: str = Field(
        default="",
        sa_column=Column(String, nullable=False, server_default=""),
    )
    report_period: date | None = Field(default=None, sa_column=Column(Date))
    holdings_count: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class HoldingRow(SQLModel, table=True):
    __tablename__ = "holdings"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_holdings_filing", "filing_id"),
        Index("idx_holdings_cusip", "cusip"),
    )

    id: int | None = Field(default=None, primary_key=True)
    filing_id: int = Field(
        sa_column=Column(ForeignKey("filings.id", ondelete="CASCADE"), nullable=False),
    )
    name_of_issuer: str
    cusip: str = Field(sa_column=Column(String(9), nullable=False))
    value: Decimal = Field(sa_column=Column(Numeric(precision=24, scale=4), nullable=False))
    shares: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))


class MergedHoldingRow(SQLModel, table=True):
    __tablename__ = "merged_holdings"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("filing_id", "cusip", name="uq_merged_holdings_filing_cusip"),
    )

    id: int | None = Field(default=None, primary_key=True)
    filing_id: int = Field(
        sa_column=Column(ForeignKey("filings.id", ondelete="CASCADE"), nullable=False),
    )
    cusip: str = Field(sa_column=Column(String(9), nullable=False))
    name_of_issuer: str
    value: Decimal = Field(sa_column=Column(Numeric(precision=24, scale=4), nullable=False))
    shares: int = Field(default=0, sa_column=Column(BigInteger, nullable=False))
    source_rows: int = Field(default=0)
    merged_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
