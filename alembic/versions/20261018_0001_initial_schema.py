"""Initial task queue and 13F holdings schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("task_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("parameters_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failure_class", sa.String(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_execute_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", name="uq_tasks_task_id"),
    )
    op.create_index("idx_tasks_due", "tasks", ["status", "next_execute_time"])
    op.create_index("idx_tasks_task_type", "tasks", ["task_type"])
    op.create_index("idx_tasks_created_at", "tasks", ["created_at"])

    op.create_table(
        "task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_task_events_task_time", "task_events", ["task_id", "created_at"])

    op.create_table(
        "filings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cik", sa.String(length=10), nullable=False),
        sa.Column("company_name", sa.String(), nullable=False),
        sa.Column("filing_type", sa.String(), nullable=False),
        sa.Column("filing_date", sa.Date(), nullable=False),
        sa.Column("accession_number", sa.String(), nullable=False),
        sa.Column("form_file", sa.String(), nullable=False, server_default=""),
        sa.Column("report_period", sa.Date(), nullable=True),
        sa.Column("holdings_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "accession_number",
            "form_file",
            name="uq_filings_accession_form_file",
        ),
    )
    op.create_index("idx_filings_cik", "filings", ["cik"])
    op.create_index("idx_filings_accession_number", "filings", ["accession_number"])

    op.create_table(
        "holdings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("filing_id", sa.Integer(), nullable=False),
        sa.Column("name_of_issuer", sa.String(), nullable=False),
        sa.Column("cusip", sa.String(length=9), nullable=False),
        sa.Column("value", sa.Numeric(precision=24, scale=4), nullable=False),
        sa.Column("shares", sa.BigInteger(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["filing_id"], ["filings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_holdings_filing", "holdings", ["filing_id"])
    op.create_index("idx_holdings_cusip", "holdings", ["cusip"])

    op.create_table(
        "merged_holdings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("filing_id", sa.Integer(), nullable=False),
        sa.Column("cusip", sa.String(length=9), nullable=False),
        sa.Column("name_of_issuer", sa.String(), nullable=False),
        sa.Column("value", sa.Numeric(precision=24, scale=4), nullable=False),
        sa.Column("shares", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("source_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("merged_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["filing_id"], ["filings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("filing_id", "cusip", name="uq_merged_holdings_filing_cusip"),
    )


def downgrade() -> None:
    op.drop_table("merged_holdings")
    op.drop_index("idx_holdings_cusip", table_name="holdings")
    op.drop_index("idx_holdings_filing", table_name="holdings")
    op.drop_table("holdings")
    op.drop_index("idx_filings_accession_number", table_name="filings")
    op.drop_index("idx_filings_cik", table_name="filings")
    op.drop_table("filings")
    op.drop_index("idx_task_events_task_time", table_name="task_events")
    op.drop_table("task_events")
    op.drop_index("idx_tasks_created_at", table_name="tasks")
    op.drop_index("idx_tasks_task_type", table_name="tasks")
    op.drop_index("idx_tasks_due", table_name="tasks")
    op.drop_table("tasks")
