"""console schema read by the rollup engine

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _money(name: str, *, default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(14, 2),
        nullable=False,
        server_default=sa.text("0") if default else None,
    )


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "employees",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("department", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        _money("base_salary"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("joining_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("base_salary >= 0", name="ck_employees_base_salary_non_negative"),
    )
    op.create_index("ix_employees_department", "employees", ["department"])

    op.create_table(
        "payment_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("employee_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column("employee_name", sa.String(length=255), nullable=True),
        sa.Column("department", sa.String(length=128), nullable=True),
        _money("amount", default=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(length=32), nullable=False, server_default="bank_transfer"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_payment_history_amount_non_negative"),
    )
    op.create_index("ix_payment_history_payment_date", "payment_history", ["payment_date"])
    op.create_index("ix_payment_history_employee_id", "payment_history", ["employee_id"])

    op.create_table(
        "payment_schedules",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("employee_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column("employee_name", sa.String(length=255), nullable=True),
        sa.Column("department", sa.String(length=128), nullable=True),
        _money("amount", default=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="scheduled"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_payment_schedules_amount_non_negative"),
    )
    op.create_index("ix_payment_schedules_scheduled_date", "payment_schedules", ["scheduled_date"])

    op.create_table(
        "payroll_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("employee_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column("pay_period_start", sa.Date(), nullable=False),
        sa.Column("pay_period_end", sa.Date(), nullable=False),
        _money("base_salary"),
        _money("allowances"),
        _money("deductions"),
        _money("tax_amount"),
        _money("net_salary", default=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("payment_date", sa.Date(), nullable=True),
        sa.CheckConstraint("net_salary >= 0", name="ck_payroll_records_net_salary_non_negative"),
    )
    op.create_index("ix_payroll_records_period_end", "payroll_records", ["pay_period_end"])

    op.create_table(
        "budget_categories",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("department", sa.String(length=128), nullable=True),
        _money("monthly_budget"),
        _money("annual_budget"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("monthly_budget >= 0", name="ck_budget_categories_monthly_non_negative"),
        sa.CheckConstraint("annual_budget >= 0", name="ck_budget_categories_annual_non_negative"),
    )

    op.create_table(
        "budget_expenses",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "category_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("budget_categories.id"), nullable=True
        ),
        sa.Column("description", sa.String(length=512), nullable=True),
        _money("amount", default=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("expense_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="approved"),
        sa.CheckConstraint("amount >= 0", name="ck_budget_expenses_amount_non_negative"),
    )
    op.create_index("ix_budget_expenses_category_date", "budget_expenses", ["category_id", "expense_date"])

    op.create_table(
        "invoices",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id"), nullable=True),
        sa.Column("invoice_number", sa.String(length=64), nullable=False),
        _money("amount", default=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.CheckConstraint("amount >= 0", name="ck_invoices_amount_non_negative"),
    )
    op.create_index("ix_invoices_issue_date", "invoices", ["issue_date"])


def downgrade() -> None:
    op.drop_index("ix_invoices_issue_date", table_name="invoices")
    op.drop_table("invoices")
    op.drop_index("ix_budget_expenses_category_date", table_name="budget_expenses")
    op.drop_table("budget_expenses")
    op.drop_table("budget_categories")
    op.drop_index("ix_payroll_records_period_end", table_name="payroll_records")
    op.drop_table("payroll_records")
    op.drop_index("ix_payment_schedules_scheduled_date", table_name="payment_schedules")
    op.drop_table("payment_schedules")
    op.drop_index("ix_payment_history_employee_id", table_name="payment_history")
    op.drop_index("ix_payment_history_payment_date", table_name="payment_history")
    op.drop_table("payment_history")
    op.drop_index("ix_employees_department", table_name="employees")
    op.drop_table("employees")
    op.drop_table("clients")
