"""Record source adapter: translates filter specs into store queries."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from sqlalchemy import Row, Select, func, null, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from rollup.core.errors import SourceFetchError, ValidationError
from rollup.core.logging import get_logger
from rollup.domain.filters import FilterSpecification
from rollup.domain.records import ACTIVE_STATUS, UNKNOWN_LABEL, BudgetCategory, MoneyRecord, RecordKind
from rollup.models import entities

logger = get_logger(__name__)

KIND_TABLES: dict[RecordKind, str] = {
    RecordKind.PAYMENT: "payment_history",
    RecordKind.SCHEDULE: "payment_schedules",
    RecordKind.PAYROLL: "payroll_records",
    RecordKind.EXPENSE: "budget_expenses",
    RecordKind.INVOICE: "invoices",
    RecordKind.SALARY: "employees",
}

# Fields whose store columns hold UUIDs.
_UUID_FIELDS = frozenset({"id", "owner_id", "category_id"})


@dataclass(frozen=True, slots=True)
class QueryPredicates:
    """Predicates keyed by ``MoneyRecord`` field name."""

    eq: dict[str, object] = field(default_factory=dict)
    gte: dict[str, object] = field(default_factory=dict)
    lte: dict[str, object] = field(default_factory=dict)
    ilike: dict[str, str] = field(default_factory=dict)
    in_: dict[str, tuple[object, ...]] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RecordQuery:
    table: str
    predicates: QueryPredicates
    order_by: tuple[tuple[str, bool], ...] = ()
    limit: int | None = None


class RecordSource(Protocol):
    async def fetch(self, spec: FilterSpecification, kind: RecordKind) -> list[MoneyRecord]: ...


def build_record_query(spec: FilterSpecification, kind: RecordKind, *, limit: int | None = None) -> RecordQuery:
    """Express a filter spec as equality/range/order predicates for one kind."""

    gte: dict[str, object] = {}
    # Salaries are a standing population: everyone who joined by the window end.
    if kind is not RecordKind.SALARY:
        gte["occurred_at"] = spec.start
    lte: dict[str, object] = {"occurred_at": spec.end}

    eq: dict[str, object] = {}
    if spec.currency_filter is not None:
        eq["currency"] = spec.currency_filter
    if spec.department is not None:
        eq["department"] = spec.department
    if spec.status is not None:
        eq["status"] = spec.status
    elif kind is RecordKind.SALARY:
        # Salary figures describe the current workforce unless a status is asked for.
        eq["status"] = ACTIVE_STATUS
    if spec.owner_id is not None:
        eq["owner_id"] = spec.owner_id

    descending = kind is not RecordKind.SCHEDULE
    return RecordQuery(
        table=KIND_TABLES[kind],
        predicates=QueryPredicates(eq=eq, gte=gte, lte=lte),
        order_by=(("occurred_at", descending), ("id", False)),
        limit=limit,
    )


@dataclass(frozen=True, slots=True)
class _KindMapping:
    columns: dict[str, ColumnElement]
    base: type
    join_model: type | None = None
    join_on: ColumnElement | None = None


def _kind_mapping(kind: RecordKind) -> _KindMapping:
    if kind in (RecordKind.PAYMENT, RecordKind.SCHEDULE):
        model = entities.PaymentRecord if kind is RecordKind.PAYMENT else entities.PaymentSchedule
        occurred = model.payment_date if kind is RecordKind.PAYMENT else model.scheduled_date
        return _KindMapping(
            base=model,
            join_model=entities.Employee,
            join_on=model.employee_id == entities.Employee.id,
            columns={
                "id": model.id,
                "amount": model.amount,
                "currency": model.currency,
                "occurred_at": occurred,
                "status": model.status,
                "department": func.coalesce(model.department, entities.Employee.department),
                "category_id": null(),
                "owner_id": model.employee_id,
                "owner_name": func.coalesce(model.employee_name, entities.Employee.name),
                "payment_method": model.payment_method if kind is RecordKind.PAYMENT else null(),
            },
        )
    if kind is RecordKind.PAYROLL:
        model = entities.PayrollRecord
        return _KindMapping(
            base=model,
            join_model=entities.Employee,
            join_on=model.employee_id == entities.Employee.id,
            columns={
                "id": model.id,
                "amount": model.net_salary,
                "currency": model.currency,
                "occurred_at": model.pay_period_end,
                "status": model.status,
                "department": entities.Employee.department,
                "category_id": null(),
                "owner_id": model.employee_id,
                "owner_name": entities.Employee.name,
                "payment_method": null(),
            },
        )
    if kind is RecordKind.EXPENSE:
        model = entities.BudgetExpense
        return _KindMapping(
            base=model,
            join_model=entities.BudgetCategory,
            join_on=model.category_id == entities.BudgetCategory.id,
            columns={
                "id": model.id,
                "amount": model.amount,
                "currency": model.currency,
                "occurred_at": model.expense_date,
                "status": model.status,
                "department": entities.BudgetCategory.department,
                "category_id": model.category_id,
                "owner_id": null(),
                "owner_name": entities.BudgetCategory.name,
                "payment_method": null(),
            },
        )
    if kind is RecordKind.INVOICE:
        model = entities.Invoice
        return _KindMapping(
            base=model,
            join_model=entities.Client,
            join_on=model.client_id == entities.Client.id,
            columns={
                "id": model.id,
                "amount": model.amount,
                "currency": model.currency,
                "occurred_at": model.issue_date,
                "status": model.status,
                "department": null(),
                "category_id": null(),
                "owner_id": model.client_id,
                "owner_name": entities.Client.name,
                "payment_method": null(),
            },
        )
    model = entities.Employee
    return _KindMapping(
        base=model,
        columns={
            "id": model.id,
            "amount": model.base_salary,
            "currency": model.currency,
            "occurred_at": model.joining_date,
            "status": model.status,
            "department": model.department,
            "category_id": null(),
            "owner_id": model.id,
            "owner_name": model.name,
            "payment_method": null(),
        },
    )


def _coerce(field_name: str, value: object) -> object:
    if field_name in _UUID_FIELDS and not isinstance(value, uuid.UUID):
        try:
            return uuid.UUID(str(value))
        except ValueError as exc:
            raise ValidationError(f"{field_name} must be a UUID, got {value!r}.") from exc
    return value


def compile_record_query(query: RecordQuery, kind: RecordKind) -> Select:
    mapping = _kind_mapping(kind)
    columns = mapping.columns
    stmt = select(*(expr.label(name) for name, expr in columns.items())).select_from(mapping.base)
    if mapping.join_model is not None:
        stmt = stmt.outerjoin(mapping.join_model, mapping.join_on)

    predicates = query.predicates
    for name, value in predicates.eq.items():
        stmt = stmt.where(columns[name] == _coerce(name, value))
    for name, value in predicates.gte.items():
        stmt = stmt.where(columns[name] >= value)
    for name, value in predicates.lte.items():
        stmt = stmt.where(columns[name] <= value)
    for name, pattern in predicates.ilike.items():
        stmt = stmt.where(columns[name].ilike(pattern))
    for name, values in predicates.in_.items():
        stmt = stmt.where(columns[name].in_([_coerce(name, value) for value in values]))

    for name, descending in query.order_by:
        stmt = stmt.order_by(columns[name].desc() if descending else columns[name].asc())
    if query.limit is not None:
        stmt = stmt.limit(query.limit)
    return stmt


def _to_record(row: Row, kind: RecordKind) -> MoneyRecord:
    return MoneyRecord(
        id=str(row.id),
        kind=kind,
        amount=Decimal(row.amount),
        currency=str(row.currency).upper(),
        occurred_at=row.occurred_at,
        status=row.status,
        department=row.department or UNKNOWN_LABEL,
        category_id=str(row.category_id) if row.category_id is not None else None,
        owner_id=str(row.owner_id) if row.owner_id is not None else None,
        owner_name=row.owner_name or UNKNOWN_LABEL,
        payment_method=row.payment_method,
    )


class SqlRecordSource:
    """Record source backed by SQLAlchemy; opens one session per fetch."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def run_query(self, query: RecordQuery, kind: RecordKind) -> list[MoneyRecord]:
        stmt = compile_record_query(query, kind)
        try:
            with self.session_factory() as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.error("Query on %s failed: %s", query.table, exc)
            raise SourceFetchError(exc, kind=kind, table=query.table) from exc
        return [_to_record(row, kind) for row in rows]

    async def fetch(self, spec: FilterSpecification, kind: RecordKind) -> list[MoneyRecord]:
        query = build_record_query(spec, kind)
        return await asyncio.to_thread(self.run_query, query, kind)

    def load_budget_categories(self, *, active_only: bool = True) -> list[BudgetCategory]:
        stmt = select(entities.BudgetCategory).order_by(entities.BudgetCategory.name.asc())
        if active_only:
            stmt = stmt.where(entities.BudgetCategory.is_active.is_(True))
        try:
            with self.session_factory() as session:
                rows = session.scalars(stmt).all()
        except SQLAlchemyError as exc:
            logger.error("Query on budget_categories failed: %s", exc)
            raise SourceFetchError(exc, table="budget_categories") from exc
        return [
            BudgetCategory(
                id=str(row.id),
                name=row.name,
                department=row.department or UNKNOWN_LABEL,
                monthly_budget=Decimal(row.monthly_budget),
                annual_budget=Decimal(row.annual_budget),
                is_active=row.is_active,
                currency=row.currency.upper(),
            )
            for row in rows
        ]

    async def fetch_budget_categories(self, *, active_only: bool = True) -> list[BudgetCategory]:
        return await asyncio.to_thread(self.load_budget_categories, active_only=active_only)


async def fetch_many(
    source: RecordSource,
    spec: FilterSpecification,
    kinds: Iterable[RecordKind],
) -> dict[RecordKind, list[MoneyRecord]]:
    """Fetch several kinds concurrently; any failure fails the whole set."""

    ordered: Sequence[RecordKind] = tuple(dict.fromkeys(kinds))
    results = await asyncio.gather(*(source.fetch(spec, kind) for kind in ordered))
    return dict(zip(ordered, results))
