"""Dashboard endpoints for payments, budgets, salaries, invoices and revenue."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from rollup.api.params import get_filter_spec
from rollup.db.dependencies import get_record_source
from rollup.domain.filters import FilterSpecification
from rollup.repositories.record_source import SqlRecordSource
from rollup.services.reporting_service import RollupReportingService

router = APIRouter(prefix="/dashboards", tags=["dashboards"])


def _service(source: SqlRecordSource) -> RollupReportingService:
    return RollupReportingService(source)


@router.get("/payments")
async def get_payment_dashboard(
    display_currency: str | None = Query(default=None),
    spec: FilterSpecification = Depends(get_filter_spec),
    source: SqlRecordSource = Depends(get_record_source),
) -> dict[str, object]:
    service = _service(source)
    return await service.payment_dashboard(spec, display_currency)


@router.get("/budgets")
async def get_budget_dashboard(
    period: str = Query(default="monthly"),
    spec: FilterSpecification = Depends(get_filter_spec),
    source: SqlRecordSource = Depends(get_record_source),
) -> dict[str, object]:
    service = _service(source)
    return await service.budget_dashboard(spec, period)


@router.get("/salaries")
async def get_salary_dashboard(
    spec: FilterSpecification = Depends(get_filter_spec),
    source: SqlRecordSource = Depends(get_record_source),
) -> dict[str, object]:
    service = _service(source)
    return await service.salary_dashboard(spec)


@router.get("/invoices")
async def get_invoice_dashboard(
    display_currency: str | None = Query(default=None),
    spec: FilterSpecification = Depends(get_filter_spec),
    source: SqlRecordSource = Depends(get_record_source),
) -> dict[str, object]:
    service = _service(source)
    return await service.invoice_dashboard(spec, display_currency)


@router.get("/revenue")
async def get_revenue_dashboard(
    display_currency: str | None = Query(default=None),
    spec: FilterSpecification = Depends(get_filter_spec),
    source: SqlRecordSource = Depends(get_record_source),
) -> dict[str, object]:
    service = _service(source)
    return await service.revenue_dashboard(spec, display_currency)
