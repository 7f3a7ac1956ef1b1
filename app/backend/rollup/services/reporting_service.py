"""Dashboard and export service layer over the rollup engine."""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Sequence
from datetime import date
from decimal import Decimal

from fastapi import HTTPException, status

from rollup.core.config import Settings, get_settings
from rollup.core.logging import get_logger
from rollup.domain.currency import CurrencyNormalizer, q2
from rollup.domain.filters import FilterSpecification, budget_period_window, previous_window
from rollup.domain.records import BudgetPeriod, MoneyRecord, RecordKind
from rollup.repositories.record_source import SqlRecordSource, fetch_many
from rollup.services.aggregation import (
    AggregateResult,
    AmountStats,
    MonthlyTrendPoint,
    PaymentStats,
    PeriodChange,
    RevenueSummary,
    aggregate,
    amount_stats,
    monthly_trend,
    net_revenue,
    payment_stats,
    period_comparison,
)
from rollup.services.export_service import (
    CATEGORY_VARIANCE_COLUMNS,
    ExportFilePayload,
    ExportFormat,
    FlatRow,
    build_export,
    category_variance_rows,
    columns_for,
    to_flat_rows,
)
from rollup.services.variance import (
    BudgetSummary,
    CategoryVariance,
    DistributionBucket,
    VarianceResult,
    budget_summary,
    bucket_distribution,
    category_variances,
)

logger = get_logger(__name__)


def _money(value: Decimal) -> str:
    return str(q2(value))


class RollupReportingService:
    """Builds dashboard payloads and export files from fetched records."""

    def __init__(
        self,
        source: SqlRecordSource,
        *,
        settings: Settings | None = None,
        today: date | None = None,
    ) -> None:
        self.source = source
        self.settings = settings or get_settings()
        self.normalizer = CurrencyNormalizer.from_settings(self.settings)
        self.today = today or date.today()

    # ---------- Serialization ----------
    @staticmethod
    def serialize_totals(totals: dict[str, Decimal]) -> dict[str, str]:
        return {currency: _money(amount) for currency, amount in sorted(totals.items())}

    @classmethod
    def serialize_aggregate(cls, result: AggregateResult) -> dict[str, object]:
        payload: dict[str, object] = {
            "total_count": result.total_count,
            "totals_by_currency": cls.serialize_totals(result.totals_by_currency),
            "counts_by_status": dict(sorted(result.counts_by_status.items())),
            "group_key": result.group_key,
            "breakdown": [
                {
                    "key": key,
                    "count": group.count,
                    "totals_by_currency": cls.serialize_totals(group.totals_by_currency),
                }
                for key, group in sorted(result.breakdown.items())
            ],
            "normalized_to": result.normalized_to,
            "is_empty": result.is_empty,
        }
        if result.variance is not None:
            payload["variance"] = cls.serialize_variance(result.variance)
        if result.distribution is not None:
            payload["distribution"] = cls.serialize_buckets(result.distribution)
        return payload

    @staticmethod
    def serialize_variance(variance: VarianceResult) -> dict[str, object]:
        return {
            "budgeted": _money(variance.budgeted),
            "actual": _money(variance.actual),
            "variance": _money(variance.variance),
            "variance_percent": _money(variance.variance_percent),
            "is_over_budget": variance.is_over_budget,
        }

    @staticmethod
    def serialize_buckets(buckets: Sequence[DistributionBucket]) -> list[dict[str, object]]:
        return [
            {
                "label": bucket.label,
                "lower": str(bucket.lower),
                "upper": str(bucket.upper) if bucket.upper is not None else None,
                "count": bucket.count,
            }
            for bucket in buckets
        ]

    @classmethod
    def serialize_trend(cls, points: Sequence[MonthlyTrendPoint]) -> list[dict[str, object]]:
        return [
            {
                "month_start": point.month_start.isoformat(),
                "count": point.count,
                "totals_by_currency": cls.serialize_totals(point.totals_by_currency),
            }
            for point in points
        ]

    @classmethod
    def serialize_stats(cls, stats: PaymentStats) -> dict[str, object]:
        return {
            "total_payments": stats.total_payments,
            "pending_payments": stats.pending_payments,
            "completed_payments": stats.completed_payments,
            "failed_payments": stats.failed_payments,
            "totals_by_currency": cls.serialize_totals(stats.totals_by_currency),
            "success_rate": _money(stats.success_rate),
        }

    @staticmethod
    def serialize_amount_stats(stats: AmountStats) -> dict[str, object]:
        return {
            "currency": stats.currency,
            "count": stats.count,
            "total": _money(stats.total),
            "average": _money(stats.average),
            "highest": _money(stats.highest),
        }

    @staticmethod
    def serialize_change(change: PeriodChange) -> dict[str, object]:
        return {
            "current": _money(change.current),
            "previous": _money(change.previous),
            "change": _money(change.change),
            "change_percent": _money(change.change_percent),
            "trend": change.trend,
        }

    @staticmethod
    def serialize_revenue(summary: RevenueSummary) -> dict[str, object]:
        return {
            "currency": summary.currency,
            "gross_revenue": _money(summary.gross_revenue),
            "expenses": _money(summary.expenses),
            "net_revenue": _money(summary.net_revenue),
            "paid_invoice_count": summary.paid_invoice_count,
        }

    @classmethod
    def serialize_category_variance(cls, row: CategoryVariance) -> dict[str, object]:
        return {
            "category_id": row.category.id,
            "name": row.category.name,
            "department": row.category.department,
            "currency": row.category.currency,
            "spent": _money(row.spent),
            "progress": str(row.progress.quantize(Decimal("0.0001"))),
            **cls.serialize_variance(row.variance),
        }

    @classmethod
    def serialize_budget_summary(cls, summary: BudgetSummary) -> dict[str, object]:
        return {
            "currency": summary.currency,
            "total_budget": _money(summary.variance.budgeted),
            "total_spent": _money(summary.variance.actual),
            "variance": _money(summary.variance.variance),
            "variance_percent": _money(summary.variance.variance_percent),
            "is_over_budget": summary.variance.is_over_budget,
            "categories_over_budget": summary.categories_over_budget,
            "category_count": summary.category_count,
        }

    @staticmethod
    def serialize_spec(spec: FilterSpecification) -> dict[str, object]:
        return {
            "timeframe": spec.timeframe.value if spec.timeframe is not None else None,
            "start": spec.start.isoformat(),
            "end": spec.end.isoformat(),
            "currency": spec.currency,
            "department": spec.department,
            "status": spec.status,
            "owner_id": spec.owner_id,
        }

    # ---------- Input checks ----------
    def _display_currency(self, value: str | None) -> str:
        code = (value or self.settings.base_currency).strip().upper()
        if code not in self.normalizer.supported_currencies:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"display_currency must be one of: {', '.join(self.normalizer.supported_currencies)}.",
            )
        return code

    @staticmethod
    def _budget_period(value: str | BudgetPeriod) -> BudgetPeriod:
        try:
            return BudgetPeriod(value)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="period must be one of: monthly, annual.",
            ) from None

    def _upcoming_spec(self, spec: FilterSpecification) -> FilterSpecification:
        # Schedules are forward looking and use their own status vocabulary.
        return dataclasses.replace(spec, timeframe=None, start=self.today, end=date.max, status=None)

    # ---------- Payments ----------
    async def _payment_records(self, spec: FilterSpecification) -> tuple[list[MoneyRecord], list[MoneyRecord]]:
        payments, schedules = await asyncio.gather(
            self.source.fetch(spec, RecordKind.PAYMENT),
            self.source.fetch(self._upcoming_spec(spec), RecordKind.SCHEDULE),
        )
        return payments, schedules

    async def payment_dashboard(
        self,
        spec: FilterSpecification,
        display_currency: str | None = None,
    ) -> dict[str, object]:
        display = self._display_currency(display_currency)
        payments, schedules = await self._payment_records(spec)

        by_currency = aggregate(payments)
        normalized = aggregate(payments, display, normalizer=self.normalizer)
        return {
            "filter": self.serialize_spec(spec),
            "display_currency": display,
            "stats": self.serialize_stats(payment_stats(by_currency)),
            "summary": self.serialize_aggregate(by_currency),
            "normalized": self.serialize_aggregate(normalized),
            "by_method": self.serialize_aggregate(aggregate(payments, group_key="payment_method")),
            "monthly_trend": self.serialize_trend(monthly_trend(payments, display, normalizer=self.normalizer)),
            "upcoming": self.serialize_aggregate(aggregate(schedules)),
        }

    # ---------- Budgets ----------
    async def _budget_rows(self, spec: FilterSpecification, period: BudgetPeriod) -> list[CategoryVariance]:
        # Spend is measured over the budget's own month or year, anchored on the window end.
        window = budget_period_window(period, spec.end)
        categories, expenses = await asyncio.gather(
            self.source.fetch_budget_categories(active_only=True),
            self.source.fetch(spec.with_window(window), RecordKind.EXPENSE),
        )
        return category_variances(categories, expenses, period, normalizer=self.normalizer)

    async def budget_dashboard(self, spec: FilterSpecification, period: str = "monthly") -> dict[str, object]:
        budget_period = self._budget_period(period)
        rows = await self._budget_rows(spec, budget_period)
        summary = budget_summary(rows, self.settings.base_currency, normalizer=self.normalizer)
        window = budget_period_window(budget_period, spec.end)
        return {
            "filter": self.serialize_spec(spec),
            "period": budget_period.value,
            "window": {"start": window.start.isoformat(), "end": window.end.isoformat()},
            "summary": self.serialize_budget_summary(summary),
            "categories": [self.serialize_category_variance(row) for row in rows],
        }

    # ---------- Salaries and payroll ----------
    async def _salary_result(
        self,
        spec: FilterSpecification,
    ) -> tuple[AggregateResult, AggregateResult, AmountStats]:
        base = self.settings.base_currency
        records = await fetch_many(self.source, spec, (RecordKind.SALARY, RecordKind.PAYROLL))
        salaries = aggregate(records[RecordKind.SALARY], base, normalizer=self.normalizer)
        salaries.distribution = bucket_distribution(
            records[RecordKind.SALARY],
            self.settings.salary_bucket_boundaries,
            normalize_to=base,
            normalizer=self.normalizer,
        )
        stats = amount_stats(records[RecordKind.SALARY], base, normalizer=self.normalizer)
        payroll = aggregate(records[RecordKind.PAYROLL])
        return salaries, payroll, stats

    async def salary_dashboard(self, spec: FilterSpecification) -> dict[str, object]:
        salaries, payroll, stats = await self._salary_result(spec)
        return {
            "filter": self.serialize_spec(spec),
            "base_currency": self.settings.base_currency,
            "salaries": self.serialize_aggregate(salaries),
            "salary_stats": self.serialize_amount_stats(stats),
            "payroll": self.serialize_aggregate(payroll),
        }

    # ---------- Revenue ----------
    async def revenue_dashboard(
        self,
        spec: FilterSpecification,
        display_currency: str | None = None,
    ) -> dict[str, object]:
        """Net revenue for the window next to the window just before it."""

        display = self._display_currency(display_currency)
        kinds = (RecordKind.INVOICE, RecordKind.PAYMENT)
        prior_spec = spec.with_window(previous_window(spec.window))
        current_records, prior_records = await asyncio.gather(
            fetch_many(self.source, spec, kinds),
            fetch_many(self.source, prior_spec, kinds),
        )
        current = net_revenue(
            current_records[RecordKind.INVOICE],
            current_records[RecordKind.PAYMENT],
            display,
            normalizer=self.normalizer,
        )
        prior = net_revenue(
            prior_records[RecordKind.INVOICE],
            prior_records[RecordKind.PAYMENT],
            display,
            normalizer=self.normalizer,
        )
        return {
            "filter": self.serialize_spec(spec),
            "previous_filter": self.serialize_spec(prior_spec),
            "display_currency": display,
            "current": self.serialize_revenue(current),
            "previous": self.serialize_revenue(prior),
            "gross_revenue_change": self.serialize_change(
                period_comparison(current.gross_revenue, prior.gross_revenue)
            ),
            "net_revenue_change": self.serialize_change(period_comparison(current.net_revenue, prior.net_revenue)),
        }

    # ---------- Invoices ----------
    async def invoice_dashboard(
        self,
        spec: FilterSpecification,
        display_currency: str | None = None,
    ) -> dict[str, object]:
        display = self._display_currency(display_currency)
        invoices = await self.source.fetch(spec, RecordKind.INVOICE)
        return {
            "filter": self.serialize_spec(spec),
            "display_currency": display,
            "summary": self.serialize_aggregate(aggregate(invoices, group_key="owner_id")),
            "normalized": self.serialize_aggregate(
                aggregate(invoices, display, normalizer=self.normalizer, group_key="owner_id")
            ),
            "monthly_trend": self.serialize_trend(monthly_trend(invoices, display, normalizer=self.normalizer)),
        }

    # ---------- Exports ----------
    async def _export_rows(
        self,
        report_kind: str,
        spec: FilterSpecification,
        period: str,
    ) -> tuple[list[FlatRow], Sequence[str]] | None:
        if report_kind == "payments":
            records = await self.source.fetch(spec, RecordKind.PAYMENT)
            return to_flat_rows(records), columns_for(records)
        if report_kind == "invoices":
            records = await self.source.fetch(spec, RecordKind.INVOICE)
            return to_flat_rows(records), columns_for(records)
        if report_kind == "payment-summary":
            result = aggregate(await self.source.fetch(spec, RecordKind.PAYMENT))
            return to_flat_rows(result), columns_for(result)
        if report_kind == "budget-variance":
            rows = await self._budget_rows(spec, self._budget_period(period))
            return category_variance_rows(rows), CATEGORY_VARIANCE_COLUMNS
        if report_kind == "salary-distribution":
            salaries, _payroll, _stats = await self._salary_result(spec)
            return to_flat_rows(salaries), columns_for(salaries)
        return None

    async def export_report(
        self,
        *,
        report_kind: str,
        format_name: str,
        spec: FilterSpecification,
        period: str = "monthly",
    ) -> ExportFilePayload:
        normalized_kind = report_kind.strip().lower()
        try:
            export_format = ExportFormat(format_name.strip().lower())
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="format must be one of: csv, xlsx.",
            ) from None

        exported = await self._export_rows(normalized_kind, spec, period)
        if exported is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Unknown report kind for export.",
            )
        rows, columns = exported
        logger.info("Exporting %s (%d rows) as %s.", normalized_kind, len(rows), export_format.value)
        return build_export(normalized_kind, rows, columns, export_format, self.today)
