"""Aggregation pipeline: one reduction shared by every rollup screen."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from dateutil.relativedelta import relativedelta

from rollup.core.errors import ValidationError
from rollup.domain.currency import ZERO, CurrencyNormalizer, safe_div
from rollup.domain.records import UNKNOWN_LABEL, MoneyRecord

if TYPE_CHECKING:
    from rollup.services.variance import DistributionBucket, VarianceResult

GROUP_KEYS = ("department", "category_id", "owner_id", "status", "payment_method")
COMPLETED_STATUS = "paid"
PENDING_STATUS = "pending"
FAILED_STATUS = "failed"


@dataclass(slots=True)
class GroupTotals:
    count: int = 0
    totals_by_currency: dict[str, Decimal] = field(default_factory=dict)
    counts_by_currency: dict[str, int] = field(default_factory=dict)

    def add(self, currency: str, amount: Decimal) -> None:
        self.count += 1
        self.counts_by_currency[currency] = self.counts_by_currency.get(currency, 0) + 1
        self.totals_by_currency[currency] = self.totals_by_currency.get(currency, ZERO) + amount


@dataclass(slots=True)
class AggregateResult:
    total_count: int
    totals_by_currency: dict[str, Decimal]
    counts_by_status: dict[str, int]
    breakdown: dict[str, GroupTotals]
    counts_by_currency: dict[str, int] = field(default_factory=dict)
    group_key: str = "department"
    normalized_to: str | None = None
    # Filled in by callers that also need budget variance or bucketing.
    variance: VarianceResult | None = None
    distribution: list[DistributionBucket] | None = None

    @property
    def is_empty(self) -> bool:
        return self.total_count == 0


@dataclass(slots=True)
class MonthlyTrendPoint:
    month_start: date
    count: int
    totals_by_currency: dict[str, Decimal]


@dataclass(slots=True)
class PaymentStats:
    total_payments: int
    pending_payments: int
    completed_payments: int
    failed_payments: int
    totals_by_currency: dict[str, Decimal]
    success_rate: Decimal


def _resolve_normalizer(normalize_to: str | None, normalizer: CurrencyNormalizer | None) -> CurrencyNormalizer | None:
    if normalize_to is None:
        return None
    if normalizer is None:
        normalizer = CurrencyNormalizer()
    # Fail fast on an unknown target even when there is nothing to convert.
    normalizer.rate_for(normalize_to)
    return normalizer


def _amount_in(record: MoneyRecord, normalize_to: str | None, normalizer: CurrencyNormalizer | None) -> tuple[str, Decimal]:
    if normalize_to is None or normalizer is None:
        return record.currency, record.amount
    return normalize_to, normalizer.normalize(record.amount, record.currency, normalize_to)


def _group_value(record: MoneyRecord, group_key: str) -> str:
    value = getattr(record, group_key)
    return value if value else UNKNOWN_LABEL


def aggregate(
    records: Iterable[MoneyRecord],
    normalize_to: str | None = None,
    *,
    normalizer: CurrencyNormalizer | None = None,
    group_key: str = "department",
) -> AggregateResult:
    """Reduce records into totals, status counts and a per-key breakdown.

    Without ``normalize_to`` amounts are kept per currency and never summed
    across currencies. With it, every amount is converted first and the
    totals carry a single ``normalize_to`` entry.
    """
    if group_key not in GROUP_KEYS:
        raise ValidationError(f"group_key must be one of: {', '.join(GROUP_KEYS)}.")
    if normalize_to is not None:
        normalize_to = normalize_to.upper()
    normalizer = _resolve_normalizer(normalize_to, normalizer)

    overall = GroupTotals()
    if normalize_to is not None:
        overall.totals_by_currency[normalize_to] = ZERO
    counts_by_status: dict[str, int] = {}
    breakdown: dict[str, GroupTotals] = {}

    for record in records:
        currency, amount = _amount_in(record, normalize_to, normalizer)
        overall.add(currency, amount)
        counts_by_status[record.status] = counts_by_status.get(record.status, 0) + 1
        breakdown.setdefault(_group_value(record, group_key), GroupTotals()).add(currency, amount)

    return AggregateResult(
        total_count=overall.count,
        totals_by_currency=overall.totals_by_currency,
        counts_by_currency=overall.counts_by_currency,
        counts_by_status=counts_by_status,
        breakdown=breakdown,
        group_key=group_key,
        normalized_to=normalize_to,
    )


def _month_start(value: date) -> date:
    return date(value.year, value.month, 1)


def monthly_trend(
    records: Iterable[MoneyRecord],
    normalize_to: str | None = None,
    *,
    normalizer: CurrencyNormalizer | None = None,
) -> list[MonthlyTrendPoint]:
    """Per-month counts and totals, ascending, with empty months filled in."""

    if normalize_to is not None:
        normalize_to = normalize_to.upper()
    normalizer = _resolve_normalizer(normalize_to, normalizer)

    by_month: dict[date, GroupTotals] = {}
    for record in records:
        currency, amount = _amount_in(record, normalize_to, normalizer)
        by_month.setdefault(_month_start(record.occurred_at), GroupTotals()).add(currency, amount)
    if not by_month:
        return []

    points: list[MonthlyTrendPoint] = []
    current, last = min(by_month), max(by_month)
    while current <= last:
        bucket = by_month.get(current) or GroupTotals()
        totals = dict(bucket.totals_by_currency)
        if normalize_to is not None:
            totals.setdefault(normalize_to, ZERO)
        points.append(MonthlyTrendPoint(month_start=current, count=bucket.count, totals_by_currency=totals))
        current = current + relativedelta(months=1)
    return points


def payment_stats(result: AggregateResult) -> PaymentStats:
    completed = result.counts_by_status.get(COMPLETED_STATUS, 0)
    total = result.total_count
    return PaymentStats(
        total_payments=total,
        pending_payments=result.counts_by_status.get(PENDING_STATUS, 0),
        completed_payments=completed,
        failed_payments=result.counts_by_status.get(FAILED_STATUS, 0),
        totals_by_currency=dict(result.totals_by_currency),
        success_rate=safe_div(Decimal(completed) * 100, Decimal(total)),
    )


@dataclass(slots=True)
class AmountStats:
    currency: str
    count: int
    total: Decimal
    average: Decimal
    highest: Decimal


def amount_stats(
    records: Iterable[MoneyRecord],
    normalize_to: str,
    *,
    normalizer: CurrencyNormalizer | None = None,
) -> AmountStats:
    """Count, total, average and highest amount, all in ``normalize_to``."""

    normalize_to = normalize_to.upper()
    normalizer = _resolve_normalizer(normalize_to, normalizer)
    amounts = [_amount_in(record, normalize_to, normalizer)[1] for record in records]
    total = sum(amounts, ZERO)
    return AmountStats(
        currency=normalize_to,
        count=len(amounts),
        total=total,
        average=safe_div(total, Decimal(len(amounts))),
        highest=max(amounts, default=ZERO),
    )


@dataclass(slots=True)
class PeriodChange:
    current: Decimal
    previous: Decimal
    change: Decimal
    change_percent: Decimal
    trend: str


def period_comparison(current: Decimal, previous: Decimal) -> PeriodChange:
    """Compare a figure with the same figure for the preceding period.

    A zero previous value reads as +100% when there is anything now and 0%
    otherwise. A zero change counts as an upward trend.
    """
    change = current - previous
    if previous == ZERO:
        percent = Decimal("100.00") if current > ZERO else Decimal("0.00")
    else:
        percent = safe_div(change * 100, abs(previous))
    return PeriodChange(
        current=current,
        previous=previous,
        change=change,
        change_percent=percent,
        trend="up" if change >= ZERO else "down",
    )


@dataclass(slots=True)
class RevenueSummary:
    currency: str
    gross_revenue: Decimal
    expenses: Decimal
    net_revenue: Decimal
    paid_invoice_count: int


def net_revenue(
    invoices: Iterable[MoneyRecord],
    payments: Iterable[MoneyRecord],
    normalize_to: str,
    *,
    normalizer: CurrencyNormalizer | None = None,
) -> RevenueSummary:
    """Paid invoices less outgoing payments, in one currency.

    Gross revenue counts only paid invoices. Every payment in the window is
    an expense whatever its status.
    """
    normalize_to = normalize_to.upper()
    normalizer = _resolve_normalizer(normalize_to, normalizer)
    paid = [record for record in invoices if record.status == COMPLETED_STATUS]
    gross = sum((_amount_in(record, normalize_to, normalizer)[1] for record in paid), ZERO)
    expenses = sum((_amount_in(record, normalize_to, normalizer)[1] for record in payments), ZERO)
    return RevenueSummary(
        currency=normalize_to,
        gross_revenue=gross,
        expenses=expenses,
        net_revenue=gross - expenses,
        paid_invoice_count=len(paid),
    )
