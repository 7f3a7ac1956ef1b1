"""Budget variance, progress and distribution bucketing."""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from rollup.core.errors import ConfigurationError, ValidationError
from rollup.domain.currency import ZERO, CurrencyNormalizer, safe_div
from rollup.domain.records import BudgetCategory, BudgetPeriod, MoneyRecord

ONE = Decimal("1")


@dataclass(frozen=True, slots=True)
class VarianceResult:
    budgeted: Decimal
    actual: Decimal
    variance: Decimal
    variance_percent: Decimal
    is_over_budget: bool


@dataclass(frozen=True, slots=True)
class DistributionBucket:
    label: str
    lower: Decimal
    upper: Decimal | None
    count: int


@dataclass(frozen=True, slots=True)
class CategoryVariance:
    category: BudgetCategory
    spent: Decimal
    variance: VarianceResult
    progress: Decimal


@dataclass(frozen=True, slots=True)
class BudgetSummary:
    currency: str
    variance: VarianceResult
    categories_over_budget: int
    category_count: int


def compute_variance(budgeted: Decimal, actual: Decimal) -> VarianceResult:
    variance = budgeted - actual
    percent = safe_div(variance * 100, budgeted) if budgeted > ZERO else ZERO
    return VarianceResult(
        budgeted=budgeted,
        actual=actual,
        variance=variance,
        variance_percent=percent,
        is_over_budget=actual > budgeted,
    )


def progress_ratio(spent: Decimal, budget: Decimal) -> Decimal:
    """Share of budget consumed, clamped to [0, 1] for progress bars.

    Use ``compute_variance`` for the unclamped figures.
    """
    if budget <= ZERO:
        return ONE if spent > ZERO else ZERO
    ratio = spent / budget
    if ratio > ONE:
        return ONE
    if ratio < ZERO:
        return ZERO
    return ratio


def _format_bound(value: Decimal) -> str:
    if value == value.to_integral_value():
        return str(int(value))
    return str(value.normalize())


def validate_boundaries(boundaries: Iterable[Decimal | int | str]) -> tuple[Decimal, ...]:
    bounds = tuple(Decimal(str(item)) for item in boundaries)
    if not bounds:
        raise ValidationError("At least one bucket boundary is required.")
    for lower, upper in zip(bounds, bounds[1:]):
        if upper <= lower:
            raise ValidationError("Bucket boundaries must be sorted in strictly increasing order.")
    return bounds


def bucket_labels(bounds: Sequence[Decimal]) -> list[str]:
    labels = [f"{_format_bound(lower)}-{_format_bound(upper)}" for lower, upper in zip(bounds, bounds[1:])]
    labels.append(f"{_format_bound(bounds[-1])}+")
    return labels


def bucket_amounts(
    amounts: Iterable[Decimal],
    boundaries: Iterable[Decimal | int | str],
    labels: Sequence[str] | None = None,
) -> list[DistributionBucket]:
    """Histogram amounts into ``[min, max)`` buckets, the last one open-ended."""

    bounds = validate_boundaries(boundaries)
    if labels is None:
        labels = bucket_labels(bounds)
    elif len(labels) != len(bounds):
        raise ValidationError("Bucket labels must match the number of boundaries.")

    counts = [0] * len(bounds)
    for amount in amounts:
        if amount < bounds[0]:
            raise ValidationError(f"Amount {amount} is below the lowest bucket boundary {bounds[0]}.")
        counts[bisect_right(bounds, amount) - 1] += 1

    uppers: list[Decimal | None] = [*bounds[1:], None]
    return [
        DistributionBucket(label=label, lower=lower, upper=upper, count=count)
        for label, lower, upper, count in zip(labels, bounds, uppers, counts)
    ]


def bucket_distribution(
    records: Iterable[MoneyRecord],
    boundaries: Iterable[Decimal | int | str],
    *,
    normalize_to: str | None = None,
    normalizer: CurrencyNormalizer | None = None,
    labels: Sequence[str] | None = None,
) -> list[DistributionBucket]:
    records = list(records)
    if normalize_to is None:
        currencies = {record.currency for record in records}
        if len(currencies) > 1:
            raise ConfigurationError(
                f"Cannot bucket amounts in several currencies ({', '.join(sorted(currencies))}) without normalization."
            )
        amounts = [record.amount for record in records]
    else:
        normalizer = normalizer or CurrencyNormalizer()
        amounts = [normalizer.normalize(record.amount, record.currency, normalize_to) for record in records]
    return bucket_amounts(amounts, boundaries, labels)


def category_variances(
    categories: Iterable[BudgetCategory],
    expenses: Iterable[MoneyRecord],
    period: BudgetPeriod,
    *,
    normalizer: CurrencyNormalizer | None = None,
) -> list[CategoryVariance]:
    """Spent vs budget per active category; expenses are converted to the category currency."""

    normalizer = normalizer or CurrencyNormalizer()
    expenses_by_category: dict[str, list[MoneyRecord]] = {}
    for expense in expenses:
        if expense.category_id is not None:
            expenses_by_category.setdefault(expense.category_id, []).append(expense)

    rows: list[CategoryVariance] = []
    for category in categories:
        if not category.is_active:
            continue
        spent = ZERO
        for expense in expenses_by_category.get(category.id, []):
            spent += normalizer.normalize(expense.amount, expense.currency, category.currency)
        budget = category.budget_for(period)
        rows.append(
            CategoryVariance(
                category=category,
                spent=spent,
                variance=compute_variance(budget, spent),
                progress=progress_ratio(spent, budget),
            )
        )
    return rows


def budget_summary(
    rows: Iterable[CategoryVariance],
    currency: str,
    *,
    normalizer: CurrencyNormalizer | None = None,
) -> BudgetSummary:
    normalizer = normalizer or CurrencyNormalizer()
    total_budget = ZERO
    total_spent = ZERO
    over_budget = 0
    count = 0
    for row in rows:
        count += 1
        source = row.category.currency
        total_budget += normalizer.normalize(row.variance.budgeted, source, currency)
        total_spent += normalizer.normalize(row.spent, source, currency)
        if row.variance.is_over_budget:
            over_budget += 1
    return BudgetSummary(
        currency=currency,
        variance=compute_variance(total_budget, total_spent),
        categories_over_budget=over_budget,
        category_count=count,
    )
