"""Flat tabular export of aggregates and raw records."""

from __future__ import annotations

import csv
import enum
import io
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from openpyxl import Workbook

from rollup.domain.currency import q2
from rollup.domain.records import MoneyRecord
from rollup.services.aggregation import AggregateResult
from rollup.services.variance import CategoryVariance, DistributionBucket

FlatRow = tuple[tuple[str, str], ...]

RECORD_COLUMNS = (
    "id",
    "kind",
    "occurred_at",
    "status",
    "department",
    "category_id",
    "owner_id",
    "owner_name",
    "payment_method",
    "amount",
    "currency",
)
AGGREGATE_COLUMNS = ("section", "key", "count", "amount", "currency")
CATEGORY_VARIANCE_COLUMNS = (
    "category_id",
    "category",
    "department",
    "budgeted",
    "spent",
    "variance",
    "variance_percent",
    "progress",
    "is_over_budget",
    "currency",
)


class ExportFormat(str, enum.Enum):
    CSV = "csv"
    XLSX = "xlsx"


@dataclass(slots=True)
class ExportFilePayload:
    media_type: str
    filename: str
    content: bytes


def _amount(value: Decimal) -> str:
    return str(q2(value))


def _text(value: object) -> str:
    return "" if value is None else str(value)


def _aggregate_row(section: str, key: str, count: int | str, amount: str, currency: str) -> FlatRow:
    return (
        ("section", section),
        ("key", key),
        ("count", str(count)),
        ("amount", amount),
        ("currency", currency),
    )


def _distribution_rows(buckets: Sequence[DistributionBucket], currency: str) -> list[FlatRow]:
    return [_aggregate_row("distribution", bucket.label, bucket.count, "", currency) for bucket in buckets]


def aggregate_rows(result: AggregateResult) -> list[FlatRow]:
    rows: list[FlatRow] = []
    if result.totals_by_currency:
        for currency in sorted(result.totals_by_currency):
            rows.append(
                _aggregate_row(
                    "total",
                    "all",
                    result.counts_by_currency.get(currency, 0),
                    _amount(result.totals_by_currency[currency]),
                    currency,
                )
            )
    else:
        rows.append(_aggregate_row("total", "all", 0, _amount(Decimal("0")), ""))

    for status in sorted(result.counts_by_status):
        rows.append(_aggregate_row("status", status, result.counts_by_status[status], "", ""))

    for key in sorted(result.breakdown):
        group = result.breakdown[key]
        for currency in sorted(group.totals_by_currency):
            rows.append(
                _aggregate_row(
                    result.group_key,
                    key,
                    group.counts_by_currency.get(currency, 0),
                    _amount(group.totals_by_currency[currency]),
                    currency,
                )
            )

    normalized = result.normalized_to or ""
    if result.variance is not None:
        variance = result.variance
        for key, value in (
            ("budgeted", variance.budgeted),
            ("actual", variance.actual),
            ("variance", variance.variance),
            ("variance_percent", variance.variance_percent),
        ):
            rows.append(_aggregate_row("variance", key, "", _amount(value), normalized))
    if result.distribution is not None:
        rows.extend(_distribution_rows(result.distribution, normalized))
    return rows


def record_rows(records: Iterable[MoneyRecord]) -> list[FlatRow]:
    return [
        (
            ("id", record.id),
            ("kind", record.kind.value),
            ("occurred_at", record.occurred_at.isoformat()),
            ("status", record.status),
            ("department", _text(record.department)),
            ("category_id", _text(record.category_id)),
            ("owner_id", _text(record.owner_id)),
            ("owner_name", record.owner_name),
            ("payment_method", _text(record.payment_method)),
            ("amount", _amount(record.amount)),
            ("currency", record.currency),
        )
        for record in records
    ]


def to_flat_rows(data: AggregateResult | Iterable[MoneyRecord]) -> list[FlatRow]:
    """Ordered ``(column, value)`` rows; amounts are bare magnitudes with a separate currency."""

    if isinstance(data, AggregateResult):
        return aggregate_rows(data)
    return record_rows(data)


def columns_for(data: AggregateResult | Iterable[MoneyRecord]) -> tuple[str, ...]:
    return AGGREGATE_COLUMNS if isinstance(data, AggregateResult) else RECORD_COLUMNS


def category_variance_rows(rows: Iterable[CategoryVariance]) -> list[FlatRow]:
    return [
        (
            ("category_id", row.category.id),
            ("category", row.category.name),
            ("department", _text(row.category.department)),
            ("budgeted", _amount(row.variance.budgeted)),
            ("spent", _amount(row.spent)),
            ("variance", _amount(row.variance.variance)),
            ("variance_percent", _amount(row.variance.variance_percent)),
            ("progress", str(row.progress.quantize(Decimal("0.0001")))),
            ("is_over_budget", "true" if row.variance.is_over_budget else "false"),
            ("currency", row.category.currency),
        )
        for row in rows
    ]


def _values(row: FlatRow, columns: Sequence[str]) -> list[str]:
    names = tuple(name for name, _ in row)
    if names != tuple(columns):
        raise ValueError(f"Row columns {names} do not match export columns {tuple(columns)}.")
    return [value for _, value in row]


def render_csv(rows: Iterable[FlatRow], columns: Sequence[str]) -> bytes:
    sio = io.StringIO()
    writer = csv.writer(sio)
    writer.writerow(columns)
    for row in rows:
        writer.writerow(_values(row, columns))
    return sio.getvalue().encode("utf-8")


def render_xlsx(rows: Iterable[FlatRow], columns: Sequence[str], sheet_title: str = "report") -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title[:31]
    sheet.append(list(columns))
    for row in rows:
        sheet.append(_values(row, columns))

    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


def export_filename(report_kind: str, today: date, export_format: ExportFormat = ExportFormat.CSV) -> str:
    return f"{report_kind}-{today.isoformat()}.{export_format.value}"


def build_export(
    report_kind: str,
    rows: Sequence[FlatRow],
    columns: Sequence[str],
    export_format: ExportFormat,
    today: date,
) -> ExportFilePayload:
    filename = export_filename(report_kind, today, export_format)
    if export_format is ExportFormat.CSV:
        return ExportFilePayload(
            media_type="text/csv; charset=utf-8",
            filename=filename,
            content=render_csv(rows, columns),
        )
    return ExportFilePayload(
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=filename,
        content=render_xlsx(rows, columns, sheet_title=report_kind),
    )
