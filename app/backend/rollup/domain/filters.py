"""Filter specification: the normalized description of a data slice.

Presets resolve against ``today`` at build time, so two specs built on
different days may describe different windows. Nothing here touches storage.
"""

from __future__ import annotations

import dataclasses
import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from rollup.core.errors import ConfigurationError, ValidationError
from rollup.core.logging import get_logger
from rollup.domain.records import BudgetPeriod

logger = get_logger(__name__)

ALL_CURRENCIES = "all"


class Timeframe(str, enum.Enum):
    CURRENT_MONTH = "current_month"
    LAST_MONTH = "last_month"
    LAST_3_MONTHS = "last_3_months"
    LAST_6_MONTHS = "last_6_months"
    LAST_YEAR = "last_year"


DEFAULT_TIMEFRAME = Timeframe.LAST_MONTH


@dataclass(frozen=True, slots=True)
class DateWindow:
    start: date
    end: date


@dataclass(frozen=True, slots=True)
class FilterSpecification:
    start: date
    end: date
    timeframe: Timeframe | None = None
    currency: str = ALL_CURRENCIES
    department: str | None = None
    status: str | None = None
    owner_id: str | None = None

    @property
    def window(self) -> DateWindow:
        return DateWindow(self.start, self.end)

    @property
    def currency_filter(self) -> str | None:
        return None if self.currency == ALL_CURRENCIES else self.currency

    def with_window(self, window: DateWindow) -> FilterSpecification:
        """Same filters over an explicit window."""
        return dataclasses.replace(self, start=window.start, end=window.end, timeframe=None)


def _first_of_month(value: date) -> date:
    return date(value.year, value.month, 1)


def resolve_timeframe(timeframe: Timeframe, today: date) -> DateWindow:
    if timeframe is Timeframe.CURRENT_MONTH:
        return DateWindow(_first_of_month(today), today)
    if timeframe is Timeframe.LAST_MONTH:
        this_month = _first_of_month(today)
        return DateWindow(this_month - relativedelta(months=1), this_month - timedelta(days=1))
    if timeframe is Timeframe.LAST_3_MONTHS:
        return DateWindow(today - relativedelta(months=3), today)
    if timeframe is Timeframe.LAST_6_MONTHS:
        return DateWindow(today - relativedelta(months=6), today)
    return DateWindow(today - relativedelta(years=1), today)


def parse_timeframe(value: object) -> Timeframe:
    """Map a preset name to a ``Timeframe``, falling back to ``last_month``."""
    if isinstance(value, Timeframe):
        return value
    if value is None:
        return DEFAULT_TIMEFRAME
    try:
        return Timeframe(str(value).strip().lower())
    except ValueError:
        logger.warning("Unrecognized timeframe %r, falling back to %s.", value, DEFAULT_TIMEFRAME.value)
        return DEFAULT_TIMEFRAME


def budget_period_window(period: BudgetPeriod, reference: date) -> DateWindow:
    """Calendar month or calendar year containing ``reference``."""
    if period is BudgetPeriod.MONTHLY:
        start = _first_of_month(reference)
        return DateWindow(start, start + relativedelta(months=1) - timedelta(days=1))
    return DateWindow(date(reference.year, 1, 1), date(reference.year, 12, 31))


def _is_month_end(value: date) -> bool:
    return (value + timedelta(days=1)).day == 1


def previous_window(window: DateWindow) -> DateWindow:
    """The window of equal length that ends the day before ``window`` starts.

    Whole calendar months shift by months, so February is compared with
    January rather than with the 29 days before it.
    """
    if window.start.day == 1 and _is_month_end(window.end):
        months = (window.end.year - window.start.year) * 12 + window.end.month - window.start.month + 1
        return DateWindow(window.start - relativedelta(months=months), window.start - timedelta(days=1))
    length = window.end - window.start
    end = window.start - timedelta(days=1)
    return DateWindow(end - length, end)


def _parse_date(value: object, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as exc:
            raise ValidationError(f"{field_name} must be an ISO date, got {value!r}.") from exc
    raise ValidationError(f"{field_name} must be a date, got {type(value).__name__}.")


def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_currency(value: object, supported: Iterable[str] | None) -> str:
    code = _optional_text(value)
    if code is None or code.lower() == ALL_CURRENCIES:
        return ALL_CURRENCIES
    code = code.upper()
    if supported is not None and code not in set(supported):
        raise ConfigurationError(f"Unknown currency code {code!r}.")
    return code


def build_filter_spec(
    options: Mapping[str, object] | None = None,
    *,
    today: date | None = None,
    supported_currencies: Iterable[str] | None = None,
) -> FilterSpecification:
    """Normalize raw filter options into an immutable ``FilterSpecification``.

    Recognized keys: ``timeframe`` (preset name or ``{"start", "end"}``
    mapping), ``start``, ``end``, ``currency``, ``department``, ``status``,
    ``owner_id``. An explicit window wins over a preset.
    """
    options = options or {}
    today = today or date.today()

    raw_timeframe = options.get("timeframe")
    explicit: Mapping[str, object] | None = None
    if isinstance(raw_timeframe, Mapping):
        explicit = raw_timeframe
    elif options.get("start") is not None:
        explicit = options
    elif options.get("end") is not None:
        raise ValidationError("end requires a start date.")

    timeframe: Timeframe | None
    if explicit is not None:
        if explicit.get("start") is None:
            raise ValidationError("An explicit timeframe requires a start date.")
        start = _parse_date(explicit["start"], "start")
        end = _parse_date(explicit["end"], "end") if explicit.get("end") is not None else today
        if start > end:
            raise ValidationError("start must be less than or equal to end.")
        timeframe = None
    else:
        timeframe = parse_timeframe(raw_timeframe)
        window = resolve_timeframe(timeframe, today)
        start, end = window.start, window.end

    return FilterSpecification(
        start=start,
        end=end,
        timeframe=timeframe,
        currency=_normalize_currency(options.get("currency"), supported_currencies),
        department=_optional_text(options.get("department")),
        status=_optional_text(options.get("status")),
        owner_id=_optional_text(options.get("owner_id")),
    )
