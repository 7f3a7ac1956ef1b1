"""Shared query parameters for filtered endpoints."""

from __future__ import annotations

from datetime import date

from fastapi import Query

from rollup.core.config import get_settings
from rollup.domain.currency import CurrencyNormalizer
from rollup.domain.filters import FilterSpecification, build_filter_spec


def get_filter_spec(
    timeframe: str | None = Query(default=None),
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    currency: str = Query(default="all"),
    department: str | None = Query(default=None),
    status: str | None = Query(default=None),
    owner_id: str | None = Query(default=None),
) -> FilterSpecification:
    settings = get_settings()
    options: dict[str, object] = {
        "timeframe": timeframe or settings.default_timeframe,
        "start": start,
        "end": end,
        "currency": currency,
        "department": department,
        "status": status,
        "owner_id": owner_id,
    }
    return build_filter_spec(
        options,
        supported_currencies=CurrencyNormalizer.from_settings(settings).supported_currencies,
    )
