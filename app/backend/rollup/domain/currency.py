"""Fixed-rate currency normalization."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal

from rollup.core.config import Settings
from rollup.core.errors import ConfigurationError

ZERO = Decimal("0")
Q2 = Decimal("0.01")

# Units of each currency per one USD.
DEFAULT_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "BDT": Decimal("110"),
}


def q2(value: Decimal) -> Decimal:
    return value.quantize(Q2)


def safe_div(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == ZERO:
        return ZERO
    return (numerator / denominator).quantize(Q2)


class CurrencyNormalizer:
    """Converts amounts between currencies through a base unit.

    ``rates`` maps a currency code to how many units of it make one base
    unit. Rates are static: converting old records uses today's table.
    """

    def __init__(self, rates: Mapping[str, Decimal] | None = None, base_currency: str = "USD") -> None:
        table = {code.upper(): Decimal(str(rate)) for code, rate in (rates or DEFAULT_RATES).items()}
        for code, rate in table.items():
            if rate <= 0:
                raise ConfigurationError(f"Exchange rate for {code} must be positive.")
        base = base_currency.upper()
        if base not in table:
            raise ConfigurationError(f"Missing exchange rate for base currency {base}.")
        self._rates = table
        self.base_currency = base

    @classmethod
    def from_settings(cls, settings: Settings) -> CurrencyNormalizer:
        return cls(settings.exchange_rates, settings.base_currency)

    @property
    def supported_currencies(self) -> tuple[str, ...]:
        return tuple(self._rates)

    def rate_for(self, currency: str) -> Decimal:
        try:
            return self._rates[currency.upper()]
        except KeyError:
            raise ConfigurationError(f"Unknown currency code {currency!r}.") from None

    def normalize(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        from_rate = self.rate_for(from_currency)
        to_rate = self.rate_for(to_currency)
        if from_currency.upper() == to_currency.upper():
            return amount
        return amount / from_rate * to_rate
