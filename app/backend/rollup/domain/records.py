"""Engine-side value types for money-bearing records."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

UNKNOWN_LABEL = "Unknown"
ACTIVE_STATUS = "active"


class RecordKind(str, enum.Enum):
    PAYMENT = "payment"
    SCHEDULE = "schedule"
    PAYROLL = "payroll"
    EXPENSE = "expense"
    INVOICE = "invoice"
    SALARY = "salary"


class BudgetPeriod(str, enum.Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


@dataclass(frozen=True, slots=True)
class MoneyRecord:
    """A single financial event as the engine sees it. Never mutated."""

    id: str
    kind: RecordKind
    amount: Decimal
    currency: str
    occurred_at: date
    status: str
    department: str | None = None
    category_id: str | None = None
    owner_id: str | None = None
    owner_name: str = UNKNOWN_LABEL
    payment_method: str | None = None


@dataclass(frozen=True, slots=True)
class BudgetCategory:
    id: str
    name: str
    department: str | None
    monthly_budget: Decimal
    annual_budget: Decimal
    is_active: bool = True
    currency: str = "USD"

    def budget_for(self, period: BudgetPeriod) -> Decimal:
        if period is BudgetPeriod.MONTHLY:
            return self.monthly_budget
        return self.annual_budget
