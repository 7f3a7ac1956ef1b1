"""ORM model package."""

from rollup.models.entities import (
    BudgetCategory,
    BudgetExpense,
    Client,
    Employee,
    Invoice,
    PaymentRecord,
    PaymentSchedule,
    PayrollRecord,
)

__all__ = [
    "BudgetCategory",
    "BudgetExpense",
    "Client",
    "Employee",
    "Invoice",
    "PaymentRecord",
    "PaymentSchedule",
    "PayrollRecord",
]
