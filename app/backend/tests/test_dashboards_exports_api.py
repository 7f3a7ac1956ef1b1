from __future__ import annotations

import csv
import io
import uuid
from datetime import date, timedelta
from decimal import Decimal

from fastapi.testclient import TestClient
from openpyxl import load_workbook
from sqlalchemy.orm import Session, sessionmaker

from conftest import seed
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

FEBRUARY = {"start": "2024-02-01", "end": "2024-02-29"}


def _seed_payments(db: Session) -> None:
    def payment(
        amount: str,
        currency: str,
        status: str,
        department: str,
        day: int,
        method: str = "bank_transfer",
    ) -> PaymentRecord:
        return PaymentRecord(
            amount=Decimal(amount),
            currency=currency,
            status=status,
            department=department,
            payment_method=method,
            employee_name="Staff",
            payment_date=date(2024, 2, day),
        )

    today = date.today()
    seed(
        db,
        payment("1000.00", "USD", "paid", "Engineering", 3),
        payment("250.50", "USD", "paid", "Sales", 5, method="card"),
        payment("11000.00", "BDT", "pending", "Sales", 7),
        payment("99.50", "USD", "failed", "Engineering", 9),
        payment("22000.00", "BDT", "paid", "Engineering", 11),
        PaymentRecord(amount=Decimal("5000.00"), currency="USD", status="paid", payment_date=date(2024, 3, 1)),
        PaymentSchedule(amount=Decimal("300"), scheduled_date=today + timedelta(days=5)),
        PaymentSchedule(amount=Decimal("400"), scheduled_date=today - timedelta(days=5)),
    )


def _seed_budgets(db: Session) -> None:
    travel = BudgetCategory(
        id=uuid.uuid4(),
        name="Travel",
        department="Operations",
        monthly_budget=Decimal("1000"),
        annual_budget=Decimal("12000"),
    )
    office = BudgetCategory(
        id=uuid.uuid4(),
        name="Office",
        department="Operations",
        monthly_budget=Decimal("500"),
        annual_budget=Decimal("6000"),
    )
    retired = BudgetCategory(
        id=uuid.uuid4(),
        name="Retired",
        monthly_budget=Decimal("300"),
        annual_budget=Decimal("3600"),
        is_active=False,
    )
    seed(db, travel, office, retired)
    seed(
        db,
        BudgetExpense(category_id=travel.id, amount=Decimal("700"), expense_date=date(2024, 2, 4)),
        BudgetExpense(category_id=travel.id, amount=Decimal("55000"), currency="BDT", expense_date=date(2024, 2, 6)),
        BudgetExpense(category_id=office.id, amount=Decimal("100"), expense_date=date(2024, 2, 8)),
        BudgetExpense(category_id=retired.id, amount=Decimal("999"), expense_date=date(2024, 2, 8)),
        BudgetExpense(category_id=travel.id, amount=Decimal("5000"), expense_date=date(2024, 1, 31)),
    )


def _seed_staff(db: Session) -> None:
    def employee(name: str, salary: str, currency: str = "USD") -> Employee:
        return Employee(
            id=uuid.uuid4(),
            name=name,
            department="Engineering",
            base_salary=Decimal(salary),
            currency=currency,
            joining_date=date(2023, 4, 1),
        )

    junior = employee("Junior", "1500")
    seed(db, junior, employee("Dhaka", "330000", "BDT"), employee("Lead", "12000"), employee("Mid", "2000"))
    seed(
        db,
        PayrollRecord(
            employee_id=junior.id,
            pay_period_start=date(2024, 2, 1),
            pay_period_end=date(2024, 2, 29),
            net_salary=Decimal("1800"),
            status="paid",
        ),
    )


def test_payment_dashboard(client: TestClient, db_session: Session) -> None:
    _seed_payments(db_session)

    response = client.get("/api/v1/dashboards/payments", params={**FEBRUARY, "display_currency": "bdt"})

    assert response.status_code == 200
    body = response.json()
    assert body["filter"]["timeframe"] is None
    assert body["filter"]["start"] == "2024-02-01"
    assert body["display_currency"] == "BDT"
    assert body["stats"] == {
        "total_payments": 5,
        "pending_payments": 1,
        "completed_payments": 3,
        "failed_payments": 1,
        "totals_by_currency": {"BDT": "33000.00", "USD": "1350.00"},
        "success_rate": "60.00",
    }
    assert body["summary"]["counts_by_status"] == {"failed": 1, "paid": 3, "pending": 1}
    assert body["normalized"]["totals_by_currency"] == {"BDT": "181500.00"}
    assert [group["key"] for group in body["normalized"]["breakdown"]] == ["Engineering", "Sales"]
    assert sum(group["count"] for group in body["summary"]["breakdown"]) == 5
    assert [point["month_start"] for point in body["monthly_trend"]] == ["2024-02-01"]
    assert body["upcoming"]["total_count"] == 1
    assert body["upcoming"]["totals_by_currency"] == {"USD": "300.00"}
    assert body["by_method"]["group_key"] == "payment_method"
    by_method = [(group["key"], group["count"], group["totals_by_currency"]) for group in body["by_method"]["breakdown"]]
    assert by_method == [
        ("bank_transfer", 4, {"BDT": "33000.00", "USD": "1099.50"}),
        ("card", 1, {"USD": "250.50"}),
    ]


def test_payment_dashboard_with_currency_filter(client: TestClient, db_session: Session) -> None:
    _seed_payments(db_session)

    response = client.get("/api/v1/dashboards/payments", params={**FEBRUARY, "currency": "usd"})

    assert response.status_code == 200
    body = response.json()
    assert body["filter"]["currency"] == "USD"
    assert body["summary"]["totals_by_currency"] == {"USD": "1350.00"}
    assert body["stats"]["success_rate"] == "66.67"


def test_empty_window_returns_zeroed_dashboard(client: TestClient) -> None:
    response = client.get("/api/v1/dashboards/payments", params=FEBRUARY)

    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["is_empty"] is True
    assert body["summary"]["totals_by_currency"] == {}
    assert body["normalized"]["totals_by_currency"] == {"USD": "0.00"}
    assert body["monthly_trend"] == []


def test_request_errors_map_to_422(client: TestClient) -> None:
    bad_display = client.get("/api/v1/dashboards/payments", params={**FEBRUARY, "display_currency": "EUR"})
    bad_filter_currency = client.get("/api/v1/dashboards/payments", params={**FEBRUARY, "currency": "EUR"})
    inverted = client.get("/api/v1/dashboards/payments", params={"start": "2024-03-01", "end": "2024-02-01"})
    bad_period = client.get("/api/v1/dashboards/budgets", params={**FEBRUARY, "period": "weekly"})
    end_only = client.get("/api/v1/dashboards/payments", params={"end": "2024-02-29"})

    assert bad_display.status_code == 422
    assert bad_filter_currency.status_code == 422
    assert "EUR" in bad_filter_currency.json()["detail"]
    assert inverted.status_code == 422
    assert bad_period.status_code == 422
    assert end_only.status_code == 422


def test_unknown_timeframe_falls_back_instead_of_failing(client: TestClient) -> None:
    response = client.get("/api/v1/dashboards/payments", params={"timeframe": "fortnight"})

    assert response.status_code == 200
    assert response.json()["filter"]["timeframe"] == "last_month"


def test_budget_dashboard_monthly(client: TestClient, db_session: Session) -> None:
    _seed_budgets(db_session)

    response = client.get("/api/v1/dashboards/budgets", params=FEBRUARY)

    assert response.status_code == 200
    body = response.json()
    assert body["period"] == "monthly"
    assert body["summary"] == {
        "currency": "USD",
        "total_budget": "1500.00",
        "total_spent": "1300.00",
        "variance": "200.00",
        "variance_percent": "13.33",
        "is_over_budget": False,
        "categories_over_budget": 1,
        "category_count": 2,
    }
    office, travel = body["categories"]
    assert (office["name"], travel["name"]) == ("Office", "Travel")
    assert travel["spent"] == "1200.00"
    assert travel["variance"] == "-200.00"
    assert travel["variance_percent"] == "-20.00"
    assert travel["progress"] == "1.0000"
    assert travel["is_over_budget"] is True
    assert office["progress"] == "0.2000"


def test_budget_dashboard_annual(client: TestClient, db_session: Session) -> None:
    _seed_budgets(db_session)

    response = client.get("/api/v1/dashboards/budgets", params={**FEBRUARY, "period": "annual"})

    assert response.status_code == 200
    body = response.json()
    assert body["window"] == {"start": "2024-01-01", "end": "2024-12-31"}
    travel = next(row for row in body["categories"] if row["name"] == "Travel")
    office = next(row for row in body["categories"] if row["name"] == "Office")
    assert travel["budgeted"] == "12000.00"
    assert travel["spent"] == "6200.00"
    assert travel["variance"] == "5800.00"
    assert travel["progress"] == "0.5167"
    assert office["spent"] == "100.00"


def test_annual_budget_counts_the_whole_year_whatever_the_window(client: TestClient, db_session: Session) -> None:
    _seed_budgets(db_session)

    # A one-week window inside February still measures the annual budget over 2024.
    response = client.get(
        "/api/v1/dashboards/budgets",
        params={"start": "2024-02-05", "end": "2024-02-11", "period": "annual"},
    )

    assert response.status_code == 200
    travel = next(row for row in response.json()["categories"] if row["name"] == "Travel")
    assert travel["spent"] == "6200.00"


def test_monthly_budget_window_follows_the_filter_end(client: TestClient, db_session: Session) -> None:
    _seed_budgets(db_session)

    response = client.get("/api/v1/dashboards/budgets", params={"start": "2024-01-15", "end": "2024-01-31"})

    assert response.status_code == 200
    body = response.json()
    assert body["window"] == {"start": "2024-01-01", "end": "2024-01-31"}
    travel = next(row for row in body["categories"] if row["name"] == "Travel")
    assert travel["spent"] == "5000.00"
    assert travel["is_over_budget"] is True


def test_salary_dashboard_buckets_in_base_currency(client: TestClient, db_session: Session) -> None:
    _seed_staff(db_session)

    response = client.get("/api/v1/dashboards/salaries", params=FEBRUARY)

    assert response.status_code == 200
    body = response.json()
    salaries = body["salaries"]
    assert salaries["normalized_to"] == "USD"
    assert salaries["totals_by_currency"] == {"USD": "18500.00"}
    assert [(bucket["label"], bucket["count"]) for bucket in salaries["distribution"]] == [
        ("0-2000", 1),
        ("2000-5000", 2),
        ("5000-10000", 0),
        ("10000+", 1),
    ]
    assert body["salary_stats"] == {
        "currency": "USD",
        "count": 4,
        "total": "18500.00",
        "average": "4625.00",
        "highest": "12000.00",
    }
    assert body["payroll"]["totals_by_currency"] == {"USD": "1800.00"}
    assert body["payroll"]["breakdown"][0]["key"] == "Engineering"


def test_salary_dashboard_leaves_out_terminated_staff(client: TestClient, db_session: Session) -> None:
    _seed_staff(db_session)
    seed(
        db_session,
        Employee(
            name="Former",
            department="Engineering",
            base_salary=Decimal("40000"),
            joining_date=date(2020, 1, 6),
            status="terminated",
        ),
    )

    response = client.get("/api/v1/dashboards/salaries", params=FEBRUARY)

    assert response.status_code == 200
    body = response.json()
    assert body["salaries"]["total_count"] == 4
    assert body["salaries"]["totals_by_currency"] == {"USD": "18500.00"}
    assert body["salary_stats"]["highest"] == "12000.00"


def test_invoice_dashboard_groups_by_client(client: TestClient, db_session: Session) -> None:
    acme = Client(id=uuid.uuid4(), name="Acme")
    seed(db_session, acme)
    seed(
        db_session,
        Invoice(
            client_id=acme.id,
            invoice_number="INV-1",
            amount=Decimal("5000"),
            status="sent",
            issue_date=date(2024, 2, 2),
        ),
        Invoice(
            invoice_number="INV-2",
            amount=Decimal("110000"),
            currency="BDT",
            status="paid",
            issue_date=date(2024, 2, 20),
        ),
    )

    response = client.get("/api/v1/dashboards/invoices", params=FEBRUARY)

    assert response.status_code == 200
    body = response.json()
    assert body["normalized"]["totals_by_currency"] == {"USD": "6000.00"}
    keys = {group["key"] for group in body["summary"]["breakdown"]}
    assert keys == {str(acme.id), "Unknown"}


def _seed_revenue(db: Session) -> None:
    def invoice(number: str, amount: str, status: str, issued: date, currency: str = "USD") -> Invoice:
        return Invoice(
            invoice_number=number,
            amount=Decimal(amount),
            currency=currency,
            status=status,
            issue_date=issued,
        )

    def payment(amount: str, status: str, paid_on: date) -> PaymentRecord:
        return PaymentRecord(amount=Decimal(amount), status=status, payment_date=paid_on)

    seed(
        db,
        invoice("INV-J1", "3000", "paid", date(2024, 1, 10)),
        invoice("INV-F1", "5000", "paid", date(2024, 2, 2)),
        invoice("INV-F2", "110000", "paid", date(2024, 2, 20), currency="BDT"),
        invoice("INV-F3", "700", "sent", date(2024, 2, 21)),
        payment("1200", "paid", date(2024, 1, 25)),
        payment("1500", "paid", date(2024, 2, 12)),
        payment("500", "pending", date(2024, 2, 26)),
    )


def test_revenue_dashboard_compares_with_previous_month(client: TestClient, db_session: Session) -> None:
    _seed_revenue(db_session)

    response = client.get("/api/v1/dashboards/revenue", params=FEBRUARY)

    assert response.status_code == 200
    body = response.json()
    assert body["display_currency"] == "USD"
    assert (body["previous_filter"]["start"], body["previous_filter"]["end"]) == ("2024-01-01", "2024-01-31")
    assert body["current"] == {
        "currency": "USD",
        "gross_revenue": "6000.00",
        "expenses": "2000.00",
        "net_revenue": "4000.00",
        "paid_invoice_count": 2,
    }
    assert body["previous"]["net_revenue"] == "1800.00"
    assert body["gross_revenue_change"] == {
        "current": "6000.00",
        "previous": "3000.00",
        "change": "3000.00",
        "change_percent": "100.00",
        "trend": "up",
    }
    assert body["net_revenue_change"]["change"] == "2200.00"
    assert body["net_revenue_change"]["change_percent"] == "122.22"
    assert body["net_revenue_change"]["trend"] == "up"


def test_revenue_dashboard_after_a_quiet_month(client: TestClient, db_session: Session) -> None:
    _seed_revenue(db_session)

    response = client.get(
        "/api/v1/dashboards/revenue",
        params={"start": "2024-03-01", "end": "2024-03-31", "display_currency": "bdt"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["current"]["net_revenue"] == "0.00"
    assert body["previous"]["net_revenue"] == "440000.00"
    assert body["net_revenue_change"]["change_percent"] == "-100.00"
    assert body["net_revenue_change"]["trend"] == "down"


def test_export_payments_csv(client: TestClient, db_session: Session) -> None:
    _seed_payments(db_session)

    response = client.get("/api/v1/exports/payments", params=FEBRUARY)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    expected_name = f"payments-{date.today().isoformat()}.csv"
    assert response.headers["content-disposition"] == f'attachment; filename="{expected_name}"'
    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert len(rows) == 5
    assert rows[0]["occurred_at"] == "2024-02-11"
    assert (rows[0]["amount"], rows[0]["currency"]) == ("22000.00", "BDT")
    assert sorted({row["payment_method"] for row in rows}) == ["bank_transfer", "card"]


def test_export_payment_summary_csv(client: TestClient, db_session: Session) -> None:
    _seed_payments(db_session)

    response = client.get("/api/v1/exports/payment-summary", params=FEBRUARY)

    assert response.status_code == 200
    rows = list(csv.DictReader(io.StringIO(response.text)))
    totals = [(row["amount"], row["currency"], row["count"]) for row in rows if row["section"] == "total"]
    assert totals == [("33000.00", "BDT", "2"), ("1350.00", "USD", "3")]


def test_export_budget_variance_xlsx(client: TestClient, db_session: Session) -> None:
    _seed_budgets(db_session)

    response = client.get("/api/v1/exports/budget-variance", params={**FEBRUARY, "format": "xlsx"})

    assert response.status_code == 200
    assert response.headers["content-disposition"].endswith('.xlsx"')
    sheet = load_workbook(io.BytesIO(response.content)).active
    values = [[cell.value for cell in row] for row in sheet.iter_rows()]
    assert values[0][:3] == ["category_id", "category", "department"]
    assert [row[1] for row in values[1:]] == ["Office", "Travel"]


def test_export_salary_distribution(client: TestClient, db_session: Session) -> None:
    _seed_staff(db_session)

    response = client.get("/api/v1/exports/salary-distribution", params=FEBRUARY)

    assert response.status_code == 200
    rows = list(csv.DictReader(io.StringIO(response.text)))
    distribution = [(row["key"], row["count"]) for row in rows if row["section"] == "distribution"]
    assert distribution == [("0-2000", "1"), ("2000-5000", "2"), ("5000-10000", "0"), ("10000+", "1")]


def test_export_rejects_unknown_kind_and_format(client: TestClient) -> None:
    unknown = client.get("/api/v1/exports/forecasts", params=FEBRUARY)
    bad_format = client.get("/api/v1/exports/payments", params={**FEBRUARY, "format": "pdf"})

    assert unknown.status_code == 404
    assert bad_format.status_code == 422


def test_store_failure_maps_to_503(client: TestClient, session_factory: sessionmaker[Session]) -> None:
    PaymentRecord.__table__.drop(bind=session_factory.kw["bind"])

    response = client.get("/api/v1/dashboards/payments", params=FEBRUARY)

    assert response.status_code == 503
    assert "Retry" in response.json()["detail"]
