"""Tests for the financial dashboard reports."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from school_ledger.ledger import DateRange, compute_fee_statement
from school_ledger.models import (
    ItemType,
    Payment,
    Payroll,
    PayrollStatus,
    Payslip,
    PayslipItem,
    Student,
)
from school_ledger.periods import AcademicYearConfig
from school_ledger.summary import (
    IncomeReport,
    StudentOutstanding,
    SummaryService,
    compute_financial_summary,
    income_by_month,
    payments_by_billing_month,
    salary_expenses_by_month,
    staff_payment_due_report,
    student_outstanding_report,
)

SCHOOL_YEAR = AcademicYearConfig(label="2024-2025", start_month=9)


def _student(student_id: str, status: str = "active") -> Student:
    return Student(
        id=student_id,
        name=f"Student {student_id}",
        grade="Grade 5",
        enrollment_date=date(2024, 9, 1),
        status=status,
    )


def _statement(paid: str):
    payments = []
    if Decimal(paid) > 0:
        payments.append(
            Payment(
                id="p", student_id="x", amount=Decimal(paid), date=date(2024, 9, 5), month=""
            )
        )
    return compute_fee_statement(
        date(2024, 9, 1),
        Decimal("500"),
        payments,
        DateRange(date(2024, 9, 1), date(2024, 11, 30)),
        academic_year=SCHOOL_YEAR,
    )


def _payslip(staff_id: str, net: str) -> Payslip:
    return Payslip(
        staff_id=staff_id,
        staff_name=f"Staff {staff_id}",
        period="",
        base_salary=Decimal(net),
        earnings=(
            PayslipItem(
                id="base-salary",
                label="Salaire de base",
                amount=Decimal(net),
                type=ItemType.EARNING,
                category="base",
            ),
        ),
    )


def _payroll(
    payroll_id: str,
    period: str,
    run_day: int,
    payslips: tuple[Payslip, ...],
    status: PayrollStatus = PayrollStatus.PENDING,
) -> Payroll:
    return Payroll(
        id=payroll_id,
        period=period,
        run_date=datetime(2024, run_day, 28, tzinfo=timezone.utc),
        payslips=payslips,
        status=status,
    )


class TestStudentOutstandingReport:
    def test_sorted_by_outstanding_desc(self):
        students = [_student("a"), _student("b"), _student("c")]
        statements = {"a": _statement("1000"), "b": _statement("0"), "c": _statement("1500")}

        report = student_outstanding_report(students, statements)

        # c is fully paid and left out
        assert [(e.student_id, e.outstanding) for e in report] == [
            ("b", Decimal("1500")),
            ("a", Decimal("500")),
        ]

    def test_overpaid_students_are_listed_with_negative_outstanding(self):
        report = student_outstanding_report([_student("a")], {"a": _statement("1700")})

        assert report[0].outstanding == Decimal("-200")

    def test_inactive_and_unconfigured_students_are_skipped(self):
        students = [_student("a", status="withdrawn"), _student("b")]

        report = student_outstanding_report(students, {"a": _statement("0")})

        assert report == []


class TestStaffPaymentDueReport:
    """Tests for salaries still owed."""

    def test_latest_pending_payroll_wins(self):
        payrolls = [
            _payroll("june", "June 2024", 6, (_payslip("t1", "7000"), _payslip("t2", "5000"))),
            _payroll("july", "July 2024", 7, (_payslip("t1", "7200"),)),
        ]

        report = staff_payment_due_report(payrolls)

        by_staff = {entry.staff_id: entry for entry in report}
        assert by_staff["t1"].total_due_last_payroll == Decimal("7200")
        assert by_staff["t1"].last_payroll_period == "July 2024"
        assert by_staff["t2"].payroll_id == "june"

    def test_paid_and_cancelled_payrolls_owe_nothing(self):
        payrolls = [
            _payroll("june", "June 2024", 6, (_payslip("t1", "7000"),), PayrollStatus.PAID),
            _payroll("july", "July 2024", 7, (_payslip("t2", "6000"),), PayrollStatus.CANCELLED),
        ]

        assert staff_payment_due_report(payrolls) == []


class TestComputeFinancialSummary:
    def test_totals(self):
        balances = [
            StudentOutstanding("a", "A", "Grade 5", Decimal("1500"), Decimal("1000")),
            StudentOutstanding("b", "B", "Grade 5", Decimal("1500"), Decimal("0")),
        ]
        payrolls = [_payroll("july", "July 2024", 7, (_payslip("t1", "7200"),))]

        summary = compute_financial_summary(balances, payrolls)

        assert summary.total_student_outstanding == Decimal("2000")
        assert summary.total_student_due == Decimal("3000")
        assert summary.total_student_paid == Decimal("1000")
        assert summary.total_staff_payable_salaries == Decimal("7200")
        assert summary.student_count == 2
        assert summary.staff_count == 1
        assert summary.to_dict()["total_student_outstanding"] == "2000.00"

    def test_empty(self):
        summary = compute_financial_summary([], [])

        assert summary.total_student_outstanding == Decimal("0")
        assert summary.staff_count == 0


def _paid(amount: str, paid_on: date, month: str) -> Payment:
    return Payment(
        id=f"pay-{paid_on.isoformat()}",
        student_id="s1",
        amount=Decimal(amount),
        date=paid_on,
        month=month,
    )


class TestMonthlyTotals:
    """Tests for income, salary expense and billing-month totals."""

    def test_income_is_grouped_by_payment_month_and_year(self):
        payments = [
            _paid("500", date(2024, 9, 3), "September 2024"),
            _paid("650", date(2024, 9, 10), "September 2024"),
            _paid("500", date(2024, 10, 2), "October 2024"),
            _paid("400", date(2025, 9, 4), "September 2025"),
        ]

        totals = income_by_month(payments)

        assert list(totals.items()) == [
            ("September 2024", Decimal("1150.00")),
            ("October 2024", Decimal("500.00")),
            ("September 2025", Decimal("400.00")),
        ]

    def test_income_range_bounds_are_inclusive_and_optional(self):
        payments = [
            _paid("500", date(2024, 9, 30), "September 2024"),
            _paid("500", date(2024, 10, 1), "October 2024"),
            _paid("500", date(2024, 11, 30), "November 2024"),
        ]

        from_october = income_by_month(payments, start=date(2024, 10, 1))
        until_october = income_by_month(payments, end=date(2024, 10, 1))

        assert list(from_october) == ["October 2024", "November 2024"]
        assert list(until_october) == ["September 2024", "October 2024"]

    def test_salary_expenses_by_run_month(self):
        payrolls = [
            _payroll("july", "July 2024", 7, (_payslip("t1", "7200"),)),
            _payroll(
                "june",
                "June 2024",
                6,
                (_payslip("t1", "7000"), _payslip("t2", "5000")),
                PayrollStatus.PAID,
            ),
        ]

        totals = salary_expenses_by_month(payrolls)
        july_only = salary_expenses_by_month(payrolls, start=date(2024, 7, 1))

        assert list(totals.items()) == [
            ("June 2024", Decimal("12000.00")),
            ("July 2024", Decimal("7200.00")),
        ]
        assert july_only == {"July 2024": Decimal("7200.00")}

    def test_billing_month_ignores_payment_date(self):
        payments = [
            _paid("500", date(2024, 10, 2), "September 2024"),
            _paid("500", date(2024, 9, 3), "September 2024"),
            _paid("250", date(2024, 9, 30), "October 2024"),
        ]

        totals = payments_by_billing_month(payments)

        assert list(totals.items()) == [
            ("September 2024", Decimal("1000.00")),
            ("October 2024", Decimal("250.00")),
        ]

    def test_income_report_to_dict(self):
        report = IncomeReport(
            income_by_month={"September 2024": Decimal("1150.00")},
            salary_expenses_by_month={"July 2024": Decimal("7200.00")},
            payments_by_billing_month={"September 2024": Decimal("1150.00")},
        )

        data = report.to_dict()

        assert data["income_by_month"] == {"September 2024": "1150.00"}
        assert data["total_income"] == "1150.00"
        assert data["total_salary_expenses"] == "7200.00"


class TestSummaryService:
    @pytest.mark.asyncio
    async def test_summary_from_record_store(self, school_store):
        school_store.payrolls["july"] = _payroll(
            "july", "July 2024", 7, (_payslip("t1", "6424.12"),)
        )
        service = SummaryService(
            school_store,
            school_store,
            school_store,
            school_store,
            SCHOOL_YEAR,
            clock=lambda: date(2024, 11, 15),
        )

        report = await service.student_outstanding_report()
        summary = await service.financial_summary()

        # Statements use the grade fee only, without support courses
        assert [(e.student_id, e.outstanding) for e in report] == [("s2", Decimal("850"))]
        assert summary.total_student_outstanding == Decimal("850")
        assert summary.total_staff_payable_salaries == Decimal("6424.12")

    @pytest.mark.asyncio
    async def test_students_without_fee_structure_are_skipped(self, school_store):
        school_store.students["s9"] = Student(
            id="s9", name="New", grade="Grade 9", enrollment_date=date(2024, 9, 1)
        )
        service = SummaryService(
            school_store,
            school_store,
            school_store,
            school_store,
            SCHOOL_YEAR,
            clock=lambda: date(2024, 11, 15),
        )

        report = await service.student_outstanding_report()

        assert {e.student_id for e in report} == {"s2"}

    @pytest.mark.asyncio
    async def test_income_and_salary_totals_from_record_store(self, school_store):
        school_store.payrolls["july"] = _payroll(
            "july", "July 2024", 7, (_payslip("t1", "6424.12"),)
        )
        service = SummaryService(
            school_store,
            school_store,
            school_store,
            school_store,
            SCHOOL_YEAR,
            clock=lambda: date(2024, 11, 15),
        )

        income = await service.income_summary()
        autumn = await service.income_summary(date(2024, 10, 1), date(2024, 11, 30))
        salaries = await service.salary_expenses()
        billed = await service.payments_by_billing_month()
        report = await service.income_report(start=date(2024, 8, 1))

        assert income == {
            "September 2024": Decimal("1150.00"),
            "October 2024": Decimal("500.00"),
            "November 2024": Decimal("500.00"),
        }
        assert list(autumn) == ["October 2024", "November 2024"]
        assert salaries == {"July 2024": Decimal("6424.12")}
        assert billed == income
        assert report.total_income == Decimal("2150.00")
        assert report.salary_expenses_by_month == {}
