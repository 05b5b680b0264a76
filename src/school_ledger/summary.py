"""Dashboard totals across all students and payrolls."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

import structlog

from school_ledger.errors import LedgerError
from school_ledger.ledger import FeeStatement, StatementService
from school_ledger.models import Payment, Payroll, PayrollStatus, Student
from school_ledger.money import sum_money
from school_ledger.periods import AcademicYearConfig, format_month_label, start_of_month
from school_ledger.stores import (
    FeeStructureProvider,
    PaymentStore,
    PayrollStore,
    StudentProvider,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StudentOutstanding:
    """All-time fee position of one student."""

    student_id: str
    student_name: str
    grade: str
    total_due: Decimal
    total_paid: Decimal
    enrollment_date: date | None = None

    @property
    def outstanding(self) -> Decimal:
        return self.total_due - self.total_paid

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "student_name": self.student_name,
            "grade": self.grade,
            "total_due": str(self.total_due),
            "total_paid": str(self.total_paid),
            "outstanding": str(self.outstanding),
            "enrollment_date": (
                self.enrollment_date.isoformat() if self.enrollment_date else None
            ),
        }


@dataclass(frozen=True)
class StaffPaymentDue:
    """Net pay still owed to a staff member from their latest pending payroll."""

    staff_id: str
    staff_name: str
    total_due_last_payroll: Decimal
    last_payroll_period: str
    payroll_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "staff_id": self.staff_id,
            "staff_name": self.staff_name,
            "total_due_last_payroll": str(self.total_due_last_payroll),
            "last_payroll_period": self.last_payroll_period,
            "payroll_id": self.payroll_id,
        }


@dataclass(frozen=True)
class FinancialSummary:
    total_student_outstanding: Decimal
    total_student_due: Decimal
    total_student_paid: Decimal
    total_staff_payable_salaries: Decimal
    student_count: int
    staff_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_student_outstanding": str(self.total_student_outstanding),
            "total_student_due": str(self.total_student_due),
            "total_student_paid": str(self.total_student_paid),
            "total_staff_payable_salaries": str(self.total_staff_payable_salaries),
            "student_count": self.student_count,
            "staff_count": self.staff_count,
        }


def student_outstanding_report(
    students: Iterable[Student], statements: Mapping[str, FeeStatement]
) -> list[StudentOutstanding]:
    """Active students with a non-zero all-time balance, largest debt first.

    ``statements`` holds the all-time statement of every student that has
    one; students missing from it (no fee structure) are left out.
    """
    report: list[StudentOutstanding] = []
    for student in students:
        if not student.is_active:
            continue
        statement = statements.get(student.id)
        if statement is None:
            continue
        entry = StudentOutstanding(
            student_id=student.id,
            student_name=student.name,
            grade=student.grade,
            total_due=statement.due_in_period,
            total_paid=statement.paid_in_period,
            enrollment_date=student.enrollment_date,
        )
        if entry.outstanding != 0:
            report.append(entry)
    report.sort(key=lambda entry: entry.outstanding, reverse=True)
    return report


def staff_payment_due_report(payrolls: Iterable[Payroll]) -> list[StaffPaymentDue]:
    """Latest pending net pay per staff member.

    Paid and cancelled payrolls owe nothing. Payrolls are read most recent
    first, so the first payslip seen for a staff member wins.
    """
    pending = sorted(
        (p for p in payrolls if p.status == PayrollStatus.PENDING),
        key=lambda p: p.run_date,
        reverse=True,
    )
    report: dict[str, StaffPaymentDue] = {}
    for payroll in pending:
        for payslip in payroll.payslips:
            if payslip.staff_id in report:
                continue
            report[payslip.staff_id] = StaffPaymentDue(
                staff_id=payslip.staff_id,
                staff_name=payslip.staff_name,
                total_due_last_payroll=payslip.net_pay,
                last_payroll_period=payroll.period,
                payroll_id=payroll.id,
            )
    return list(report.values())


def compute_financial_summary(
    student_balances: Iterable[StudentOutstanding], payrolls: Iterable[Payroll]
) -> FinancialSummary:
    """Fold student balances and pending payrolls into dashboard totals."""
    balances = list(student_balances)
    staff = staff_payment_due_report(payrolls)
    return FinancialSummary(
        total_student_outstanding=sum_money(b.outstanding for b in balances),
        total_student_due=sum_money(b.total_due for b in balances),
        total_student_paid=sum_money(b.total_paid for b in balances),
        total_staff_payable_salaries=sum_money(s.total_due_last_payroll for s in staff),
        student_count=len(balances),
        staff_count=len(staff),
    )

@dataclass(frozen=True)
class IncomeReport:
    """Monthly money in and out for the finance dashboard charts."""

    income_by_month: dict[str, Decimal]
    salary_expenses_by_month: dict[str, Decimal]
    payments_by_billing_month: dict[str, Decimal]

    @property
    def total_income(self) -> Decimal:
        return sum_money(self.income_by_month.values())

    @property
    def total_salary_expenses(self) -> Decimal:
        return sum_money(self.salary_expenses_by_month.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "income_by_month": _money_strings(self.income_by_month),
            "salary_expenses_by_month": _money_strings(self.salary_expenses_by_month),
            "payments_by_billing_month": _money_strings(self.payments_by_billing_month),
            "total_income": str(self.total_income),
            "total_salary_expenses": str(self.total_salary_expenses),
        }


def _money_strings(totals: Mapping[str, Decimal]) -> dict[str, str]:
    return {label: str(amount) for label, amount in totals.items()}


def _in_range(value: date, start: date | None, end: date | None) -> bool:
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


def _totals_by_month(entries: Iterable[tuple[date, Decimal]]) -> dict[str, Decimal]:
    buckets: dict[date, list[Decimal]] = {}
    for when, amount in entries:
        buckets.setdefault(start_of_month(when), []).append(amount)
    return {
        format_month_label(month): sum_money(buckets[month]) for month in sorted(buckets)
    }


def income_by_month(
    payments: Iterable[Payment], start: date | None = None, end: date | None = None
) -> dict[str, Decimal]:
    """Payments received per calendar month of their payment date.

    ``start`` and ``end`` are inclusive and each may be left open. Months
    are keyed by label ("September 2024") in chronological order.
    """
    return _totals_by_month(
        (p.date, p.amount) for p in payments if _in_range(p.date, start, end)
    )


def salary_expenses_by_month(
    payrolls: Iterable[Payroll], start: date | None = None, end: date | None = None
) -> dict[str, Decimal]:
    """Payroll net totals per calendar month of the run date, any status."""
    return _totals_by_month(
        (p.run_date.date(), p.total_amount)
        for p in payrolls
        if _in_range(p.run_date.date(), start, end)
    )


def payments_by_billing_month(payments: Iterable[Payment]) -> dict[str, Decimal]:
    """Payments per billing month label, whatever day they were paid."""
    buckets: dict[str, list[Decimal]] = {}
    for payment in sorted(payments, key=lambda p: p.date):
        buckets.setdefault(payment.month, []).append(payment.amount)
    return {label: sum_money(amounts) for label, amounts in buckets.items()}


class SummaryService:
    def __init__(
        self,
        students: StudentProvider,
        fee_structures: FeeStructureProvider,
        payments: PaymentStore,
        payrolls: PayrollStore,
        academic_year: AcademicYearConfig,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self._students = students
        self._payments = payments
        self._payrolls = payrolls
        self._statements = StatementService(
            fee_structures, payments, academic_year, clock=clock
        )
        self._logger = logger.bind(component="summary_service")

    async def student_outstanding_report(self) -> list[StudentOutstanding]:
        students = [s for s in await self._students.list_students() if s.is_active]
        statements: dict[str, FeeStatement] = {}
        for student in students:
            result = await self._statements.statement_for(student)
            if isinstance(result, LedgerError):
                self._logger.debug(
                    "student_skipped_from_summary",
                    student_id=student.id,
                    code=result.code.value,
                )
                continue
            statements[student.id] = result
        return student_outstanding_report(students, statements)

    async def staff_payment_due_report(self) -> list[StaffPaymentDue]:
        return staff_payment_due_report(await self._payrolls.list_payrolls())

    async def financial_summary(self) -> FinancialSummary:
        balances = await self.student_outstanding_report()
        payrolls = await self._payrolls.list_payrolls()
        summary = compute_financial_summary(balances, payrolls)
        self._logger.info(
            "financial_summary_computed",
            student_count=summary.student_count,
            staff_count=summary.staff_count,
        )
        return summary

    async def _all_payments(self) -> list[Payment]:
        payments: list[Payment] = []
        for student in await self._students.list_students():
            payments.extend(await self._payments.get_payments_for_student(student.id))
        return payments

    async def income_summary(
        self, start: date | None = None, end: date | None = None
    ) -> dict[str, Decimal]:
        return income_by_month(await self._all_payments(), start, end)

    async def salary_expenses(
        self, start: date | None = None, end: date | None = None
    ) -> dict[str, Decimal]:
        return salary_expenses_by_month(await self._payrolls.list_payrolls(), start, end)

    async def payments_by_billing_month(self) -> dict[str, Decimal]:
        return payments_by_billing_month(await self._all_payments())

    async def income_report(
        self, start: date | None = None, end: date | None = None
    ) -> IncomeReport:
        """Income, salary expenses and billing-month totals in one pass over the store.

        The date bounds apply to income and salary expenses only; billing-month
        totals always cover every payment.
        """
        payments = await self._all_payments()
        payrolls = await self._payrolls.list_payrolls()
        report = IncomeReport(
            income_by_month=income_by_month(payments, start, end),
            salary_expenses_by_month=salary_expenses_by_month(payrolls, start, end),
            payments_by_billing_month=payments_by_billing_month(payments),
        )
        self._logger.info(
            "income_report_computed",
            total_income=str(report.total_income),
            total_salary_expenses=str(report.total_salary_expenses),
        )
        return report
