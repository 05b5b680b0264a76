"""Due and overdue classification for student fees and staff salaries.

Student fees fall due on the first day of each month; staff salaries on the
last day. An entry is overdue once its due date has passed while the amount
paid is still short of the amount due.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog

from school_ledger.ledger import combined_monthly_due
from school_ledger.models import Payment, Payroll, PayrollStatus, Student
from school_ledger.money import ZERO, sum_money
from school_ledger.periods import (
    AcademicYearConfig,
    add_months,
    end_of_month,
    format_month_label,
    parse_period_label,
)
from school_ledger.stores import (
    CourseProvider,
    FeeStructureProvider,
    PaymentStore,
    PayrollStore,
    StudentProvider,
)

logger = structlog.get_logger(__name__)

# Current month plus the two before it
OVERDUE_WINDOW_MONTHS = 3


class DueStatus(str, Enum):
    PAID = "paid"
    PENDING = "pending"
    OVERDUE = "overdue"


def classify_due_payment(
    amount_due: Decimal, amount_paid: Decimal, due_date: date, today: date
) -> DueStatus:
    """Classify one due amount; more payment only ever moves it toward paid."""
    if amount_paid >= amount_due:
        return DueStatus.PAID
    if today > due_date:
        return DueStatus.OVERDUE
    return DueStatus.PENDING


@dataclass(frozen=True)
class StudentDuePayment:
    student_id: str
    student_name: str
    grade: str
    class_name: str
    amount_due: Decimal
    amount_paid: Decimal
    month: date
    due_date: date
    status: DueStatus
    last_payment_date: date | None = None

    @property
    def outstanding(self) -> Decimal:
        return self.amount_due - self.amount_paid

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "student_name": self.student_name,
            "grade": self.grade,
            "class_name": self.class_name,
            "month": format_month_label(self.month),
            "due_date": self.due_date.isoformat(),
            "amount_due": str(self.amount_due),
            "amount_paid": str(self.amount_paid),
            "status": self.status.value,
            "last_payment_date": (
                self.last_payment_date.isoformat() if self.last_payment_date else None
            ),
        }


@dataclass(frozen=True)
class StaffDuePayment:
    staff_id: str
    staff_name: str
    position: str
    payroll_id: str
    amount_due: Decimal
    amount_paid: Decimal
    month: date
    due_date: date
    status: DueStatus
    payment_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "staff_id": self.staff_id,
            "staff_name": self.staff_name,
            "position": self.position,
            "payroll_id": self.payroll_id,
            "month": format_month_label(self.month),
            "due_date": self.due_date.isoformat(),
            "amount_due": str(self.amount_due),
            "amount_paid": str(self.amount_paid),
            "status": self.status.value,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
        }


def student_due_payments(
    students: Iterable[Student],
    monthly_dues: Mapping[str, Decimal],
    payments: Mapping[str, Sequence[Payment]],
    year: int,
    month: int,
    today: date,
) -> list[StudentDuePayment]:
    """Fee status of every active student with a monthly due for one month.

    Payments count toward the month they are dated in, whatever billing
    label they carry.
    """
    first_day = date(year, month, 1)
    entries: list[StudentDuePayment] = []
    for student in students:
        if not student.is_active:
            continue
        amount_due = monthly_dues.get(student.id, ZERO)
        if amount_due == 0:
            continue

        in_month = [
            p
            for p in payments.get(student.id, ())
            if p.date.year == year and p.date.month == month
        ]
        amount_paid = sum_money(p.amount for p in in_month)
        entries.append(
            StudentDuePayment(
                student_id=student.id,
                student_name=student.name,
                grade=student.grade,
                class_name=student.class_name,
                amount_due=amount_due,
                amount_paid=amount_paid,
                month=first_day,
                due_date=first_day,
                status=classify_due_payment(amount_due, amount_paid, first_day, today),
                last_payment_date=max((p.date for p in in_month), default=None),
            )
        )
    return entries


def staff_due_payments(
    payrolls: Iterable[Payroll], year: int, month: int, today: date
) -> list[StaffDuePayment]:
    """Salary status per payslip of the payrolls whose period is this month.

    Cancelled payrolls owe nothing and are skipped. A payslip counts as fully
    paid once its payroll is marked paid.
    """
    first_day = date(year, month, 1)
    due_date = end_of_month(first_day)
    entries: list[StaffDuePayment] = []
    for payroll in payrolls:
        if payroll.status == PayrollStatus.CANCELLED:
            continue
        period = parse_period_label(payroll.period, today=payroll.run_date.date())
        if period.start != first_day:
            continue
        for payslip in payroll.payslips:
            amount_due = payslip.net_pay
            amount_paid = amount_due if payroll.status == PayrollStatus.PAID else ZERO
            entries.append(
                StaffDuePayment(
                    staff_id=payslip.staff_id,
                    staff_name=payslip.staff_name or "Unknown",
                    position=payslip.staff_position or "",
                    payroll_id=payroll.id,
                    amount_due=amount_due,
                    amount_paid=amount_paid,
                    month=first_day,
                    due_date=due_date,
                    status=classify_due_payment(amount_due, amount_paid, due_date, today),
                    payment_date=payslip.payment_date,
                )
            )
    return entries


@dataclass(frozen=True)
class DueCounts:
    """Status counts and amounts for one side of a month."""

    total: int
    paid: int
    pending: int
    overdue: int
    total_amount: Decimal
    total_collected: Decimal

    @classmethod
    def from_entries(
        cls, entries: Sequence[StudentDuePayment] | Sequence[StaffDuePayment]
    ) -> DueCounts:
        statuses = [entry.status for entry in entries]
        return cls(
            total=len(entries),
            paid=statuses.count(DueStatus.PAID),
            pending=statuses.count(DueStatus.PENDING),
            overdue=statuses.count(DueStatus.OVERDUE),
            total_amount=sum_money(entry.amount_due for entry in entries),
            total_collected=sum_money(entry.amount_paid for entry in entries),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "paid": self.paid,
            "pending": self.pending,
            "overdue": self.overdue,
            "total_amount": str(self.total_amount),
            "total_collected": str(self.total_collected),
        }


@dataclass(frozen=True)
class DueSummary:
    year: int
    month: int
    students: DueCounts
    staff: DueCounts
    student_details: tuple[StudentDuePayment, ...] = ()
    staff_details: tuple[StaffDuePayment, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "month": self.month,
            "students": self.students.to_dict(),
            "staff": self.staff.to_dict(),
            "student_details": [entry.to_dict() for entry in self.student_details],
            "staff_details": [entry.to_dict() for entry in self.staff_details],
        }


def due_summary(
    students: Iterable[Student],
    monthly_dues: Mapping[str, Decimal],
    payments: Mapping[str, Sequence[Payment]],
    payrolls: Iterable[Payroll],
    year: int,
    month: int,
    today: date,
) -> DueSummary:
    """Counts and totals of paid, pending and overdue entries for one month."""
    student_entries = student_due_payments(students, monthly_dues, payments, year, month, today)
    staff_entries = staff_due_payments(payrolls, year, month, today)
    return DueSummary(
        year=year,
        month=month,
        students=DueCounts.from_entries(student_entries),
        staff=DueCounts.from_entries(staff_entries),
        student_details=tuple(student_entries),
        staff_details=tuple(staff_entries),
    )


@dataclass(frozen=True)
class OverdueReport:
    overdue_students: tuple[StudentDuePayment, ...] = field(default_factory=tuple)
    overdue_staff: tuple[StaffDuePayment, ...] = field(default_factory=tuple)

    @property
    def total_overdue_student_amount(self) -> Decimal:
        return sum_money(entry.outstanding for entry in self.overdue_students)

    @property
    def total_overdue_staff_amount(self) -> Decimal:
        return sum_money(entry.amount_due for entry in self.overdue_staff)

    def to_dict(self) -> dict[str, Any]:
        return {
            "overdue_students": [entry.to_dict() for entry in self.overdue_students],
            "overdue_staff": [entry.to_dict() for entry in self.overdue_staff],
            "total_overdue_student_amount": str(self.total_overdue_student_amount),
            "total_overdue_staff_amount": str(self.total_overdue_staff_amount),
        }


def overdue_payments(
    students: Sequence[Student],
    monthly_dues: Mapping[str, Decimal],
    payments: Mapping[str, Sequence[Payment]],
    payrolls: Sequence[Payroll],
    today: date,
) -> OverdueReport:
    """Collect overdue entries over the trailing window ending this month."""
    overdue_students: list[StudentDuePayment] = []
    overdue_staff: list[StaffDuePayment] = []
    current = today.replace(day=1)
    for offset in range(OVERDUE_WINDOW_MONTHS):
        month_start = add_months(current, -offset)
        year, month = month_start.year, month_start.month
        overdue_students.extend(
            entry
            for entry in student_due_payments(
                students, monthly_dues, payments, year, month, today
            )
            if entry.status == DueStatus.OVERDUE
        )
        overdue_staff.extend(
            entry
            for entry in staff_due_payments(payrolls, year, month, today)
            if entry.status == DueStatus.OVERDUE
        )
    return OverdueReport(
        overdue_students=tuple(overdue_students),
        overdue_staff=tuple(overdue_staff),
    )


class DueService:
    """Loads students, dues, payments and payrolls for the due reports."""

    def __init__(
        self,
        students: StudentProvider,
        payments: PaymentStore,
        payrolls: PayrollStore,
        fee_structures: FeeStructureProvider,
        courses: CourseProvider,
        academic_year: AcademicYearConfig,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self._students = students
        self._payments = payments
        self._payrolls = payrolls
        self._fee_structures = fee_structures
        self._courses = courses
        self._academic_year = academic_year
        self._clock = clock
        self._logger = logger.bind(component="due_service")

    async def _load(
        self,
    ) -> tuple[
        list[Student], dict[str, Decimal], dict[str, list[Payment]], list[Payroll]
    ]:
        students = [s for s in await self._students.list_students() if s.is_active]
        monthly_dues: dict[str, Decimal] = {}
        payments: dict[str, list[Payment]] = {}
        for student in students:
            due = await combined_monthly_due(
                student, self._academic_year, self._fee_structures, self._courses
            )
            monthly_dues[student.id] = due.combined_monthly
            payments[student.id] = await self._payments.get_payments_for_student(student.id)
        payrolls = await self._payrolls.list_payrolls()
        return students, monthly_dues, payments, payrolls

    async def due_summary(self, year: int, month: int) -> DueSummary:
        students, monthly_dues, payments, payrolls = await self._load()
        return due_summary(
            students, monthly_dues, payments, payrolls, year, month, self._clock()
        )

    async def overdue_payments(self) -> OverdueReport:
        students, monthly_dues, payments, payrolls = await self._load()
        report = overdue_payments(students, monthly_dues, payments, payrolls, self._clock())
        self._logger.info(
            "overdue_scan_completed",
            overdue_students=len(report.overdue_students),
            overdue_staff=len(report.overdue_staff),
            student_amount=str(report.total_overdue_student_amount),
            staff_amount=str(report.total_overdue_staff_amount),
        )
        return report
