"""Fee ledger: what a student owed, paid and carried forward over a range.

Statements are recomputed on every query and never stored. A statement for
a range depends only on the enrollment date, the monthly amount, the
academic-year anchor and the payments dated up to the range end. Only
whole-range recomputation is guaranteed correct: statements for sub-ranges
do not add up unless carry-forward is re-derived at every boundary.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

import structlog

from school_ledger.errors import ConfigurationMissing, EnrollmentMissing, RecordStoreError
from school_ledger.models import Payment, Student
from school_ledger.money import ZERO, round_money, sum_money
from school_ledger.periods import (
    AcademicYearConfig,
    calendar_months_between,
    end_of_month,
    enumerate_months,
    format_month_label,
    start_of_month,
)
from school_ledger.stores import CourseProvider, FeeStructureProvider, PaymentStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DateRange:
    """Inclusive date range selected by the caller."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(
                f"Range end {self.end.isoformat()} is before start {self.start.isoformat()}"
            )

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


@dataclass(frozen=True)
class FeeStatement:
    """Derived fee position for one student over one range."""

    due_in_period: Decimal
    paid_in_period: Decimal
    balance_for_period: Decimal
    carry_forward_balance: Decimal
    net_balance: Decimal
    months_in_period: tuple[date, ...]
    in_period_payments: tuple[Payment, ...]

    @property
    def month_labels(self) -> list[str]:
        return [format_month_label(month) for month in self.months_in_period]

    @property
    def outstanding(self) -> Decimal:
        """Amount still owed (negative when the student is ahead)."""
        return -self.net_balance

    def to_dict(self) -> dict[str, Any]:
        return {
            "due_in_period": str(self.due_in_period),
            "paid_in_period": str(self.paid_in_period),
            "balance_for_period": str(self.balance_for_period),
            "carry_forward_balance": str(self.carry_forward_balance),
            "net_balance": str(self.net_balance),
            "months_in_period": self.month_labels,
            "in_period_payments": [p.to_dict() for p in self.in_period_payments],
        }


def _by_date_desc(payments: Iterable[Payment]) -> tuple[Payment, ...]:
    return tuple(sorted(payments, key=lambda p: p.date, reverse=True))


def compute_fee_statement(
    enrollment_date: date,
    monthly_amount: Decimal,
    payments: Iterable[Payment],
    date_range: DateRange | None = None,
    *,
    academic_year: AcademicYearConfig,
    today: date | None = None,
) -> FeeStatement:
    """Compute due, paid and balances for a student.

    Without ``date_range`` this is the all-time view: every month from the
    enrollment month through the current month is due, every payment counts
    and there is no carry-forward.

    With a range, payments dated before the range start feed the
    carry-forward balance against the months due since the later of the
    enrollment month and the start of the academic year containing the range
    start. Months inside the range that precede enrollment owe nothing.
    """
    enrollment_month = start_of_month(enrollment_date)
    all_payments = list(payments)

    if date_range is None:
        current = today or date.today()
        months = enumerate_months(enrollment_month, start_of_month(current))
        due = round_money(monthly_amount * len(months))
        paid = sum_money(p.amount for p in all_payments)
        balance = paid - due
        return FeeStatement(
            due_in_period=due,
            paid_in_period=paid,
            balance_for_period=balance,
            carry_forward_balance=ZERO,
            net_balance=balance,
            months_in_period=tuple(months),
            in_period_payments=_by_date_desc(all_payments),
        )

    before = [p for p in all_payments if p.date < date_range.start]
    in_period = [p for p in all_payments if date_range.contains(p.date)]

    due_calculation_start = max(
        enrollment_month, academic_year.start_for(date_range.start)
    )
    months_due_before = 0
    if due_calculation_start < date_range.start:
        months_due_before = calendar_months_between(
            date_range.start, due_calculation_start
        )
    carry_forward = round_money(
        sum_money(p.amount for p in before) - monthly_amount * months_due_before
    )

    months = enumerate_months(
        start_of_month(date_range.start), end_of_month(date_range.end)
    )
    owed_months = [m for m in months if m >= enrollment_month]
    due = round_money(monthly_amount * len(owed_months))
    paid = sum_money(p.amount for p in in_period)
    balance = paid - due

    return FeeStatement(
        due_in_period=due,
        paid_in_period=paid,
        balance_for_period=balance,
        carry_forward_balance=carry_forward,
        net_balance=carry_forward + balance,
        months_in_period=tuple(months),
        in_period_payments=_by_date_desc(in_period),
    )


@dataclass(frozen=True)
class MonthlyDue:
    """Monthly obligation split into grade fee and support-course fees."""

    grade_monthly: Decimal
    support_monthly: Decimal

    @property
    def combined_monthly(self) -> Decimal:
        return self.grade_monthly + self.support_monthly


async def combined_monthly_due(
    student: Student,
    academic_year: AcademicYearConfig,
    fee_structures: FeeStructureProvider,
    courses: CourseProvider,
) -> MonthlyDue:
    """Grade monthly fee plus the monthly fees of any support courses.

    A course that cannot be loaded is skipped so one bad record does not
    zero out the whole obligation.
    """
    grade_monthly = ZERO
    if student.grade and student.grade != "N/A":
        structure = await fee_structures.get_fee_structure(
            student.grade, academic_year.label
        )
        if structure is not None:
            grade_monthly = structure.monthly_amount

    support_monthly = ZERO
    for course_id in await courses.get_courses_for_student(student.id):
        try:
            course = await courses.get_course(course_id)
        except RecordStoreError as exc:
            logger.warning(
                "course_fee_lookup_failed",
                student_id=student.id,
                course_id=course_id,
                error=str(exc),
            )
            continue
        if course is not None and course.is_support:
            support_monthly += course.monthly_fee

    return MonthlyDue(grade_monthly=grade_monthly, support_monthly=support_monthly)


class StatementService:
    """Computes statements from records fetched through the store interfaces."""

    def __init__(
        self,
        fee_structures: FeeStructureProvider,
        payments: PaymentStore,
        academic_year: AcademicYearConfig,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self._fee_structures = fee_structures
        self._payments = payments
        self._academic_year = academic_year
        self._clock = clock
        self._logger = logger.bind(component="statement_service")

    async def statement_for(
        self,
        student: Student,
        date_range: DateRange | None = None,
    ) -> FeeStatement | ConfigurationMissing | EnrollmentMissing:
        """Return the student's statement, or why it cannot be computed."""
        if student.enrollment_date is None:
            self._logger.info("statement_enrollment_missing", student_id=student.id)
            return EnrollmentMissing(student_id=student.id)

        structure = await self._fee_structures.get_fee_structure(
            student.grade, self._academic_year.label
        )
        if structure is None:
            self._logger.info(
                "statement_fee_structure_missing",
                student_id=student.id,
                grade=student.grade,
                academic_year=self._academic_year.label,
            )
            return ConfigurationMissing(
                grade=student.grade, academic_year=self._academic_year.label
            )

        payments = await self._payments.get_payments_for_student(student.id)
        return compute_fee_statement(
            student.enrollment_date,
            structure.monthly_amount,
            payments,
            date_range,
            academic_year=self._academic_year,
            today=self._clock(),
        )
