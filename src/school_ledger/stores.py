"""Read/write interfaces to the external record store.

The engine depends only on these protocols. ``InMemoryRecordStore`` is a
complete implementation used by the command line and by tests.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Protocol
from uuid import uuid4

from school_ledger.errors import RecordStoreError
from school_ledger.models import (
    Course,
    FeeStructure,
    Payment,
    PaymentIntent,
    Payroll,
    PayrollStatus,
    Staff,
    Student,
)


class FeeStructureProvider(Protocol):
    async def get_fee_structure(
        self, grade: str, academic_year: str
    ) -> FeeStructure | None: ...


class PaymentStore(Protocol):
    async def get_payments_for_student(self, student_id: str) -> list[Payment]: ...

    async def record_payment(self, intent: PaymentIntent) -> Payment: ...


class StaffProvider(Protocol):
    async def get_active_salaried_staff(self) -> list[Staff]: ...


class PayrollStore(Protocol):
    async def get_existing_payroll_periods(self) -> Mapping[str, str]:
        """Return period label -> payroll id for every stored payroll."""
        ...

    async def add_payroll(self, payroll: Payroll) -> Payroll: ...

    async def list_payrolls(self) -> list[Payroll]: ...

    async def update_payroll_status(
        self, payroll_id: str, status: PayrollStatus
    ) -> None: ...


class CourseProvider(Protocol):
    async def get_courses_for_student(self, student_id: str) -> list[str]: ...

    async def get_course(self, course_id: str) -> Course | None: ...


class StudentProvider(Protocol):
    async def list_students(self) -> list[Student]: ...


@dataclass
class InMemoryRecordStore:
    """Record store backed by plain dictionaries."""

    students: dict[str, Student] = field(default_factory=dict)
    fee_structures: dict[tuple[str, str], FeeStructure] = field(default_factory=dict)
    payments: list[Payment] = field(default_factory=list)
    courses: dict[str, Course] = field(default_factory=dict)
    enrollments: dict[str, list[str]] = field(default_factory=dict)
    staff: dict[str, Staff] = field(default_factory=dict)
    payrolls: dict[str, Payroll] = field(default_factory=dict)

    def add_fee_structure(self, structure: FeeStructure) -> None:
        self.fee_structures[(structure.grade, structure.academic_year)] = structure

    async def get_fee_structure(
        self, grade: str, academic_year: str
    ) -> FeeStructure | None:
        exact = self.fee_structures.get((grade, academic_year))
        if exact is not None:
            return exact
        # Fall back to a case-insensitive grade match
        normalized = grade.lower()
        for structure in self.fee_structures.values():
            if (
                structure.grade.lower() == normalized
                and structure.academic_year == academic_year
            ):
                return structure
        return None

    async def get_payments_for_student(self, student_id: str) -> list[Payment]:
        payments = [p for p in self.payments if p.student_id == student_id]
        return sorted(payments, key=lambda p: p.date, reverse=True)

    async def record_payment(self, intent: PaymentIntent) -> Payment:
        payment = Payment(
            id=str(uuid4()),
            student_id=intent.student_id,
            amount=intent.amount,
            date=intent.paid_on,
            month=intent.month,
            method=intent.method,
            academic_year=intent.academic_year,
        )
        self.payments.append(payment)
        return payment

    async def get_active_salaried_staff(self) -> list[Staff]:
        return [member for member in self.staff.values() if member.is_salaried]

    async def get_existing_payroll_periods(self) -> Mapping[str, str]:
        return {payroll.period: payroll.id for payroll in self.payrolls.values()}

    async def add_payroll(self, payroll: Payroll) -> Payroll:
        if payroll.id in self.payrolls:
            raise RecordStoreError(f"Payroll {payroll.id} already stored")
        self.payrolls[payroll.id] = payroll
        return payroll

    async def list_payrolls(self) -> list[Payroll]:
        return sorted(self.payrolls.values(), key=lambda p: p.run_date, reverse=True)

    async def update_payroll_status(
        self, payroll_id: str, status: PayrollStatus
    ) -> None:
        payroll = self.payrolls.get(payroll_id)
        if payroll is None:
            raise RecordStoreError(f"Payroll {payroll_id} not found")
        self.payrolls[payroll_id] = replace(payroll, status=status)

    async def get_courses_for_student(self, student_id: str) -> list[str]:
        return list(self.enrollments.get(student_id, []))

    async def get_course(self, course_id: str) -> Course | None:
        return self.courses.get(course_id)

    async def list_students(self) -> list[Student]:
        return list(self.students.values())
