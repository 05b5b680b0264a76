"""Record types read from the external store.

Money fields are Decimal. Derived totals (gross, deductions, net, payroll
total) are properties computed from line items and never stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from school_ledger.money import ZERO, sum_money


class PaymentMethod(str, Enum):
    """How a fee payment was made."""

    CARD = "card"
    CASH = "cash"
    BANK_TRANSFER = "bank-transfer"


class ItemType(str, Enum):
    """Side of a payslip line item."""

    EARNING = "earning"
    DEDUCTION = "deduction"


class PayrollStatus(str, Enum):
    """Lifecycle of a payroll run."""

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class FeeStructure:
    """Monthly tuition for a grade in one academic year."""

    grade: str
    academic_year: str
    monthly_amount: Decimal

    def __post_init__(self) -> None:
        if self.monthly_amount < 0:
            raise ValueError("monthly_amount must be non-negative")

    @property
    def id(self) -> str:
        # Slashes are not allowed in document ids
        return f"{self.grade.replace('/', '_')}-{self.academic_year.replace('/', '_')}"


@dataclass(frozen=True)
class Payment:
    """A fee payment applied to a billing period label."""

    id: str
    student_id: str
    amount: Decimal
    date: date
    month: str
    method: PaymentMethod = PaymentMethod.CASH
    academic_year: str = ""

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError(f"Payment {self.id} amount must be positive")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "amount": str(self.amount),
            "date": self.date.isoformat(),
            "month": self.month,
            "method": self.method.value,
            "academic_year": self.academic_year,
        }


@dataclass(frozen=True)
class Student:
    """Enrollment facts the ledger needs about a student."""

    id: str
    name: str
    grade: str
    enrollment_date: date | None
    status: str = "active"
    class_name: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass(frozen=True)
class Course:
    """A course; support courses carry their own monthly fee."""

    id: str
    type: str
    monthly_fee: Decimal = ZERO
    name: str = ""

    @property
    def is_support(self) -> bool:
        return self.type == "support"


@dataclass(frozen=True)
class Staff:
    """Staff member as seen by payroll."""

    id: str
    name: str
    hire_date: date | None = None
    payment_type: str = "salary"
    payment_rate: Decimal | None = None
    salary: Decimal | None = None
    position: str | None = None
    cnss_number: str | None = None
    cin: str | None = None
    status: str = "active"

    @property
    def base_salary(self) -> Decimal:
        """Configured monthly salary, preferring ``payment_rate``."""
        if self.payment_rate:
            return self.payment_rate
        return self.salary or ZERO

    @property
    def is_salaried(self) -> bool:
        """Active, paid a fixed salary, with a positive amount configured."""
        return (
            self.status == "active"
            and self.payment_type == "salary"
            and self.base_salary > 0
        )


@dataclass(frozen=True)
class PayslipItem:
    """One earning or deduction line; the sign comes from ``type``."""

    id: str
    label: str
    amount: Decimal
    type: ItemType
    category: str
    taxable: bool = True
    rate: Decimal | None = None
    hours: Decimal | None = None
    hourly_rate: Decimal | None = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"Payslip item {self.id} amount must be non-negative")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "amount": str(self.amount),
            "type": self.type.value,
            "category": self.category,
            "taxable": self.taxable,
        }
        if self.rate is not None:
            data["rate"] = str(self.rate)
        if self.hours is not None:
            data["hours"] = str(self.hours)
        if self.hourly_rate is not None:
            data["hourly_rate"] = str(self.hourly_rate)
        return data


@dataclass(frozen=True)
class Payslip:
    """Earnings and deductions for one staff member and one period."""

    staff_id: str
    staff_name: str
    period: str
    base_salary: Decimal
    earnings: tuple[PayslipItem, ...] = ()
    deductions: tuple[PayslipItem, ...] = ()
    employer_cnss: Decimal = ZERO
    employer_amo: Decimal = ZERO
    staff_position: str | None = None
    cnss_number: str | None = None
    cin: str | None = None
    payment_date: date | None = None

    @property
    def gross_salary(self) -> Decimal:
        return sum_money(item.amount for item in self.earnings)

    @property
    def total_deductions(self) -> Decimal:
        return sum_money(item.amount for item in self.deductions)

    @property
    def net_pay(self) -> Decimal:
        return self.gross_salary - self.total_deductions

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "staff_id": self.staff_id,
            "staff_name": self.staff_name,
            "period": self.period,
            "base_salary": str(self.base_salary),
            "earnings": [item.to_dict() for item in self.earnings],
            "deductions": [item.to_dict() for item in self.deductions],
            "gross_salary": str(self.gross_salary),
            "total_deductions": str(self.total_deductions),
            "net_pay": str(self.net_pay),
            "employer_cnss": str(self.employer_cnss),
            "employer_amo": str(self.employer_amo),
        }
        # Optional identity fields are omitted rather than written as null
        if self.staff_position:
            data["staff_position"] = self.staff_position
        if self.cnss_number:
            data["cnss_number"] = self.cnss_number
        if self.cin:
            data["cin"] = self.cin
        if self.payment_date:
            data["payment_date"] = self.payment_date.isoformat()
        return data


@dataclass(frozen=True)
class Payroll:
    """A payroll run: one payslip per salaried staff member."""

    id: str
    period: str
    run_date: datetime
    payslips: tuple[Payslip, ...] = field(default_factory=tuple)
    status: PayrollStatus = PayrollStatus.PENDING

    @property
    def total_amount(self) -> Decimal:
        return sum_money(payslip.net_pay for payslip in self.payslips)

    @property
    def total_employer_contributions(self) -> Decimal:
        return sum_money(p.employer_cnss + p.employer_amo for p in self.payslips)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "period": self.period,
            "run_date": self.run_date.isoformat(),
            "status": self.status.value,
            "total_amount": str(self.total_amount),
            "total_employer_contributions": str(self.total_employer_contributions),
            "payslips": [payslip.to_dict() for payslip in self.payslips],
        }


@dataclass(frozen=True)
class PaymentIntent:
    """A payment the caller should persist; the engine never writes itself."""

    student_id: str
    month: str
    amount: Decimal
    method: PaymentMethod
    academic_year: str
    paid_on: date

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "month": self.month,
            "amount": str(self.amount),
            "method": self.method.value,
            "academic_year": self.academic_year,
            "date": self.paid_on.isoformat(),
        }
