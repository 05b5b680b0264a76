"""Pytest configuration and fixtures."""

import os
from datetime import date
from decimal import Decimal

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("LEDGER_ACADEMIC_YEAR", "2024-2025")
os.environ.setdefault("LEDGER_ACADEMIC_YEAR_START_MONTH", "9")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FORMAT", "console")

from school_ledger.config import configure_logging  # noqa: E402
from school_ledger.models import (  # noqa: E402
    Course,
    FeeStructure,
    Payment,
    PaymentMethod,
    Staff,
    Student,
)
from school_ledger.periods import AcademicYearConfig  # noqa: E402
from school_ledger.statutory import load_statutory_rates  # noqa: E402
from school_ledger.stores import InMemoryRecordStore  # noqa: E402

# Keep stdout free for CLI output
configure_logging()


@pytest.fixture
def rates():
    """Packaged statutory rate table."""
    return load_statutory_rates()


@pytest.fixture
def academic_year():
    return AcademicYearConfig(label="2024-2025", start_month=9)


def _payment(
    student_id: str,
    amount: str,
    paid_on: date,
    month: str = "",
    payment_id: str | None = None,
) -> Payment:
    return Payment(
        id=payment_id or f"{student_id}-{paid_on.isoformat()}",
        student_id=student_id,
        amount=Decimal(amount),
        date=paid_on,
        month=month,
        method=PaymentMethod.CASH,
        academic_year="2024-2025",
    )


@pytest.fixture
def school_store():
    """Small school: two fee-paying students, one inactive, two salaried staff."""
    store = InMemoryRecordStore()
    store.add_fee_structure(
        FeeStructure(grade="Grade 5", academic_year="2024-2025", monthly_amount=Decimal("500"))
    )
    store.students = {
        "s1": Student(
            id="s1",
            name="Yasmine Alaoui",
            grade="Grade 5",
            enrollment_date=date(2024, 9, 1),
            class_name="5A",
        ),
        "s2": Student(
            id="s2",
            name="Omar Bennani",
            grade="Grade 5",
            enrollment_date=date(2024, 9, 1),
            class_name="5B",
        ),
        "s3": Student(
            id="s3",
            name="Salma Idrissi",
            grade="Grade 5",
            enrollment_date=date(2024, 9, 1),
            status="inactive",
        ),
    }
    store.courses = {
        "math-support": Course(
            id="math-support", type="support", monthly_fee=Decimal("150"), name="Math support"
        ),
        "french": Course(id="french", type="regular", name="French"),
    }
    store.enrollments = {"s2": ["math-support", "french"]}
    store.payments = [
        _payment("s1", "500", date(2024, 9, 3), "September 2024"),
        _payment("s1", "500", date(2024, 10, 2), "October 2024"),
        _payment("s1", "500", date(2024, 11, 4), "November 2024"),
        _payment("s2", "650", date(2024, 9, 10), "September 2024"),
    ]
    store.staff = {
        "t1": Staff(
            id="t1",
            name="Karim Tazi",
            hire_date=date(2020, 9, 1),
            payment_rate=Decimal("8000"),
            position="Teacher",
            cnss_number="123456789",
        ),
        "t2": Staff(
            id="t2",
            name="Nadia Fassi",
            hire_date=date(2024, 7, 17),
            salary=Decimal("10000"),
            position="Coordinator",
        ),
        "t3": Staff(
            id="t3",
            name="Hassan Berrada",
            hire_date=date(2023, 1, 1),
            payment_type="hourly",
            payment_rate=Decimal("120"),
        ),
    }
    return store
