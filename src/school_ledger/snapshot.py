"""Load an in-memory record store from a YAML snapshot.

A snapshot is a mapping with optional lists under ``students``,
``fee_structures``, ``payments``, ``courses``, ``staff`` and ``payrolls``.
Payrolls use the stored record layout (camelCase keys, legacy or itemized
payslips) and are normalized on load.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from school_ledger.models import (
    Course,
    FeeStructure,
    Payment,
    PaymentMethod,
    Staff,
    Student,
)
from school_ledger.money import to_money
from school_ledger.payroll import payroll_from_record
from school_ledger.stores import InMemoryRecordStore


def _parse_date(value: Any, where: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise ValueError(f"{where}: invalid date {value!r}") from exc


def _required(entry: dict[str, Any], key: str, where: str) -> Any:
    if entry.get(key) in (None, ""):
        raise ValueError(f"{where}: missing {key}")
    return entry[key]


def _entries(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    raw = data.get(key) or []
    if not isinstance(raw, list):
        raise ValueError(f"snapshot: {key} must be a list")
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValueError(f"snapshot: {key}[{idx}] must be a mapping")
    return raw


def _optional_money(value: Any) -> Decimal | None:
    return None if value is None else to_money(value)


def parse_snapshot(data: Any) -> InMemoryRecordStore:
    """Build a record store from already-parsed snapshot data."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("snapshot must be a mapping")

    store = InMemoryRecordStore()

    for idx, entry in enumerate(_entries(data, "students")):
        where = f"students[{idx}]"
        student = Student(
            id=str(_required(entry, "id", where)),
            name=str(entry.get("name", "")),
            grade=str(entry.get("grade", "")),
            enrollment_date=_parse_date(entry.get("enrollment_date"), where),
            status=str(entry.get("status", "active")),
            class_name=str(entry.get("class_name", "")),
        )
        store.students[student.id] = student
        courses = entry.get("courses") or []
        if courses:
            store.enrollments[student.id] = [str(course_id) for course_id in courses]

    for idx, entry in enumerate(_entries(data, "fee_structures")):
        where = f"fee_structures[{idx}]"
        store.add_fee_structure(
            FeeStructure(
                grade=str(_required(entry, "grade", where)),
                academic_year=str(_required(entry, "academic_year", where)),
                monthly_amount=to_money(_required(entry, "monthly_amount", where)),
            )
        )

    for idx, entry in enumerate(_entries(data, "payments")):
        where = f"payments[{idx}]"
        paid_on = _parse_date(_required(entry, "date", where), where)
        store.payments.append(
            Payment(
                id=str(entry.get("id") or f"payment-{idx}"),
                student_id=str(_required(entry, "student_id", where)),
                amount=to_money(_required(entry, "amount", where)),
                date=paid_on,
                month=str(entry.get("month", "")),
                method=PaymentMethod(entry.get("method", PaymentMethod.CASH.value)),
                academic_year=str(entry.get("academic_year", "")),
            )
        )

    for idx, entry in enumerate(_entries(data, "courses")):
        where = f"courses[{idx}]"
        course = Course(
            id=str(_required(entry, "id", where)),
            type=str(entry.get("type", "")),
            monthly_fee=to_money(entry.get("monthly_fee")),
            name=str(entry.get("name", "")),
        )
        store.courses[course.id] = course

    for idx, entry in enumerate(_entries(data, "staff")):
        where = f"staff[{idx}]"
        member = Staff(
            id=str(_required(entry, "id", where)),
            name=str(entry.get("name", "")),
            hire_date=_parse_date(entry.get("hire_date"), where),
            payment_type=str(entry.get("payment_type", "salary")),
            payment_rate=_optional_money(entry.get("payment_rate")),
            salary=_optional_money(entry.get("salary")),
            position=entry.get("position"),
            cnss_number=entry.get("cnss_number"),
            cin=entry.get("cin"),
            status=str(entry.get("status", "active")),
        )
        store.staff[member.id] = member

    for entry in _entries(data, "payrolls"):
        payroll = payroll_from_record(entry)
        store.payrolls[payroll.id] = payroll

    return store


def load_snapshot(path: str | Path) -> InMemoryRecordStore:
    """Read a YAML snapshot file into a record store."""
    raw = Path(path).read_text(encoding="utf-8")
    return parse_snapshot(yaml.safe_load(raw))
