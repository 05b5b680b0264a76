"""Error values returned by the ledger calculators.

Calculators hand these back instead of raising so batch callers can keep
going after one student or staff member fails. Only store faults are raised,
as :class:`RecordStoreError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, TypeGuard


class ErrorCode(str, Enum):
    """Tags for every error value the engine can return."""

    CONFIGURATION_MISSING = "configuration_missing"
    DUPLICATE_PERIOD = "duplicate_period"
    DEGENERATE_PERIOD = "degenerate_period"
    PARTIAL_ALLOCATION_FAILURE = "partial_allocation_failure"
    RATE_LIMITED = "rate_limited"
    ENROLLMENT_MISSING = "enrollment_missing"
    NO_ELIGIBLE_STAFF = "no_eligible_staff"
    INVALID_STATUS_TRANSITION = "invalid_status_transition"


@dataclass(frozen=True)
class LedgerError:
    """Base class for error values."""

    code: ErrorCode = field(init=False)

    @property
    def reason(self) -> str:
        return self.code.value

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "code": self.code.value, "reason": self.reason}


@dataclass(frozen=True)
class ConfigurationMissing(LedgerError):
    """No fee structure exists for the student's grade and academic year."""

    grade: str
    academic_year: str
    code: ErrorCode = field(default=ErrorCode.CONFIGURATION_MISSING, init=False)

    @property
    def reason(self) -> str:
        return (
            f"No fee structure configured for grade {self.grade!r} "
            f"in {self.academic_year}; statement cannot be computed."
        )


@dataclass(frozen=True)
class EnrollmentMissing(LedgerError):
    """The student has no enrollment date to anchor monthly obligations."""

    student_id: str
    code: ErrorCode = field(default=ErrorCode.ENROLLMENT_MISSING, init=False)

    @property
    def reason(self) -> str:
        return (
            f"Student {self.student_id} has no enrollment date; "
            "statement cannot be computed."
        )


@dataclass(frozen=True)
class DuplicatePeriod(LedgerError):
    """A payroll already exists for the requested period."""

    period: str
    existing_payroll_id: str | None = None
    code: ErrorCode = field(default=ErrorCode.DUPLICATE_PERIOD, init=False)

    @property
    def reason(self) -> str:
        return f"Payroll for {self.period} has already been generated."


@dataclass(frozen=True)
class DegeneratePeriod(LedgerError):
    """A period with no working days or an end before its start."""

    start: date
    end: date
    code: ErrorCode = field(default=ErrorCode.DEGENERATE_PERIOD, init=False)

    @property
    def reason(self) -> str:
        return f"Period {self.start.isoformat()}..{self.end.isoformat()} has no working days."


@dataclass(frozen=True)
class PartialAllocationFailure(LedgerError):
    """Some payment writes of a multi-month allocation failed.

    Writes that succeeded stay committed; ``failed`` maps each month label to
    the error message so the caller can retry just those months.
    """

    succeeded: tuple[str, ...]
    failed: dict[str, str]
    code: ErrorCode = field(default=ErrorCode.PARTIAL_ALLOCATION_FAILURE, init=False)

    @property
    def failed_months(self) -> list[str]:
        return list(self.failed)

    @property
    def reason(self) -> str:
        return (
            f"{len(self.failed)} of {len(self.succeeded) + len(self.failed)} "
            f"payment writes failed: {', '.join(self.failed)}"
        )


@dataclass(frozen=True)
class RateLimited(LedgerError):
    """Too many attempts for the same operation and actor."""

    key: str
    retry_after: datetime | None = None
    code: ErrorCode = field(default=ErrorCode.RATE_LIMITED, init=False)

    @property
    def reason(self) -> str:
        if self.retry_after is None:
            return "Rate limit exceeded. Try again later."
        return f"Rate limit exceeded. Try again after {self.retry_after.isoformat()}."


@dataclass(frozen=True)
class NoEligibleStaff(LedgerError):
    """No active staff member has a fixed salary configured."""

    period: str
    code: ErrorCode = field(default=ErrorCode.NO_ELIGIBLE_STAFF, init=False)

    @property
    def reason(self) -> str:
        return (
            "No active staff members with fixed salaries were found "
            f"to generate payroll for {self.period}."
        )


@dataclass(frozen=True)
class InvalidStatusTransition(LedgerError):
    """A payroll status change other than pending -> paid/cancelled."""

    payroll_id: str
    current: str
    requested: str
    code: ErrorCode = field(default=ErrorCode.INVALID_STATUS_TRANSITION, init=False)

    @property
    def reason(self) -> str:
        return (
            f"Payroll {self.payroll_id} cannot move from "
            f"{self.current} to {self.requested}."
        )


def is_error(value: object) -> TypeGuard[LedgerError]:
    """Return True if ``value`` is one of the engine's error values."""
    return isinstance(value, LedgerError)


class RecordStoreError(Exception):
    """The external record store failed unexpectedly."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details
