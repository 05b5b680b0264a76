"""Audit events for ledger operations."""

from school_ledger.events.publisher import AuditPublisher
from school_ledger.events.types import (
    AuditAction,
    AuditEvent,
    AuditStatus,
    payment_recorded,
    payroll_generated,
    payroll_rejected,
    payroll_status_changed,
)

__all__ = [
    "AuditAction",
    "AuditEvent",
    "AuditPublisher",
    "AuditStatus",
    "payment_recorded",
    "payroll_generated",
    "payroll_rejected",
    "payroll_status_changed",
]
