"""Audit event definitions.

Events record who generated, confirmed or cancelled a payroll and who
recorded payments, mirroring the audit trail kept next to the record store.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class AuditAction(str, Enum):
    """Operations that leave an audit trail."""

    PAYROLL_GENERATE = "payroll.generate"
    PAYROLL_CONFIRM = "payroll.confirm"
    PAYROLL_CANCEL = "payroll.cancel"
    PAYMENT_RECORD = "payment.record"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class AuditEvent:
    """Base event structure for all audit events."""

    action: AuditAction
    status: AuditStatus
    actor_id: str | None = None
    resource_id: str | None = None
    resource_type: str | None = None
    error_message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: UUID = field(default_factory=uuid4)

    @property
    def succeeded(self) -> bool:
        return self.status == AuditStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to a JSON-compatible dictionary."""
        return {
            "id": str(self.event_id),
            "action": self.action.value,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "actor_id": self.actor_id,
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "error_message": self.error_message,
            "details": self.details,
        }


# Factory functions for common events


def payroll_generated(
    payroll_id: str,
    period: str,
    total_amount: str,
    staff_count: int,
    actor_id: str | None = None,
) -> AuditEvent:
    """Create a successful payroll generation event."""
    return AuditEvent(
        action=AuditAction.PAYROLL_GENERATE,
        status=AuditStatus.SUCCESS,
        actor_id=actor_id,
        resource_id=payroll_id,
        resource_type="payroll",
        details={
            "period": period,
            "total_amount": total_amount,
            "staff_count": staff_count,
        },
    )


def payroll_rejected(
    period: str,
    reason: str,
    actor_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> AuditEvent:
    """Create a failed payroll generation event."""
    return AuditEvent(
        action=AuditAction.PAYROLL_GENERATE,
        status=AuditStatus.FAILURE,
        actor_id=actor_id,
        resource_type="payroll",
        error_message=reason,
        details={"period": period, **(details or {})},
    )


def payroll_status_changed(
    action: AuditAction,
    payroll_id: str,
    status: AuditStatus,
    actor_id: str | None = None,
    error_message: str | None = None,
) -> AuditEvent:
    """Create a payroll confirm/cancel event."""
    return AuditEvent(
        action=action,
        status=status,
        actor_id=actor_id,
        resource_id=payroll_id,
        resource_type="payroll",
        error_message=error_message,
    )


def payment_recorded(
    student_id: str,
    months: list[str],
    total_amount: str,
    failed_months: list[str] | None = None,
    actor_id: str | None = None,
) -> AuditEvent:
    """Create a payment recording event; any failed month marks it a failure."""
    failed = failed_months or []
    return AuditEvent(
        action=AuditAction.PAYMENT_RECORD,
        status=AuditStatus.FAILURE if failed else AuditStatus.SUCCESS,
        actor_id=actor_id,
        resource_id=student_id,
        resource_type="student",
        error_message=f"Failed months: {', '.join(failed)}" if failed else None,
        details={
            "months": months,
            "total_amount": total_amount,
            "failed_months": failed,
        },
    )
