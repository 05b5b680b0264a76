"""Split one entered payment across several billing months."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import structlog

from school_ledger.errors import PartialAllocationFailure, RecordStoreError
from school_ledger.events import AuditPublisher, payment_recorded
from school_ledger.models import Payment, PaymentIntent, PaymentMethod
from school_ledger.money import ZERO, floor_money, round_money, sum_money
from school_ledger.stores import PaymentStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Allocation:
    """Amount assigned to one billing month."""

    month: str
    amount: Decimal


@dataclass(frozen=True)
class AllocationReceipt:
    """Every payment write of an allocation succeeded."""

    recorded: tuple[Payment, ...]

    @property
    def total_amount(self) -> Decimal:
        return sum_money(p.amount for p in self.recorded)


def allocate_payment(
    total_amount: Decimal | None,
    selected_months: Sequence[str],
    default_monthly: Decimal,
) -> list[Allocation]:
    """Distribute ``total_amount`` over ``selected_months``.

    With no total (or zero) every month gets ``default_monthly``. Otherwise
    each month gets the total divided evenly and floored to the cent, and the
    last month absorbs the remainder so the parts add up exactly.
    """
    if not selected_months:
        raise ValueError("At least one month must be selected")
    if len(set(selected_months)) != len(selected_months):
        raise ValueError("Selected months must be distinct")

    if not total_amount:
        return [Allocation(month=month, amount=default_monthly) for month in selected_months]
    if total_amount < 0:
        raise ValueError("total_amount must be positive")

    count = len(selected_months)
    total = round_money(total_amount)
    base = floor_money(total / count)
    last = total - base * (count - 1)

    allocations = [Allocation(month=month, amount=base) for month in selected_months[:-1]]
    allocations.append(Allocation(month=selected_months[-1], amount=last))
    return allocations


def build_payment_intents(
    student_id: str,
    allocations: Sequence[Allocation],
    method: PaymentMethod,
    academic_year: str,
    paid_on: date,
) -> list[PaymentIntent]:
    """Turn allocations into payment writes, skipping zero-amount months."""
    return [
        PaymentIntent(
            student_id=student_id,
            month=allocation.month,
            amount=allocation.amount,
            method=method,
            academic_year=academic_year,
            paid_on=paid_on,
        )
        for allocation in allocations
        if allocation.amount > ZERO
    ]


async def record_allocation(
    store: PaymentStore,
    intents: Sequence[PaymentIntent],
    publisher: AuditPublisher | None = None,
    actor_id: str | None = None,
) -> AllocationReceipt | PartialAllocationFailure:
    """Persist each intent in order as an independent payment.

    Writes are not transactional: a failure leaves earlier writes committed
    and the remaining months are still attempted. The failure value lists
    which months went through and which need a retry.
    """
    recorded: list[Payment] = []
    failed: dict[str, str] = {}

    for intent in intents:
        try:
            payment = await store.record_payment(intent)
        except RecordStoreError as exc:
            logger.warning(
                "payment_write_failed",
                student_id=intent.student_id,
                month=intent.month,
                amount=str(intent.amount),
                error=str(exc),
            )
            failed[intent.month] = str(exc)
            continue
        recorded.append(payment)

    if publisher is not None and intents:
        publisher.publish(
            payment_recorded(
                student_id=intents[0].student_id,
                months=[intent.month for intent in intents],
                total_amount=str(sum_money(p.amount for p in recorded)),
                failed_months=list(failed),
                actor_id=actor_id,
            )
        )

    if failed:
        return PartialAllocationFailure(
            succeeded=tuple(p.month for p in recorded),
            failed=failed,
        )

    logger.info(
        "payment_allocation_recorded",
        months=len(recorded),
        total=str(sum_money(p.amount for p in recorded)),
    )
    return AllocationReceipt(recorded=tuple(recorded))
