"""Proration of a full-period amount by working days actually covered."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import structlog

from school_ledger.errors import DegeneratePeriod
from school_ledger.money import ZERO, round_money
from school_ledger.periods import Period, count_working_days

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProrationResult:
    """Outcome of prorating an amount over a period."""

    prorated_amount: Decimal
    days_worked: int
    total_days: int
    degenerate: DegeneratePeriod | None = None

    @property
    def is_prorated(self) -> bool:
        return self.days_worked < self.total_days


def prorate(base: Decimal, anchor_date: date | None, period: Period) -> ProrationResult:
    """Scale ``base`` by the working days from ``anchor_date`` to period end.

    An anchor on or before the period start (or no anchor at all) owes the
    full amount; an anchor after the period end owes nothing. A period with
    no working days yields zero instead of dividing by zero.
    """
    total_days = count_working_days(period.start, period.end)
    if total_days == 0:
        degenerate = DegeneratePeriod(start=period.start, end=period.end)
        logger.warning(
            "proration_degenerate_period",
            period=period.label,
            start=period.start.isoformat(),
            end=period.end.isoformat(),
        )
        return ProrationResult(
            prorated_amount=ZERO, days_worked=0, total_days=0, degenerate=degenerate
        )

    if anchor_date is None or anchor_date <= period.start:
        return ProrationResult(
            prorated_amount=round_money(base),
            days_worked=total_days,
            total_days=total_days,
        )

    if anchor_date > period.end:
        return ProrationResult(prorated_amount=ZERO, days_worked=0, total_days=total_days)

    effective_start = max(anchor_date, period.start)
    days_worked = count_working_days(effective_start, period.end)
    prorated = round_money(base * Decimal(days_worked) / Decimal(total_days))
    return ProrationResult(
        prorated_amount=prorated,
        days_worked=days_worked,
        total_days=total_days,
    )
