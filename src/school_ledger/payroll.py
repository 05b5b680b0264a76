"""Payroll generation, payslip normalization and payroll status changes."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

import structlog

from school_ledger.errors import (
    DuplicatePeriod,
    InvalidStatusTransition,
    NoEligibleStaff,
    RateLimited,
    RecordStoreError,
)
from school_ledger.events import (
    AuditAction,
    AuditPublisher,
    AuditStatus,
    payroll_generated,
    payroll_rejected,
    payroll_status_changed,
)
from school_ledger.models import ItemType, Payroll, PayrollStatus, Payslip, PayslipItem, Staff
from school_ledger.money import ZERO, round_money, sum_money, to_money
from school_ledger.periods import Period, parse_period_label
from school_ledger.proration import prorate
from school_ledger.rate_limit import (
    RateLimitConfig,
    RateLimiter,
    RateLimits,
    rate_limit_key,
)
from school_ledger.statutory import (
    BASE_SALARY_ID,
    BASE_SALARY_LABEL,
    StatutoryRates,
    default_payslip_items,
    employer_amo,
    employer_cnss,
    recalculate_deductions,
)
from school_ledger.stores import PayrollStore, StaffProvider

logger = structlog.get_logger(__name__)

_ALLOWED_TRANSITIONS: dict[PayrollStatus, frozenset[PayrollStatus]] = {
    PayrollStatus.PENDING: frozenset({PayrollStatus.PAID, PayrollStatus.CANCELLED}),
    PayrollStatus.PAID: frozenset(),
    PayrollStatus.CANCELLED: frozenset(),
}


def build_payslip(
    staff: Staff, period: Period, rates: StatutoryRates
) -> Payslip | None:
    """Build one staff member's payslip, or None if hired after the period."""
    base_salary = staff.base_salary
    proration = prorate(base_salary, staff.hire_date, period)
    if proration.days_worked == 0:
        return None

    earnings, deductions = default_payslip_items(proration.prorated_amount, rates)
    if proration.is_prorated:
        earnings = tuple(
            replace(
                item,
                label=(
                    f"{item.label} (Prorated "
                    f"{proration.days_worked}/{proration.total_days})"
                ),
            )
            if item.id == BASE_SALARY_ID
            else item
            for item in earnings
        )

    gross = sum_money(item.amount for item in earnings)
    return Payslip(
        staff_id=staff.id,
        staff_name=staff.name,
        period=period.label,
        base_salary=proration.prorated_amount,
        earnings=earnings,
        deductions=deductions,
        employer_cnss=employer_cnss(gross, rates),
        employer_amo=employer_amo(gross, rates),
        staff_position=staff.position,
        cnss_number=staff.cnss_number,
        cin=staff.cin,
    )


def generate_payroll(
    period: str,
    active_staff: Iterable[Staff],
    existing_periods: Mapping[str, str],
    *,
    rates: StatutoryRates,
    run_date: datetime,
    payroll_id: str,
) -> Payroll | DuplicatePeriod | NoEligibleStaff:
    """Generate the payroll run for ``period``.

    ``existing_periods`` maps already generated period labels to payroll ids
    and is checked before anything else is computed. Only active staff paid a
    fixed, positive salary get a payslip; the base salary is prorated by hire
    date against the month the label parses to.
    """
    if period in existing_periods:
        return DuplicatePeriod(period=period, existing_payroll_id=existing_periods[period])

    eligible = [member for member in active_staff if member.is_salaried]
    if not eligible:
        return NoEligibleStaff(period=period)

    parsed = parse_period_label(period, today=run_date.date())
    payslips: list[Payslip] = []
    for member in eligible:
        payslip = build_payslip(member, parsed, rates)
        if payslip is None:
            logger.info(
                "payroll_staff_not_yet_hired",
                staff_id=member.id,
                period=period,
                hire_date=member.hire_date.isoformat() if member.hire_date else None,
            )
            continue
        payslips.append(payslip)

    if not payslips:
        return NoEligibleStaff(period=period)

    return Payroll(
        id=payroll_id,
        period=period,
        run_date=run_date,
        payslips=tuple(payslips),
        status=PayrollStatus.PENDING,
    )


def rebuild_payslip(
    payslip: Payslip, earnings: Iterable[PayslipItem], rates: StatutoryRates
) -> Payslip:
    """Apply edited earnings and re-derive deductions and employer charges."""
    earnings = tuple(earnings)
    deductions = recalculate_deductions(earnings, payslip.deductions, rates)
    gross = sum_money(item.amount for item in earnings)
    base = next(
        (item.amount for item in earnings if item.id == BASE_SALARY_ID),
        payslip.base_salary,
    )
    return replace(
        payslip,
        base_salary=base,
        earnings=earnings,
        deductions=deductions,
        employer_cnss=employer_cnss(gross, rates),
        employer_amo=employer_amo(gross, rates),
    )


def transition_payroll(
    payroll: Payroll, new_status: PayrollStatus
) -> Payroll | InvalidStatusTransition:
    """Move a payroll from pending to paid or cancelled; both are terminal."""
    if new_status not in _ALLOWED_TRANSITIONS[payroll.status]:
        return InvalidStatusTransition(
            payroll_id=payroll.id,
            current=payroll.status.value,
            requested=new_status.value,
        )
    return replace(payroll, status=new_status)


# Stored payslip shapes


@dataclass(frozen=True)
class LegacyPayslip:
    """Flat payslip written before line items existed."""

    staff_id: str
    staff_name: str
    period: str
    salary: Decimal
    bonus: Decimal = ZERO
    deductions: Decimal = ZERO
    stored_net_pay: Decimal | None = None
    employer_cnss: Decimal = ZERO
    employer_amo: Decimal = ZERO
    staff_position: str | None = None
    cnss_number: str | None = None
    cin: str | None = None
    payment_date: date | None = None


@dataclass(frozen=True)
class ItemizedPayslip:
    """Payslip stored with explicit earning and deduction items."""

    staff_id: str
    staff_name: str
    period: str
    base_salary: Decimal
    earnings: tuple[PayslipItem, ...]
    deductions: tuple[PayslipItem, ...]
    stored_net_pay: Decimal | None = None
    employer_cnss: Decimal = ZERO
    employer_amo: Decimal = ZERO
    staff_position: str | None = None
    cnss_number: str | None = None
    cin: str | None = None
    payment_date: date | None = None


def _parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _optional_money(value: Any) -> Decimal | None:
    if value is None:
        return None
    return to_money(value)


def _optional_text(value: Any) -> str | None:
    return str(value) if value else None


def _item_from_record(raw: Mapping[str, Any], default_type: ItemType) -> PayslipItem:
    return PayslipItem(
        id=str(raw.get("id", "")),
        label=str(raw.get("label", "")),
        amount=to_money(raw.get("amount")),
        type=ItemType(raw.get("type", default_type.value)),
        category=str(raw.get("category", "custom")),
        taxable=bool(raw.get("taxable", default_type == ItemType.EARNING)),
        rate=_optional_money(raw.get("rate")),
        hours=_optional_money(raw.get("hours")),
        hourly_rate=_optional_money(raw.get("hourlyRate", raw.get("hourly_rate"))),
    )


def _legacy_earnings(base_salary: Decimal, bonus: Decimal) -> tuple[PayslipItem, ...]:
    items = [
        PayslipItem(
            id=BASE_SALARY_ID,
            label=BASE_SALARY_LABEL,
            amount=base_salary,
            type=ItemType.EARNING,
            category="base",
            taxable=True,
        )
    ]
    if bonus > 0:
        items.append(
            PayslipItem(
                id="bonus",
                label="Prime",
                amount=bonus,
                type=ItemType.EARNING,
                category="bonus",
                taxable=True,
            )
        )
    return tuple(items)


def _legacy_deductions(total: Decimal) -> tuple[PayslipItem, ...]:
    if total <= 0:
        return ()
    return (
        PayslipItem(
            id="legacy-deduction",
            label="Retenues",
            amount=total,
            type=ItemType.DEDUCTION,
            category="custom",
            taxable=False,
        ),
    )


def parse_payslip_record(
    record: Mapping[str, Any], default_period: str = ""
) -> LegacyPayslip | ItemizedPayslip:
    """Read a stored payslip into whichever shape it was written in.

    A record is itemized when either side carries a list of items; a missing
    side is filled from the flat fields the same way a legacy record is.
    """
    base_salary = to_money(record.get("baseSalary", record.get("salary")))
    bonus = to_money(record.get("bonus"))
    common: dict[str, Any] = {
        "staff_id": str(record["staffId"]),
        "staff_name": str(record.get("staffName", "")),
        "period": str(record.get("period") or default_period),
        "stored_net_pay": _optional_money(record.get("netPay")),
        "employer_cnss": to_money(record.get("employerCNSS")),
        "employer_amo": to_money(record.get("employerAMO")),
        "staff_position": _optional_text(record.get("staffPosition")),
        "cnss_number": _optional_text(record.get("cnssNumber")),
        "cin": _optional_text(record.get("cin")),
        "payment_date": _parse_date(record.get("paymentDate")),
    }

    raw_earnings = record.get("earnings")
    raw_deductions = record.get("deductions")
    if isinstance(raw_earnings, list) or isinstance(raw_deductions, list):
        if isinstance(raw_earnings, list):
            earnings = tuple(_item_from_record(r, ItemType.EARNING) for r in raw_earnings)
        else:
            earnings = _legacy_earnings(base_salary, bonus)
        if isinstance(raw_deductions, list):
            deductions = tuple(
                _item_from_record(r, ItemType.DEDUCTION) for r in raw_deductions
            )
        else:
            deductions = _legacy_deductions(to_money(raw_deductions))
        return ItemizedPayslip(
            base_salary=base_salary,
            earnings=earnings,
            deductions=deductions,
            **common,
        )

    return LegacyPayslip(
        salary=base_salary,
        bonus=bonus,
        deductions=to_money(raw_deductions),
        **common,
    )


def normalize_payslip(variant: LegacyPayslip | ItemizedPayslip) -> Payslip:
    """Collapse either stored shape into the canonical payslip.

    Totals are always derived from items. A stored net pay that disagrees
    with them is dropped and logged.
    """
    if isinstance(variant, LegacyPayslip):
        base_salary = variant.salary
        earnings = _legacy_earnings(variant.salary, variant.bonus)
        deductions = _legacy_deductions(variant.deductions)
    else:
        base_salary = variant.base_salary
        earnings = variant.earnings
        deductions = variant.deductions

    payslip = Payslip(
        staff_id=variant.staff_id,
        staff_name=variant.staff_name,
        period=variant.period,
        base_salary=base_salary,
        earnings=earnings,
        deductions=deductions,
        employer_cnss=variant.employer_cnss,
        employer_amo=variant.employer_amo,
        staff_position=variant.staff_position,
        cnss_number=variant.cnss_number,
        cin=variant.cin,
        payment_date=variant.payment_date,
    )

    stored = variant.stored_net_pay
    if stored is not None and round_money(stored) != round_money(payslip.net_pay):
        logger.warning(
            "payslip_net_pay_mismatch",
            staff_id=variant.staff_id,
            period=variant.period,
            stored_net_pay=str(stored),
            computed_net_pay=str(payslip.net_pay),
        )
    return payslip


def payroll_from_record(record: Mapping[str, Any]) -> Payroll:
    """Normalize a stored payroll and all of its payslips."""
    period = str(record.get("period", ""))
    payslips = tuple(
        normalize_payslip(parse_payslip_record(raw, default_period=period))
        for raw in record.get("payslips") or []
    )
    return Payroll(
        id=str(record["id"]),
        period=period,
        run_date=_parse_datetime(record["runDate"]),
        payslips=payslips,
        status=PayrollStatus(record.get("status") or PayrollStatus.PENDING.value),
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_payroll_id() -> str:
    return uuid4().hex


class PayrollService:
    """Runs payroll generation and status changes against the record store.

    The duplicate-period check reads existing periods and then writes, so two
    concurrent callers can both pass it. The store must also enforce a
    uniqueness constraint on ``period``; rate limiting only slows retries.
    """

    GENERATE_OPERATION = "payroll:generate"

    def __init__(
        self,
        staff: StaffProvider,
        payrolls: PayrollStore,
        rates: StatutoryRates,
        *,
        rate_limiter: RateLimiter | None = None,
        rate_limit: RateLimitConfig = RateLimits.PAYROLL_GENERATION,
        publisher: AuditPublisher | None = None,
        clock: Callable[[], datetime] = _utc_now,
        id_factory: Callable[[], str] = _new_payroll_id,
    ) -> None:
        self._staff = staff
        self._payrolls = payrolls
        self._rates = rates
        self._rate_limiter = rate_limiter or RateLimiter()
        self._rate_limit = rate_limit
        self._publisher = publisher or AuditPublisher()
        self._clock = clock
        self._id_factory = id_factory
        self._logger = logger.bind(component="payroll_service")

    @property
    def publisher(self) -> AuditPublisher:
        return self._publisher

    async def generate(
        self, period: str, actor_id: str | None = None
    ) -> Payroll | DuplicatePeriod | NoEligibleStaff | RateLimited:
        """Generate and store the payroll for ``period``."""
        key = rate_limit_key(self.GENERATE_OPERATION, actor_id)
        decision = self._rate_limiter.check(key, self._rate_limit)
        if not decision.allowed:
            limited = RateLimited(key=key, retry_after=decision.blocked_until)
            self._publisher.publish(
                payroll_rejected(period, limited.reason, actor_id, {"code": limited.code.value})
            )
            return limited

        existing = await self._payrolls.get_existing_payroll_periods()
        staff = await self._staff.get_active_salaried_staff()
        result = generate_payroll(
            period,
            staff,
            existing,
            rates=self._rates,
            run_date=self._clock(),
            payroll_id=self._id_factory(),
        )

        if isinstance(result, (DuplicatePeriod, NoEligibleStaff)):
            self._logger.info("payroll_rejected", period=period, code=result.code.value)
            self._publisher.publish(
                payroll_rejected(period, result.reason, actor_id, {"code": result.code.value})
            )
            return result

        stored = await self._payrolls.add_payroll(result)
        self._logger.info(
            "payroll_generated",
            payroll_id=stored.id,
            period=period,
            staff_count=len(stored.payslips),
            total_amount=str(stored.total_amount),
        )
        self._publisher.publish(
            payroll_generated(
                payroll_id=stored.id,
                period=period,
                total_amount=str(stored.total_amount),
                staff_count=len(stored.payslips),
                actor_id=actor_id,
            )
        )
        return stored

    async def confirm_payment(
        self, payroll_id: str, actor_id: str | None = None
    ) -> Payroll | InvalidStatusTransition:
        """Mark a pending payroll as paid."""
        return await self._change_status(
            payroll_id, PayrollStatus.PAID, AuditAction.PAYROLL_CONFIRM, actor_id
        )

    async def cancel(
        self, payroll_id: str, actor_id: str | None = None
    ) -> Payroll | InvalidStatusTransition:
        """Cancel a pending payroll."""
        return await self._change_status(
            payroll_id, PayrollStatus.CANCELLED, AuditAction.PAYROLL_CANCEL, actor_id
        )

    async def _change_status(
        self,
        payroll_id: str,
        new_status: PayrollStatus,
        action: AuditAction,
        actor_id: str | None,
    ) -> Payroll | InvalidStatusTransition:
        payroll = await self._find(payroll_id)
        result = transition_payroll(payroll, new_status)
        if isinstance(result, InvalidStatusTransition):
            self._logger.warning(
                "payroll_status_rejected",
                payroll_id=payroll_id,
                current=result.current,
                requested=result.requested,
            )
            self._publisher.publish(
                payroll_status_changed(
                    action, payroll_id, AuditStatus.FAILURE, actor_id, result.reason
                )
            )
            return result

        await self._payrolls.update_payroll_status(payroll_id, new_status)
        self._logger.info(
            "payroll_status_changed", payroll_id=payroll_id, status=new_status.value
        )
        self._publisher.publish(
            payroll_status_changed(action, payroll_id, AuditStatus.SUCCESS, actor_id)
        )
        return result

    async def _find(self, payroll_id: str) -> Payroll:
        for payroll in await self._payrolls.list_payrolls():
            if payroll.id == payroll_id:
                return payroll
        raise RecordStoreError(f"Payroll {payroll_id} not found", {"payroll_id": payroll_id})
