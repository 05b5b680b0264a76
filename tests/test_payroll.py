"""Tests for payroll generation, stored payslip shapes and status changes."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from school_ledger.errors import (
    DuplicatePeriod,
    ErrorCode,
    InvalidStatusTransition,
    NoEligibleStaff,
    RateLimited,
    RecordStoreError,
)
from school_ledger.events import AuditAction, AuditStatus
from school_ledger.models import ItemType, Payroll, PayrollStatus, PayslipItem, Staff
from school_ledger.payroll import (
    ItemizedPayslip,
    LegacyPayslip,
    PayrollService,
    generate_payroll,
    normalize_payslip,
    parse_payslip_record,
    payroll_from_record,
    rebuild_payslip,
    transition_payroll,
)
from school_ledger.rate_limit import RateLimiter
from school_ledger.stores import InMemoryRecordStore

RUN_DATE = datetime(2024, 7, 31, 9, 0, tzinfo=timezone.utc)


def _staff(staff_id: str, salary: str, hired: date | None = date(2020, 1, 6), **kwargs) -> Staff:
    return Staff(
        id=staff_id,
        name=f"Staff {staff_id}",
        hire_date=hired,
        salary=Decimal(salary),
        **kwargs,
    )


def _generate(staff, existing=None, rates=None):
    return generate_payroll(
        "July 2024",
        staff,
        existing or {},
        rates=rates,
        run_date=RUN_DATE,
        payroll_id="payroll-1",
    )


class TestGeneratePayroll:
    """Tests for building a payroll run."""

    def test_full_month_payslip(self, rates):
        result = _generate([_staff("b", "8000", position="Teacher")], rates=rates)

        assert isinstance(result, Payroll)
        assert result.status == PayrollStatus.PENDING
        assert result.run_date == RUN_DATE
        payslip = result.payslips[0]
        deductions = {item.id: item.amount for item in payslip.deductions}
        assert payslip.gross_salary == Decimal("8000")
        assert deductions == {
            "cnss": Decimal("257.40"),
            "amo": Decimal("180.80"),
            "ir": Decimal("1137.68"),
        }
        assert payslip.net_pay == Decimal("6424.12")
        assert payslip.employer_cnss == Decimal("773.40")
        assert payslip.employer_amo == Decimal("328.80")
        assert payslip.staff_position == "Teacher"
        assert result.total_amount == Decimal("6424.12")
        assert result.total_employer_contributions == Decimal("1102.20")
        assert result.to_dict()["total_employer_contributions"] == "1102.20"

    def test_mid_month_hire_is_prorated(self, rates):
        result = _generate([_staff("a", "10000", hired=date(2024, 7, 16))], rates=rates)

        base = result.payslips[0].earnings[0]
        assert base.label == "Salaire de base (Prorated 12/23)"
        assert base.amount == Decimal("5217.39")
        assert result.payslips[0].base_salary == Decimal("5217.39")

    def test_rebuild_keeps_prorated_base_salary(self, rates):
        result = _generate([_staff("a", "10000", hired=date(2024, 7, 16))], rates=rates)
        payslip = result.payslips[0]

        rebuilt = rebuild_payslip(payslip, payslip.earnings, rates)

        assert rebuilt.base_salary == payslip.base_salary
        assert rebuilt == payslip

    def test_unknown_hire_date_is_paid_in_full(self, rates):
        result = _generate([_staff("a", "5000", hired=None)], rates=rates)

        assert result.payslips[0].gross_salary == Decimal("5000")
        assert result.payslips[0].earnings[0].label == "Salaire de base"

    def test_only_active_fixed_salary_staff_are_paid(self, rates):
        staff = [
            _staff("a", "9000"),
            _staff("hourly", "0", payment_type="hourly", payment_rate=Decimal("120")),
            _staff("gone", "7000", status="inactive"),
            _staff("unset", "0"),
        ]

        result = _generate(staff, rates=rates)

        assert [p.staff_id for p in result.payslips] == ["a"]

    def test_staff_hired_after_period_is_skipped(self, rates):
        staff = [_staff("a", "9000"), _staff("late", "9000", hired=date(2024, 8, 1))]

        result = _generate(staff, rates=rates)

        assert [p.staff_id for p in result.payslips] == ["a"]

    def test_only_future_hires_means_no_eligible_staff(self, rates):
        result = _generate([_staff("late", "9000", hired=date(2024, 9, 2))], rates=rates)

        assert isinstance(result, NoEligibleStaff)

    def test_duplicate_period_checked_first(self, rates):
        result = _generate([], existing={"July 2024": "payroll-0"}, rates=rates)

        assert isinstance(result, DuplicatePeriod)
        assert result.existing_payroll_id == "payroll-0"
        assert result.reason == "Payroll for July 2024 has already been generated."

    def test_other_periods_do_not_block(self, rates):
        result = _generate([_staff("a", "9000")], existing={"June 2024": "p-6"}, rates=rates)

        assert isinstance(result, Payroll)

    def test_no_salaried_staff(self, rates):
        result = _generate([], rates=rates)

        assert isinstance(result, NoEligibleStaff)
        assert result.code == ErrorCode.NO_ELIGIBLE_STAFF
        assert "July 2024" in result.reason


class TestTransitionPayroll:
    def _payroll(self, status: PayrollStatus) -> Payroll:
        return Payroll(id="p1", period="July 2024", run_date=RUN_DATE, status=status)

    @pytest.mark.parametrize("target", [PayrollStatus.PAID, PayrollStatus.CANCELLED])
    def test_pending_can_move_forward(self, target):
        result = transition_payroll(self._payroll(PayrollStatus.PENDING), target)

        assert isinstance(result, Payroll)
        assert result.status == target

    @pytest.mark.parametrize(
        "current,target",
        [
            (PayrollStatus.PAID, PayrollStatus.PENDING),
            (PayrollStatus.PAID, PayrollStatus.CANCELLED),
            (PayrollStatus.CANCELLED, PayrollStatus.PAID),
            (PayrollStatus.PENDING, PayrollStatus.PENDING),
        ],
    )
    def test_terminal_states_are_final(self, current, target):
        result = transition_payroll(self._payroll(current), target)

        assert isinstance(result, InvalidStatusTransition)
        assert result.current == current.value
        assert result.requested == target.value


class TestStoredPayslips:
    """Tests for reading legacy and itemized payslip records."""

    def test_legacy_record_derives_net_pay(self):
        record = {
            "staffId": "t9",
            "staffName": "Old Record",
            "salary": "6000",
            "bonus": "500",
            "deductions": "300",
            "netPay": "9999",
        }

        variant = parse_payslip_record(record, default_period="March 2023")
        payslip = normalize_payslip(variant)

        assert isinstance(variant, LegacyPayslip)
        assert variant.stored_net_pay == Decimal("9999")
        assert payslip.period == "March 2023"
        assert [item.id for item in payslip.earnings] == ["base-salary", "bonus"]
        assert [item.id for item in payslip.deductions] == ["legacy-deduction"]
        assert payslip.net_pay == Decimal("6200")

    def test_legacy_record_without_bonus_or_deductions(self):
        payslip = normalize_payslip(
            parse_payslip_record({"staffId": "t9", "salary": 4000, "period": "May 2023"})
        )

        assert len(payslip.earnings) == 1
        assert payslip.deductions == ()
        assert payslip.net_pay == Decimal("4000")

    def test_itemized_record(self):
        record = {
            "staffId": "t1",
            "staffName": "Karim Tazi",
            "baseSalary": "8000",
            "earnings": [
                {"id": "base-salary", "label": "Salaire de base", "amount": "8000",
                 "category": "base"},
                {"id": "transport", "label": "Transport", "amount": "250",
                 "category": "allowance", "taxable": False},
            ],
            "deductions": [
                {"id": "cnss", "label": "CNSS", "amount": "257.40", "category": "cnss",
                 "rate": "4.29"},
            ],
            "employerCNSS": "773.40",
            "cnssNumber": "123456789",
            "paymentDate": "2024-08-02T10:00:00Z",
        }

        variant = parse_payslip_record(record, default_period="July 2024")
        payslip = normalize_payslip(variant)

        assert isinstance(variant, ItemizedPayslip)
        assert payslip.earnings[1].taxable is False
        assert payslip.earnings[1].type == ItemType.EARNING
        assert payslip.deductions[0].type == ItemType.DEDUCTION
        assert payslip.deductions[0].rate == Decimal("4.29")
        assert payslip.net_pay == Decimal("7992.60")
        assert payslip.employer_cnss == Decimal("773.40")
        assert payslip.cnss_number == "123456789"
        assert payslip.payment_date == date(2024, 8, 2)

    def test_payroll_record(self):
        record = {
            "id": "p-2023-03",
            "period": "March 2023",
            "runDate": "2023-03-31T18:00:00Z",
            "payslips": [
                {"staffId": "a", "salary": "6000", "deductions": "300"},
                {"staffId": "b", "salary": "4000"},
            ],
        }

        payroll = payroll_from_record(record)

        assert payroll.status == PayrollStatus.PENDING
        assert payroll.run_date == datetime(2023, 3, 31, 18, 0, tzinfo=timezone.utc)
        assert [p.period for p in payroll.payslips] == ["March 2023", "March 2023"]
        assert payroll.total_amount == Decimal("9700")

    def test_rebuild_payslip_after_adding_overtime(self, rates):
        payroll = _generate([_staff("a", "10000")], rates=rates)
        payslip = payroll.payslips[0]
        overtime = PayslipItem(
            id="overtime",
            label="Heures supplémentaires",
            amount=Decimal("125"),
            type=ItemType.EARNING,
            category="overtime",
        )

        rebuilt = rebuild_payslip(payslip, payslip.earnings + (overtime,), rates)

        assert rebuilt.gross_salary == Decimal("10125")
        deductions = {item.id: item.amount for item in rebuilt.deductions}
        assert deductions["amo"] == Decimal("228.83")
        assert deductions["ir"] == Decimal("1843.85")
        assert rebuilt.employer_amo == Decimal("416.14")
        assert rebuilt.base_salary == Decimal("10000")


class TestPayrollService:
    """Tests for the stored payroll workflow."""

    def _service(self, store, rates, **kwargs) -> PayrollService:
        ids = iter(f"payroll-{n}" for n in range(1, 100))
        return PayrollService(
            store,
            store,
            rates,
            clock=lambda: RUN_DATE,
            id_factory=lambda: next(ids),
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_generate_stores_payroll(self, school_store, rates):
        service = self._service(school_store, rates)

        result = await service.generate("July 2024", actor_id="admin-1")

        assert isinstance(result, Payroll)
        assert school_store.payrolls["payroll-1"] is result
        by_staff = {p.staff_id: p for p in result.payslips}
        assert set(by_staff) == {"t1", "t2"}
        assert by_staff["t2"].gross_salary == Decimal("4782.61")
        event = service.publisher.events_for(AuditAction.PAYROLL_GENERATE)[0]
        assert event.status == AuditStatus.SUCCESS
        assert event.resource_id == "payroll-1"
        assert event.details["staff_count"] == 2

    @pytest.mark.asyncio
    async def test_second_generation_is_rejected(self, school_store, rates):
        service = self._service(school_store, rates)

        first = await service.generate("July 2024", actor_id="admin-1")
        second = await service.generate("July 2024", actor_id="admin-1")

        assert isinstance(first, Payroll)
        assert isinstance(second, DuplicatePeriod)
        assert second.existing_payroll_id == first.id
        assert len(school_store.payrolls) == 1
        assert service.publisher.recent_events[-1].status == AuditStatus.FAILURE

    @pytest.mark.asyncio
    async def test_repeated_attempts_are_rate_limited(self, school_store, rates):
        now = [1_000_000.0]
        service = self._service(school_store, rates, rate_limiter=RateLimiter(lambda: now[0]))

        for _ in range(3):
            await service.generate("July 2024", actor_id="admin-1")
        limited = await service.generate("July 2024", actor_id="admin-1")
        other_actor = await service.generate("July 2024", actor_id="admin-2")

        assert isinstance(limited, RateLimited)
        assert limited.key == "payroll:generate:admin-1"
        assert limited.retry_after is not None
        assert isinstance(other_actor, DuplicatePeriod)

    @pytest.mark.asyncio
    async def test_no_eligible_staff(self, rates):
        store = InMemoryRecordStore()
        service = self._service(store, rates)

        result = await service.generate("July 2024")

        assert isinstance(result, NoEligibleStaff)
        assert store.payrolls == {}

    @pytest.mark.asyncio
    async def test_confirm_payment(self, school_store, rates):
        service = self._service(school_store, rates)
        payroll = await service.generate("July 2024")

        result = await service.confirm_payment(payroll.id, actor_id="admin-1")

        assert isinstance(result, Payroll)
        assert school_store.payrolls[payroll.id].status == PayrollStatus.PAID
        event = service.publisher.events_for(AuditAction.PAYROLL_CONFIRM)[0]
        assert event.succeeded

    @pytest.mark.asyncio
    async def test_cancel_after_payment_is_rejected(self, school_store, rates):
        service = self._service(school_store, rates)
        payroll = await service.generate("July 2024")
        await service.confirm_payment(payroll.id)

        result = await service.cancel(payroll.id)

        assert isinstance(result, InvalidStatusTransition)
        assert school_store.payrolls[payroll.id].status == PayrollStatus.PAID
        event = service.publisher.events_for(AuditAction.PAYROLL_CANCEL)[0]
        assert event.status == AuditStatus.FAILURE

    @pytest.mark.asyncio
    async def test_cancelled_period_still_blocks_regeneration(self, school_store, rates):
        service = self._service(school_store, rates)
        payroll = await service.generate("July 2024")
        await service.cancel(payroll.id)

        result = await service.generate("July 2024")

        assert isinstance(result, DuplicatePeriod)

    @pytest.mark.asyncio
    async def test_unknown_payroll_raises(self, school_store, rates):
        service = self._service(school_store, rates)

        with pytest.raises(RecordStoreError):
            await service.confirm_payment("missing")
