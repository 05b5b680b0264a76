"""Command line entry point over a YAML record snapshot.

Usage:
    school-ledger --snapshot school.yaml statement STU-1 --from 2024-09-01 --to 2024-12-31
    school-ledger --snapshot school.yaml payroll "July 2024"
    school-ledger --snapshot school.yaml allocate STU-1 --month "September 2024" --amount 1000
    school-ledger --snapshot school.yaml due --year 2024 --month 10
    school-ledger --snapshot school.yaml --today 2024-11-15 overdue
    school-ledger --snapshot school.yaml summary
    school-ledger --snapshot school.yaml income --from 2024-09-01 --to 2025-06-30
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from datetime import date
from typing import Any

import structlog

from school_ledger.allocation import allocate_payment, build_payment_intents, record_allocation
from school_ledger.config import configure_logging, get_settings
from school_ledger.errors import RecordStoreError, is_error
from school_ledger.events import AuditPublisher
from school_ledger.ledger import DateRange, StatementService, combined_monthly_due
from school_ledger.models import PaymentMethod
from school_ledger.money import to_money
from school_ledger.overdue import DueService
from school_ledger.payroll import PayrollService
from school_ledger.periods import AcademicYearConfig
from school_ledger.rate_limit import RateLimitConfig
from school_ledger.snapshot import load_snapshot
from school_ledger.statutory import load_statutory_rates
from school_ledger.stores import InMemoryRecordStore
from school_ledger.summary import SummaryService

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_REJECTED = 2


def _parse_iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date: {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="school-ledger",
        description="Fee statements, payroll and due reports from a record snapshot",
    )
    parser.add_argument("--snapshot", required=True, help="YAML snapshot of the records")
    parser.add_argument(
        "--academic-year",
        help="Academic year label (default: LEDGER_ACADEMIC_YEAR)",
    )
    parser.add_argument(
        "--start-month",
        type=int,
        help="First month of the academic year (default: LEDGER_ACADEMIC_YEAR_START_MONTH)",
    )
    parser.add_argument(
        "--today",
        type=_parse_iso_date,
        help="Evaluate as of this date instead of the current date",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    statement = commands.add_parser("statement", help="Fee statement for one student")
    statement.add_argument("student_id")
    statement.add_argument("--from", dest="start", type=_parse_iso_date)
    statement.add_argument("--to", dest="end", type=_parse_iso_date)

    payroll = commands.add_parser("payroll", help="Generate the payroll for a period")
    payroll.add_argument("period", help='Period label such as "July 2024"')
    payroll.add_argument("--actor", help="Id of the user running the payroll")

    allocate = commands.add_parser("allocate", help="Record a payment over several months")
    allocate.add_argument("student_id")
    allocate.add_argument(
        "--month", dest="months", action="append", required=True, help="Billing month (repeatable)"
    )
    allocate.add_argument("--amount", help="Total paid; defaults to the monthly due per month")
    allocate.add_argument(
        "--method",
        choices=[method.value for method in PaymentMethod],
        default=PaymentMethod.CASH.value,
    )
    allocate.add_argument("--actor", help="Id of the user recording the payment")

    due = commands.add_parser("due", help="Due summary for one month")
    due.add_argument("--year", type=int, required=True)
    due.add_argument("--month", type=int, required=True, choices=range(1, 13))

    commands.add_parser("overdue", help="Overdue fees and salaries over the trailing window")
    commands.add_parser("summary", help="Financial dashboard totals")
    income = commands.add_parser("income", help="Monthly income and salary expense totals")
    income.add_argument("--from", dest="start", type=_parse_iso_date)
    income.add_argument("--to", dest="end", type=_parse_iso_date)
    return parser


def _academic_year(args: argparse.Namespace) -> AcademicYearConfig:
    settings = get_settings()
    return AcademicYearConfig(
        label=args.academic_year or settings.academic_year,
        start_month=args.start_month or settings.academic_year_start_month,
    )


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _emit_result(result: Any) -> int:
    if is_error(result):
        _emit(result.to_dict())
        return EXIT_REJECTED
    _emit({"success": True, "data": result.to_dict()})
    return EXIT_OK


async def _statement(
    args: argparse.Namespace,
    store: InMemoryRecordStore,
    academic_year: AcademicYearConfig,
    today: date,
) -> int:
    student = store.students.get(args.student_id)
    if student is None:
        raise RecordStoreError(f"Student {args.student_id} not found")
    date_range = None
    if args.start or args.end:
        date_range = DateRange(start=args.start or args.end, end=args.end or today)
    service = StatementService(store, store, academic_year, clock=lambda: today)
    return _emit_result(await service.statement_for(student, date_range))


async def _payroll(
    args: argparse.Namespace, store: InMemoryRecordStore, publisher: AuditPublisher
) -> int:
    settings = get_settings()
    service = PayrollService(
        store,
        store,
        load_statutory_rates(settings.statutory_rates_path),
        rate_limit=RateLimitConfig(
            max_attempts=settings.payroll_rate_limit_attempts,
            window_seconds=settings.payroll_rate_limit_window_seconds,
            block_seconds=settings.payroll_rate_limit_block_seconds,
        ),
        publisher=publisher,
    )
    return _emit_result(await service.generate(args.period, actor_id=args.actor))


async def _allocate(
    args: argparse.Namespace,
    store: InMemoryRecordStore,
    academic_year: AcademicYearConfig,
    today: date,
    publisher: AuditPublisher,
) -> int:
    student = store.students.get(args.student_id)
    if student is None:
        raise RecordStoreError(f"Student {args.student_id} not found")
    monthly = await combined_monthly_due(student, academic_year, store, store)
    allocations = allocate_payment(
        to_money(args.amount) if args.amount else None,
        args.months,
        monthly.combined_monthly,
    )
    intents = build_payment_intents(
        student.id,
        allocations,
        PaymentMethod(args.method),
        academic_year.label,
        today,
    )
    result = await record_allocation(store, intents, publisher, args.actor)
    if is_error(result):
        _emit(result.to_dict())
        return EXIT_REJECTED
    _emit(
        {
            "success": True,
            "data": {
                "total_amount": str(result.total_amount),
                "payments": [payment.to_dict() for payment in result.recorded],
            },
        }
    )
    return EXIT_OK


async def run(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, run one command and print its JSON result."""
    args = build_parser().parse_args(argv)
    store = load_snapshot(args.snapshot)
    academic_year = _academic_year(args)
    today = args.today or date.today()
    publisher = AuditPublisher()

    logger.info(
        "school_ledger_command",
        command=args.command,
        academic_year=academic_year.label,
        today=today.isoformat(),
    )

    if args.command == "statement":
        return await _statement(args, store, academic_year, today)
    if args.command == "payroll":
        return await _payroll(args, store, publisher)
    if args.command == "allocate":
        return await _allocate(args, store, academic_year, today, publisher)

    due_service = DueService(store, store, store, store, store, academic_year, clock=lambda: today)
    if args.command == "due":
        return _emit_result(await due_service.due_summary(args.year, args.month))
    if args.command == "overdue":
        return _emit_result(await due_service.overdue_payments())

    summary_service = SummaryService(store, store, store, store, academic_year, clock=lambda: today)
    if args.command == "income":
        return _emit_result(await summary_service.income_report(args.start, args.end))
    return _emit_result(await summary_service.financial_summary())


def main(argv: Sequence[str] | None = None) -> None:
    """Console script entry point."""
    configure_logging()
    try:
        exit_code = asyncio.run(run(argv))
    except KeyboardInterrupt:
        logger.info("school_ledger_interrupted")
        exit_code = EXIT_FAILURE
    except (RecordStoreError, ValueError, OSError) as e:
        logger.error("school_ledger_error", error=str(e))
        _emit({"success": False, "reason": str(e)})
        exit_code = EXIT_FAILURE
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
