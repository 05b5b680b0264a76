"""Statutory payroll contributions and default payslip line items.

Rates follow Moroccan payroll rules (CNSS, AMO, progressive IR) and are
loaded from ``statutory_rates.yaml`` so a new rate year only touches data.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from school_ledger.models import ItemType, PayslipItem
from school_ledger.money import ZERO, round_money, sum_money, to_money

BASE_SALARY_ID = "base-salary"
BASE_SALARY_LABEL = "Salaire de base"
INCOME_TAX_ID = "ir"
INCOME_TAX_LABEL = "IR (Impôt sur le Revenu)"

# Deductions subtracted from earnings before income tax
PRE_TAX_CATEGORIES = frozenset({"cnss", "amo", "cimr"})

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class IncomeTaxBracket:
    """Rate applied to the slice of income up to ``up_to`` (None = no cap)."""

    up_to: Decimal | None
    rate: Decimal


@dataclass(frozen=True)
class StatutoryRates:
    """Contribution rates in percent plus the income tax schedule."""

    cnss_employee_rate: Decimal
    cnss_employer_rate: Decimal
    cnss_ceiling: Decimal
    amo_employee_rate: Decimal
    amo_employer_rate: Decimal
    monthly_hours: Decimal
    default_overtime_multiplier: Decimal
    income_tax_brackets: tuple[IncomeTaxBracket, ...]


def _decimal_field(section: dict[str, Any], key: str, where: str) -> Decimal:
    if key not in section:
        raise ValueError(f"{where} missing {key}")
    try:
        value = to_money(str(section[key]))
    except ValueError as exc:
        raise ValueError(f"{where} invalid {key}: {section[key]!r}") from exc
    if value < 0:
        raise ValueError(f"{where} {key} must be non-negative")
    return value


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    section = data.get(key)
    if not isinstance(section, dict):
        raise ValueError(f"statutory rates: {key} must be a mapping")
    return section


def _parse_brackets(raw: Any) -> tuple[IncomeTaxBracket, ...]:
    if not isinstance(raw, list) or not raw:
        raise ValueError("statutory rates: income_tax_brackets must be a non-empty list")

    brackets: list[IncomeTaxBracket] = []
    previous: Decimal = ZERO
    for idx, item in enumerate(raw):
        where = f"income_tax_brackets[{idx}]"
        if not isinstance(item, dict):
            raise ValueError(f"{where} must be a mapping")
        rate = _decimal_field(item, "rate", where)
        up_to_raw = item.get("up_to")
        if up_to_raw is None:
            if idx != len(raw) - 1:
                raise ValueError(f"{where} only the last bracket may be unbounded")
            brackets.append(IncomeTaxBracket(up_to=None, rate=rate))
            continue
        up_to = _decimal_field(item, "up_to", where)
        if up_to <= previous:
            raise ValueError(f"{where} up_to must increase")
        previous = up_to
        brackets.append(IncomeTaxBracket(up_to=up_to, rate=rate))
    return tuple(brackets)


def parse_statutory_rates(data: Any) -> StatutoryRates:
    """Build rates from the mapping stored in a rates YAML file."""
    if not isinstance(data, dict):
        raise ValueError("statutory rates must be a mapping")

    cnss = _section(data, "cnss")
    amo = _section(data, "amo")
    overtime = _section(data, "overtime")

    return StatutoryRates(
        cnss_employee_rate=_decimal_field(cnss, "employee_rate", "cnss"),
        cnss_employer_rate=_decimal_field(cnss, "employer_rate", "cnss"),
        cnss_ceiling=_decimal_field(cnss, "ceiling", "cnss"),
        amo_employee_rate=_decimal_field(amo, "employee_rate", "amo"),
        amo_employer_rate=_decimal_field(amo, "employer_rate", "amo"),
        monthly_hours=_decimal_field(overtime, "monthly_hours", "overtime"),
        default_overtime_multiplier=_decimal_field(
            overtime, "default_multiplier", "overtime"
        ),
        income_tax_brackets=_parse_brackets(data.get("income_tax_brackets")),
    )


@lru_cache
def load_statutory_rates(path: str | None = None) -> StatutoryRates:
    """Load rates from YAML, defaulting to the packaged table."""
    rates_path = (
        Path(path) if path else Path(__file__).resolve().parent / "statutory_rates.yaml"
    )
    raw = rates_path.read_text(encoding="utf-8")
    return parse_statutory_rates(yaml.safe_load(raw))


def _percent_of(amount: Decimal, rate: Decimal) -> Decimal:
    return round_money(amount * rate / _HUNDRED)


def cnss(gross_salary: Decimal, rates: StatutoryRates) -> Decimal:
    """Employee CNSS contribution, on gross capped at the ceiling."""
    return _percent_of(min(gross_salary, rates.cnss_ceiling), rates.cnss_employee_rate)


def amo(gross_salary: Decimal, rates: StatutoryRates) -> Decimal:
    """Employee AMO (health insurance) contribution."""
    return _percent_of(gross_salary, rates.amo_employee_rate)


def employer_cnss(gross_salary: Decimal, rates: StatutoryRates) -> Decimal:
    return _percent_of(min(gross_salary, rates.cnss_ceiling), rates.cnss_employer_rate)


def employer_amo(gross_salary: Decimal, rates: StatutoryRates) -> Decimal:
    return _percent_of(gross_salary, rates.amo_employer_rate)


def income_tax(taxable_income: Decimal, rates: StatutoryRates) -> Decimal:
    """Progressive IR: each bracket's rate applies to its slice of income."""
    tax = ZERO
    lower = ZERO
    for bracket in rates.income_tax_brackets:
        if taxable_income <= lower:
            break
        upper = taxable_income if bracket.up_to is None else min(taxable_income, bracket.up_to)
        tax += (upper - lower) * bracket.rate / _HUNDRED
        if bracket.up_to is None or taxable_income <= bracket.up_to:
            break
        lower = bracket.up_to
    return round_money(tax)


def overtime_pay(
    base_salary: Decimal,
    hours: Decimal,
    rates: StatutoryRates,
    multiplier: Decimal | None = None,
) -> Decimal:
    """Overtime at ``multiplier`` times the hourly equivalent of the base."""
    rate = multiplier if multiplier is not None else rates.default_overtime_multiplier
    hourly = base_salary / rates.monthly_hours
    return round_money(hourly * hours * rate)


def taxable_income(
    earnings: Iterable[PayslipItem], deductions: Iterable[PayslipItem]
) -> Decimal:
    """Taxable earnings less the pre-tax social contributions."""
    taxable_earnings = sum_money(e.amount for e in earnings if e.taxable)
    pre_tax = sum_money(d.amount for d in deductions if d.category in PRE_TAX_CATEGORIES)
    return taxable_earnings - pre_tax


def _income_tax_item(amount: Decimal) -> PayslipItem:
    return PayslipItem(
        id=INCOME_TAX_ID,
        label=INCOME_TAX_LABEL,
        amount=amount,
        type=ItemType.DEDUCTION,
        category="tax",
        taxable=False,
    )


def default_payslip_items(
    base_salary: Decimal, rates: StatutoryRates
) -> tuple[tuple[PayslipItem, ...], tuple[PayslipItem, ...]]:
    """Base salary earning plus CNSS, AMO and (when due) IR deductions."""
    earnings = (
        PayslipItem(
            id=BASE_SALARY_ID,
            label=BASE_SALARY_LABEL,
            amount=base_salary,
            type=ItemType.EARNING,
            category="base",
            taxable=True,
        ),
    )
    gross = sum_money(e.amount for e in earnings)
    deductions = [
        PayslipItem(
            id="cnss",
            label="CNSS",
            amount=cnss(gross, rates),
            type=ItemType.DEDUCTION,
            category="cnss",
            taxable=False,
            rate=rates.cnss_employee_rate,
        ),
        PayslipItem(
            id="amo",
            label="AMO",
            amount=amo(gross, rates),
            type=ItemType.DEDUCTION,
            category="amo",
            taxable=False,
            rate=rates.amo_employee_rate,
        ),
    ]

    ir = income_tax(taxable_income(earnings, deductions), rates)
    if ir > 0:
        deductions.append(_income_tax_item(ir))

    return earnings, tuple(deductions)


def recalculate_deductions(
    earnings: Iterable[PayslipItem],
    existing_deductions: Iterable[PayslipItem],
    rates: StatutoryRates,
) -> tuple[PayslipItem, ...]:
    """Refresh CNSS, AMO and IR after earnings changed.

    Other deductions (advances, custom withholdings) are kept as they are.
    """
    earnings = tuple(earnings)
    gross = sum_money(e.amount for e in earnings)
    new_cnss = cnss(gross, rates)
    new_amo = amo(gross, rates)

    updated: list[PayslipItem] = []
    for item in existing_deductions:
        if item.category == "cnss":
            updated.append(_replace_amount(item, new_cnss))
        elif item.category == "amo":
            updated.append(_replace_amount(item, new_amo))
        else:
            updated.append(item)

    ir = income_tax(taxable_income(earnings, updated), rates)
    for idx, item in enumerate(updated):
        if item.category == "tax" and item.id == INCOME_TAX_ID:
            updated[idx] = _replace_amount(item, ir)
            break
    else:
        if ir > 0:
            updated.append(_income_tax_item(ir))

    return tuple(updated)


def _replace_amount(item: PayslipItem, amount: Decimal) -> PayslipItem:
    return PayslipItem(
        id=item.id,
        label=item.label,
        amount=amount,
        type=item.type,
        category=item.category,
        taxable=item.taxable,
        rate=item.rate,
        hours=item.hours,
        hourly_rate=item.hourly_rate,
    )


def overtime_item(
    base_salary: Decimal,
    hours: Decimal,
    rates: StatutoryRates,
    multiplier: Decimal | None = None,
    item_id: str | None = None,
) -> PayslipItem:
    """Build an overtime earning line for ``hours`` at ``multiplier``."""
    rate = multiplier if multiplier is not None else rates.default_overtime_multiplier
    percent = f"{(rate * _HUNDRED).normalize():f}"
    hours_text = f"{hours.normalize():f}"
    return PayslipItem(
        id=item_id or f"overtime-{hours_text}h-{percent}",
        label=f"Heures supplémentaires ({hours_text}h à {percent}%)",
        amount=overtime_pay(base_salary, hours, rates, rate),
        type=ItemType.EARNING,
        category="overtime",
        taxable=True,
        hours=hours,
        hourly_rate=round_money(base_salary / rates.monthly_hours),
    )
