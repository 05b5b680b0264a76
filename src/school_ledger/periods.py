"""Period calendar: month arithmetic, working days and period labels."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta

import structlog

from school_ledger.config import get_settings

logger = structlog.get_logger(__name__)

MONTH_NAME_TO_INDEX = {
    "january": 1,
    "jan": 1,
    "february": 2,
    "feb": 2,
    "march": 3,
    "mar": 3,
    "april": 4,
    "apr": 4,
    "may": 5,
    "june": 6,
    "jun": 6,
    "july": 7,
    "jul": 7,
    "august": 8,
    "aug": 8,
    "september": 9,
    "sep": 9,
    "sept": 9,
    "october": 10,
    "oct": 10,
    "november": 11,
    "nov": 11,
    "december": 12,
    "dec": 12,
}

# Tried against "<label> 1" when the label is not "<MonthName> <Year>"
_FALLBACK_FORMATS = (
    "%Y-%m %d",
    "%m/%Y %d",
    "%m-%Y %d",
    "%Y/%m %d",
    "%Y %B %d",
    "%Y %b %d",
)


@dataclass(frozen=True)
class Period:
    """A named billing or payroll interval spanning whole days."""

    label: str
    start: date
    end: date

    @property
    def total_days(self) -> int:
        """Calendar days in the period, inclusive."""
        if self.end < self.start:
            return 0
        return (self.end - self.start).days + 1

    @property
    def working_days(self) -> int:
        return count_working_days(self.start, self.end)

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


@dataclass(frozen=True)
class AcademicYearConfig:
    """Academic year passed explicitly into every calculator call.

    ``start_month=1`` anchors carry-forward on January 1st, matching the
    calendar-year behaviour of older statements.
    """

    label: str
    start_month: int = 9

    def __post_init__(self) -> None:
        if not 1 <= self.start_month <= 12:
            raise ValueError(f"start_month must be 1-12, got {self.start_month}")

    @classmethod
    def calendar_year(cls, label: str) -> AcademicYearConfig:
        """Return a config anchored on January 1st."""
        return cls(label=label, start_month=1)

    @classmethod
    def from_settings(cls) -> AcademicYearConfig:
        """Build the config from settings (call at the edge only)."""
        settings = get_settings()
        return cls(
            label=settings.academic_year,
            start_month=settings.academic_year_start_month,
        )

    def start_for(self, value: date) -> date:
        """Return the first day of the academic year containing ``value``."""
        year = value.year if value.month >= self.start_month else value.year - 1
        return date(year, self.start_month, 1)

    def label_for(self, value: date) -> str:
        """Return the academic year label (e.g. "2024-2025") containing ``value``."""
        start = self.start_for(value)
        if self.start_month == 1:
            return str(start.year)
        return f"{start.year}-{start.year + 1}"


def start_of_month(value: date) -> date:
    return value.replace(day=1)


def end_of_month(value: date) -> date:
    last_day = calendar.monthrange(value.year, value.month)[1]
    return value.replace(day=last_day)


def month_range(year: int, month: int) -> tuple[date, date]:
    """Return (first day, last day) of a month."""
    first = date(year, month, 1)
    return first, end_of_month(first)


def add_months(value: date, months: int) -> date:
    """Shift a date by whole months, clamping the day to the target month."""
    index = value.year * 12 + (value.month - 1) + months
    year, month_zero = divmod(index, 12)
    month = month_zero + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def calendar_months_between(later: date, earlier: date) -> int:
    """Number of month boundaries crossed between two dates (days ignored)."""
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def start_of_academic_year(value: date, academic_year: AcademicYearConfig) -> date:
    return academic_year.start_for(value)


def enumerate_months(start: date, end: date) -> list[date]:
    """Return the first day of every month touched by [start, end].

    Both endpoints' months are included; an inverted range yields nothing.
    """
    if start > end:
        return []
    months: list[date] = []
    current = start_of_month(start)
    last = start_of_month(end)
    while current <= last:
        months.append(current)
        current = add_months(current, 1)
    return months


def count_working_days(start: date, end: date) -> int:
    """Count Monday-Friday days between two dates, inclusive of both bounds."""
    if end < start:
        return 0
    count = 0
    current = start
    while current <= end:
        if current.weekday() < 5:
            count += 1
        current += timedelta(days=1)
    return count


def format_month_label(value: date) -> str:
    """Format a date as a period label such as "July 2024"."""
    return f"{calendar.month_name[value.month]} {value.year}"


def _period_for_month(label: str, year: int, month: int) -> Period:
    start, end = month_range(year, month)
    return Period(label=label, start=start, end=end)


def _parse_month_year(label: str) -> tuple[int, int] | None:
    parts = label.strip().split()
    if len(parts) < 2:
        return None
    month = MONTH_NAME_TO_INDEX.get(parts[0].strip(".,").lower())
    if month is None:
        return None
    year_text = parts[1].strip(",")
    if not year_text.isdigit():
        return None
    year = int(year_text)
    if not 1 <= year <= 9999:
        return None
    return year, month


def parse_period_label(label: str, today: date | None = None) -> Period:
    """Parse a period label like "July 2024" into its month.

    Parsing is lenient and never raises: an unrecognised label is retried as
    ``label + " 1"`` against a few date layouts, and failing that the current
    month is used.
    """
    parsed = _parse_month_year(label)
    if parsed is not None:
        year, month = parsed
        return _period_for_month(label, year, month)

    candidate = f"{label.strip()} 1"
    for fmt in _FALLBACK_FORMATS:
        try:
            tentative = datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
        return _period_for_month(label, tentative.year, tentative.month)

    fallback = today or date.today()
    logger.warning(
        "period_label_unparseable",
        label=label,
        fallback=format_month_label(fallback),
    )
    return _period_for_month(label, fallback.year, fallback.month)
