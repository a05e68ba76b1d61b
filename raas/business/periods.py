"""
Billing periods.

A period is a calendar month, written "MM/YYYY" on distributor reports and
everywhere in the API. Quarterly ("Q1/2026") and yearly ("2026") labels are
used only by the statistics module to select a set of months.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date
from typing import Iterator, List

from .exceptions import LedgerValidationError

_PERIOD_RE = re.compile(r"^\s*(\d{1,2})/(\d{4})\s*$")
_QUARTER_RE = re.compile(r"^\s*Q([1-4])/(\d{4})\s*$", re.IGNORECASE)
_YEAR_RE = re.compile(r"^\s*(\d{4})\s*$")


@dataclass(frozen=True, order=True)
class Period:
    """A calendar month. Ordering is chronological."""
    year: int
    month: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise LedgerValidationError(f"Invalid month {self.month} in period")

    @classmethod
    def parse(cls, value: str | Period) -> Period:
        """Parse "MM/YYYY" (also accepts "M/YYYY")."""
        if isinstance(value, Period):
            return value
        m = _PERIOD_RE.match(str(value))
        if not m:
            raise LedgerValidationError(f"Invalid period {value!r}, expected MM/YYYY")
        return cls(year=int(m.group(2)), month=int(m.group(1)))

    @classmethod
    def from_date(cls, d: date) -> Period:
        return cls(year=d.year, month=d.month)

    def plus_months(self, months: int) -> Period:
        index = self.year * 12 + (self.month - 1) + months
        return Period(year=index // 12, month=index % 12 + 1)

    def next(self) -> Period:
        return self.plus_months(1)

    def previous(self) -> Period:
        return self.plus_months(-1)

    @property
    def key(self) -> int:
        """Sortable integer form, e.g. 202601."""
        return self.year * 100 + self.month

    @property
    def start_date(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end_date(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def __str__(self) -> str:
        return f"{self.month:02d}/{self.year}"


def period_range(first: Period, last: Period) -> List[Period]:
    """Inclusive, ascending list of months from first to last."""
    if last < first:
        raise LedgerValidationError(f"Period range ends ({last}) before it starts ({first})")
    periods = []
    p = first
    while p <= last:
        periods.append(p)
        p = p.next()
    return periods


def months_of(label: str, period_type: str) -> List[Period]:
    """
    Months covered by a statistics label.

    monthly   → "MM/YYYY"
    quarterly → "Qn/YYYY"
    yearly    → "YYYY"
    """
    if period_type == "monthly":
        return [Period.parse(label)]
    if period_type == "quarterly":
        m = _QUARTER_RE.match(label)
        if not m:
            raise LedgerValidationError(f"Invalid quarter {label!r}, expected Qn/YYYY")
        q, year = int(m.group(1)), int(m.group(2))
        first = Period(year, (q - 1) * 3 + 1)
        return period_range(first, first.plus_months(2))
    if period_type == "yearly":
        m = _YEAR_RE.match(label)
        if not m:
            raise LedgerValidationError(f"Invalid year {label!r}, expected YYYY")
        year = int(m.group(1))
        return period_range(Period(year, 1), Period(year, 12))
    raise LedgerValidationError(f"Unknown period type {period_type!r}")


def iter_back(start: Period, count: int) -> Iterator[Period]:
    """start, start-1, ... (count months, most recent first)."""
    for i in range(count):
        yield start.plus_months(-i)
