"""Fiscal period arithmetic.

Maps a period end date plus a company's fiscal-year-end month onto a
canonical ``FY<year>Q<n>`` label, measures how long after the quarter
closed a filing arrived, and infers the fiscal-year-end month from the
Q4-labelled facts a company has filed.

    derive_fiscal_period("2025-12-31", 6)  → FY2026Q2  (MSFT, June FYE)
    derive_fiscal_period("2025-06-30", 9)  → FY2025Q3  (AAPL, Sept FYE)
    derive_fiscal_period("2025-04-30", 1)  → FY2026Q1  (WMT, Jan FYE)

Everything here is pure: no I/O, no module state.
"""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from sec_series.models import FiscalPeriod

log = logging.getLogger(__name__)

# Calendar date, optionally followed by a time part
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}(?:[T ]|$)")


class InvalidInput(ValueError):
    """Raised when a fiscal period cannot be derived from the arguments."""


# ═══════════════════════════════════════════════════════════════════════════
#  Date helpers
# ═══════════════════════════════════════════════════════════════════════════

def parse_iso_date(value: Any) -> date | None:
    """Parse ``YYYY-MM-DD`` (or an ISO timestamp) into a date.

    Returns None for anything missing or unparseable, including a valid
    date followed by trailing garbage. ``date`` and ``datetime``
    instances pass straight through.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not _ISO_DATE.match(text):
        return None
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def days_between(start: Any, end: Any) -> int | None:
    """Whole days from ``start`` to ``end``; None when either is unparseable."""
    d0 = parse_iso_date(start)
    d1 = parse_iso_date(end)
    if d0 is None or d1 is None:
        return None
    return (d1 - d0).days


# ═══════════════════════════════════════════════════════════════════════════
#  Fiscal period derivation
# ═══════════════════════════════════════════════════════════════════════════

def derive_fiscal_period(end_date: Any, fiscal_year_end_month: int | None) -> FiscalPeriod:
    """Derive fiscal year, quarter and period id from a period end date.

    Once the calendar month is past the fiscal-year-end month the company
    has rolled into the next fiscal year. A period ending in the FYE month
    itself is Q4 of the year that is ending, never Q0 of the next one.
    With ``fiscal_year_end_month=12`` this is plain calendar quarters.

    Raises InvalidInput when either argument is missing, the date does
    not parse, or the month is outside 1–12.
    """
    if end_date is None or end_date == "" or fiscal_year_end_month is None:
        raise InvalidInput("end_date and fiscal_year_end_month are required")

    d = parse_iso_date(end_date)
    if d is None:
        raise InvalidInput(f"Invalid end_date: {end_date!r}")

    if isinstance(fiscal_year_end_month, bool) or not isinstance(fiscal_year_end_month, int):
        raise InvalidInput(f"Invalid fiscal_year_end_month: {fiscal_year_end_month!r}")
    if not 1 <= fiscal_year_end_month <= 12:
        raise InvalidInput(f"fiscal_year_end_month out of range: {fiscal_year_end_month}")

    fiscal_year = d.year + 1 if d.month > fiscal_year_end_month else d.year
    months_from_fy_end = ((d.month - fiscal_year_end_month + 12) % 12) or 12
    quarter = math.ceil(months_from_fy_end / 3)

    return FiscalPeriod(
        fiscal_year=fiscal_year,
        fiscal_quarter=f"Q{quarter}",
        period_id=f"FY{fiscal_year}Q{quarter}",
    )


def validate_filing_delta(quarter_end_date: Any, filing_date: Any) -> int | None:
    """Days from quarter end to filing.

    Positive: filed after the quarter closed (normal). Negative: filed
    before it closed (anomalous). Zero: same day. None means "delta
    unknown" and is returned for any missing or unparseable argument.
    """
    end = parse_iso_date(quarter_end_date)
    filed = parse_iso_date(filing_date)
    if end is None or filed is None:
        return None
    return round((filed - end).days)


# ═══════════════════════════════════════════════════════════════════════════
#  Fiscal-year-end detection
# ═══════════════════════════════════════════════════════════════════════════

def _item_field(item: Any, *names: str) -> Any:
    for name in names:
        if isinstance(item, Mapping):
            v = item.get(name)
        else:
            v = getattr(item, name, None)
        if v is not None and v != "":
            return v
    return None


def detect_fiscal_year_end_month(items: Iterable[Any]) -> int:
    """Infer the fiscal-year-end month by majority vote over Q4 facts.

    Accepts FactRecords or raw mappings (``end``/``period_end`` and
    ``fp``/``fiscal_period``). Returns 12 when no Q4-labelled item has a
    usable end date. Ties go to the month encountered first.
    """
    counts: Counter[int] = Counter()
    for item in items:
        label = _item_field(item, "fiscal_period", "fp")
        if label is None or str(label).strip().upper() != "Q4":
            continue
        end = parse_iso_date(_item_field(item, "period_end", "end"))
        if end is None:
            continue
        counts[end.month] += 1

    if not counts:
        return 12

    # Counter preserves insertion order, and max() keeps the first maximum
    month = max(counts, key=counts.__getitem__)
    log.debug("Fiscal year end detected as month %d (%s)", month, dict(counts))
    return month


def fiscal_year_end_from_submissions(value: Any) -> int | None:
    """Parse the SEC submissions ``fiscalYearEnd`` field ("0930" → 9)."""
    if value is None:
        return None
    text = str(value).strip()
    if len(text) != 4 or not text.isdigit():
        return None
    month = int(text[:2])
    return month if 1 <= month <= 12 else None
