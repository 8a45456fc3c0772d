"""
Time expression resolver.

Turns the temporal phrase of a question into a concrete date range:

    yesterday, today
    last|past N days                      (N days ending today, inclusive)
    this|last week|month|quarter|year     (weeks run Monday..Sunday)
    2024-03-01                            (single ISO date)
    between 2024-01-01 and 2024-01-31     (ISO range, also "from .. to ..")
    March 2024                            (month name + year)

Anything vaguer ("recent", "lately", "past" without a number) yields no
context and an ambiguity flag; a date range is never guessed.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Callable, List, Optional, Tuple

from loguru import logger

from bizsql.config.constants import AMBIGUOUS_TIME_WORDS, MONTHS


class TimeGranularity(Enum):
    DAY = "Day"
    WEEK = "Week"
    MONTH = "Month"
    QUARTER = "Quarter"
    YEAR = "Year"


@dataclass(frozen=True)
class TimeContext:
    """Resolved temporal scope; both bounds inclusive."""
    start_date: date
    end_date: date
    relative_expression: str
    granularity: TimeGranularity

    def to_dict(self):
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "relative_expression": self.relative_expression,
            "granularity": self.granularity.value,
        }


@dataclass(frozen=True)
class TimeResolution:
    context: Optional[TimeContext] = None
    ambiguous: bool = False
    ambiguous_phrase: Optional[str] = None


_ISO = r"(\d{4}-\d{2}-\d{2})"
_RANGE = re.compile(rf"\b(?:between|from)\s+{_ISO}\s+(?:and|to|through|until)\s+{_ISO}\b")
_SINGLE_DATE = re.compile(rf"\b{_ISO}\b")
_MONTH_YEAR = re.compile(r"\b(" + "|".join(sorted(MONTHS, key=len, reverse=True)) + r")\s+(\d{4})\b")
_LAST_N_DAYS = re.compile(r"\b(?:last|past)\s+(\d+)\s+days?\b")
_PERIOD = re.compile(r"\b(this|last|current|previous)\s+(week|month|quarter|year)\b")
_YESTERDAY = re.compile(r"\byesterday\b")
_TODAY = re.compile(r"\btoday\b")
_AMBIGUOUS = re.compile(
    r"\b(" + "|".join(re.escape(w) for w in sorted(AMBIGUOUS_TIME_WORDS, key=len, reverse=True)) + r")\b"
)


def _month_bounds(year: int, month: int) -> Tuple[date, date]:
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def _quarter_bounds(year: int, quarter: int) -> Tuple[date, date]:
    first_month = 3 * quarter + 1
    start, _ = _month_bounds(year, first_month)
    _, end = _month_bounds(year, first_month + 2)
    return start, end


def _period_bounds(which: str, unit: str, today: date) -> Tuple[date, date]:
    previous = which in ("last", "previous")
    if unit == "week":
        monday = today - timedelta(days=today.weekday())
        if previous:
            monday -= timedelta(days=7)
        return monday, monday + timedelta(days=6)
    if unit == "month":
        year, month = today.year, today.month
        if previous:
            year, month = (year - 1, 12) if month == 1 else (year, month - 1)
        return _month_bounds(year, month)
    if unit == "quarter":
        year, quarter = today.year, (today.month - 1) // 3
        if previous:
            year, quarter = (year - 1, 3) if quarter == 0 else (year, quarter - 1)
        return _quarter_bounds(year, quarter)
    year = today.year - 1 if previous else today.year
    return date(year, 1, 1), date(year, 12, 31)


_GRANULARITY = {
    "week": TimeGranularity.WEEK,
    "month": TimeGranularity.MONTH,
    "quarter": TimeGranularity.QUARTER,
    "year": TimeGranularity.YEAR,
}


class TimeExpressionResolver:
    """Resolves the closed set of supported time expressions against an injectable clock."""

    def __init__(self, clock: Callable[[], date] = date.today):
        self._clock = clock

    def resolve(self, question: str, now: Optional[date] = None) -> TimeResolution:
        text = question.lower()
        today = now or self._clock()

        try:
            context = self._resolve_explicit(text, today)
        except ValueError as e:
            # Looks like a date but is not one (e.g. 2024-02-30)
            logger.debug(f"Invalid date literal in question: {e}")
            return TimeResolution(context=None, ambiguous=True, ambiguous_phrase=str(e))

        if context is not None:
            logger.debug(
                f"Resolved time '{context.relative_expression}' -> "
                f"{context.start_date.isoformat()}..{context.end_date.isoformat()}"
            )
            return TimeResolution(context=context)

        match = _AMBIGUOUS.search(text)
        if match:
            logger.debug(f"Ambiguous time expression: '{match.group(1)}'")
            return TimeResolution(context=None, ambiguous=True, ambiguous_phrase=match.group(1))

        return TimeResolution()

    def _resolve_explicit(self, text: str, today: date) -> Optional[TimeContext]:
        match = _RANGE.search(text)
        if match:
            start, end = date.fromisoformat(match.group(1)), date.fromisoformat(match.group(2))
            if end < start:
                raise ValueError(f"range end {end} is before start {start}")
            return TimeContext(start, end, match.group(0), TimeGranularity.DAY)

        match = _SINGLE_DATE.search(text)
        if match:
            day = date.fromisoformat(match.group(1))
            return TimeContext(day, day, match.group(0), TimeGranularity.DAY)

        match = _MONTH_YEAR.search(text)
        if match:
            start, end = _month_bounds(int(match.group(2)), MONTHS[match.group(1)])
            return TimeContext(start, end, match.group(0), TimeGranularity.MONTH)

        if _YESTERDAY.search(text):
            day = today - timedelta(days=1)
            return TimeContext(day, day, "yesterday", TimeGranularity.DAY)

        if _TODAY.search(text):
            return TimeContext(today, today, "today", TimeGranularity.DAY)

        match = _LAST_N_DAYS.search(text)
        if match and int(match.group(1)) > 0:
            days = int(match.group(1))
            return TimeContext(today - timedelta(days=days - 1), today, match.group(0), TimeGranularity.DAY)

        match = _PERIOD.search(text)
        if match:
            start, end = _period_bounds(match.group(1), match.group(2), today)
            return TimeContext(start, end, match.group(0), _GRANULARITY[match.group(2)])

        return None


def strip_time_phrases(tokens: List[str]) -> List[str]:
    """Drop tokens that only carry temporal meaning so they are not linked as entities."""
    temporal = {"yesterday", "today", "last", "past", "this", "current", "previous", "days", "day",
                "week", "month", "quarter", "year", "between"} | set(MONTHS)
    return [t for t in tokens if t not in temporal and not t.isdigit()]
