"""
Date Models and Parsing for Budget Ledger

Scheduled items arrive with heterogeneous date strings: a bare day of month
("15"), an ordinal ("15th"), an ISO-8601 timestamp, "yyyy-MM-dd",
"dd/MM/yyyy", "dd/MM" or the yearly "DD-MM-YYYY" form.

DESIGN DECISION: Strings are parsed ONCE, when a model is validated, into a
tagged variant (DayOfMonth | CalendarDate | YearlyDate). The scheduler only
ever sees the variant and never parses strings itself.

Timestamps produced by the ledger are timezone-aware. Naive values read from
older documents are taken to be UTC.
"""

import calendar
import re
from datetime import date, datetime, time, timezone
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# SCHEDULE DATE VARIANTS
# =============================================================================

class DayOfMonth(BaseModel):
    """Recurring day of the month, e.g. "1", "15th"."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["day_of_month"] = "day_of_month"
    day: int = Field(..., ge=1, le=31)

    @property
    def day_of_month(self) -> int:
        return self.day


class CalendarDate(BaseModel):
    """A full calendar date, e.g. "2024-03-15" or "15/03/2024"."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["calendar_date"] = "calendar_date"
    value: date

    @property
    def day_of_month(self) -> int:
        return self.value.day


class YearlyDate(BaseModel):
    """A day and month without a year, e.g. "25-12-2024" for a yearly item."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["yearly_date"] = "yearly_date"
    month: int = Field(..., ge=1, le=12)
    day: int = Field(..., ge=1, le=31)

    @property
    def day_of_month(self) -> int:
        return self.day

    def matches(self, on: date) -> bool:
        """True when `on` falls on this day and month, in any year."""
        return on.month == self.month and on.day == self.day


ScheduleDate = Union[DayOfMonth, CalendarDate, YearlyDate]


_ORDINAL_PATTERN = re.compile(r"^(\d{1,2})(st|nd|rd|th)$", re.IGNORECASE)
_DAY_MONTH_PATTERN = re.compile(r"^(\d{1,2})/(\d{1,2})$")
_YEARLY_PATTERN = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")
_CALENDAR_FORMATS = ("%Y-%m-%d", "%d/%m/%Y")


def _day_or_none(day: int) -> Optional[DayOfMonth]:
    if 1 <= day <= 31:
        return DayOfMonth(day=day)
    return None


def _yearly_or_none(day: int, month: int) -> Optional[YearlyDate]:
    if 1 <= month <= 12 and 1 <= day <= calendar.monthrange(2000, month)[1]:
        return YearlyDate(month=month, day=day)
    return None


def parse_schedule_date(raw: Optional[str]) -> Optional[ScheduleDate]:
    """
    Parse a scheduled item's date string.

    Returns None when the string matches none of the supported forms.
    """
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None

    if text.isdigit():
        return _day_or_none(int(text))

    ordinal = _ORDINAL_PATTERN.match(text)
    if ordinal:
        return _day_or_none(int(ordinal.group(1)))

    if "T" in text:
        timestamp = _parse_iso(text)
        if timestamp is not None:
            # The day as written, not shifted into another timezone
            return CalendarDate(value=timestamp.date())

    for fmt in _CALENDAR_FORMATS:
        try:
            return CalendarDate(value=datetime.strptime(text, fmt).date())
        except ValueError:
            continue

    yearly = _YEARLY_PATTERN.match(text)
    if yearly:
        return _yearly_or_none(int(yearly.group(1)), int(yearly.group(2)))

    day_month = _DAY_MONTH_PATTERN.match(text)
    if day_month:
        return _yearly_or_none(int(day_month.group(1)), int(day_month.group(2)))

    return None


def parse_yearly_date(raw: Optional[str]) -> Optional[YearlyDate]:
    """Parse the day and month a yearly item fires on ("DD-MM-YYYY" preferred)."""
    parsed = parse_schedule_date(raw)
    if isinstance(parsed, YearlyDate):
        return parsed
    if isinstance(parsed, CalendarDate):
        return YearlyDate(month=parsed.value.month, day=parsed.value.day)
    return None


# =============================================================================
# TIMESTAMPS AND PERIODS
# =============================================================================

def ensure_aware(value: datetime) -> datetime:
    """Attach UTC to naive datetimes."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_iso(text: str) -> Optional[datetime]:
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None


def parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp or a bare "yyyy-MM-dd" date.

    Bare dates become midnight UTC. Returns None for anything else.
    """
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    parsed = _parse_iso(text)
    if parsed is None:
        try:
            parsed = datetime.combine(
                datetime.strptime(text, "%Y-%m-%d").date(), time.min
            )
        except ValueError:
            return None
    return ensure_aware(parsed)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. 2024-03-01T09:00:00.000Z."""
    utc_value = ensure_aware(value).astimezone(timezone.utc)
    return utc_value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def period_key(value: Union[date, datetime]) -> str:
    """Calendar-month key, "YYYY-MM"."""
    return f"{value.year:04d}-{value.month:02d}"


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_to_month(year: int, month: int, day: int) -> date:
    """The given day in year/month, clamped to the month's valid range."""
    return date(year, month, min(max(day, 1), days_in_month(year, month)))


def in_reference_zone(value: datetime, reference: datetime) -> datetime:
    """Express `value` in the timezone of `reference` for calendar comparisons."""
    return ensure_aware(value).astimezone(ensure_aware(reference).tzinfo)


def same_period(value: datetime, reference: datetime) -> bool:
    """True when both timestamps fall in the same calendar month of `reference`'s zone."""
    return period_key(in_reference_zone(value, reference)) == period_key(reference)
