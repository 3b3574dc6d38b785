"""
Date and time utility functions for the route planner.
Resolves the business-local "today", route weekdays and the periodic calendar.
"""

import unicodedata
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import List, Optional, Union

import pytz
from dateutil import parser

DAYS_PER_WEEK = 7


class RouteDay(str, Enum):
    """Canonical route weekdays, valued with the labels used in the roster sheets."""
    MONDAY = "Lunes"
    TUESDAY = "Martes"
    WEDNESDAY = "Miercoles"
    THURSDAY = "Jueves"
    FRIDAY = "Viernes"
    SATURDAY = "Sabado"
    SUNDAY = "Domingo"

    @property
    def index(self) -> int:
        """Monday-based weekday index (Monday == 0), same as date.weekday()."""
        return ROUTE_DAYS.index(self)

    @classmethod
    def from_weekday(cls, weekday: int) -> "RouteDay":
        return ROUTE_DAYS[weekday % DAYS_PER_WEEK]


ROUTE_DAYS: List[RouteDay] = list(RouteDay)

_ENGLISH_NAMES = {
    "monday": RouteDay.MONDAY,
    "tuesday": RouteDay.TUESDAY,
    "wednesday": RouteDay.WEDNESDAY,
    "thursday": RouteDay.THURSDAY,
    "friday": RouteDay.FRIDAY,
    "saturday": RouteDay.SATURDAY,
    "sunday": RouteDay.SUNDAY,
}


def normalize_day(value: Optional[str]) -> str:
    """Trim, lowercase and strip accents from a weekday label."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", str(value).strip().lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


_NORMALIZED_LOOKUP = {normalize_day(day.value): day for day in RouteDay}
_NORMALIZED_LOOKUP.update(_ENGLISH_NAMES)


def parse_route_day(value: Union[str, RouteDay, None]) -> Optional[RouteDay]:
    """Map a raw weekday label onto a RouteDay; None when it cannot be recognized."""
    if isinstance(value, RouteDay):
        return value
    return _NORMALIZED_LOOKUP.get(normalize_day(value))


def get_week_number(value: date) -> int:
    """ISO-8601 week number of a date."""
    return value.isocalendar()[1]


def iso_weeks_in_year(iso_year: int) -> int:
    """Number of ISO weeks (52 or 53) in the given ISO year."""
    return date(iso_year, 12, 28).isocalendar()[1]


def parse_flexible_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """Parse the date formats found in the sheets; None for blank or unparsable input."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None

    formats = [
        '%Y-%m-%d',              # Date only
        '%Y-%m-%dT%H:%M:%S.%fZ', # ISO timestamp
        '%Y-%m-%d %H:%M:%S',     # Standard format
        '%d/%m/%Y',              # DMY format
    ]
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    # Use dateutil as fallback
    try:
        return parser.parse(text, dayfirst=True).date()
    except (ValueError, OverflowError):
        return None


@dataclass(frozen=True)
class PeriodInfo:
    """Position of a date inside the business's four-week period calendar."""
    period_number: int
    week_in_period: int
    day_in_week: int
    period_start: date
    period_end: date


@dataclass(frozen=True)
class PeriodWeek:
    week_number: int
    week_start: date
    week_end: date
    label: str


class BusinessCalendar:
    """
    Resolves "now" in the business timezone.

    Every comparison against "today" in the engine goes through this class so
    that the operator's device timezone never leaks in. Naive datetimes passed
    as ``now`` are interpreted as UTC.
    """

    def __init__(self, timezone_name: str = "America/Mazatlan",
                 period_anchor: date = date(2024, 10, 5),
                 first_period_number: int = 11,
                 weeks_per_period: int = 4):
        self.tz = pytz.timezone(timezone_name)
        self.period_anchor = period_anchor
        self.first_period_number = first_period_number
        self.weeks_per_period = weeks_per_period

    @classmethod
    def from_settings(cls, settings) -> "BusinessCalendar":
        return cls(
            timezone_name=settings.BUSINESS_TIMEZONE,
            period_anchor=settings.PERIOD_ANCHOR_DATE,
            first_period_number=settings.FIRST_PERIOD_NUMBER,
            weeks_per_period=settings.WEEKS_PER_PERIOD,
        )

    def now(self, now: Optional[datetime] = None) -> datetime:
        """Current (or given) instant expressed in the business timezone."""
        if now is None:
            return datetime.now(self.tz)
        if now.tzinfo is None:
            now = pytz.utc.localize(now)
        return now.astimezone(self.tz)

    def today(self, now: Optional[datetime] = None) -> date:
        return self.now(now).date()

    def today_route_day(self, now: Optional[datetime] = None) -> RouteDay:
        return RouteDay.from_weekday(self.today(now).weekday())

    def current_week_number(self, now: Optional[datetime] = None) -> int:
        return get_week_number(self.today(now))

    def time_hhmm(self, now: Optional[datetime] = None) -> str:
        return self.now(now).strftime("%H:%M")

    def selected_day_date(self, day: RouteDay, now: Optional[datetime] = None) -> date:
        """Calendar date of ``day`` inside the current Sunday-to-Saturday week."""
        today = self.today(now)
        week_start = today - timedelta(days=(today.weekday() + 1) % DAYS_PER_WEEK)
        return week_start + timedelta(days=(day.index + 1) % DAYS_PER_WEEK)

    def period_info(self, value: Union[date, datetime, None] = None) -> PeriodInfo:
        if value is None:
            value = self.today()
        elif isinstance(value, datetime):
            value = self.today(value)

        period_days = self.weeks_per_period * DAYS_PER_WEEK
        days_since_start = (value - self.period_anchor).days
        offset = days_since_start // period_days
        days_into_period = days_since_start % period_days

        period_start = self.period_anchor + timedelta(days=offset * period_days)
        return PeriodInfo(
            period_number=offset + self.first_period_number,
            week_in_period=days_into_period // DAYS_PER_WEEK + 1,
            day_in_week=days_into_period % DAYS_PER_WEEK + 1,
            period_start=period_start,
            period_end=period_start + timedelta(days=period_days - 1),
        )

    def period_weeks(self, period_number: int) -> List[PeriodWeek]:
        """Week breakdown of a period, labelled S1..S4."""
        period_days = self.weeks_per_period * DAYS_PER_WEEK
        period_start = self.period_anchor + timedelta(
            days=(period_number - self.first_period_number) * period_days
        )
        weeks = []
        for w in range(self.weeks_per_period):
            week_start = period_start + timedelta(days=w * DAYS_PER_WEEK)
            week_end = week_start + timedelta(days=DAYS_PER_WEEK - 1)
            weeks.append(PeriodWeek(
                week_number=w + 1,
                week_start=week_start,
                week_end=week_end,
                label=f"S{w + 1}: {week_start:%d/%m} - {week_end:%d/%m}",
            ))
        return weeks
