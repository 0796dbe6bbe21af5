"""Calendar helpers shared by the invoice, fixed-bill and dashboard services.

All "today" computations happen in the application timezone so that a card
cycle or a fixed bill does not jump a day depending on the server clock.
"""

import math
import re
from calendar import monthrange
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from .config import settings

MONTH_KEY_RE = re.compile(r"^\d{4}-\d{2}$")


def days_in_month(year: int, month: int) -> int:
    return monthrange(year, month)[1]


def clamp_day(year: int, month: int, day: int | float | None) -> int:
    value = math.floor(day or 1)
    return min(max(1, value), days_in_month(year, month))


def make_date(year: int, month: int, day: int | float | None) -> date:
    return date(year, month, clamp_day(year, month, day))


def add_months(base: date, months: int) -> date:
    total_month = (base.month - 1) + months
    year = base.year + total_month // 12
    month = (total_month % 12) + 1
    return base.replace(year=year, month=month, day=min(base.day, days_in_month(year, month)))


def diff_days(start: date, end: date) -> int:
    return (end - start).days


def app_zone(tz_name: str | None = None) -> ZoneInfo:
    return ZoneInfo(tz_name or settings.app_timezone)


def today_local(tz_name: str | None = None) -> date:
    return datetime.now(app_zone(tz_name)).date()


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime, tz_name: str | None = None) -> datetime:
    # Naive datetimes come from local form inputs.
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=app_zone(tz_name))
    return moment.astimezone(timezone.utc)


def parse_month_key(value: str) -> tuple[int, int]:
    if not isinstance(value, str) or not MONTH_KEY_RE.match(value):
        raise ValueError("invalid month format, use YYYY-MM")
    year, month = (int(part) for part in value.split("-"))
    if not 1 <= month <= 12:
        raise ValueError("invalid month format, use YYYY-MM")
    return year, month


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def current_month_key(tz_name: str | None = None) -> str:
    return month_key(today_local(tz_name))


def month_bounds(key: str) -> tuple[date, date]:
    year, month = parse_month_key(key)
    return date(year, month, 1), date(year, month, days_in_month(year, month))


def month_datetime_bounds(key: str, tz_name: str | None = None) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` of a month as UTC datetimes, measured in the app timezone."""
    first, last = month_bounds(key)
    zone = app_zone(tz_name)
    start = datetime.combine(first, datetime.min.time(), tzinfo=zone)
    end = datetime.combine(last + timedelta(days=1), datetime.min.time(), tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def day_start_utc(day: date, tz_name: str | None = None) -> datetime:
    """Midnight of ``day`` in the app timezone, as a UTC datetime."""
    return datetime.combine(day, datetime.min.time(), tzinfo=app_zone(tz_name)).astimezone(timezone.utc)
