import calendar
import datetime
from decimal import Decimal
from typing import Iterable, Optional, Set

from pydantic import ValidationError

from invoice_engine.modules.errors import InvalidPeriod
from invoice_engine.modules.models import Cadence, PaymentTerms, Period

# ISO weekday numbers
DEFAULT_WEEKEND = frozenset({6, 7})


def parse_period(text: str) -> Period:
    """Parses YYYY-MM, raising InvalidPeriod on malformed input."""
    try:
        return Period.parse(text)
    except ValidationError as e:
        raise InvalidPeriod(text, "malformed, expected YYYY-MM") from e


def last_day_of(period: Period) -> datetime.date:
    _, days = calendar.monthrange(period.year, period.month)
    return datetime.date(period.year, period.month, days)


def days_of(period: Period) -> Iterable[datetime.date]:
    _, days = calendar.monthrange(period.year, period.month)
    for day in range(1, days + 1):
        yield datetime.date(period.year, period.month, day)


def is_working_day(day: datetime.date, weekend: Iterable[int] = DEFAULT_WEEKEND) -> bool:
    return day.isoweekday() not in set(weekend)


def last_business_day_of(period: Period, weekend: Iterable[int] = DEFAULT_WEEKEND) -> datetime.date:
    """Last day of the month that is not a weekend day.

    Falls back to the calendar last day when the weekend covers every weekday.
    """
    weekend = set(weekend)
    for day in reversed(list(days_of(period))):
        if is_working_day(day, weekend):
            return day
    return last_day_of(period)


def working_days(
    period: Period,
    off_days: Optional[Set[datetime.date]] = None,
    weekend: Iterable[int] = DEFAULT_WEEKEND,
) -> int:
    """Weekdays in the period's month, minus the off days inside that month.

    Off days outside the month, or on a weekend, do not change the count.
    """
    weekend = set(weekend)
    off_days = off_days or set()
    count = 0
    for day in days_of(period):
        if is_working_day(day, weekend) and day not in off_days:
            count += 1
    return count


def due_date(invoice_date: datetime.date, terms: PaymentTerms) -> datetime.date:
    return invoice_date + datetime.timedelta(days=terms.due_in_days)


def billable_quantity(
    period: Period,
    cadence: Cadence,
    off_days: Optional[Set[datetime.date]] = None,
    weekend: Iterable[int] = DEFAULT_WEEKEND,
    hours_per_day: int = 8,
) -> Decimal:
    if cadence == Cadence.PERIOD:
        return Decimal(1)
    days = working_days(period, off_days, weekend)
    if cadence == Cadence.HOURLY:
        return Decimal(days * hours_per_day)
    return Decimal(days)
