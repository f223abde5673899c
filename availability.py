"""
Date-range rules for car bookings.

Booked ranges are closed intervals of whole calendar days: a booking from
2024-03-01 to 2024-03-05 occupies both the 1st and the 5th. Policy knobs are
module constants and are never read from the environment.
"""

from datetime import date, timedelta
from typing import Iterable, Iterator, NamedTuple, Optional

# A booking returned on day D blocks a pickup on day D.
ALLOW_SAME_DAY_TURNOVER = False

# Billing counts the return day: 2024-03-01 -> 2024-03-05 is 5 days.
COUNT_RETURN_DAY = True

# Longest single rental, in calendar days.
MAX_RENTAL_DAYS = 90


class DateRange(NamedTuple):
    start: date
    end: date

    @property
    def is_valid(self) -> bool:
        return self.start <= self.end

    @property
    def length(self) -> int:
        return (self.end - self.start).days + 1

    def __str__(self):
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


def conflicts(new: DateRange, existing: DateRange) -> bool:
    """True when the two ranges share a calendar day."""
    if ALLOW_SAME_DAY_TURNOVER:
        return new.start < existing.end and new.end > existing.start
    return new.start <= existing.end and new.end >= existing.start


def first_conflict(new: DateRange, existing: Iterable[DateRange]) -> Optional[DateRange]:
    for booked in existing:
        if conflicts(new, booked):
            return booked
    return None


def occupied_days(dates: DateRange) -> Iterator[date]:
    """Calendar days a booking holds exclusively."""
    last = dates.end
    if ALLOW_SAME_DAY_TURNOVER and dates.end > dates.start:
        last = dates.end - timedelta(days=1)
    day = dates.start
    while day <= last:
        yield day
        if day == date.max:
            return
        day += timedelta(days=1)


def rental_days(dates: DateRange) -> int:
    days = (dates.end - dates.start).days
    if COUNT_RETURN_DAY:
        days += 1
    return max(days, 1)


def rental_price(price_per_day: float, dates: DateRange) -> float:
    return round(float(price_per_day) * rental_days(dates), 2)
