from datetime import date, timedelta
from itertools import product

from availability import MAX_RENTAL_DAYS, DateRange, conflicts, first_conflict, occupied_days, rental_days, rental_price


def d(day, month=3):
    return date(2024, month, day)


def ranges():
    days = [d(1), d(3), d(5), d(6), d(8)]
    return [DateRange(a, b) for a, b in product(days, days) if a <= b]


def test_conflict_is_symmetric():
    for a, b in product(ranges(), ranges()):
        assert conflicts(a, b) == conflicts(b, a), (a, b)


def test_every_range_conflicts_with_itself():
    for r in ranges():
        assert conflicts(r, r)


def test_conflict_means_a_shared_day():
    for a, b in product(ranges(), ranges()):
        shared = set(occupied_days(a)) & set(occupied_days(b))
        assert conflicts(a, b) == bool(shared), (a, b)


def test_same_day_turnover_is_a_conflict():
    existing = DateRange(date(2024, 1, 5), date(2024, 1, 10))
    assert conflicts(DateRange(date(2024, 1, 10), date(2024, 1, 12)), existing)
    assert conflicts(DateRange(date(2024, 1, 1), date(2024, 1, 5)), existing)


def test_adjacent_ranges_do_not_conflict():
    existing = DateRange(d(1), d(5))
    assert not conflicts(DateRange(d(6), d(8)), existing)
    assert not conflicts(DateRange(date(2024, 2, 25), date(2024, 2, 29)), existing)


def test_containment_conflicts_both_ways():
    outer = DateRange(d(1), d(10))
    inner = DateRange(d(4), d(6))
    assert conflicts(outer, inner)
    assert conflicts(inner, outer)


def test_no_existing_bookings_accepts_anything():
    assert first_conflict(DateRange(d(1), d(30)), []) is None


def test_first_conflict_returns_the_first_match():
    booked = [DateRange(d(1), d(2)), DateRange(d(4), d(6)), DateRange(d(5), d(9))]
    assert first_conflict(DateRange(d(5), d(5)), booked) == DateRange(d(4), d(6))
    assert first_conflict(DateRange(d(3), d(3)), booked) is None


def test_first_conflict_short_circuits():
    seen = []

    def existing():
        for r in [DateRange(d(1), d(5)), DateRange(d(20), d(25))]:
            seen.append(r)
            yield r

    first_conflict(DateRange(d(2), d(3)), existing())
    assert seen == [DateRange(d(1), d(5))]


def test_validity():
    assert DateRange(d(1), d(1)).is_valid
    assert not DateRange(d(10), d(8)).is_valid


def test_day_count_includes_return_day():
    assert rental_days(DateRange(d(1), d(5))) == 5
    assert rental_days(DateRange(d(1), d(1))) == 1
    assert rental_price(79.99, DateRange(d(1), d(3))) == 239.97


def test_occupied_days_crosses_month_end():
    days = list(occupied_days(DateRange(date(2024, 2, 28), d(1))))
    assert days == [date(2024, 2, 28), date(2024, 2, 29), d(1)]
    assert days[-1] - days[0] == timedelta(days=2)


def test_occupied_days_stops_at_the_last_calendar_day():
    last = date.max
    assert list(occupied_days(DateRange(last - timedelta(days=1), last))) == [last - timedelta(days=1), last]
    assert DateRange(last - timedelta(days=1), last).length == 2


def test_length_counts_both_ends():
    assert DateRange(d(1), d(1)).length == 1
    assert DateRange(d(1), d(5)).length == 5
    assert DateRange(d(1), d(1) + timedelta(days=MAX_RENTAL_DAYS - 1)).length == MAX_RENTAL_DAYS
