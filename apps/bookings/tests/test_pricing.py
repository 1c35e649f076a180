from datetime import timedelta
from decimal import Decimal

import pytest

from apps.bookings.domain.pricing import RateSchedule, billable_hours, price, price_hours
from conftest import at
from shared.domain.exceptions import ValidationError
from shared.domain.value_objects import Money, TimeInterval


FULL = RateSchedule(hourly=Decimal("10"), daily=Decimal("30"), weekly=Decimal("150"), monthly=Decimal("500"))


def test_short_stay_is_capped_at_the_daily_rate():
    schedule = RateSchedule(hourly=Decimal("10"), daily=Decimal("30"))
    interval = TimeInterval(at(10), at(14))

    assert price(interval, schedule) == Money(Decimal("30.00"), "USD")


def test_hours_below_the_daily_cap_are_billed_hourly():
    assert price_hours(2, FULL) == Decimal("20.00")


def test_partial_hour_bills_as_a_full_hour():
    interval = TimeInterval(at(10), at(10) + timedelta(minutes=5))

    assert billable_hours(interval) == 1
    assert price(interval, FULL).amount == Decimal("10.00")


def test_day_plus_hours():
    # 1 day + 2 hours
    assert price_hours(26, FULL) == Decimal("50.00")


def test_days_are_capped_at_the_weekly_rate():
    assert price_hours(6 * 24, FULL) == Decimal("150.00")


def test_week_plus_a_day():
    assert price_hours(8 * 24, FULL) == Decimal("180.00")


def test_month_remainder_is_billed_by_days_not_weeks():
    # 31 days: one month plus one day
    assert price_hours(31 * 24, FULL) == Decimal("530.00")
    # one month and a week: the week is billed as 7 days
    assert price_hours(37 * 24, FULL) == Decimal("500.00") + min(Decimal("210.00"), Decimal("500.00"))


def test_weeks_are_used_when_no_whole_month():
    # 10 days = 1 week + 3 days
    assert price_hours(10 * 24, FULL) == Decimal("240.00")


def test_missing_tier_falls_through_to_smaller_tiers():
    schedule = RateSchedule(hourly=Decimal("10"), daily=Decimal("0"), weekly=None, monthly=Decimal("500"))

    assert price_hours(30, schedule) == Decimal("300.00")


def test_smallest_available_tier_rounds_up():
    schedule = RateSchedule(daily=Decimal("30"))

    assert price_hours(5, schedule) == Decimal("30.00")
    assert price_hours(25, schedule) == Decimal("60.00")


def test_schedule_without_rates_is_rejected():
    with pytest.raises(ValidationError):
        price_hours(3, RateSchedule())


def test_negative_rate_is_rejected():
    with pytest.raises(ValidationError):
        RateSchedule(hourly=Decimal("-1"))


def test_price_keeps_schedule_currency():
    schedule = RateSchedule(hourly=Decimal("2.50"), currency="EUR")

    assert price(TimeInterval(at(0), at(3)), schedule) == Money(Decimal("7.50"), "EUR")


@pytest.mark.parametrize(
    "schedule",
    [
        FULL,
        RateSchedule(hourly=Decimal("10"), daily=Decimal("30")),
        RateSchedule(hourly=Decimal("7.25"), weekly=Decimal("99")),
        RateSchedule(daily=Decimal("30"), monthly=Decimal("20")),
        RateSchedule(hourly=Decimal("1"), daily=Decimal("100"), weekly=Decimal("50"), monthly=Decimal("2000")),
    ],
)
def test_price_never_decreases_as_duration_grows(schedule):
    previous = Decimal("0")
    for hours in range(1, 24 * 75):
        current = price_hours(hours, schedule)
        assert current >= previous, f"price dropped at {hours}h: {previous} -> {current}"
        assert current >= 0
        previous = current


def test_engine_quote_matches_the_booking_price(engine, space):
    quote = engine.quote_price(space.id, at(10, days=1), at(14, days=1))
    booking = engine.request_booking(space.id, at(10, days=1), at(14, days=1), "driver-1", "car")

    assert quote == booking.total_price
