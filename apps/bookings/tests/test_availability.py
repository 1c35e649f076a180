from decimal import Decimal
from uuid import uuid4

from apps.bookings.domain.availability import find_conflicts
from apps.bookings.domain.entities import Booking, BookingStatus
from conftest import at
from shared.domain.value_objects import Money, TimeInterval

RESOURCE = uuid4()


def make_booking(start_hour, end_hour, status=BookingStatus.CONFIRMED):
    return Booking(
        resource_id=RESOURCE,
        requester_id="driver",
        owner_id="owner",
        interval=TimeInterval(at(start_hour), at(end_hour)),
        vehicle_type="car",
        total_price=Money(Decimal("10")),
        status=status,
        escrow_id=uuid4() if status == BookingStatus.CONFIRMED else None,
    )


def test_back_to_back_bookings_do_not_conflict():
    existing = [make_booking(10, 12)]

    assert find_conflicts(TimeInterval(at(12), at(14)), existing).is_available
    assert find_conflicts(TimeInterval(at(8), at(10)), existing).is_available


def test_overlap_reports_conflicting_ids():
    first, second = make_booking(10, 12), make_booking(13, 15)

    result = find_conflicts(TimeInterval(at(11), at(14)), [first, second])

    assert not result
    assert result.conflicting_booking_ids == (first.id, second.id)


def test_contained_interval_conflicts():
    existing = [make_booking(8, 20)]

    assert not find_conflicts(TimeInterval(at(10), at(11)), existing)


def test_only_confirmed_bookings_block():
    existing = [
        make_booking(10, 12, BookingStatus.PENDING),
        make_booking(10, 12, BookingStatus.CANCELLED),
        make_booking(10, 12, BookingStatus.COMPLETED),
    ]

    assert find_conflicts(TimeInterval(at(10), at(12)), existing).is_available


def test_excluded_booking_is_ignored():
    booking = make_booking(10, 12)

    assert find_conflicts(booking.interval, [booking], exclude_booking_id=booking.id).is_available


def test_engine_check_availability(engine, space, confirmed_booking):
    blocked = engine.check_availability(space.id, at(13, days=1), at(15, days=1))
    free = engine.check_availability(space.id, at(14, days=1), at(15, days=1))

    assert blocked.conflicting_booking_ids == (confirmed_booking.id,)
    assert free.is_available
