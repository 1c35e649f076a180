from decimal import Decimal
from uuid import uuid4

import pytest

from apps.bookings.domain.entities import Booking, BookingStatus, ParkingSpace
from apps.bookings.domain.events import BookingCancelled, BookingCompleted, BookingConfirmed, BookingRequested
from apps.bookings.domain.pricing import RateSchedule
from conftest import at
from shared.domain.exceptions import AlreadyProcessedError, InvalidStateError, ValidationError
from shared.domain.value_objects import Money, TimeInterval


@pytest.fixture
def booking():
    space = ParkingSpace(owner_id="owner", rates=RateSchedule(hourly=Decimal("10")))
    return Booking.request(space, TimeInterval(at(10), at(14)), "driver", "car", Money(Decimal("40")))


def test_request_creates_pending_booking(booking):
    assert booking.status == BookingStatus.PENDING
    assert booking.owner_id == "owner"
    assert booking.escrow_id is None
    assert [type(e) for e in booking.events] == [BookingRequested]


def test_confirm_sets_escrow_and_payment(booking):
    escrow_id = uuid4()

    booking.confirm(escrow_id, "pay_1", now=at(0))

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.escrow_id == escrow_id
    assert booking.payment_reference == "pay_1"
    assert isinstance(booking.events[-1], BookingConfirmed)


@pytest.mark.parametrize("status", [BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.COMPLETED])
def test_confirm_requires_pending(booking, status):
    booking.status = status

    with pytest.raises(AlreadyProcessedError):
        booking.confirm(uuid4(), "pay_1")


def test_cancel_pending(booking):
    booking.cancel("changed plans", "driver", now=at(1))

    assert booking.status == BookingStatus.CANCELLED
    assert booking.cancelled_by == "driver"
    event = booking.events[-1]
    assert isinstance(event, BookingCancelled)
    assert event.old_status == "pending"


def test_cancel_twice_is_rejected(booking):
    booking.cancel("first", "driver")

    with pytest.raises(InvalidStateError):
        booking.cancel("second", "driver")


def test_confirmed_booking_cannot_be_cancelled_after_its_end(booking):
    booking.confirm(uuid4(), "pay_1")

    booking.ensure_cancellable(at(13))
    with pytest.raises(InvalidStateError):
        booking.ensure_cancellable(at(14))


def test_complete_requires_end_to_have_passed(booking):
    booking.confirm(uuid4(), "pay_1")

    with pytest.raises(InvalidStateError):
        booking.complete(at(13))

    booking.complete(at(14))
    assert booking.status == BookingStatus.COMPLETED
    assert isinstance(booking.events[-1], BookingCompleted)


def test_complete_requires_confirmed(booking):
    with pytest.raises(InvalidStateError):
        booking.complete(at(20))


def test_interval_must_be_ordered():
    with pytest.raises(ValidationError):
        TimeInterval(at(14), at(10))
    with pytest.raises(ValidationError):
        TimeInterval(at(10), at(10))
