"""
Availability Checker

This is the CRITICAL rule for preventing double bookings:
no two Confirmed bookings on the same parking space may overlap.

Strategy (Defense in Depth):
1. Domain validation: find_conflicts() checks half-open interval overlap
2. Per-resource lock: the parking space row is locked (SELECT FOR UPDATE)
   while ConfirmBookingHandler re-runs the check and writes Confirmed
3. Compare-and-swap on Booking.version as the final safety net

Only Confirmed bookings block a space. Pending bookings never do: they may
expire or fail payment.
"""

from dataclasses import dataclass, field
from typing import Iterable, Tuple
from uuid import UUID

from shared.domain.value_objects import TimeInterval

from apps.bookings.domain.entities import Booking, BookingStatus


@dataclass(frozen=True)
class AvailabilityResult:
    """Available, or Conflicting with the ids of the blocking bookings"""
    conflicting_booking_ids: Tuple[UUID, ...] = field(default_factory=tuple)

    @property
    def is_available(self) -> bool:
        return not self.conflicting_booking_ids

    @classmethod
    def available(cls) -> 'AvailabilityResult':
        return cls()

    @classmethod
    def conflicting(cls, booking_ids: Iterable[UUID]) -> 'AvailabilityResult':
        return cls(tuple(booking_ids))

    def __bool__(self):
        return self.is_available


def blocks(booking: Booking) -> bool:
    """Only Confirmed bookings hold the space"""
    return booking.status == BookingStatus.CONFIRMED


def find_conflicts(
    interval: TimeInterval,
    existing: Iterable[Booking],
    exclude_booking_id: UUID | None = None,
) -> AvailabilityResult:
    """
    Pure check of `interval` against existing bookings of one resource

    Returns AvailabilityResult.available() if nothing blocks, otherwise the
    conflicting booking ids in input order.
    """
    conflicts = [
        booking.id
        for booking in existing
        if booking.id != exclude_booking_id
        and blocks(booking)
        and booking.interval.overlaps_with(interval)
    ]
    if conflicts:
        return AvailabilityResult.conflicting(conflicts)
    return AvailabilityResult.available()


def check_availability(
    bookings,
    resource_id: UUID,
    interval: TimeInterval,
    exclude_booking_id: UUID | None = None,
) -> AvailabilityResult:
    """
    Check a parking space against the booking repository

    `bookings` is a booking repository (uow.bookings). Callers that need
    the answer to hold until commit must lock the parking space first.
    """
    existing = bookings.list_confirmed_for_resource(resource_id, interval)
    return find_conflicts(interval, existing, exclude_booking_id)
