"""
Booking Repositories

Adapters between Booking/ParkingSpace aggregates and the backing store.
Each repository is built per unit of work (uow.bookings, uow.spaces).

lock=True takes the row lock (SELECT FOR UPDATE, or the per-key lock of
the in-memory store) and holds it until the unit of work exits.
"""

from datetime import datetime
from typing import List
from uuid import UUID

from shared.domain.value_objects import Money, TimeInterval
from shared.infrastructure.versioning import lock_queryset_if_possible, save_versioned

from apps.bookings.domain.entities import Booking, BookingStatus, ParkingSpace
from apps.bookings.domain.pricing import RateSchedule


# ===== Django =====

class DjangoParkingSpaceRepository:

    def __init__(self, uow):
        self.uow = uow

    def get(self, space_id: UUID, lock: bool = False) -> ParkingSpace | None:
        from apps.bookings.models import ParkingSpace as ParkingSpaceModel

        queryset = ParkingSpaceModel.objects.filter(id=space_id)
        if lock:
            queryset = lock_queryset_if_possible(queryset)
        model = queryset.first()
        return self._to_domain(model) if model else None

    def save(self, space: ParkingSpace):
        from apps.bookings.models import ParkingSpace as ParkingSpaceModel

        rates = space.rates
        save_versioned(ParkingSpaceModel, space, {
            'owner_id': space.owner_id,
            'name': space.name,
            'currency': rates.currency,
            'hourly_rate': rates.hourly,
            'daily_rate': rates.daily,
            'weekly_rate': rates.weekly,
            'monthly_rate': rates.monthly,
            'is_active': space.is_active,
            'created_at': space.created_at,
            'updated_at': space.updated_at,
        })

    @staticmethod
    def _to_domain(model) -> ParkingSpace:
        return ParkingSpace(
            id=model.id,
            owner_id=model.owner_id,
            name=model.name,
            rates=RateSchedule(
                hourly=model.hourly_rate,
                daily=model.daily_rate,
                weekly=model.weekly_rate,
                monthly=model.monthly_rate,
                currency=model.currency,
            ),
            is_active=model.is_active,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class DjangoBookingRepository:
    """
    Booking repository backed by the Django ORM

    Writes are compare-and-swap on the version column.
    """

    def __init__(self, uow):
        self.uow = uow

    def get(self, booking_id: UUID, lock: bool = False) -> Booking | None:
        from apps.bookings.models import Booking as BookingModel

        queryset = BookingModel.objects.filter(id=booking_id)
        if lock:
            queryset = lock_queryset_if_possible(queryset)
        model = queryset.first()
        return self._to_domain(model) if model else None

    def list_confirmed_for_resource(self, resource_id: UUID, interval: TimeInterval) -> List[Booking]:
        """Confirmed bookings on the space that overlap the interval"""
        from apps.bookings.models import Booking as BookingModel

        queryset = BookingModel.objects.filter(
            space_id=resource_id,
            status=BookingModel.Status.CONFIRMED,
            start_time__lt=interval.end,
            end_time__gt=interval.start,
        ).order_by('start_time')
        return [self._to_domain(model) for model in queryset]

    def list_confirmed_ended(self, now: datetime) -> List[UUID]:
        """Ids of Confirmed bookings whose interval is over"""
        from apps.bookings.models import Booking as BookingModel

        return list(
            BookingModel.objects.filter(
                status=BookingModel.Status.CONFIRMED,
                end_time__lte=now,
            ).order_by('end_time').values_list('id', flat=True)
        )

    def save(self, booking: Booking):
        from apps.bookings.models import Booking as BookingModel

        save_versioned(BookingModel, booking, {
            'space_id': booking.resource_id,
            'requester_id': booking.requester_id,
            'owner_id': booking.owner_id,
            'start_time': booking.interval.start,
            'end_time': booking.interval.end,
            'vehicle_type': booking.vehicle_type,
            'total_price': booking.total_price.amount,
            'currency': booking.total_price.currency,
            'status': booking.status.value,
            'escrow_id': booking.escrow_id,
            'payment_reference': booking.payment_reference or '',
            'cancellation_reason': booking.cancellation_reason,
            'cancelled_by': booking.cancelled_by,
            'confirmed_at': booking.confirmed_at,
            'cancelled_at': booking.cancelled_at,
            'completed_at': booking.completed_at,
            'created_at': booking.created_at,
            'updated_at': booking.updated_at,
        })

    @staticmethod
    def _to_domain(model) -> Booking:
        return Booking(
            id=model.id,
            resource_id=model.space_id,
            requester_id=model.requester_id,
            owner_id=model.owner_id,
            interval=TimeInterval(model.start_time, model.end_time),
            vehicle_type=model.vehicle_type,
            total_price=Money(model.total_price, model.currency),
            status=BookingStatus(model.status),
            escrow_id=model.escrow_id,
            payment_reference=model.payment_reference or None,
            cancellation_reason=model.cancellation_reason,
            cancelled_by=model.cancelled_by,
            confirmed_at=model.confirmed_at,
            cancelled_at=model.cancelled_at,
            completed_at=model.completed_at,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


# ===== In-memory =====

class InMemoryParkingSpaceRepository:
    collection = 'spaces'

    def __init__(self, uow):
        self.uow = uow

    def get(self, space_id: UUID, lock: bool = False) -> ParkingSpace | None:
        if lock:
            self.uow.lock((self.collection, space_id))
        return self.uow.get(self.collection, space_id)

    def save(self, space: ParkingSpace):
        self.uow.stage(self.collection, space.id, space)


class InMemoryBookingRepository:
    collection = 'bookings'

    def __init__(self, uow):
        self.uow = uow

    def get(self, booking_id: UUID, lock: bool = False) -> Booking | None:
        if lock:
            self.uow.lock((self.collection, booking_id))
        return self.uow.get(self.collection, booking_id)

    def list_confirmed_for_resource(self, resource_id: UUID, interval: TimeInterval) -> List[Booking]:
        bookings = [
            booking for booking in self.uow.scan(self.collection)
            if booking.resource_id == resource_id
            and booking.status == BookingStatus.CONFIRMED
            and booking.interval.overlaps_with(interval)
        ]
        return sorted(bookings, key=lambda b: b.interval.start)

    def list_confirmed_ended(self, now: datetime) -> List[UUID]:
        bookings = [
            booking for booking in self.uow.scan(self.collection)
            if booking.status == BookingStatus.CONFIRMED and booking.interval.end <= now
        ]
        return [b.id for b in sorted(bookings, key=lambda b: b.interval.end)]

    def save(self, booking: Booking):
        self.uow.stage(self.collection, booking.id, booking)
