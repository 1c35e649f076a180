"""
Engine wiring

bootstrap() builds the unit of work factory, payment gateway, refund
executor and escrow ledger, registers one handler per command on a
MessageBus and returns an Engine exposing the caller-facing operations.

    engine = bootstrap()                    # Django ORM, settings-driven
    engine = bootstrap(in_memory=True)      # InMemoryStore, e.g. for tests

Every operation returns its result or raises one error from
shared.domain.exceptions.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Deque, List
from uuid import UUID
import logging
import time

from django.conf import settings

from shared.application.message_bus import MessageBus
from shared.application.uow import DjangoUnitOfWork, InMemoryStore, InMemoryUnitOfWork
from shared.domain.base import DomainEvent
from shared.domain.exceptions import NotFoundError
from shared.domain.value_objects import Money, TimeInterval

from apps.bookings.application.command_handlers import (
    CancelBookingCommand,
    CancelBookingHandler,
    CancellationPolicy,
    CompleteBookingCommand,
    CompleteBookingHandler,
    CompleteFinishedBookingsCommand,
    CompleteFinishedBookingsHandler,
    ConfirmBookingCommand,
    ConfirmBookingHandler,
    RequestBookingCommand,
    RequestBookingHandler,
)
from apps.bookings.domain.availability import AvailabilityResult, check_availability
from apps.bookings.domain.entities import Booking, ParkingSpace
from apps.bookings.domain.pricing import RateSchedule, price
from apps.bookings.repositories import (
    DjangoBookingRepository,
    DjangoParkingSpaceRepository,
    InMemoryBookingRepository,
    InMemoryParkingSpaceRepository,
)
from apps.disputes.application.command_handlers import (
    OpenDisputeCommand,
    OpenDisputeHandler,
    ResolveDisputeCommand,
    ResolveDisputeHandler,
)
from apps.disputes.domain.entities import AdminAction, Decision, Dispute
from apps.disputes.repositories import DjangoDisputeRepository, InMemoryDisputeRepository
from apps.escrow.application.ledger import EscrowLedger, ReleaseDueEscrowsCommand, ReleaseDueEscrowsHandler
from apps.escrow.domain.entities import EscrowRecord
from apps.escrow.repositories import DjangoEscrowRepository, InMemoryEscrowRepository
from apps.payments.gateway import PaymentGateway, get_payment_gateway
from apps.payments.refunds import RefundExecutor
from apps.payments.repositories import DjangoRefundRepository, InMemoryRefundRepository

logger = logging.getLogger(__name__)

DJANGO_REPOSITORIES = {
    'spaces': DjangoParkingSpaceRepository,
    'bookings': DjangoBookingRepository,
    'escrows': DjangoEscrowRepository,
    'disputes': DjangoDisputeRepository,
    'refunds': DjangoRefundRepository,
}

IN_MEMORY_REPOSITORIES = {
    'spaces': InMemoryParkingSpaceRepository,
    'bookings': InMemoryBookingRepository,
    'escrows': InMemoryEscrowRepository,
    'disputes': InMemoryDisputeRepository,
    'refunds': InMemoryRefundRepository,
}

def log_event(event: DomainEvent):
    logger.info(f"Domain event {event.__class__.__name__}: {event.to_dict()}")


@dataclass
class Engine:
    """Caller-facing operations of the reservation and escrow engine"""

    bus: MessageBus
    uow_factory: Callable
    gateway: PaymentGateway
    refund_executor: RefundExecutor
    ledger: EscrowLedger
    currency: str = 'USD'
    # Most recent events published after commit
    published: Deque[DomainEvent] = field(default_factory=lambda: deque(maxlen=1000))

    # ===== Bookings =====

    def request_booking(self, resource_id: UUID, start: datetime, end: datetime,
                        requester_id: str, vehicle_type: str) -> Booking:
        return self.bus.handle_command(RequestBookingCommand(
            resource_id, start, end, requester_id, vehicle_type,
        ))

    def confirm_booking(self, booking_id: UUID, actor: str = 'system', now: datetime | None = None) -> Booking:
        return self.bus.handle_command(ConfirmBookingCommand(booking_id, actor, now))

    def cancel_booking(self, booking_id: UUID, reason: str, cancelled_by: str,
                       now: datetime | None = None) -> Booking:
        return self.bus.handle_command(CancelBookingCommand(booking_id, reason, cancelled_by, now))

    def complete_booking(self, booking_id: UUID, now: datetime | None = None) -> Booking:
        return self.bus.handle_command(CompleteBookingCommand(booking_id, now))

    def complete_finished_bookings(self, now: datetime | None = None) -> List[UUID]:
        return self.bus.handle_command(CompleteFinishedBookingsCommand(now))

    def check_availability(self, resource_id: UUID, start: datetime, end: datetime,
                           exclude_booking_id: UUID | None = None) -> AvailabilityResult:
        interval = TimeInterval(start, end)
        with self.uow_factory() as uow:
            return check_availability(uow.bookings, resource_id, interval, exclude_booking_id)

    def quote_price(self, resource_id: UUID, start: datetime, end: datetime) -> Money:
        return price(TimeInterval(start, end), self.get_space(resource_id).rates)

    # ===== Disputes =====

    def open_dispute(self, booking_id: UUID, raised_by: str, amount_in_question,
                     details: str = '', now: datetime | None = None) -> Dispute:
        return self.bus.handle_command(OpenDisputeCommand(
            booking_id, raised_by, amount_in_question, details, now,
        ))

    def resolve_dispute(self, dispute_id: UUID, decision, resolved_by: str, notes: str = '',
                        refund_amount=None, now: datetime | None = None) -> Dispute:
        return self.bus.handle_command(ResolveDisputeCommand(
            dispute_id, Decision(decision), resolved_by, notes, refund_amount, now,
        ))

    # ===== Escrow =====

    def release_due_escrows(self, now: datetime | None = None) -> List[UUID]:
        return self.bus.handle_command(ReleaseDueEscrowsCommand(now))

    # ===== Spaces and lookups =====

    def register_space(self, owner_id: str, rates: RateSchedule | None = None, name: str = '',
                       **tier_rates) -> ParkingSpace:
        """Create a parking space; rates may be given as hourly=..., daily=..."""
        if rates is None:
            rates = RateSchedule(currency=self.currency, **{
                tier: Decimal(str(value)) for tier, value in tier_rates.items()
            })
        space = ParkingSpace(owner_id=owner_id, rates=rates, name=name)
        with self.uow_factory() as uow:
            uow.spaces.save(space)
        logger.info(f"Registered parking space {space.id} for owner {owner_id}")
        return space

    def get_space(self, space_id: UUID) -> ParkingSpace:
        return self._lookup('spaces', space_id, "Parking space")

    def get_booking(self, booking_id: UUID) -> Booking:
        return self._lookup('bookings', booking_id, "Booking")

    def get_escrow(self, escrow_id: UUID) -> EscrowRecord:
        return self._lookup('escrows', escrow_id, "Escrow")

    def get_dispute(self, dispute_id: UUID) -> Dispute:
        return self._lookup('disputes', dispute_id, "Dispute")

    def admin_actions(self, dispute_id: UUID) -> List[AdminAction]:
        with self.uow_factory() as uow:
            return uow.disputes.list_admin_actions(dispute_id)

    def subscribe(self, event_type, handler: Callable[[DomainEvent], None]):
        self.bus.register_event_handler(event_type, handler)

    def _lookup(self, repository: str, record_id: UUID, label: str):
        with self.uow_factory() as uow:
            record = getattr(uow, repository).get(record_id)
        if record is None:
            raise NotFoundError(f"{label} {record_id} not found")
        return record


def bootstrap(
    *,
    in_memory: bool = False,
    store: InMemoryStore | None = None,
    gateway: PaymentGateway | None = None,
    bus: MessageBus | None = None,
    policy: CancellationPolicy | None = None,
    release_hold_days: int | None = None,
    max_attempts: int | None = None,
    backoff_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Engine:
    """Wire the engine; unset options come from Django settings"""
    bus = bus or MessageBus()
    gateway = gateway or get_payment_gateway()

    if in_memory or store is not None:
        store = store or InMemoryStore()

        def uow_factory():
            return InMemoryUnitOfWork(store, IN_MEMORY_REPOSITORIES, bus)
    else:
        def uow_factory():
            return DjangoUnitOfWork(DJANGO_REPOSITORIES, bus)

    if policy is None:
        policy = CancellationPolicy(
            refund_before_start=Decimal(str(getattr(settings, 'CANCELLATION_REFUND_BEFORE_START', '1'))),
            refund_after_start=Decimal(str(getattr(settings, 'CANCELLATION_REFUND_AFTER_START', '0'))),
        )
    if release_hold_days is None:
        release_hold_days = int(getattr(settings, 'ESCROW_RELEASE_HOLD_DAYS', 0))
    if max_attempts is None:
        max_attempts = int(getattr(settings, 'REFUND_MAX_ATTEMPTS', 3))
    if backoff_seconds is None:
        backoff_seconds = float(getattr(settings, 'REFUND_BACKOFF_SECONDS', 0.5))

    refund_executor = RefundExecutor(uow_factory, gateway, max_attempts, backoff_seconds, sleep)
    ledger = EscrowLedger(uow_factory, refund_executor)

    complete_handler = CompleteBookingHandler(uow_factory, ledger, timedelta(days=release_hold_days))
    handlers = {
        RequestBookingCommand: RequestBookingHandler(uow_factory),
        ConfirmBookingCommand: ConfirmBookingHandler(uow_factory, ledger, gateway),
        CancelBookingCommand: CancelBookingHandler(uow_factory, ledger, policy),
        CompleteBookingCommand: complete_handler,
        CompleteFinishedBookingsCommand: CompleteFinishedBookingsHandler(uow_factory, complete_handler),
        OpenDisputeCommand: OpenDisputeHandler(uow_factory),
        ResolveDisputeCommand: ResolveDisputeHandler(uow_factory, ledger),
        ReleaseDueEscrowsCommand: ReleaseDueEscrowsHandler(ledger),
    }
    for command_type, handler in handlers.items():
        bus.register_command_handler(command_type, handler.handle)

    engine = Engine(
        bus=bus,
        uow_factory=uow_factory,
        gateway=gateway,
        refund_executor=refund_executor,
        ledger=ledger,
        currency=getattr(settings, 'DEFAULT_CURRENCY', 'USD'),
    )
    bus.register_event_handler(DomainEvent, log_event)
    bus.register_event_handler(DomainEvent, engine.published.append)

    logger.debug(f"Engine bootstrapped ({'in-memory' if store is not None else 'django'} store)")
    return engine
