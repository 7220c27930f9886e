from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import desc, func, select, update
from sqlalchemy.exc import IntegrityError
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging
from uuid import UUID

from ..config import settings
from ..database import run_transaction, violates_unique
from ..exceptions import (
    BookingNotFound,
    DuplicateBooking,
    GenderRestricted,
    InvalidPickupPoint,
    InvalidTransition,
    NotAuthorized,
    RideNotActive,
    RideNotFound,
    SelfBookingNotAllowed,
)
from ..models.booking import ACTIVE_BOOKING_INDEX, ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, CancelledBy
from ..models.pickup_point import PickupPoint
from ..models.profile import Profile, SubscriptionTier
from ..models.ride import Ride, RideStatus
from ..utils.clock import has_departed, utcnow
from . import booking_state
from .seat_ledger import SeatLedger

logger = logging.getLogger(__name__)


@dataclass
class BookingOutcome:
    """Result of a booking mutation, with the ride's post-commit seat count"""

    booking: Booking
    seats_available: int
    changed: bool = True
    seats_restored: int = 0


def calculate_price(
    price_per_seat: int,
    seats: int,
    fee_percentage: int,
    waive_fee: bool = False,
) -> Tuple[int, int]:
    """Return ``(total_price, platform_fee)`` for ``seats`` at ``price_per_seat``.

    The fee is a percentage of the subtotal rounded half up to whole currency
    units and is added on top of it.
    """
    subtotal = price_per_seat * seats
    platform_fee = 0 if waive_fee else (subtotal * fee_percentage + 50) // 100
    return subtotal + platform_fee, platform_fee


def duplicate_booking_error(error: IntegrityError, ride_id: UUID) -> Optional[DuplicateBooking]:
    """Map a violation of the one-active-booking index; other integrity errors are not ours"""
    if violates_unique(error, ACTIVE_BOOKING_INDEX, "bookings", ("ride_id", "passenger_id")):
        return DuplicateBooking(details={"ride_id": str(ride_id)})
    return None


def booking_event_data(booking: Booking, ride: Ride) -> Dict[str, Any]:
    return {
        "booking_id": str(booking.id),
        "ride_id": str(ride.id),
        "passenger_id": str(booking.passenger_id),
        "driver_id": str(ride.driver_id),
        "seats_booked": booking.seats_booked,
        "total_price": booking.total_price,
        "status": booking.status.value,
        "cancelled_by": booking.cancelled_by.value if booking.cancelled_by else None,
    }


class BookingService:

    def __init__(self, ledger: Optional[SeatLedger] = None):
        self.ledger = ledger or SeatLedger()

    # Row access

    async def _load_booking(self, booking_id: UUID, db: AsyncSession) -> Optional[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def _lock_booking_and_ride(self, booking_id: UUID, db: AsyncSession) -> Tuple[Booking, Ride]:
        booking = await self._load_booking(booking_id, db)
        if booking is None:
            raise BookingNotFound(details={"booking_id": str(booking_id)})
        ride = await self.ledger.lock_ride(booking.ride_id, db)
        if ride is None:
            raise RideNotFound(details={"ride_id": str(booking.ride_id)})
        # Re-read now that the ride lock serialises us with other writers
        booking = await self._load_booking(booking_id, db)
        return booking, ride

    async def _has_active_booking(self, ride_id: UUID, passenger_id: UUID, db: AsyncSession) -> bool:
        stmt = (
            select(Booking.id)
            .where(
                Booking.ride_id == ride_id,
                Booking.passenger_id == passenger_id,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _pickup_point_on_ride(self, pickup_point_id: UUID, ride_id: UUID, db: AsyncSession) -> bool:
        stmt = select(PickupPoint.id).where(PickupPoint.id == pickup_point_id, PickupPoint.ride_id == ride_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def mark_cancelled(
        self,
        booking_ids: Iterable[UUID],
        cancelled_by: CancelledBy,
        db: AsyncSession,
    ) -> int:
        """Cancel the still-active bookings among ``booking_ids``; returns how many changed"""
        booking_ids = list(booking_ids)
        if not booking_ids:
            return 0
        stmt = (
            update(Booking)
            .where(
                Booking.id.in_(booking_ids),
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
            .values(
                status=BookingStatus.CANCELLED,
                cancelled_by=cancelled_by,
                cancelled_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount

    async def _outcome(self, booking_id: UUID, ride_id: UUID, db: AsyncSession, **kwargs) -> BookingOutcome:
        booking = await self._load_booking(booking_id, db)
        seats_available = await self.ledger.available(ride_id, db)
        await db.commit()
        return BookingOutcome(booking=booking, seats_available=seats_available, **kwargs)

    # Atomic reservation

    async def book_ride_atomic(
        self,
        ride_id: UUID,
        passenger_id: UUID,
        seats_requested: int,
        db: AsyncSession,
        pickup_point_id: Optional[UUID] = None,
    ) -> BookingOutcome:
        """Reserve seats and create a pending booking in one transaction.

        Price and fee come from the ride row as read inside the transaction;
        nothing the caller sends about money is consulted.
        """

        async def work() -> UUID:
            ride = await self.ledger.lock_ride(ride_id, db)
            if ride is None:
                raise RideNotFound(details={"ride_id": str(ride_id)})

            if ride.status != RideStatus.ACTIVE or has_departed(ride.departure_time):
                raise RideNotActive(details={"ride_id": str(ride_id), "status": ride.status.value})

            if passenger_id == ride.driver_id:
                raise SelfBookingNotAllowed(details={"ride_id": str(ride_id)})

            profile = await db.get(Profile, passenger_id, populate_existing=True)
            if ride.is_women_only and not (profile is not None and profile.is_female):
                raise GenderRestricted(details={"ride_id": str(ride_id)})

            if await self._has_active_booking(ride_id, passenger_id, db):
                raise DuplicateBooking(details={"ride_id": str(ride_id)})

            if pickup_point_id is not None and not await self._pickup_point_on_ride(pickup_point_id, ride.id, db):
                raise InvalidPickupPoint(
                    details={"ride_id": str(ride_id), "pickup_point_id": str(pickup_point_id)}
                )

            total_price, platform_fee = calculate_price(
                ride.price_per_seat,
                seats_requested,
                settings.platform_fee_percentage,
                waive_fee=profile is not None and profile.subscription_tier == SubscriptionTier.PREMIUM,
            )

            await self.ledger.reserve(ride.id, seats_requested, db)

            booking = Booking(
                ride_id=ride.id,
                passenger_id=passenger_id,
                pickup_point_id=pickup_point_id,
                seats_booked=seats_requested,
                total_price=total_price,
                platform_fee=platform_fee,
                status=BookingStatus.PENDING,
            )
            db.add(booking)
            await db.flush()
            return booking.id

        booking_id = await run_transaction(
            db,
            work,
            operation="book_ride_atomic",
            on_integrity_error=lambda e: duplicate_booking_error(e, ride_id),
        )
        logger.info(f"Passenger {passenger_id} booked {seats_requested} seat(s) on ride {ride_id}: {booking_id}")
        return await self._outcome(booking_id, ride_id, db)

    # Atomic cancellation

    async def _cancel(
        self,
        booking_id: UUID,
        actor_id: UUID,
        db: AsyncSession,
        *,
        driver_only: bool,
        operation: str,
    ) -> BookingOutcome:

        async def work() -> Tuple[UUID, int]:
            booking, ride = await self._lock_booking_and_ride(booking_id, db)
            cancelled_by = booking_state.cancelling_party(booking, ride, actor_id, driver_only=driver_only)

            if booking_state.is_noop_cancel(booking):
                return ride.id, 0

            if ride.status == RideStatus.COMPLETED:
                raise InvalidTransition(
                    "Bookings on a completed ride cannot be cancelled",
                    details={"booking_id": str(booking_id)},
                )
            booking_state.ensure_transition(booking.status, BookingStatus.CANCELLED)

            # Seats go back only if this statement is the one that cancelled it
            if await self.mark_cancelled([booking.id], cancelled_by, db) != 1:
                return ride.id, 0
            await self.ledger.release(ride.id, booking.seats_booked, db)
            return ride.id, booking.seats_booked

        ride_id, seats_restored = await run_transaction(db, work, operation=operation)
        if seats_restored:
            logger.info(f"Cancelled booking {booking_id}, restored {seats_restored} seat(s) on ride {ride_id}")
        else:
            logger.info(f"Booking {booking_id} was already cancelled")
        return await self._outcome(
            booking_id,
            ride_id,
            db,
            changed=seats_restored > 0,
            seats_restored=seats_restored,
        )

    async def cancel_booking_atomic(self, booking_id: UUID, user_id: UUID, db: AsyncSession) -> BookingOutcome:
        """Passenger or driver cancels one booking; seats restored exactly once"""
        return await self._cancel(
            booking_id, user_id, db, driver_only=False, operation="cancel_booking_atomic"
        )

    async def cancel_booking(self, booking_id: UUID, driver_id: UUID, db: AsyncSession) -> BookingOutcome:
        """Driver path: cancel a single booking on one of the driver's rides"""
        return await self._cancel(
            booking_id, driver_id, db, driver_only=True, operation="cancel_booking"
        )

    # Confirmation

    async def confirm_booking(self, booking_id: UUID, driver_id: UUID, db: AsyncSession) -> BookingOutcome:
        """Driver accepts a pending booking before departure"""

        async def work() -> UUID:
            booking, ride = await self._lock_booking_and_ride(booking_id, db)
            booking_state.ensure_can_confirm(booking, ride, driver_id)

            if ride.status != RideStatus.ACTIVE or has_departed(ride.departure_time):
                raise InvalidTransition(
                    "Bookings can only be confirmed before the ride departs",
                    details={"booking_id": str(booking_id), "ride_status": ride.status.value},
                )

            stmt = (
                update(Booking)
                .where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING)
                .values(status=BookingStatus.CONFIRMED, confirmed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            if result.rowcount != 1:
                raise InvalidTransition(details={"booking_id": str(booking_id)})
            return ride.id

        ride_id = await run_transaction(db, work, operation="confirm_booking")
        logger.info(f"Driver {driver_id} confirmed booking {booking_id}")
        return await self._outcome(booking_id, ride_id, db)

    # Reads

    async def get_booking(self, booking_id: UUID, user_id: UUID, db: AsyncSession) -> Tuple[Booking, Ride]:
        """Booking plus its ride, visible to the passenger and the driver only"""
        booking = await self._load_booking(booking_id, db)
        if booking is None:
            raise BookingNotFound(details={"booking_id": str(booking_id)})
        ride = await db.get(Ride, booking.ride_id)
        if user_id not in (booking.passenger_id, ride.driver_id):
            raise NotAuthorized(details={"booking_id": str(booking_id)})
        return booking, ride

    async def get_passenger_bookings(
        self,
        passenger_id: UUID,
        limit: int = 20,
        offset: int = 0,
        db: AsyncSession = None,
    ) -> Tuple[List[Booking], int]:
        """Get bookings for a passenger with pagination"""
        stmt = (
            select(Booking)
            .where(Booking.passenger_id == passenger_id)
            .order_by(desc(Booking.created_at))
            .limit(limit)
            .offset(offset)
        )
        result = await db.execute(stmt)
        bookings = result.scalars().all()

        count_stmt = select(func.count()).select_from(Booking).where(Booking.passenger_id == passenger_id)
        total = (await db.execute(count_stmt)).scalar_one()

        return list(bookings), total

    async def get_ride_bookings(self, ride_id: UUID, driver_id: UUID, db: AsyncSession) -> List[Booking]:
        """All bookings on a ride, for its driver"""
        ride = await db.get(Ride, ride_id)
        if ride is None:
            raise RideNotFound(details={"ride_id": str(ride_id)})
        if ride.driver_id != driver_id:
            raise NotAuthorized("Only the ride's driver can list its bookings")

        stmt = select(Booking).where(Booking.ride_id == ride_id).order_by(Booking.created_at)
        result = await db.execute(stmt)
        return list(result.scalars().all())
