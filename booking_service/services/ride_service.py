from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select, update
from dataclasses import dataclass, field
from typing import Optional, List, Tuple
import logging
from uuid import UUID

from ..database import run_transaction
from ..exceptions import InvalidTransition, NotAuthorized, RideNotActive, RideNotFound
from ..models.booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, CancelledBy
from ..models.pickup_point import PickupPoint
from ..models.profile import Profile
from ..models.ride import Ride, RideStatus
from ..schemas.ride import PickupPointCreateRequest, RideCreateRequest
from ..utils.clock import utcnow
from .booking_service import BookingService
from .seat_ledger import SeatLedger

logger = logging.getLogger(__name__)


@dataclass
class RideCancellation:
    ride: Ride
    cancelled_bookings: List[Booking] = field(default_factory=list)


class RideService:

    def __init__(self, ledger: Optional[SeatLedger] = None, booking_service: Optional[BookingService] = None):
        self.ledger = ledger or SeatLedger()
        self.booking_service = booking_service or BookingService(self.ledger)

    async def create_ride(
        self,
        driver_id: UUID,
        ride_data: RideCreateRequest,
        db: AsyncSession
    ) -> Ride:
        """Publish a new ride with all seats open"""
        ride = Ride(
            driver_id=driver_id,
            origin=ride_data.origin,
            destination=ride_data.destination,
            departure_time=ride_data.departure_time,
            distance_km=ride_data.distance_km,
            price_per_seat=ride_data.price_per_seat,
            seats_total=ride_data.seats_total,
            seats_available=ride_data.seats_total,
            status=RideStatus.ACTIVE,
            car_model=ride_data.car_model,
            car_number=ride_data.car_number,
            is_women_only=ride_data.is_women_only,
            is_pet_friendly=ride_data.is_pet_friendly,
            is_smoking_allowed=ride_data.is_smoking_allowed,
            is_music_allowed=ride_data.is_music_allowed,
            is_chatty=ride_data.is_chatty,
            max_two_back_seat=ride_data.max_two_back_seat,
        )

        async def work() -> UUID:
            db.add(ride)
            await db.flush()
            return ride.id

        ride_id = await run_transaction(db, work, operation="create_ride")
        await db.refresh(ride)
        await db.commit()

        logger.info(f"Created ride {ride_id} for driver {driver_id}")
        return ride

    async def get_ride_by_id(self, ride_id: UUID, db: AsyncSession) -> Ride:
        """Get ride by ID with its current seat count"""
        stmt = select(Ride).where(Ride.id == ride_id).execution_options(populate_existing=True)
        result = await db.execute(stmt)
        ride = result.scalar_one_or_none()
        if ride is None:
            raise RideNotFound(details={"ride_id": str(ride_id)})
        return ride

    async def search_rides(
        self,
        origin: Optional[str] = None,
        destination: Optional[str] = None,
        min_seats: int = 1,
        women_only: Optional[bool] = None,
        limit: int = 20,
        offset: int = 0,
        db: AsyncSession = None
    ) -> Tuple[List[Ride], int]:
        """Bookable rides that have not departed, soonest first"""
        conditions = [
            Ride.status == RideStatus.ACTIVE,
            Ride.departure_time > utcnow(),
            Ride.seats_available >= min_seats,
        ]
        if origin:
            conditions.append(Ride.origin.ilike(f"%{origin}%"))
        if destination:
            conditions.append(Ride.destination.ilike(f"%{destination}%"))
        if women_only is not None:
            conditions.append(Ride.is_women_only == women_only)

        stmt = (
            select(Ride)
            .where(*conditions)
            .order_by(Ride.departure_time)
            .limit(limit)
            .offset(offset)
        )
        result = await db.execute(stmt)
        rides = result.scalars().all()

        count_stmt = select(func.count()).select_from(Ride).where(*conditions)
        total = (await db.execute(count_stmt)).scalar_one()

        return list(rides), total

    def _is_valid_status_transition(self, current_status: RideStatus, new_status: RideStatus) -> bool:
        """Validate if status transition is allowed"""
        valid_transitions = {
            RideStatus.ACTIVE: [RideStatus.IN_PROGRESS, RideStatus.CANCELLED],
            RideStatus.IN_PROGRESS: [RideStatus.COMPLETED],
            RideStatus.COMPLETED: [],  # Terminal state
            RideStatus.CANCELLED: []   # Terminal state
        }

        return new_status in valid_transitions.get(current_status, [])

    async def _lock_own_ride(self, ride_id: UUID, driver_id: UUID, new_status: RideStatus, db: AsyncSession) -> Ride:
        ride = await self.ledger.lock_ride(ride_id, db)
        if ride is None:
            raise RideNotFound(details={"ride_id": str(ride_id)})
        if ride.driver_id != driver_id:
            raise NotAuthorized("Only the ride's driver can change its status")
        if not self._is_valid_status_transition(ride.status, new_status):
            raise InvalidTransition(
                f"Ride cannot move from {ride.status.value} to {new_status.value}",
                details={"ride_id": str(ride_id), "from": ride.status.value, "to": new_status.value},
            )
        return ride

    async def _set_status(self, ride_id: UUID, current: RideStatus, values: dict, db: AsyncSession) -> None:
        stmt = (
            update(Ride)
            .where(Ride.id == ride_id, Ride.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount != 1:
            raise InvalidTransition(details={"ride_id": str(ride_id)})

    async def _mark_ride_cancelled(self, ride_id: UUID, db: AsyncSession) -> None:
        await self._set_status(
            ride_id,
            RideStatus.ACTIVE,
            {"status": RideStatus.CANCELLED, "cancelled_at": utcnow()},
            db,
        )

    async def cancel_ride(self, ride_id: UUID, driver_id: UUID, db: AsyncSession) -> RideCancellation:
        """Cancel a ride and every active booking on it, all or nothing.

        Bookings are cancelled one statement before the ride itself; both run
        in the same transaction so a failure in between leaves neither change.
        Seats go back to the published total so the ledger stays consistent
        with the (now empty) set of active bookings.
        """

        async def work() -> List[UUID]:
            await self._lock_own_ride(ride_id, driver_id, RideStatus.CANCELLED, db)

            stmt = select(Booking.id).where(
                Booking.ride_id == ride_id,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
            booking_ids = list((await db.execute(stmt)).scalars().all())

            await self.booking_service.mark_cancelled(booking_ids, CancelledBy.SYSTEM, db)
            await self.ledger.restore_all(ride_id, db)
            await self._mark_ride_cancelled(ride_id, db)
            return booking_ids

        booking_ids = await run_transaction(db, work, operation="cancel_ride")
        logger.info(f"Driver {driver_id} cancelled ride {ride_id} with {len(booking_ids)} active booking(s)")

        ride = await self.get_ride_by_id(ride_id, db)
        bookings = []
        if booking_ids:
            stmt = (
                select(Booking)
                .where(Booking.id.in_(booking_ids))
                .execution_options(populate_existing=True)
            )
            bookings = list((await db.execute(stmt)).scalars().all())
        await db.commit()
        return RideCancellation(ride=ride, cancelled_bookings=bookings)

    async def start_ride(self, ride_id: UUID, driver_id: UUID, db: AsyncSession) -> Ride:
        """Driver sets off: active -> in_progress"""

        async def work() -> None:
            await self._lock_own_ride(ride_id, driver_id, RideStatus.IN_PROGRESS, db)
            await self._set_status(
                ride_id,
                RideStatus.ACTIVE,
                {"status": RideStatus.IN_PROGRESS, "started_at": utcnow()},
                db,
            )

        await run_transaction(db, work, operation="start_ride")
        logger.info(f"Driver {driver_id} started ride {ride_id}")
        ride = await self.get_ride_by_id(ride_id, db)
        await db.commit()
        return ride

    async def complete_ride(self, ride_id: UUID, driver_id: UUID, db: AsyncSession) -> Ride:
        """Driver arrives: in_progress -> completed, ride counts updated"""

        async def work() -> None:
            await self._lock_own_ride(ride_id, driver_id, RideStatus.COMPLETED, db)
            await self._set_status(
                ride_id,
                RideStatus.IN_PROGRESS,
                {"status": RideStatus.COMPLETED, "completed_at": utcnow()},
                db,
            )

            stmt = select(Booking.passenger_id).where(
                Booking.ride_id == ride_id,
                Booking.status == BookingStatus.CONFIRMED,
            )
            participant_ids = list((await db.execute(stmt)).scalars().all())
            participant_ids.append(driver_id)
            await db.execute(
                update(Profile)
                .where(Profile.id.in_(participant_ids))
                .values(total_rides=Profile.total_rides + 1)
                .execution_options(synchronize_session=False)
            )

        await run_transaction(db, work, operation="complete_ride")
        logger.info(f"Driver {driver_id} completed ride {ride_id}")
        ride = await self.get_ride_by_id(ride_id, db)
        await db.commit()
        return ride

    async def get_passenger_ids(self, ride_id: UUID, db: AsyncSession, statuses=ACTIVE_BOOKING_STATUSES) -> List[UUID]:
        stmt = select(Booking.passenger_id).where(
            Booking.ride_id == ride_id,
            Booking.status.in_(statuses),
        )
        return list((await db.execute(stmt)).scalars().all())

    # Pickup points

    async def add_pickup_point(
        self,
        ride_id: UUID,
        driver_id: UUID,
        point_data: PickupPointCreateRequest,
        db: AsyncSession,
    ) -> PickupPoint:
        """Add a stop to one of the driver's open rides"""

        async def work() -> PickupPoint:
            ride = await self.ledger.lock_ride(ride_id, db)
            if ride is None:
                raise RideNotFound(details={"ride_id": str(ride_id)})
            if ride.driver_id != driver_id:
                raise NotAuthorized("Only the ride's driver can add pickup points")
            if ride.status != RideStatus.ACTIVE:
                raise RideNotActive(details={"ride_id": str(ride_id), "status": ride.status.value})

            sequence_order = point_data.sequence_order
            if sequence_order is None:
                count_stmt = select(func.count()).select_from(PickupPoint).where(PickupPoint.ride_id == ride_id)
                sequence_order = (await db.execute(count_stmt)).scalar_one()

            point = PickupPoint(
                ride_id=ride_id,
                name=point_data.name,
                address=point_data.address,
                sequence_order=sequence_order,
            )
            db.add(point)
            await db.flush()
            return point

        point = await run_transaction(db, work, operation="add_pickup_point")
        await db.refresh(point)
        await db.commit()
        logger.info(f"Driver {driver_id} added pickup point {point.id} to ride {ride_id}")
        return point

    async def get_pickup_points(self, ride_id: UUID, db: AsyncSession) -> List[PickupPoint]:
        """Stops of a ride in route order"""
        await self.get_ride_by_id(ride_id, db)
        stmt = (
            select(PickupPoint)
            .where(PickupPoint.ride_id == ride_id)
            .order_by(PickupPoint.sequence_order, PickupPoint.created_at)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())
