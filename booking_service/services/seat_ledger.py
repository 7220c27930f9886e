from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import case, select, update
import logging
from typing import Optional
from uuid import UUID

from ..exceptions import InsufficientSeats, RideNotActive, RideNotFound
from ..models.ride import Ride, RideStatus

logger = logging.getLogger(__name__)


class SeatLedger:
    """Authoritative seat counts for rides.

    Every method issues a single statement whose arithmetic runs in the
    database; callers own the surrounding transaction. Nothing here reads a
    count into Python and writes a computed value back.
    """

    async def lock_ride(self, ride_id: UUID, db: AsyncSession) -> Optional[Ride]:
        """Load the ride holding its row lock until the transaction ends"""
        stmt = (
            select(Ride)
            .where(Ride.id == ride_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def available(self, ride_id: UUID, db: AsyncSession) -> int:
        """Current seats_available straight from the store"""
        result = await db.execute(select(Ride.seats_available).where(Ride.id == ride_id))
        seats = result.scalar_one_or_none()
        if seats is None:
            raise RideNotFound(details={"ride_id": str(ride_id)})
        return seats

    async def reserve(self, ride_id: UUID, seats: int, db: AsyncSession) -> None:
        """Take ``seats`` from the ride, or fail without touching it"""
        if seats < 1:
            raise ValueError("seats must be a positive integer")

        stmt = (
            update(Ride)
            .where(
                Ride.id == ride_id,
                Ride.status == RideStatus.ACTIVE,
                Ride.seats_available >= seats,
            )
            .values(seats_available=Ride.seats_available - seats)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount == 1:
            logger.info(f"Reserved {seats} seat(s) on ride {ride_id}")
            return

        # Work out why the guarded update matched nothing
        row = (
            await db.execute(
                select(Ride.status, Ride.seats_available).where(Ride.id == ride_id)
            )
        ).one_or_none()
        if row is None:
            raise RideNotFound(details={"ride_id": str(ride_id)})
        if row.status != RideStatus.ACTIVE:
            raise RideNotActive(details={"ride_id": str(ride_id), "status": row.status.value})
        raise InsufficientSeats(
            details={
                "ride_id": str(ride_id),
                "seats_requested": seats,
                "seats_available": row.seats_available,
            }
        )

    async def release(self, ride_id: UUID, seats: int, db: AsyncSession) -> None:
        """Give ``seats`` back, never past the published total.

        Only call this after the booking that held the seats has itself left
        an active state in the same transaction; that is what makes a
        cancellation restore seats exactly once.
        """
        if seats < 1:
            raise ValueError("seats must be a positive integer")

        restored = Ride.seats_available + seats
        stmt = (
            update(Ride)
            .where(Ride.id == ride_id)
            .values(
                seats_available=case(
                    (restored > Ride.seats_total, Ride.seats_total),
                    else_=restored,
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount == 0:
            raise RideNotFound(details={"ride_id": str(ride_id)})
        logger.info(f"Released {seats} seat(s) on ride {ride_id}")

    async def restore_all(self, ride_id: UUID, db: AsyncSession) -> None:
        """Reset the ride to its published capacity"""
        stmt = (
            update(Ride)
            .where(Ride.id == ride_id)
            .values(seats_available=Ride.seats_total)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        if result.rowcount == 0:
            raise RideNotFound(details={"ride_id": str(ride_id)})
