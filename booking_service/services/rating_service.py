from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select, update
from typing import List, Optional
import logging
import math
from uuid import UUID

from ..database import run_transaction, violates_unique
from ..exceptions import BookingNotFound, DuplicateRating, InvalidTransition, NotAuthorized
from ..models.booking import Booking, BookingStatus
from ..models.profile import Profile
from ..models.rating import RATING_UNIQUE_CONSTRAINT, RaterType, Rating
from ..models.ride import Ride, RideStatus

logger = logging.getLogger(__name__)


class RatingService:

    async def submit_rating(
        self,
        booking_id: UUID,
        rater_id: UUID,
        rating: int,
        db: AsyncSession,
        review: Optional[str] = None,
    ) -> Rating:
        """Rate the other party of a completed booking, once per direction"""

        async def work() -> Rating:
            booking = await db.get(Booking, booking_id, populate_existing=True)
            if booking is None:
                raise BookingNotFound(details={"booking_id": str(booking_id)})
            ride = await db.get(Ride, booking.ride_id, populate_existing=True)

            if rater_id == booking.passenger_id:
                rater_type, rated_id = RaterType.PASSENGER, ride.driver_id
            elif rater_id == ride.driver_id:
                rater_type, rated_id = RaterType.DRIVER, booking.passenger_id
            else:
                raise NotAuthorized("Only the passenger or the driver can rate this booking")

            if ride.status != RideStatus.COMPLETED or booking.status != BookingStatus.CONFIRMED:
                raise InvalidTransition(
                    "Only confirmed bookings on completed rides can be rated",
                    details={"booking_id": str(booking_id)},
                )

            existing = await db.execute(
                select(Rating.id).where(Rating.booking_id == booking_id, Rating.rater_id == rater_id)
            )
            if existing.scalar_one_or_none() is not None:
                raise DuplicateRating(details={"booking_id": str(booking_id)})

            new_rating = Rating(
                booking_id=booking_id,
                rater_id=rater_id,
                rated_id=rated_id,
                rater_type=rater_type,
                rating=rating,
                review=review,
            )
            db.add(new_rating)
            await db.flush()

            # Update the rated user's average rating
            average = (
                await db.execute(select(func.avg(Rating.rating)).where(Rating.rated_id == rated_id))
            ).scalar_one()
            await db.execute(
                update(Profile)
                .where(Profile.id == rated_id)
                .values(rating=math.floor(float(average) * 10 + 0.5) / 10)
                .execution_options(synchronize_session=False)
            )
            return new_rating

        new_rating = await run_transaction(
            db,
            work,
            operation="submit_rating",
            on_integrity_error=lambda e: (
                DuplicateRating(details={"booking_id": str(booking_id)})
                if violates_unique(e, RATING_UNIQUE_CONSTRAINT, "ratings", ("booking_id", "rater_id"))
                else None
            ),
        )
        await db.refresh(new_rating)
        await db.commit()
        logger.info(f"User {rater_id} rated booking {booking_id}: {rating}")
        return new_rating

    async def get_ratings_for_user(self, user_id: UUID, db: AsyncSession) -> List[Rating]:
        stmt = select(Rating).where(Rating.rated_id == user_id).order_by(Rating.created_at.desc())
        result = await db.execute(stmt)
        return list(result.scalars().all())
