from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel
import logging
from uuid import UUID

from ..auth import get_current_user_id
from ..database import get_db
from ..schemas.booking import BookingListResponse, BookingResponse
from ..schemas.ride import RideResponse
from ..services.booking_service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["bookings"])

booking_service = BookingService()


class BookingWithRideResponse(BaseModel):
    booking: BookingResponse
    ride: RideResponse


@router.get("/mine", response_model=BookingListResponse)
async def get_my_bookings(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    passenger_id: UUID = Depends(get_current_user_id)
):
    """Get the caller's bookings, newest first"""
    bookings, total = await booking_service.get_passenger_bookings(passenger_id, limit, offset, db)
    return BookingListResponse(
        bookings=[BookingResponse.model_validate(booking) for booking in bookings],
        total=total,
        limit=limit,
        offset=offset
    )


@router.get("/{booking_id}", response_model=BookingWithRideResponse)
async def get_booking(
    booking_id: UUID,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id)
):
    """Booking details for its passenger or the ride's driver"""
    booking, ride = await booking_service.get_booking(booking_id, user_id, db)
    return BookingWithRideResponse(
        booking=BookingResponse.model_validate(booking),
        ride=RideResponse.model_validate(ride)
    )
