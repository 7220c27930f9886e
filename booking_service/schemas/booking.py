from pydantic import BaseModel, Field, UUID4
from typing import Optional
from datetime import datetime
from ..models.booking import BookingStatus, CancelledBy


# Request schemas
class BookRideRequest(BaseModel):
    """Body of book_ride_atomic.

    Price fields a client might send are not part of the schema and are
    dropped on parsing; the price is always computed from the ride.
    """

    ride_id: UUID4
    seats_requested: int = Field(1, ge=1, le=8)
    pickup_point_id: Optional[UUID4] = None
    # Must match the authenticated user when present
    passenger_id: Optional[UUID4] = None


class CancelBookingAtomicRequest(BaseModel):
    booking_id: UUID4
    # Must match the authenticated user when present
    user_id: Optional[UUID4] = None


class BookingActionRequest(BaseModel):
    booking_id: UUID4


# Response schemas
class BookingResponse(BaseModel):
    id: UUID4
    ride_id: UUID4
    passenger_id: UUID4
    pickup_point_id: Optional[UUID4] = None
    seats_booked: int
    total_price: int
    platform_fee: int
    status: BookingStatus
    cancelled_by: Optional[CancelledBy] = None
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BookingOutcomeResponse(BaseModel):
    booking_id: UUID4
    booking: BookingResponse
    # Authoritative seat count after the call; clients reconcile against it
    seats_available: int
    changed: bool = True
    seats_restored: int = 0
    message: str


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    total: int
    limit: int
    offset: int
