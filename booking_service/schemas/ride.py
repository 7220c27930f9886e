from pydantic import BaseModel, Field, UUID4, field_validator
from typing import Optional
from datetime import datetime
from ..models.ride import RideStatus
from ..utils.clock import as_utc, utcnow
from .booking import BookingResponse


# Request schemas
class RideCreateRequest(BaseModel):
    origin: str = Field(..., min_length=2, max_length=500)
    destination: str = Field(..., min_length=2, max_length=500)
    departure_time: datetime
    price_per_seat: int = Field(..., gt=0)
    seats_total: int = Field(..., ge=1, le=8)
    distance_km: Optional[float] = Field(None, gt=0)
    car_model: Optional[str] = Field(None, max_length=100)
    car_number: Optional[str] = Field(None, max_length=32)
    is_women_only: bool = False
    is_pet_friendly: bool = False
    is_smoking_allowed: bool = False
    is_music_allowed: bool = True
    is_chatty: bool = True
    max_two_back_seat: bool = False

    @field_validator("departure_time")
    @classmethod
    def departure_in_future(cls, value: datetime) -> datetime:
        value = as_utc(value)
        if value <= utcnow():
            raise ValueError("departure_time must be in the future")
        return value


class RideActionRequest(BaseModel):
    ride_id: UUID4


class PickupPointCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    address: Optional[str] = None
    # Appended after the existing stops when omitted
    sequence_order: Optional[int] = Field(None, ge=0)


# Response schemas
class RideResponse(BaseModel):
    id: UUID4
    driver_id: UUID4
    origin: str
    destination: str
    departure_time: datetime
    distance_km: Optional[float] = None
    price_per_seat: int
    seats_total: int
    seats_available: int
    status: RideStatus
    car_model: Optional[str] = None
    car_number: Optional[str] = None
    is_women_only: bool
    is_pet_friendly: bool
    is_smoking_allowed: bool
    is_music_allowed: bool
    is_chatty: bool
    max_two_back_seat: bool
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PickupPointResponse(BaseModel):
    id: UUID4
    ride_id: UUID4
    name: str
    address: Optional[str] = None
    sequence_order: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RideListResponse(BaseModel):
    rides: list[RideResponse]
    total: int
    limit: int
    offset: int


class RideCancelResponse(BaseModel):
    ride: RideResponse
    cancelled_bookings: list[BookingResponse]
    message: str = "Ride cancelled. Passengers have been notified."
