from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging
from uuid import UUID

from ..auth import get_current_user_id
from ..database import get_db
from ..exceptions import DomainException
from ..schemas.booking import BookingResponse
from ..schemas.ride import (
    PickupPointCreateRequest,
    PickupPointResponse,
    RideCreateRequest,
    RideListResponse,
    RideResponse,
)
from ..services.booking_service import BookingService
from ..services.ride_service import RideService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rides", tags=["rides"])

# Service instances
booking_service = BookingService()
ride_service = RideService(booking_service.ledger, booking_service)


@router.post("", response_model=RideResponse, status_code=status.HTTP_201_CREATED)
async def create_ride(
    ride_data: RideCreateRequest,
    db: AsyncSession = Depends(get_db),
    driver_id: UUID = Depends(get_current_user_id)
):
    """Publish a ride"""
    try:
        ride = await ride_service.create_ride(driver_id, ride_data, db)
        return RideResponse.model_validate(ride)

    except DomainException:
        raise
    except Exception as e:
        logger.error(f"Failed to create ride: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create ride"
        )


@router.get("", response_model=RideListResponse)
async def search_rides(
    origin: Optional[str] = Query(None),
    destination: Optional[str] = Query(None),
    min_seats: int = Query(1, ge=1, le=8),
    women_only: Optional[bool] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Search bookable rides"""
    try:
        rides, total = await ride_service.search_rides(
            origin=origin,
            destination=destination,
            min_seats=min_seats,
            women_only=women_only,
            limit=limit,
            offset=offset,
            db=db,
        )
        return RideListResponse(
            rides=[RideResponse.model_validate(ride) for ride in rides],
            total=total,
            limit=limit,
            offset=offset
        )

    except Exception as e:
        logger.error(f"Failed to search rides: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to search rides"
        )


@router.get("/{ride_id}", response_model=RideResponse)
async def get_ride(ride_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get ride details with the current seat count"""
    ride = await ride_service.get_ride_by_id(ride_id, db)
    return RideResponse.model_validate(ride)


@router.get("/{ride_id}/bookings", response_model=list[BookingResponse])
async def get_ride_bookings(
    ride_id: UUID,
    db: AsyncSession = Depends(get_db),
    driver_id: UUID = Depends(get_current_user_id)
):
    """Bookings on one of the caller's rides"""
    bookings = await booking_service.get_ride_bookings(ride_id, driver_id, db)
    return [BookingResponse.model_validate(booking) for booking in bookings]


@router.post(
    "/{ride_id}/pickup_points",
    response_model=PickupPointResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_pickup_point(
    ride_id: UUID,
    point_data: PickupPointCreateRequest,
    db: AsyncSession = Depends(get_db),
    driver_id: UUID = Depends(get_current_user_id)
):
    """Add a pickup point to one of the caller's rides"""
    point = await ride_service.add_pickup_point(ride_id, driver_id, point_data, db)
    return PickupPointResponse.model_validate(point)


@router.get("/{ride_id}/pickup_points", response_model=list[PickupPointResponse])
async def get_pickup_points(ride_id: UUID, db: AsyncSession = Depends(get_db)):
    """Pickup points of a ride in route order"""
    points = await ride_service.get_pickup_points(ride_id, db)
    return [PickupPointResponse.model_validate(point) for point in points]
