from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging
from uuid import UUID

from ..auth import ensure_same_user, get_current_user_id
from ..database import get_db
from ..exceptions import DomainException
from ..schemas.booking import (
    BookingActionRequest,
    BookingOutcomeResponse,
    BookingResponse,
    BookRideRequest,
    CancelBookingAtomicRequest,
)
from ..schemas.ride import RideActionRequest, RideCancelResponse, RideResponse
from ..services.booking_service import BookingOutcome, BookingService, booking_event_data
from ..services.event_service import EventService
from ..services.ride_service import RideService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rpc", tags=["rpc"])

# Service instances
booking_service = BookingService()
ride_service = RideService(booking_service.ledger, booking_service)
event_service = EventService()


def _outcome_response(outcome: BookingOutcome, message: str) -> BookingOutcomeResponse:
    return BookingOutcomeResponse(
        booking_id=outcome.booking.id,
        booking=BookingResponse.model_validate(outcome.booking),
        seats_available=outcome.seats_available,
        changed=outcome.changed,
        seats_restored=outcome.seats_restored,
        message=message,
    )


async def _booking_event(outcome: BookingOutcome, db: AsyncSession) -> dict:
    ride = await ride_service.get_ride_by_id(outcome.booking.ride_id, db)
    await db.commit()
    return booking_event_data(outcome.booking, ride)


@router.post("/book_ride_atomic", response_model=BookingOutcomeResponse, status_code=status.HTTP_201_CREATED)
async def book_ride_atomic(
    request: BookRideRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    """Reserve seats on a ride; price is computed server-side"""
    ensure_same_user(request.passenger_id, user_id)
    try:
        outcome = await booking_service.book_ride_atomic(
            request.ride_id,
            user_id,
            request.seats_requested,
            db,
            pickup_point_id=request.pickup_point_id,
        )
        background_tasks.add_task(
            event_service.notify_booking_requested, await _booking_event(outcome, db)
        )
        return _outcome_response(outcome, "Booking requested. The driver has been notified.")

    except DomainException:
        raise
    except Exception as e:
        logger.error(f"Failed to book ride: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to book ride"
        )


@router.post("/cancel_booking_atomic", response_model=BookingOutcomeResponse)
async def cancel_booking_atomic(
    request: CancelBookingAtomicRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    """Passenger or driver cancels a booking; repeating the call is a no-op"""
    ensure_same_user(request.user_id, user_id)
    try:
        outcome = await booking_service.cancel_booking_atomic(request.booking_id, user_id, db)
        if not outcome.changed:
            return _outcome_response(outcome, "Booking was already cancelled")

        background_tasks.add_task(
            event_service.notify_booking_cancelled, await _booking_event(outcome, db)
        )
        return _outcome_response(outcome, "Booking cancelled. Seats have been restored.")

    except DomainException:
        raise
    except Exception as e:
        logger.error(f"Failed to cancel booking: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel booking"
        )


@router.post("/cancel_booking", response_model=BookingOutcomeResponse)
async def cancel_booking(
    request: BookingActionRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    driver_id: UUID = Depends(get_current_user_id),
):
    """Driver cancels a single booking on their ride"""
    try:
        outcome = await booking_service.cancel_booking(request.booking_id, driver_id, db)
        if not outcome.changed:
            return _outcome_response(outcome, "Booking was already cancelled")

        background_tasks.add_task(
            event_service.notify_booking_cancelled, await _booking_event(outcome, db)
        )
        return _outcome_response(outcome, "Booking cancelled. Seats have been restored.")

    except DomainException:
        raise
    except Exception as e:
        logger.error(f"Failed to cancel booking: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel booking"
        )


@router.post("/confirm_booking", response_model=BookingOutcomeResponse)
async def confirm_booking(
    request: BookingActionRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    driver_id: UUID = Depends(get_current_user_id),
):
    """Driver confirms a pending booking"""
    try:
        outcome = await booking_service.confirm_booking(request.booking_id, driver_id, db)
        background_tasks.add_task(
            event_service.notify_booking_confirmed, await _booking_event(outcome, db)
        )
        return _outcome_response(outcome, "Booking confirmed. The passenger has been notified.")

    except DomainException:
        raise
    except Exception as e:
        logger.error(f"Failed to confirm booking: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to confirm booking"
        )


@router.post("/cancel_ride", response_model=RideCancelResponse)
async def cancel_ride(
    request: RideActionRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    driver_id: UUID = Depends(get_current_user_id),
):
    """Driver cancels a ride; every active booking on it is cancelled with it"""
    try:
        cancellation = await ride_service.cancel_ride(request.ride_id, driver_id, db)
        ride = cancellation.ride

        background_tasks.add_task(
            event_service.notify_ride_cancelled,
            {
                "ride_id": str(ride.id),
                "driver_id": str(ride.driver_id),
                "cancelled_bookings": len(cancellation.cancelled_bookings),
            },
            [booking_event_data(booking, ride) for booking in cancellation.cancelled_bookings],
        )
        return RideCancelResponse(
            ride=RideResponse.model_validate(ride),
            cancelled_bookings=[
                BookingResponse.model_validate(booking) for booking in cancellation.cancelled_bookings
            ],
        )

    except DomainException:
        raise
    except Exception as e:
        logger.error(f"Failed to cancel ride: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel ride"
        )


@router.post("/start_ride", response_model=RideResponse)
async def start_ride(
    request: RideActionRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    driver_id: UUID = Depends(get_current_user_id),
):
    """Driver starts the ride"""
    try:
        ride = await ride_service.start_ride(request.ride_id, driver_id, db)
        passenger_ids = await ride_service.get_passenger_ids(ride.id, db)
        await db.commit()

        background_tasks.add_task(
            event_service.notify_ride_status,
            "ride_started",
            {"ride_id": str(ride.id), "driver_id": str(driver_id)},
            [str(passenger_id) for passenger_id in passenger_ids],
        )
        return RideResponse.model_validate(ride)

    except DomainException:
        raise
    except Exception as e:
        logger.error(f"Failed to start ride: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to start ride"
        )


@router.post("/complete_ride", response_model=RideResponse)
async def complete_ride(
    request: RideActionRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    driver_id: UUID = Depends(get_current_user_id),
):
    """Driver completes the ride"""
    try:
        ride = await ride_service.complete_ride(request.ride_id, driver_id, db)
        passenger_ids = await ride_service.get_passenger_ids(ride.id, db)
        await db.commit()

        background_tasks.add_task(
            event_service.notify_ride_status,
            "ride_completed",
            {"ride_id": str(ride.id), "driver_id": str(driver_id)},
            [str(passenger_id) for passenger_id in passenger_ids],
        )
        return RideResponse.model_validate(ride)

    except DomainException:
        raise
    except Exception as e:
        logger.error(f"Failed to complete ride: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to complete ride"
        )
