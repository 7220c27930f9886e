"""Legal booking status transitions and who may trigger them."""

from typing import Dict, FrozenSet, Optional
from uuid import UUID

from ..exceptions import InvalidTransition, NotAuthorized
from ..models.booking import Booking, BookingStatus, CancelledBy
from ..models.ride import Ride

BOOKING_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),  # Terminal state
}


def is_valid_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in BOOKING_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: BookingStatus, target: BookingStatus) -> None:
    if not is_valid_transition(current, target):
        raise InvalidTransition(
            f"Booking cannot move from {current.value} to {target.value}",
            details={"from": current.value, "to": target.value},
        )


def is_noop_cancel(booking: Booking) -> bool:
    """A repeated cancel succeeds without doing anything."""
    return booking.status == BookingStatus.CANCELLED


def cancelling_party(
    booking: Booking,
    ride: Ride,
    actor_id: Optional[UUID],
    *,
    driver_only: bool = False,
) -> CancelledBy:
    """Return who is cancelling, or raise if ``actor_id`` may not.

    ``actor_id=None`` is the system itself (ride-level cascade).
    """
    if actor_id is None:
        return CancelledBy.SYSTEM
    if actor_id == ride.driver_id:
        return CancelledBy.DRIVER
    if not driver_only and actor_id == booking.passenger_id:
        return CancelledBy.PASSENGER
    raise NotAuthorized(
        "Only the ride's driver can cancel this booking"
        if driver_only
        else "Only the passenger or the ride's driver can cancel this booking",
        details={"booking_id": str(booking.id)},
    )


def ensure_can_confirm(booking: Booking, ride: Ride, actor_id: UUID) -> None:
    if actor_id != ride.driver_id:
        raise NotAuthorized(
            "Only the ride's driver can confirm bookings",
            details={"booking_id": str(booking.id)},
        )
    ensure_transition(booking.status, BookingStatus.CONFIRMED)
