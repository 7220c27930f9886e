import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from booking_service.exceptions import (
    BookingNotFound,
    DuplicateBooking,
    GenderRestricted,
    InsufficientSeats,
    InvalidPickupPoint,
    InvalidTransition,
    NotAuthorized,
    RideNotActive,
    RideNotFound,
    SelfBookingNotAllowed,
)
from booking_service.models.booking import BookingStatus, CancelledBy
from booking_service.models.pickup_point import PickupPoint
from booking_service.models.profile import SubscriptionTier
from booking_service.models.ride import Ride, RideStatus
from booking_service.services.booking_service import BookingService, calculate_price


@pytest.fixture
def service():
    return BookingService()


def test_calculate_price_adds_fee_on_top():
    assert calculate_price(400, 2, 10) == (880, 80)


def test_calculate_price_rounds_fee_half_up():
    # 10% of 125 is 12.5
    assert calculate_price(125, 1, 10) == (138, 13)


def test_calculate_price_waived_fee():
    assert calculate_price(400, 2, 10, waive_fee=True) == (800, 0)


@pytest.mark.asyncio
async def test_concurrent_reservations_never_oversell(service, session_factory, make_ride, fetch):
    ride = await make_ride(seats_total=3)

    async def attempt():
        async with session_factory() as session:
            try:
                await service.book_ride_atomic(ride.id, uuid4(), 1, session)
                return "booked"
            except InsufficientSeats:
                return "full"

    results = await asyncio.gather(*(attempt() for _ in range(7)))

    assert results.count("booked") == 3
    assert results.count("full") == 4
    assert (await fetch(Ride, ride.id)).seats_available == 0


@pytest.mark.asyncio
async def test_reservation_larger_than_availability_changes_nothing(service, db, make_ride, fetch, fetch_bookings):
    ride = await make_ride(seats_total=4, seats_available=2)

    with pytest.raises(InsufficientSeats) as exc_info:
        await service.book_ride_atomic(ride.id, uuid4(), 3, db)

    assert exc_info.value.details["seats_available"] == 2
    assert (await fetch(Ride, ride.id)).seats_available == 2
    assert await fetch_bookings(ride.id) == []


@pytest.mark.asyncio
async def test_booking_creates_pending_booking_with_server_price(service, db, make_ride):
    ride = await make_ride(seats_total=4, price_per_seat=400)
    passenger_id = uuid4()

    outcome = await service.book_ride_atomic(ride.id, passenger_id, 2, db)

    assert outcome.booking.status == BookingStatus.PENDING
    assert outcome.booking.passenger_id == passenger_id
    assert outcome.booking.seats_booked == 2
    assert outcome.booking.total_price == 880
    assert outcome.booking.platform_fee == 80
    assert outcome.seats_available == 2


@pytest.mark.asyncio
async def test_premium_passenger_pays_no_platform_fee(service, db, make_ride, make_profile):
    ride = await make_ride(price_per_seat=400)
    profile = await make_profile(subscription_tier=SubscriptionTier.PREMIUM)

    outcome = await service.book_ride_atomic(ride.id, profile.id, 2, db)

    assert outcome.booking.total_price == 800
    assert outcome.booking.platform_fee == 0


@pytest.mark.asyncio
async def test_cancel_restores_exactly_what_was_reserved(service, db, make_ride, fetch):
    ride = await make_ride(seats_total=5)

    booked = await service.book_ride_atomic(ride.id, uuid4(), 3, db)
    assert booked.seats_available == 2

    cancelled = await service.cancel_booking_atomic(booked.booking.id, booked.booking.passenger_id, db)

    assert cancelled.changed is True
    assert cancelled.seats_restored == 3
    assert cancelled.seats_available == 5
    assert cancelled.booking.status == BookingStatus.CANCELLED
    assert cancelled.booking.cancelled_by == CancelledBy.PASSENGER
    assert (await fetch(Ride, ride.id)).seats_available == 5


@pytest.mark.asyncio
async def test_repeated_cancel_is_a_noop(service, db, make_ride, fetch):
    ride = await make_ride(seats_total=4)
    other = await service.book_ride_atomic(ride.id, uuid4(), 1, db)
    booked = await service.book_ride_atomic(ride.id, uuid4(), 2, db)
    passenger_id = booked.booking.passenger_id

    first = await service.cancel_booking_atomic(booked.booking.id, passenger_id, db)
    second = await service.cancel_booking_atomic(booked.booking.id, passenger_id, db)

    assert first.changed is True
    assert second.changed is False
    assert second.seats_restored == 0
    assert second.seats_available == first.seats_available == 3
    assert (await fetch(Ride, ride.id)).seats_available == 3
    assert other.booking.status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_concurrent_cancels_restore_seats_once(service, db, session_factory, make_ride, fetch):
    ride = await make_ride(seats_total=4)
    booked = await service.book_ride_atomic(ride.id, uuid4(), 2, db)
    passenger_id = booked.booking.passenger_id

    async def cancel():
        async with session_factory() as session:
            return await service.cancel_booking_atomic(booked.booking.id, passenger_id, session)

    outcomes = await asyncio.gather(cancel(), cancel(), cancel())

    assert sum(outcome.changed for outcome in outcomes) == 1
    assert (await fetch(Ride, ride.id)).seats_available == 4


@pytest.mark.asyncio
async def test_release_never_exceeds_seats_total(service, db, make_ride, fetch):
    ride = await make_ride(seats_total=3)
    booked = await service.book_ride_atomic(ride.id, uuid4(), 2, db)

    # Inventory drifted back up out of band
    async with db.begin():
        ride_row = await db.get(Ride, ride.id)
        ride_row.seats_available = 3

    outcome = await service.cancel_booking_atomic(booked.booking.id, booked.booking.passenger_id, db)

    assert outcome.seats_available == 3
    assert (await fetch(Ride, ride.id)).seats_available == 3


@pytest.mark.asyncio
async def test_driver_cannot_book_own_ride(service, db, make_ride, fetch, fetch_bookings):
    ride = await make_ride(seats_total=3)

    with pytest.raises(SelfBookingNotAllowed):
        await service.book_ride_atomic(ride.id, ride.driver_id, 1, db)

    assert (await fetch(Ride, ride.id)).seats_available == 3
    assert await fetch_bookings(ride.id) == []


@pytest.mark.asyncio
async def test_women_only_ride_rejects_male_passenger(service, db, make_ride, make_profile, fetch, fetch_bookings):
    ride = await make_ride(seats_total=3, is_women_only=True)
    passenger = await make_profile(gender="male")

    with pytest.raises(GenderRestricted):
        await service.book_ride_atomic(ride.id, passenger.id, 1, db)

    assert (await fetch(Ride, ride.id)).seats_available == 3
    assert await fetch_bookings(ride.id) == []


@pytest.mark.asyncio
async def test_women_only_ride_rejects_passenger_without_profile(service, db, make_ride):
    ride = await make_ride(is_women_only=True)

    with pytest.raises(GenderRestricted):
        await service.book_ride_atomic(ride.id, uuid4(), 1, db)


@pytest.mark.asyncio
async def test_women_only_ride_accepts_female_passenger(service, db, make_ride, make_profile):
    ride = await make_ride(seats_total=3, is_women_only=True)
    passenger = await make_profile(gender="Female")

    outcome = await service.book_ride_atomic(ride.id, passenger.id, 1, db)

    assert outcome.seats_available == 2


@pytest.mark.asyncio
async def test_booking_missing_ride(service, db):
    with pytest.raises(RideNotFound):
        await service.book_ride_atomic(uuid4(), uuid4(), 1, db)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "ride_kwargs",
    [
        {"status": RideStatus.CANCELLED},
        {"status": RideStatus.IN_PROGRESS},
        {"departs_in": timedelta(minutes=-5)},
    ],
)
async def test_booking_requires_open_ride(service, db, make_ride, ride_kwargs):
    ride = await make_ride(**ride_kwargs)

    with pytest.raises(RideNotActive):
        await service.book_ride_atomic(ride.id, uuid4(), 1, db)


@pytest.mark.asyncio
async def test_second_active_booking_is_rejected(service, db, make_ride, fetch):
    ride = await make_ride(seats_total=4)
    passenger_id = uuid4()
    await service.book_ride_atomic(ride.id, passenger_id, 1, db)

    with pytest.raises(DuplicateBooking):
        await service.book_ride_atomic(ride.id, passenger_id, 1, db)

    assert (await fetch(Ride, ride.id)).seats_available == 3


@pytest.mark.asyncio
async def test_passenger_can_rebook_after_cancelling(service, db, make_ride):
    ride = await make_ride(seats_total=4)
    passenger_id = uuid4()
    first = await service.book_ride_atomic(ride.id, passenger_id, 1, db)
    await service.cancel_booking_atomic(first.booking.id, passenger_id, db)

    second = await service.book_ride_atomic(ride.id, passenger_id, 2, db)

    assert second.booking.id != first.booking.id
    assert second.seats_available == 2


@pytest.mark.asyncio
async def test_driver_can_cancel_passenger_booking(service, db, make_ride):
    ride = await make_ride(seats_total=3)
    booked = await service.book_ride_atomic(ride.id, uuid4(), 1, db)

    outcome = await service.cancel_booking(booked.booking.id, ride.driver_id, db)

    assert outcome.booking.cancelled_by == CancelledBy.DRIVER
    assert outcome.seats_available == 3


@pytest.mark.asyncio
async def test_driver_cancel_path_rejects_passenger(service, db, make_ride):
    ride = await make_ride()
    booked = await service.book_ride_atomic(ride.id, uuid4(), 1, db)

    with pytest.raises(NotAuthorized):
        await service.cancel_booking(booked.booking.id, booked.booking.passenger_id, db)


@pytest.mark.asyncio
async def test_stranger_cannot_cancel_booking(service, db, make_ride, fetch):
    ride = await make_ride(seats_total=3)
    booked = await service.book_ride_atomic(ride.id, uuid4(), 1, db)

    with pytest.raises(NotAuthorized):
        await service.cancel_booking_atomic(booked.booking.id, uuid4(), db)

    assert (await fetch(Ride, ride.id)).seats_available == 2


@pytest.mark.asyncio
async def test_cancel_unknown_booking(service, db):
    with pytest.raises(BookingNotFound):
        await service.cancel_booking_atomic(uuid4(), uuid4(), db)


@pytest.mark.asyncio
async def test_confirm_booking(service, db, make_ride):
    ride = await make_ride()
    booked = await service.book_ride_atomic(ride.id, uuid4(), 1, db)

    outcome = await service.confirm_booking(booked.booking.id, ride.driver_id, db)

    assert outcome.booking.status == BookingStatus.CONFIRMED
    assert outcome.booking.confirmed_at is not None
    assert outcome.seats_available == 2


@pytest.mark.asyncio
async def test_only_driver_confirms(service, db, make_ride):
    ride = await make_ride()
    booked = await service.book_ride_atomic(ride.id, uuid4(), 1, db)

    with pytest.raises(NotAuthorized):
        await service.confirm_booking(booked.booking.id, booked.booking.passenger_id, db)


@pytest.mark.asyncio
async def test_cancelled_booking_cannot_be_confirmed(service, db, make_ride):
    ride = await make_ride()
    booked = await service.book_ride_atomic(ride.id, uuid4(), 1, db)
    await service.cancel_booking_atomic(booked.booking.id, booked.booking.passenger_id, db)

    with pytest.raises(InvalidTransition):
        await service.confirm_booking(booked.booking.id, ride.driver_id, db)


@pytest.mark.asyncio
async def test_confirmed_booking_can_still_be_cancelled(service, db, make_ride):
    ride = await make_ride(seats_total=2)
    booked = await service.book_ride_atomic(ride.id, uuid4(), 2, db)
    await service.confirm_booking(booked.booking.id, ride.driver_id, db)

    outcome = await service.cancel_booking_atomic(booked.booking.id, booked.booking.passenger_id, db)

    assert outcome.booking.status == BookingStatus.CANCELLED
    assert outcome.seats_available == 2


@pytest.mark.asyncio
async def test_get_booking_is_private_to_its_parties(service, db, make_ride):
    ride = await make_ride()
    booked = await service.book_ride_atomic(ride.id, uuid4(), 1, db)

    booking, loaded_ride = await service.get_booking(booked.booking.id, ride.driver_id, db)
    assert booking.id == booked.booking.id
    assert loaded_ride.id == ride.id

    with pytest.raises(NotAuthorized):
        await service.get_booking(booked.booking.id, uuid4(), db)


@pytest.mark.asyncio
async def test_passenger_bookings_are_paginated(service, db, make_ride):
    passenger_id = uuid4()
    for _ in range(3):
        ride = await make_ride()
        await service.book_ride_atomic(ride.id, passenger_id, 1, db)

    bookings, total = await service.get_passenger_bookings(passenger_id, limit=2, offset=0, db=db)

    assert total == 3
    assert len(bookings) == 2


async def _add_pickup_point(db, ride_id, name="Central bus station"):
    point = PickupPoint(ride_id=ride_id, name=name)
    db.add(point)
    await db.commit()
    return point.id


@pytest.mark.asyncio
async def test_booking_records_pickup_point_of_the_ride(service, db, make_ride):
    ride = await make_ride(seats_total=3)
    pickup_point_id = await _add_pickup_point(db, ride.id)

    outcome = await service.book_ride_atomic(ride.id, uuid4(), 1, db, pickup_point_id=pickup_point_id)

    assert outcome.booking.pickup_point_id == pickup_point_id
    assert outcome.seats_available == 2


@pytest.mark.asyncio
async def test_pickup_point_of_another_ride_is_rejected(service, db, make_ride, fetch, fetch_bookings):
    ride = await make_ride(seats_total=3)
    other_ride = await make_ride()
    foreign_point_id = await _add_pickup_point(db, other_ride.id)

    with pytest.raises(InvalidPickupPoint) as exc_info:
        await service.book_ride_atomic(ride.id, uuid4(), 1, db, pickup_point_id=foreign_point_id)

    assert exc_info.value.details["pickup_point_id"] == str(foreign_point_id)
    assert (await fetch(Ride, ride.id)).seats_available == 3
    assert await fetch_bookings(ride.id) == []


@pytest.mark.asyncio
async def test_unknown_pickup_point_is_rejected(service, db, make_ride, fetch, fetch_bookings):
    ride = await make_ride(seats_total=3)

    with pytest.raises(InvalidPickupPoint):
        await service.book_ride_atomic(ride.id, uuid4(), 1, db, pickup_point_id=uuid4())

    assert (await fetch(Ride, ride.id)).seats_available == 3
    assert await fetch_bookings(ride.id) == []
