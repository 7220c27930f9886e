from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from booking_service.database import is_transient_error, run_transaction, violates_unique
from booking_service.exceptions import DuplicateBooking, InsufficientSeats, TransactionAborted
from booking_service.services.booking_service import duplicate_booking_error
from booking_service.utils.retry import retry_async


class Flaky:
    def __init__(self, failures, error_factory, result="done"):
        self.failures = failures
        self.error_factory = error_factory
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory()
        return self.result


@pytest.mark.asyncio
async def test_retry_recovers_from_one_transient_failure():
    fn = Flaky(1, TransactionAborted)

    result = await retry_async(fn, max_retries=1, retry_delay=0, retry_on=(TransactionAborted,))

    assert result == "done"
    assert fn.calls == 2


@pytest.mark.asyncio
async def test_retry_gives_up_after_max_retries():
    fn = Flaky(5, TransactionAborted)

    with pytest.raises(TransactionAborted):
        await retry_async(fn, max_retries=2, retry_delay=0, retry_on=(TransactionAborted,))

    assert fn.calls == 3


@pytest.mark.asyncio
async def test_business_errors_are_not_retried():
    fn = Flaky(1, InsufficientSeats)

    with pytest.raises(InsufficientSeats):
        await retry_async(fn, max_retries=2, retry_delay=0, retry_on=(TransactionAborted,))

    assert fn.calls == 1


@pytest.mark.asyncio
async def test_retry_delay_grows_linearly(monkeypatch):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr("booking_service.utils.retry.asyncio.sleep", fake_sleep)
    fn = Flaky(2, TransactionAborted)

    await retry_async(fn, max_retries=2, retry_delay=1.0, retry_on=(TransactionAborted,))

    assert delays == [1.0, 2.0]


def _operational_error():
    return OperationalError("UPDATE rides", {}, Exception("database is locked"))


def test_operational_errors_are_transient():
    assert is_transient_error(_operational_error())


def test_integrity_errors_are_not_transient():
    assert not is_transient_error(IntegrityError("INSERT", {}, Exception("unique")))


@pytest.mark.asyncio
async def test_run_transaction_retries_aborted_commit_once(db):
    work = Flaky(1, _operational_error)

    assert await run_transaction(db, work, operation="test") == "done"
    assert work.calls == 2


@pytest.mark.asyncio
async def test_run_transaction_surfaces_transaction_aborted(db):
    work = Flaky(5, _operational_error)

    with pytest.raises(TransactionAborted):
        await run_transaction(db, work, operation="test")

    # One attempt plus one retry
    assert work.calls == 2


@pytest.mark.asyncio
async def test_run_transaction_maps_integrity_errors(db):
    work = Flaky(1, lambda: IntegrityError("INSERT", {}, Exception("unique")))

    with pytest.raises(DuplicateBooking):
        await run_transaction(
            db, work, operation="test", on_integrity_error=lambda e: DuplicateBooking()
        )

    assert work.calls == 1


@pytest.mark.asyncio
async def test_run_transaction_reraises_integrity_errors_the_hook_declines(db):
    work = Flaky(1, lambda: IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed")))

    with pytest.raises(IntegrityError):
        await run_transaction(db, work, operation="test", on_integrity_error=lambda e: None)

    assert work.calls == 1


@pytest.mark.parametrize(
    "message",
    [
        'duplicate key value violates unique constraint "uq_bookings_active_passenger_ride"',
        "UNIQUE constraint failed: bookings.ride_id, bookings.passenger_id",
    ],
)
def test_active_booking_violation_is_a_duplicate_booking(message):
    ride_id = uuid4()
    error = IntegrityError("INSERT", {}, Exception(message))

    mapped = duplicate_booking_error(error, ride_id)

    assert isinstance(mapped, DuplicateBooking)
    assert mapped.details == {"ride_id": str(ride_id)}


@pytest.mark.parametrize(
    "message",
    [
        "CHECK constraint failed: ck_bookings_seats_booked_positive",
        'insert or update on table "bookings" violates foreign key constraint "bookings_ride_id_fkey"',
        "UNIQUE constraint failed: bookings.id",
    ],
)
def test_other_integrity_errors_are_not_duplicate_bookings(message):
    error = IntegrityError("INSERT", {}, Exception(message))

    assert duplicate_booking_error(error, uuid4()) is None


@pytest.mark.asyncio
async def test_unrelated_integrity_error_during_booking_is_not_reported_as_duplicate(db):
    ride_id = uuid4()
    check_failure = Exception("CHECK constraint failed: ck_bookings_total_price_non_negative")
    work = Flaky(1, lambda: IntegrityError("INSERT", {}, check_failure))

    with pytest.raises(IntegrityError):
        await run_transaction(
            db, work, operation="test", on_integrity_error=lambda e: duplicate_booking_error(e, ride_id)
        )


def test_violates_unique_matches_only_the_named_constraint():
    sqlite_error = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: ratings.booking_id, ratings.rater_id"))
    other_error = IntegrityError("INSERT", {}, Exception("CHECK constraint failed: ck_ratings_range"))
    columns = ("booking_id", "rater_id")

    assert violates_unique(sqlite_error, "uq_ratings_booking_rater", "ratings", columns)
    assert not violates_unique(other_error, "uq_ratings_booking_rater", "ratings", columns)
    assert not violates_unique(sqlite_error, "uq_bookings_active_passenger_ride", "bookings", ("ride_id", "passenger_id"))
