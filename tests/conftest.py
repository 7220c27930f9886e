from datetime import timedelta
from typing import Any, Dict, List, Tuple
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from booking_service.auth import create_access_token
from booking_service.config import settings
from booking_service.database import build_engine, get_db, init_models
from booking_service.main import app
from booking_service.models.booking import Booking
from booking_service.models.profile import Profile, SubscriptionTier
from booking_service.models.ride import Ride, RideStatus
from booking_service.routes import rpc
from booking_service.utils.clock import utcnow


class RecordingPublisher:
    """Stands in for the Redis client and keeps what was published."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    async def publish_event(self, channel: str, event_data: Dict[str, Any]) -> None:
        self.events.append((channel, event_data))

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [data for _, data in self.events if data.get("event_type") == event_type]

    def notifications_for(self, user_id) -> List[Dict[str, Any]]:
        return [
            data for channel, data in self.events
            if channel == "user-notifications" and data["recipient_id"] == str(user_id)
        ]


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "booking_retry_delay", 0)
    monkeypatch.setattr(settings, "read_retry_delay", 0)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}", poolclass=NullPool)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_ride(session_factory):
    async def _make(
        driver_id: UUID = None,
        seats_total: int = 3,
        seats_available: int = None,
        price_per_seat: int = 400,
        departs_in: timedelta = timedelta(hours=2),
        status: RideStatus = RideStatus.ACTIVE,
        **kwargs,
    ) -> Ride:
        async with session_factory() as session:
            ride = Ride(
                driver_id=driver_id or uuid4(),
                origin="Almaty, Abay Ave 10",
                destination="Astana, Kabanbay Batyr 53",
                departure_time=utcnow() + departs_in,
                price_per_seat=price_per_seat,
                seats_total=seats_total,
                seats_available=seats_total if seats_available is None else seats_available,
                status=status,
                **kwargs,
            )
            session.add(ride)
            await session.commit()
            return ride

    return _make


@pytest.fixture
def make_profile(session_factory):
    async def _make(
        user_id: UUID = None,
        gender: str = "male",
        subscription_tier: SubscriptionTier = SubscriptionTier.FREE,
    ) -> Profile:
        async with session_factory() as session:
            profile = Profile(
                id=user_id or uuid4(),
                full_name="Test User",
                gender=gender,
                subscription_tier=subscription_tier,
                total_rides=0,
            )
            session.add(profile)
            await session.commit()
            return profile

    return _make


@pytest.fixture
def fetch(session_factory):
    """Read a row back through a fresh session"""

    async def _fetch(model, row_id):
        async with session_factory() as session:
            row = await session.get(model, row_id)
            await session.commit()
            return row

    return _fetch


@pytest.fixture
def fetch_bookings(session_factory):
    async def _fetch(ride_id: UUID) -> List[Booking]:
        async with session_factory() as session:
            result = await session.execute(select(Booking).where(Booking.ride_id == ride_id))
            bookings = list(result.scalars().all())
            await session.commit()
            return bookings

    return _fetch


@pytest.fixture
def published(monkeypatch):
    publisher = RecordingPublisher()
    monkeypatch.setattr(rpc.event_service, "client", publisher)
    return publisher


@pytest.fixture
def auth_headers():
    def _headers(user_id: UUID) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


@pytest_asyncio.fixture
async def client(session_factory, published):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
