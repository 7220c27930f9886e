from sqlalchemy import Boolean, CheckConstraint, Column, Enum, Float, Integer, String, Text, TIMESTAMP, Uuid
from sqlalchemy.sql import func
import uuid
import enum
from ..database import Base

class RideStatus(str, enum.Enum):
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

def _enum_values(enum_cls):
    return [member.value for member in enum_cls]

class Ride(Base):
    __tablename__ = "rides"
    __table_args__ = (
        CheckConstraint("seats_total >= 1", name="ck_rides_seats_total_positive"),
        CheckConstraint("seats_available >= 0", name="ck_rides_seats_available_non_negative"),
        CheckConstraint("seats_available <= seats_total", name="ck_rides_seats_available_within_total"),
        CheckConstraint("price_per_seat > 0", name="ck_rides_price_positive"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    driver_id = Column(Uuid(as_uuid=True), nullable=False, index=True)

    # Route
    origin = Column(Text, nullable=False)
    destination = Column(Text, nullable=False)
    departure_time = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    distance_km = Column(Float, nullable=True)

    # Inventory and pricing
    price_per_seat = Column(Integer, nullable=False)
    seats_total = Column(Integer, nullable=False)
    seats_available = Column(Integer, nullable=False)

    status = Column(
        Enum(RideStatus, name="ride_status", values_callable=_enum_values),
        nullable=False,
        default=RideStatus.ACTIVE,
    )

    # Vehicle and preferences
    car_model = Column(String(100), nullable=True)
    car_number = Column(String(32), nullable=True)
    is_women_only = Column(Boolean, nullable=False, default=False)
    is_pet_friendly = Column(Boolean, nullable=False, default=False)
    is_smoking_allowed = Column(Boolean, nullable=False, default=False)
    is_music_allowed = Column(Boolean, nullable=False, default=True)
    is_chatty = Column(Boolean, nullable=False, default=True)
    max_two_back_seat = Column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())
    started_at = Column(TIMESTAMP(timezone=True), nullable=True)
    completed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    cancelled_at = Column(TIMESTAMP(timezone=True), nullable=True)

    def __repr__(self):
        return (
            f"<Ride(id={self.id}, status={self.status}, "
            f"seats={self.seats_available}/{self.seats_total})>"
        )
