from sqlalchemy import CheckConstraint, Column, Enum, ForeignKey, Index, Integer, TIMESTAMP, Uuid, text
from sqlalchemy.sql import func
import uuid
import enum
from ..database import Base
from .ride import _enum_values


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class CancelledBy(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"
    SYSTEM = "system"


ACTIVE_BOOKING_INDEX = "uq_bookings_active_passenger_ride"

_ACTIVE_BOOKING_PREDICATE = text("status IN ('pending', 'confirmed')")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("seats_booked >= 1", name="ck_bookings_seats_booked_positive"),
        CheckConstraint("total_price >= 0", name="ck_bookings_total_price_non_negative"),
        CheckConstraint("platform_fee >= 0", name="ck_bookings_platform_fee_non_negative"),
        # One active booking per passenger per ride
        Index(
            ACTIVE_BOOKING_INDEX,
            "ride_id",
            "passenger_id",
            unique=True,
            postgresql_where=_ACTIVE_BOOKING_PREDICATE,
            sqlite_where=_ACTIVE_BOOKING_PREDICATE,
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ride_id = Column(Uuid(as_uuid=True), ForeignKey("rides.id"), nullable=False, index=True)
    passenger_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    pickup_point_id = Column(Uuid(as_uuid=True), ForeignKey("pickup_points.id"), nullable=True)

    seats_booked = Column(Integer, nullable=False, default=1)
    total_price = Column(Integer, nullable=False)
    platform_fee = Column(Integer, nullable=False)

    status = Column(
        Enum(BookingStatus, name="booking_status", values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    cancelled_by = Column(
        Enum(CancelledBy, name="booking_cancelled_by", values_callable=_enum_values),
        nullable=True,
    )

    # Timestamps
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())
    confirmed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    cancelled_at = Column(TIMESTAMP(timezone=True), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES

    def __repr__(self):
        return f"<Booking(id={self.id}, ride_id={self.ride_id}, status={self.status}, seats={self.seats_booked})>"
