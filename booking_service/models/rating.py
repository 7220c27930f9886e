from sqlalchemy import CheckConstraint, Column, Enum, ForeignKey, Integer, Text, TIMESTAMP, UniqueConstraint, Uuid
from sqlalchemy.sql import func
import uuid
import enum
from ..database import Base
from .ride import _enum_values


RATING_UNIQUE_CONSTRAINT = "uq_ratings_booking_rater"


class RaterType(str, enum.Enum):
    DRIVER = "driver"
    PASSENGER = "passenger"


class Rating(Base):
    __tablename__ = "ratings"
    __table_args__ = (
        UniqueConstraint("booking_id", "rater_id", name=RATING_UNIQUE_CONSTRAINT),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_ratings_range"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id"), nullable=False, index=True)
    rater_id = Column(Uuid(as_uuid=True), nullable=False)
    rated_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    rater_type = Column(
        Enum(RaterType, name="rater_type", values_callable=_enum_values),
        nullable=False,
    )
    rating = Column(Integer, nullable=False)
    review = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Rating(booking_id={self.booking_id}, rater={self.rater_type}, rating={self.rating})>"
