from sqlalchemy import Column, Enum, Float, Integer, String, TIMESTAMP, Uuid
from sqlalchemy.sql import func
import enum
from ..database import Base
from .ride import _enum_values


class SubscriptionTier(str, enum.Enum):
    FREE = "free"
    PREMIUM = "premium"


class Profile(Base):
    """User attributes the booking rules depend on.

    Owned by the user service; this table holds the copy we read inside
    booking transactions (gender for women-only rides, tier for fees).
    """

    __tablename__ = "profiles"

    id = Column(Uuid(as_uuid=True), primary_key=True)
    full_name = Column(String(200), nullable=True)
    gender = Column(String(20), nullable=True)
    rating = Column(Float, nullable=True)
    total_rides = Column(Integer, nullable=False, default=0)
    subscription_tier = Column(
        Enum(SubscriptionTier, name="subscription_tier", values_callable=_enum_values),
        nullable=False,
        default=SubscriptionTier.FREE,
    )

    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_female(self) -> bool:
        return (self.gender or "").strip().lower() == "female"

    def __repr__(self):
        return f"<Profile(id={self.id}, tier={self.subscription_tier})>"
