from sqlalchemy import Column, ForeignKey, Integer, String, Text, TIMESTAMP, Uuid
from sqlalchemy.sql import func
import uuid
from ..database import Base


class PickupPoint(Base):
    """A stop along a ride where the driver collects passengers"""

    __tablename__ = "pickup_points"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ride_id = Column(Uuid(as_uuid=True), ForeignKey("rides.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    address = Column(Text, nullable=True)
    # Position along the route, starting at 0
    sequence_order = Column(Integer, nullable=False, default=0)

    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
