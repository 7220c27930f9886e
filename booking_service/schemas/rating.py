from pydantic import BaseModel, Field, UUID4
from typing import Optional
from datetime import datetime
from ..models.rating import RaterType


class RatingCreateRequest(BaseModel):
    booking_id: UUID4
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=1000)


class RatingResponse(BaseModel):
    id: UUID4
    booking_id: UUID4
    rater_id: UUID4
    rated_id: UUID4
    rater_type: RaterType
    rating: int
    review: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
