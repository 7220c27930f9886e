from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging
from uuid import UUID

from ..auth import get_current_user_id
from ..database import get_db
from ..schemas.rating import RatingCreateRequest, RatingResponse
from ..services.rating_service import RatingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ratings", tags=["ratings"])

rating_service = RatingService()


@router.post("", response_model=RatingResponse, status_code=status.HTTP_201_CREATED)
async def submit_rating(
    request: RatingCreateRequest,
    db: AsyncSession = Depends(get_db),
    rater_id: UUID = Depends(get_current_user_id)
):
    """Rate the other party of a completed booking"""
    rating = await rating_service.submit_rating(
        request.booking_id, rater_id, request.rating, db, review=request.review
    )
    return RatingResponse.model_validate(rating)


@router.get("/users/{user_id}", response_model=list[RatingResponse])
async def get_user_ratings(user_id: UUID, db: AsyncSession = Depends(get_db)):
    """Ratings received by a user, newest first"""
    ratings = await rating_service.get_ratings_for_user(user_id, db)
    return [RatingResponse.model_validate(rating) for rating in ratings]
