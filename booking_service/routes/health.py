from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from datetime import datetime
import logging

from ..database import check_database_health
from ..utils.clock import utcnow
from ..utils.redis_client import redis_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    service: str
    timestamp: datetime
    dependencies: dict


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint for Kubernetes probes.

    The database is required; Redis only carries notifications, so losing it
    degrades the service without making it unhealthy.
    """
    try:
        db_healthy = await check_database_health()
        redis_healthy = await redis_client.health_check()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        db_healthy = redis_healthy = False

    if not db_healthy:
        overall_status = "unhealthy"
    elif not redis_healthy:
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    response = HealthResponse(
        status=overall_status,
        service="ride-booking",
        timestamp=utcnow(),
        dependencies={
            "database": "connected" if db_healthy else "disconnected",
            "redis": "connected" if redis_healthy else "disconnected"
        }
    )

    response_status = status.HTTP_503_SERVICE_UNAVAILABLE if not db_healthy else status.HTTP_200_OK
    return JSONResponse(status_code=response_status, content=response.model_dump(mode="json"))
