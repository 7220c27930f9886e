from datetime import datetime, timedelta, timezone
import logging
from typing import Optional
from uuid import UUID

from fastapi import Header
import jwt
from jwt import PyJWTError

from .config import settings
from .exceptions import NotAuthenticated, NotAuthorized

logger = logging.getLogger(__name__)


def create_access_token(user_id: UUID, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a token the way the user service does (used by tests and tooling)"""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=1)),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_user_id(token: str) -> UUID:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except PyJWTError as e:
        logger.warning(f"Rejected token: {e}")
        raise NotAuthenticated("Invalid or expired token")

    subject = payload.get("sub")
    try:
        return UUID(subject)
    except (TypeError, ValueError):
        raise NotAuthenticated("Token subject is not a user id")


async def get_current_user_id(authorization: Optional[str] = Header(None)) -> UUID:
    """Extract user ID from the bearer JWT issued by the user service"""
    if not authorization or not authorization.startswith("Bearer "):
        raise NotAuthenticated()
    return decode_user_id(authorization.split(" ", 1)[1])


def ensure_same_user(claimed_id: Optional[UUID], user_id: UUID) -> None:
    """A user id sent in a request body must be the caller's own"""
    if claimed_id is not None and claimed_id != user_id:
        raise NotAuthorized("Cannot act on behalf of another user")
