"""
Domain exceptions for the booking lifecycle.

Services raise these; the API layer renders them through a single exception
handler. They fall into four groups that callers treat differently:

* contention (``InsufficientSeats``, ``TransactionAborted``, duplicates):
  expected under load, ``TransactionAborted`` is the only retryable one
* authorization (``NotAuthorized``, ``SelfBookingNotAllowed``,
  ``GenderRestricted``): never retried
* not found (``RideNotFound``, ``BookingNotFound``): stale client state
* state (``RideNotActive``, ``InvalidTransition``)
"""

from typing import Any, Dict, Optional, Type

from fastapi import status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False
    default_message: str = "Unexpected error"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


# Contention

class InsufficientSeats(DomainException):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Not enough seats available on this ride"


class TransactionAborted(DomainException):
    """The store rejected the commit; nothing from the attempt survived."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_message = "Please try again"


class DuplicateBooking(DomainException):
    status_code = status.HTTP_409_CONFLICT
    default_message = "You already have an active booking on this ride"


class DuplicateRating(DomainException):
    status_code = status.HTTP_409_CONFLICT
    default_message = "You have already rated this booking"


# Authorization

class NotAuthenticated(DomainException):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Missing or invalid authorization header"


class NotAuthorized(DomainException):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You are not allowed to perform this action"


class SelfBookingNotAllowed(DomainException):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Drivers cannot book their own ride"


class GenderRestricted(DomainException):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "This ride is restricted to women passengers"


# Not found

class RideNotFound(DomainException):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Ride not found"


class BookingNotFound(DomainException):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Booking not found"


# State

class RideNotActive(DomainException):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Ride is no longer open for booking"


class InvalidTransition(DomainException):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Invalid status transition"


class InvalidPickupPoint(DomainException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Pickup point does not belong to this ride"


EXCEPTIONS_BY_CODE: Dict[str, Type[DomainException]] = {
    cls.__name__: cls
    for cls in (
        InsufficientSeats,
        TransactionAborted,
        DuplicateBooking,
        DuplicateRating,
        NotAuthenticated,
        NotAuthorized,
        SelfBookingNotAllowed,
        GenderRestricted,
        RideNotFound,
        BookingNotFound,
        RideNotActive,
        InvalidTransition,
        InvalidPickupPoint,
    )
}


def exception_from_payload(payload: Dict[str, Any]) -> DomainException:
    """Rebuild a domain exception from a rendered error body."""
    code = payload.get("code") or "DomainException"
    cls = EXCEPTIONS_BY_CODE.get(code, DomainException)
    return cls(
        message=payload.get("message"),
        code=code,
        details=payload.get("details"),
    )
