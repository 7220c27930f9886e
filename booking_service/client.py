"""HTTP client for the ride booking RPC surface."""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

import httpx

from .config import settings
from .exceptions import DomainException, TransactionAborted, exception_from_payload
from .utils.retry import retry_async

logger = logging.getLogger(__name__)


class BookingConnectionError(DomainException):
    """The service could not be reached or answered with a server error."""

    status_code = 503
    retryable = True
    default_message = "Booking service unavailable"


RETRYABLE_ERRORS = (TransactionAborted, BookingConnectionError)


def _error_from_response(response: httpx.Response) -> DomainException:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None

    if isinstance(detail, dict) and "code" in detail:
        error = exception_from_payload(detail)
    elif response.status_code >= 500:
        error = BookingConnectionError(details={"status_code": response.status_code})
    else:
        error = DomainException(
            message=str(detail) if detail else response.reason_phrase,
            code=f"http_{response.status_code}",
        )
    error.status_code = response.status_code
    return error


class BookingClient:
    """Async client for the booking service.

    Mutations are retried at most ``mutation_retries`` times and reads up to
    ``read_retries`` times, with a linearly growing delay. Only transient
    failures are retried: connection errors, server errors and aborted
    transactions. Business rejections such as ``InsufficientSeats`` are raised
    straight away as their domain exception.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        http: Optional[httpx.AsyncClient] = None,
        *,
        mutation_retries: int = settings.booking_max_retries,
        mutation_retry_delay: float = settings.booking_retry_delay,
        read_retries: int = settings.read_max_retries,
        read_retry_delay: float = settings.read_retry_delay,
    ) -> None:
        self.http = http or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(connect=5.0, read=15.0, write=5.0, pool=5.0),
        )
        self.token = token
        self.mutation_retries = mutation_retries
        self.mutation_retry_delay = mutation_retry_delay
        self.read_retries = read_retries
        self.read_retry_delay = read_retry_delay

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await self.http.request(
                method,
                path,
                json=json,
                params=params,
                headers={"Authorization": f"Bearer {self.token}"},
            )
        except httpx.TransportError as exc:
            raise BookingConnectionError(f"Request to {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise _error_from_response(response)
        return response.json()

    async def _mutate(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await retry_async(
            lambda: self._send("POST", path, json=payload),
            max_retries=self.mutation_retries,
            retry_delay=self.mutation_retry_delay,
            retry_on=RETRYABLE_ERRORS,
            operation=f"POST {path}",
        )

    async def _read(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await retry_async(
            lambda: self._send("GET", path, params=params),
            max_retries=self.read_retries,
            retry_delay=self.read_retry_delay,
            retry_on=RETRYABLE_ERRORS,
            operation=f"GET {path}",
        )

    # Booking mutations

    async def book_ride(
        self,
        ride_id: UUID,
        seats_requested: int = 1,
        pickup_point_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        payload = {"ride_id": str(ride_id), "seats_requested": seats_requested}
        if pickup_point_id is not None:
            payload["pickup_point_id"] = str(pickup_point_id)
        return await self._mutate("/rpc/book_ride_atomic", payload)

    async def cancel_booking_atomic(self, booking_id: UUID) -> Dict[str, Any]:
        return await self._mutate("/rpc/cancel_booking_atomic", {"booking_id": str(booking_id)})

    async def cancel_booking(self, booking_id: UUID) -> Dict[str, Any]:
        return await self._mutate("/rpc/cancel_booking", {"booking_id": str(booking_id)})

    async def confirm_booking(self, booking_id: UUID) -> Dict[str, Any]:
        return await self._mutate("/rpc/confirm_booking", {"booking_id": str(booking_id)})

    # Ride lifecycle

    async def cancel_ride(self, ride_id: UUID) -> Dict[str, Any]:
        return await self._mutate("/rpc/cancel_ride", {"ride_id": str(ride_id)})

    async def start_ride(self, ride_id: UUID) -> Dict[str, Any]:
        return await self._mutate("/rpc/start_ride", {"ride_id": str(ride_id)})

    async def complete_ride(self, ride_id: UUID) -> Dict[str, Any]:
        return await self._mutate("/rpc/complete_ride", {"ride_id": str(ride_id)})

    # Reads

    async def get_ride(self, ride_id: UUID) -> Dict[str, Any]:
        return await self._read(f"/api/rides/{ride_id}")

    async def search_rides(self, **filters: Any) -> Dict[str, Any]:
        params = {key: value for key, value in filters.items() if value is not None}
        return await self._read("/api/rides", params=params)

    async def get_pickup_points(self, ride_id: UUID) -> List[Dict[str, Any]]:
        return await self._read(f"/api/rides/{ride_id}/pickup_points")

    async def get_booking(self, booking_id: UUID) -> Dict[str, Any]:
        return await self._read(f"/api/bookings/{booking_id}")

    async def my_bookings(self, limit: int = 20, offset: int = 0) -> Dict[str, Any]:
        return await self._read("/api/bookings/mine", params={"limit": limit, "offset": offset})

    async def refresh_ratings(self, user_id: UUID) -> Optional[List[Dict[str, Any]]]:
        """Ratings received by ``user_id``; display only, so failures return None"""
        try:
            return await self._read(f"/api/ratings/users/{user_id}")
        except DomainException as e:
            logger.warning(f"Could not refresh ratings for {user_id}: {e}")
            return None
