import logging
from typing import Dict, Any, Iterable
from datetime import datetime, timezone
import uuid

from ..config import settings
from ..utils.redis_client import redis_client

logger = logging.getLogger(__name__)


class EventService:
    """Publish booking lifecycle events and user notifications via Redis.

    Publishing happens only after the booking transaction has committed and
    never feeds back into it: the ``notify_*`` helpers log and swallow every
    failure so a broken notification path cannot fail the action it reports.
    """

    # Event channels
    BOOKING_EVENTS_CHANNEL = "booking-events"
    RIDE_EVENTS_CHANNEL = "ride-events"
    USER_NOTIFICATIONS_CHANNEL = "user-notifications"

    def __init__(self, client=redis_client):
        self.client = client

    async def publish_event(self, channel: str, event_type: str, event_data: Dict[str, Any]):
        """Publish a lifecycle event"""
        event = {
            "event_id": str(uuid.uuid4()),
            "event_type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "ride-booking",
            "data": event_data,
        }
        await self.client.publish_event(channel, event)

    async def publish_user_notification(self, user_id: str, notification_data: Dict[str, Any]):
        """Publish notification to specific user"""
        notification = {
            "notification_id": str(uuid.uuid4()),
            "recipient_id": user_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": notification_data,
        }
        await self.client.publish_event(self.USER_NOTIFICATIONS_CHANNEL, notification)

    async def _fire_and_forget(self, description: str, coro_factories: Iterable):
        if not settings.notifications_enabled:
            return
        for make_coro in coro_factories:
            try:
                await make_coro()
            except Exception as e:
                logger.error(f"Failed to publish {description}: {e}")

    # Specific event publishers for booking scenarios

    async def notify_booking_requested(self, booking_data: Dict[str, Any]):
        """Tell the driver a passenger booked seats"""
        await self._fire_and_forget("booking_requested", [
            lambda: self.publish_event(self.BOOKING_EVENTS_CHANNEL, "booking_requested", booking_data),
            lambda: self.publish_user_notification(
                booking_data["driver_id"],
                {
                    "type": "booking_requested",
                    "message": f"New booking request for {booking_data['seats_booked']} seat(s)",
                    "booking_id": booking_data["booking_id"],
                    "ride_id": booking_data["ride_id"],
                },
            ),
        ])

    async def notify_booking_confirmed(self, booking_data: Dict[str, Any]):
        """Tell the passenger the driver accepted"""
        await self._fire_and_forget("booking_confirmed", [
            lambda: self.publish_event(self.BOOKING_EVENTS_CHANNEL, "booking_confirmed", booking_data),
            lambda: self.publish_user_notification(
                booking_data["passenger_id"],
                {
                    "type": "booking_confirmed",
                    "message": "Your booking has been confirmed by the driver.",
                    "booking_id": booking_data["booking_id"],
                    "ride_id": booking_data["ride_id"],
                },
            ),
        ])

    async def notify_booking_cancelled(self, booking_data: Dict[str, Any]):
        """Tell the other party a booking was cancelled"""
        cancelled_by = booking_data.get("cancelled_by")
        recipient = (
            booking_data["driver_id"]
            if cancelled_by == "passenger"
            else booking_data["passenger_id"]
        )
        await self._fire_and_forget("booking_cancelled", [
            lambda: self.publish_event(self.BOOKING_EVENTS_CHANNEL, "booking_cancelled", booking_data),
            lambda: self.publish_user_notification(
                recipient,
                {
                    "type": "booking_cancelled",
                    "message": "A booking has been cancelled. Seats have been restored."
                    if cancelled_by == "passenger"
                    else "Your booking has been cancelled.",
                    "booking_id": booking_data["booking_id"],
                    "ride_id": booking_data["ride_id"],
                },
            ),
        ])

    async def notify_ride_cancelled(self, ride_data: Dict[str, Any], cancelled_bookings: list[Dict[str, Any]]):
        """Announce a ride cancellation and notify each affected passenger"""
        await self._fire_and_forget("ride_cancelled", [
            lambda: self.publish_event(self.RIDE_EVENTS_CHANNEL, "ride_cancelled", ride_data),
        ])
        for booking_data in cancelled_bookings:
            await self.notify_booking_cancelled(booking_data)

    async def notify_ride_status(self, event_type: str, ride_data: Dict[str, Any], passenger_ids: list[str]):
        """Announce ride start/completion to its passengers"""
        messages = {
            "ride_started": "Your ride has started.",
            "ride_completed": "You've arrived! Don't forget to rate your driver.",
        }
        factories = [lambda: self.publish_event(self.RIDE_EVENTS_CHANNEL, event_type, ride_data)]
        for passenger_id in passenger_ids:
            factories.append(
                lambda passenger_id=passenger_id: self.publish_user_notification(
                    passenger_id,
                    {
                        "type": event_type,
                        "message": messages.get(event_type, event_type),
                        "ride_id": ride_data["ride_id"],
                    },
                )
            )
        await self._fire_and_forget(event_type, factories)
