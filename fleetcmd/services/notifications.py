"""
Notification sink for booking lifecycle events.

Messages are rendered as plain-text subject/body pairs.  When a webhook
URL is configured they are POSTed there as JSON (a mail relay or chat
integration picks them up); otherwise they are only logged.  Delivery is
fire-and-forget: nothing raised here ever reaches the caller, so a broken
relay can never undo a state transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from fleetcmd.config import settings
from fleetcmd.domain.enums import NotificationEvent

logger = logging.getLogger(__name__)

_STATUS_PHRASES = {
    "approved": "has been APPROVED",
    "rejected": "has been REJECTED",
    "pending": "is still PENDING",
    "in_progress": "is now IN PROGRESS",
    "completed": "has been marked as COMPLETED",
    "cancelled": "has been CANCELLED",
}


@dataclass
class Message:
    to: str
    subject: str
    body: str


def _value(v: Any) -> str:
    return getattr(v, "value", v)


def _vehicle_label(vehicle: Any) -> str:
    return f"{vehicle.year} {vehicle.make} {vehicle.model} ({vehicle.license_plate})"


def render(event: NotificationEvent, recipient: Any, context: dict) -> Message:
    booking = context["booking"]
    vehicle = context["vehicle"]
    actor = context.get("actor")
    odometer: Optional[int] = context.get("odometer")
    to = recipient.email or "no-email@example.com"
    window = f"{booking.start_time:%Y-%m-%d %H:%M} - {booking.end_time:%Y-%m-%d %H:%M}"

    if event == NotificationEvent.BOOKING_CREATED:
        requester = context.get("requester") or actor
        subject = f"New Booking Request: {vehicle.make} {vehicle.model}"
        lines = [
            f"Dear {recipient.full_name},",
            "",
            "A new booking request requires your attention:",
            "",
            f"Requester: {requester.full_name if requester else 'Unknown'}",
            f"Vehicle: {_vehicle_label(vehicle)}",
            f"Purpose: {booking.purpose}",
            f"Destination: {booking.destination or 'Not specified'}",
            f"Passengers: {booking.passenger_count}",
            f"Scheduled: {window}",
        ]
    elif event == NotificationEvent.BOOKING_STATUS_CHANGED:
        status = _value(booking.status)
        subject = f"Booking {status.replace('_', ' ').title()}: {vehicle.make} {vehicle.model}"
        lines = [
            f"Dear {recipient.full_name},",
            "",
            f"Your booking request {_STATUS_PHRASES.get(status, status)}.",
            "",
            f"Vehicle: {_vehicle_label(vehicle)}",
            f"Purpose: {booking.purpose}",
            f"Scheduled: {window}",
            f"Reviewed by: {actor.full_name if actor else 'System'}",
        ]
        if booking.cancellation_reason:
            lines.append(f"Reason: {booking.cancellation_reason}")
    else:
        started = event == NotificationEvent.TRIP_STARTED
        subject = f"Trip {'Started' if started else 'Completed'}: {vehicle.make} {vehicle.model}"
        label = "Start Odometer" if started else "End Odometer"
        lines = [
            f"Dear {recipient.full_name},",
            "",
            f"A trip you approved {'has STARTED' if started else 'has been COMPLETED'}.",
            "",
            f"Vehicle: {_vehicle_label(vehicle)}",
            f"Driver: {actor.full_name if actor else 'Self-drive'}",
            f"Purpose: {booking.purpose}",
            f"Destination: {booking.destination or 'Not specified'}",
            f"{label}: {odometer} km",
            f"Scheduled: {window}",
        ]
        if not started and booking.start_odometer is not None and odometer is not None:
            lines.append(f"Trip Distance: {odometer - booking.start_odometer} km")

    lines += ["", "Thank you,", "FleetCmd Transport Management"]
    return Message(to=to, subject=subject, body="\n".join(lines))


class NotificationSink:
    """Renders lifecycle events and hands them to the configured transport."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport

    async def notify(
        self, event: NotificationEvent, recipient: Any, context: dict
    ) -> None:
        if recipient is None:
            return
        try:
            message = render(event, recipient, context)
            await self._deliver(event, message)
        except Exception:
            logger.exception(
                "Failed to deliver %s notification to user %s",
                _value(event),
                getattr(recipient, "id", None),
            )

    async def _deliver(self, event: NotificationEvent, message: Message) -> None:
        if not self.webhook_url:
            logger.info(
                "Notification (delivery disabled, logging only) to=%s subject=%r\n%s",
                message.to,
                message.subject,
                message.body,
            )
            return
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            resp = await client.post(
                self.webhook_url,
                json={
                    "event": _value(event),
                    "to": message.to,
                    "subject": message.subject,
                    "body": message.body,
                },
            )
            resp.raise_for_status()
        logger.info("Notification %s sent to %s", _value(event), message.to)


notifier = NotificationSink(
    webhook_url=settings.notification_webhook_url,
    timeout=settings.notification_timeout_seconds,
)
