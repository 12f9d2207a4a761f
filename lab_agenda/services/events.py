"""Booking domain events.

Each committed booking transition is announced once on ``booking_event``.
Subscribers (audit, notifications, cache invalidation) connect to the signal
without the booking code knowing about them. Delivery is best effort: a
failing receiver is logged and skipped, the booking stays committed.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from blinker import Namespace
from flask import current_app

BOOKING_CREATED = "booking.created"
BOOKING_CANCELLED = "booking.cancelled"
BOOKING_RESCHEDULED = "booking.rescheduled"
BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_COMPLETED = "booking.completed"
BOOKING_NO_SHOW = "booking.no_show"

_signals = Namespace()
booking_event = _signals.signal("booking-event")


@dataclass(frozen=True)
class BookingEvent:
    type: str
    booking_id: str
    slot_id: str
    patient_id: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    actor_id: str | None = None
    previous_slot_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def publish(event: BookingEvent) -> int:
    """Deliver ``event`` to every receiver; returns how many accepted it."""

    app = current_app._get_current_object()  # type: ignore[attr-defined]
    delivered = 0
    for receiver in booking_event.receivers_for(app):
        try:
            receiver(app, event=event)
        except Exception:
            app.logger.warning(
                "Dropped %s for booking %s: receiver %r failed",
                event.type,
                event.booking_id,
                receiver,
                exc_info=True,
            )
            continue
        delivered += 1
    return delivered
