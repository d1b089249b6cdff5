"""Outbound notifications to shoppers and travelers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from .utils import to_iso

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    user_id: str
    title: str
    message: str
    channel: str = "email"  # "email" | "push" | "sms"
    action_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    def send(self, notification: Notification) -> None: ...


class LoggingNotifier:
    """Notifier that records messages in the log instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def send(self, notification: Notification) -> None:
        self.sent.append(notification)
        logger.info(
            "%s notification to %s: %s - %s",
            notification.channel.upper(),
            notification.user_id,
            notification.title,
            notification.message,
        )


class NotificationDispatcher:
    """Builds templated messages and sends them.

    Delivery failures are logged and swallowed so that the state change
    that triggered the notice stays in place.
    """

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    def _deliver(self, notification: Notification) -> bool:
        try:
            self.notifier.send(notification)
        except Exception:
            logger.exception(
                "Failed to send '%s' notification to %s",
                notification.metadata.get("type", notification.title),
                notification.user_id,
            )
            return False
        return True

    def booking_confirmed(
        self, shopper_id: str, traveler_id: str, match_id: str, cooldown_ends_at: datetime
    ) -> None:
        cooldown_time = cooldown_ends_at.strftime("%b %d, %Y %H:%M UTC")
        self._deliver(
            Notification(
                user_id=shopper_id,
                title="Booking Confirmed - Cancellation Window Open",
                message=(
                    f"Your booking has been confirmed! You have until {cooldown_time} "
                    "to cancel for a full refund."
                ),
                action_url=f"/dashboard/orders/{match_id}",
                metadata={
                    "match_id": match_id,
                    "cooldown_ends_at": to_iso(cooldown_ends_at),
                    "type": "booking_confirmation",
                },
            )
        )
        self._deliver(
            Notification(
                user_id=traveler_id,
                title="New Booking - Prepare for Purchase",
                message=(
                    "You have a new booking. Your purchase window opens when the "
                    f"shopper's cancellation window closes at {cooldown_time}."
                ),
                action_url=f"/dashboard/deliveries/{match_id}",
                metadata={"match_id": match_id, "type": "traveler_booking"},
            )
        )

    def booking_cancelled(self, user_id: str, match_id: str, reason: str) -> None:
        self._deliver(
            Notification(
                user_id=user_id,
                title="Booking Cancelled",
                message=f"Your booking has been cancelled. Reason: {reason}.",
                action_url="/dashboard/orders",
                metadata={"match_id": match_id, "reason": reason, "type": "cancellation"},
            )
        )

    def purchase_deadline_missed(self, traveler_id: str, shopper_id: str, match_id: str) -> None:
        self._deliver(
            Notification(
                user_id=traveler_id,
                title="Purchase Deadline Missed - Account Flagged",
                message="You missed the purchase deadline. Your account has been flagged. Contact support.",
                action_url="/dashboard/support",
                metadata={"match_id": match_id, "type": "deadline_missed_traveler"},
            )
        )
        self._deliver(
            Notification(
                user_id=shopper_id,
                title="Delivery Cancelled - Purchase Deadline Missed",
                message=(
                    "The traveler missed the purchase deadline. "
                    "Your booking has been cancelled with full refund."
                ),
                action_url="/dashboard/orders",
                metadata={"match_id": match_id, "type": "deadline_missed_shopper"},
            )
        )

    def delivery_completed(
        self, traveler_id: str, shopper_id: str, match_id: str, amount: float
    ) -> None:
        self._deliver(
            Notification(
                user_id=traveler_id,
                title="Delivery Completed - Payment Released",
                message=f"${amount:.2f} has been added to your wallet. Great job!",
                action_url="/dashboard/wallet",
                metadata={"match_id": match_id, "amount": amount, "type": "delivery_completed_traveler"},
            )
        )
        self._deliver(
            Notification(
                user_id=shopper_id,
                title="Item Received - Order Completed",
                message="Your item has been successfully delivered.",
                action_url="/dashboard/orders",
                metadata={"match_id": match_id, "type": "delivery_completed_shopper"},
            )
        )
