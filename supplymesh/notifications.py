from __future__ import annotations

from datetime import datetime
from typing import Protocol

from .clock import Clock
from .domain import Notification
from .errors import ExternalCollaboratorError
from .id_provider import IdProvider
from .logging import ServiceLogger
from .repositories import NotificationRepository


class NotificationSender(Protocol):
    def notify_delay(self, vendor_id: str, order_number: str, eta: datetime, reason: str) -> None: ...


class EmailSender(Protocol):
    def send_delay_email(self, order_number: str, eta_text: str, reason: str) -> None: ...


class InboxNotificationSender:
    """Writes delay notices into the vendor's in-app inbox."""

    def __init__(self, notifications: NotificationRepository, clock: Clock, ids: IdProvider) -> None:
        self._notifications = notifications
        self._clock = clock
        self._ids = ids

    def notify_delay(self, vendor_id: str, order_number: str, eta: datetime, reason: str) -> None:
        notification = Notification(
            id=self._ids.new_id(),
            user_id=vendor_id,
            title=f"Delay on order {order_number}",
            message=f"Revised ETA {format_eta(eta)}. Reason: {reason}",
            type="delay",
            created_at=self._clock.now(),
        )
        try:
            self._notifications.add(notification)
        except Exception as exc:
            raise ExternalCollaboratorError(f"Inbox write failed: {exc}") from exc


class LoggingEmailSender:
    """Renders the delay e-mail and hands it to the log; no SMTP gateway is wired in."""

    def __init__(self, recipient: str) -> None:
        self._recipient = recipient
        self._log = ServiceLogger("email")

    def send_delay_email(self, order_number: str, eta_text: str, reason: str) -> None:
        if not self._recipient:
            raise ExternalCollaboratorError("No delay e-mail recipient configured")
        subject = f"Delay Update: Order #{order_number}"
        body = (
            f"Hi,\n\nYour order #{order_number} has been delayed.\n\n"
            f"Revised ETA: {eta_text}\nReason: {reason}\n\n"
            "Please check the dashboard for more details."
        )
        self._log.info("Email sent", to=self._recipient, subject=subject, body=body.replace("\n", " "))


def format_eta(eta: datetime) -> str:
    return eta.strftime("%Y-%m-%d %H:%M %Z").strip()
