from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any

from backend.config import get_settings
from backend.models.meeting_model import Meeting, Participant
from backend.services.templates import (
    NotificationKind,
    RenderedMessage,
    render_cancellation,
    render_lifecycle,
    render_reminder,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    meeting: Meeting
    recipient_id: str
    actor_id: str
    reason: str | None = None


class NotificationDispatcher:
    """Single entry point that renders a notification kind and hands it to the delivery gateway."""

    def __init__(self, directory: Any, mailer: Any, tz_name: str | None = None):
        self.directory = directory
        self.mailer = mailer
        self.tz_name = tz_name or get_settings().display_timezone

    def render(self, kind: NotificationKind, recipient: Participant, other: Participant, meeting: Meeting,
               reason: str | None = None) -> RenderedMessage:
        if kind is NotificationKind.MEETING_REMINDER:
            return render_reminder(recipient, other, meeting, self.tz_name)
        if kind is NotificationKind.MEETING_CANCELLED:
            return render_cancellation(recipient, other, meeting, reason or "", self.tz_name)
        if kind is NotificationKind.MEETING_CANCELLATION_CONFIRMED:
            return render_cancellation(recipient, other, meeting, reason or "", self.tz_name,
                                       cancelled_by_recipient=True)
        return render_lifecycle(kind, recipient, other, meeting, self.tz_name)

    def deliver(self, kind: NotificationKind, recipient: Participant, other: Participant, meeting: Meeting,
                reason: str | None = None) -> str:
        message = self.render(kind, recipient, other, meeting, reason)
        return self.mailer.send(recipient.email, message)

    def dispatch(self, notification: Notification) -> str:
        recipient = self.directory.get_participant(notification.recipient_id)
        actor = self.directory.get_participant(notification.actor_id)
        return self.deliver(notification.kind, recipient, actor, notification.meeting, notification.reason)


class NotificationOutbox:
    """In-memory outbox drained by a background thread.

    Callers enqueue and return immediately; a failed delivery is logged and
    dropped, never reported back to the state change that produced it.
    """

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher
        self._queue: queue.Queue[Notification | None] = queue.Queue()
        self._worker: threading.Thread | None = None

    def enqueue(self, notification: Notification) -> None:
        logger.debug("Queued %s notification for %s (meeting %s)",
                     notification.kind.value, notification.recipient_id, notification.meeting.id)
        self._queue.put(notification)

    def pending(self) -> int:
        return self._queue.qsize()

    def _handle(self, notification: Notification) -> bool:
        try:
            self.dispatcher.dispatch(notification)
        except Exception:
            logger.exception(
                "Failed to deliver %s notification to %s for meeting %s",
                notification.kind.value, notification.recipient_id, notification.meeting.id,
            )
            return False
        logger.info("Delivered %s notification to %s for meeting %s",
                    notification.kind.value, notification.recipient_id, notification.meeting.id)
        return True

    def drain(self) -> int:
        """Deliver everything queued right now on the calling thread; returns the number delivered."""
        delivered = 0
        while True:
            try:
                notification = self._queue.get_nowait()
            except queue.Empty:
                return delivered
            if notification is not None and self._handle(notification):
                delivered += 1
            self._queue.task_done()

    def _run(self) -> None:
        while True:
            notification = self._queue.get()
            try:
                if notification is None:
                    return
                self._handle(notification)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._worker and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._run, name="notification-outbox", daemon=True)
        self._worker.start()

    def stop(self, timeout: float = 5.0) -> None:
        if not self._worker:
            return
        self._queue.put(None)
        self._worker.join(timeout)
        self._worker = None
