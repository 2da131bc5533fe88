from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from backend.config import Settings, get_settings
from backend.errors import DeliveryFailure, LookupFailure
from backend.models.meeting_model import Meeting, Participant, ParticipantRole
from backend.models.sweep_model import SweepResult
from backend.services.notifications import NotificationDispatcher
from backend.services.templates import NotificationKind
from backend.utils.time_utils import to_storage, utc_now

logger = logging.getLogger(__name__)


@dataclass
class _SweepTally:
    examined: int = 0
    skipped: int = 0
    sent: int = 0
    errors: list[str] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def add_skipped(self) -> None:
        with self.lock:
            self.skipped += 1

    def add_sent(self) -> None:
        with self.lock:
            self.sent += 1

    def add_error(self, message: str) -> None:
        with self.lock:
            self.errors.append(message)


class ReminderSweep:
    """Sends one reminder per participant for accepted meetings starting within the lead window.

    Safe to run repeatedly and concurrently: a participant whose ledger flag is
    already set is never contacted again, and a failed delivery leaves the flag
    unset so the next sweep retries it.
    """

    def __init__(
        self,
        repository: Any,
        ledger: Any,
        directory: Any,
        dispatcher: NotificationDispatcher,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.ledger = ledger
        self.directory = directory
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._clock = clock

    def run(self, now: datetime | None = None) -> SweepResult:
        now = now or self._clock()
        lead = self.settings.reminder_lead_minutes
        window_end = now + timedelta(minutes=lead)
        logger.info("[sweep] window %s .. %s", to_storage(now), to_storage(window_end))

        meetings = self.repository.list_due_meetings(now, window_end)
        if not meetings:
            logger.info("[sweep] no meetings due")
            return SweepResult(
                success=True,
                message=f"No meetings found within the next {lead} minutes",
                timestamp=to_storage(now),
            )

        tally = _SweepTally(examined=len(meetings))
        workers = min(self.settings.sweep_workers, len(meetings))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reminder-sweep") as pool:
            futures = {pool.submit(self._process_meeting, meeting, tally): meeting.id for meeting in meetings}
            for future in as_completed(futures):
                meeting_id = futures[future]
                try:
                    future.result()
                except Exception as exc:
                    logger.exception("[sweep] failed: meeting_id=%s", meeting_id)
                    tally.add_error(f"Error processing meeting {meeting_id}: {exc}")

        logger.info(
            "[sweep] finished: examined=%s skipped=%s sent=%s errors=%s",
            tally.examined, tally.skipped, tally.sent, len(tally.errors),
        )
        return SweepResult(
            success=True,
            message="Meeting reminders processed successfully",
            timestamp=to_storage(now),
            examined=tally.examined,
            skipped=tally.skipped,
            reminders_sent=tally.sent,
            errors=list(tally.errors) or None,
        )

    def _process_meeting(self, meeting: Meeting, tally: _SweepTally) -> None:
        entry = self.ledger.get_status(meeting.id)
        if entry is not None and entry.fully_notified:
            logger.info("[sweep] skip(all_notified): meeting_id=%s", meeting.id)
            tally.add_skipped()
            return

        try:
            participants = {
                role: self.directory.get_participant(meeting.participant_id(role)) for role in ParticipantRole
            }
        except LookupFailure as exc:
            logger.error("[sweep] missing participant data: meeting_id=%s error=%s", meeting.id, exc)
            tally.add_error(f"Missing user data for meeting {meeting.id}: {exc}")
            return

        attempted = False
        for role in ParticipantRole:
            if entry is not None and entry.is_notified(role):
                logger.debug("[sweep] %s already notified: meeting_id=%s", role.value, meeting.id)
                continue
            if attempted:
                # Spacing between sends keeps us under the gateway's rate limit
                self._sleep(self.settings.reminder_send_delay_ms / 1000)
            attempted = True
            if self._remind(meeting, role, participants[role], participants[role.other], tally):
                tally.add_sent()

    def _remind(self, meeting: Meeting, role: ParticipantRole, recipient: Participant, other: Participant,
                tally: _SweepTally) -> bool:
        # Lease times come from the clock at claim time, not the sweep's start
        claimed_at = self._clock()
        lease_until = claimed_at + timedelta(seconds=self.settings.notification_lease_seconds)
        if not self.ledger.acquire_lease(meeting.id, role, claimed_at, lease_until):
            logger.info("[sweep] %s already notified or in flight: meeting_id=%s", role.value, meeting.id)
            return False

        try:
            self.dispatcher.deliver(NotificationKind.MEETING_REMINDER, recipient, other, meeting)
        except DeliveryFailure as exc:
            self.ledger.release_lease(meeting.id, role)
            logger.warning("[sweep] delivery failed: meeting_id=%s role=%s error=%s", meeting.id, role.value, exc)
            tally.add_error(f"Failed to send reminder to {role.value} {recipient.email} for meeting {meeting.id}: {exc}")
            return False

        if not self.ledger.mark_notified(meeting.id, role, self._clock()):
            logger.warning("[sweep] %s flag was already set after delivery: meeting_id=%s", role.value, meeting.id)
        logger.info("[sweep] reminded %s %s: meeting_id=%s", role.value, recipient.email, meeting.id)
        return True
