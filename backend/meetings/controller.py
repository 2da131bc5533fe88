from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from backend.config import get_settings
from backend.errors import InvalidInput, InvalidState, LookupFailure, NotAuthorized
from backend.models.meeting_model import (
    CANCELLABLE_STATES,
    CancellationRecord,
    Decision,
    Meeting,
    MeetingState,
)
from backend.models.sweep_model import CompletionResult, UnacknowledgedCancellation
from backend.services.notifications import Notification, NotificationOutbox
from backend.services.room_client import RoomClient
from backend.services.templates import NotificationKind
from backend.utils.time_utils import ensure_aware, to_storage, utc_now

logger = logging.getLogger(__name__)


class MeetingController:
    """Meeting state machine: pending -> accepted|rejected|cancelled, accepted -> cancelled|completed."""

    def __init__(
        self,
        repository: Any,
        cancellations: Any,
        outbox: NotificationOutbox,
        directory: Any,
        room_client: RoomClient | None = None,
    ):
        self.repository = repository
        self.cancellations = cancellations
        self.outbox = outbox
        self.directory = directory
        self.room_client = room_client or RoomClient()
        self.settings = get_settings()

    def get_meeting(self, meeting_id: str) -> Meeting:
        meeting = self.repository.get_meeting(meeting_id)
        if meeting is None:
            raise LookupFailure(f"Meeting {meeting_id} not found")
        return meeting

    def _notify(self, kind: NotificationKind, meeting: Meeting, recipient_id: str, actor_id: str,
                reason: str | None = None) -> None:
        self.outbox.enqueue(Notification(kind=kind, meeting=meeting, recipient_id=recipient_id,
                                         actor_id=actor_id, reason=reason))

    def propose(self, initiator_id: str, counterpart_id: str, scheduled_time: datetime, description: str = "",
                now: datetime | None = None) -> Meeting:
        now = now or utc_now()
        if not initiator_id or not counterpart_id:
            raise InvalidInput("Both participants are required")
        if initiator_id == counterpart_id:
            raise InvalidInput("A meeting needs two distinct participants")
        scheduled_time = ensure_aware(scheduled_time)
        if scheduled_time <= now:
            raise InvalidInput("Meeting time must be in the future")

        meeting = Meeting(
            id=f"mtg-{uuid.uuid4().hex[:12]}",
            initiator_id=initiator_id,
            counterpart_id=counterpart_id,
            scheduled_time=scheduled_time,
            description=description.strip(),
            state=MeetingState.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.repository.create_meeting(meeting)
        logger.info("Meeting %s proposed by %s to %s for %s",
                    meeting.id, initiator_id, counterpart_id, to_storage(scheduled_time))
        self._notify(NotificationKind.MEETING_REQUEST, meeting, counterpart_id, initiator_id)
        return meeting

    def respond(self, meeting_id: str, responder_id: str, decision: Decision) -> Meeting:
        meeting = self.get_meeting(meeting_id)
        if responder_id != meeting.counterpart_id:
            raise NotAuthorized("Only the invited participant can respond to this meeting")
        if meeting.state is not MeetingState.PENDING:
            raise InvalidState(f"Meeting {meeting_id} is {meeting.state.value}")

        if decision is Decision.ACCEPT:
            link = self.room_client.create_room(meeting)
            meeting = self.repository.transition(meeting_id, {MeetingState.PENDING}, MeetingState.ACCEPTED,
                                                 meeting_link=link)
            kind = NotificationKind.MEETING_ACCEPTED
        else:
            meeting = self.repository.transition(meeting_id, {MeetingState.PENDING}, MeetingState.REJECTED)
            kind = NotificationKind.MEETING_REJECTED
        logger.info("Meeting %s %s by %s", meeting_id, meeting.state.value, responder_id)
        self._notify(kind, meeting, meeting.initiator_id, responder_id)
        return meeting

    def cancel(self, meeting_id: str, canceller_id: str, reason: str) -> Meeting:
        reason = (reason or "").strip()
        if not reason:
            raise InvalidInput("A cancellation reason is required")
        meeting = self.get_meeting(meeting_id)
        if not meeting.is_participant(canceller_id):
            raise NotAuthorized("Only a participant can cancel this meeting")
        if meeting.state not in CANCELLABLE_STATES:
            raise InvalidState(f"Meeting {meeting_id} is {meeting.state.value}")

        counterpart_id = meeting.other_party(canceller_id)
        record = CancellationRecord(
            meeting_id=meeting_id,
            cancelled_by=canceller_id,
            counterpart_id=counterpart_id,
            reason=reason,
            cancelled_at=utc_now(),
        )
        meeting = self.repository.cancel_meeting(meeting_id, record)
        logger.info("Meeting %s cancelled by %s", meeting_id, canceller_id)
        self._notify(NotificationKind.MEETING_CANCELLED, meeting, counterpart_id, canceller_id, reason=reason)
        self._notify(NotificationKind.MEETING_CANCELLATION_CONFIRMED, meeting, canceller_id, counterpart_id,
                     reason=reason)
        return meeting

    def complete(self, meeting_id: str) -> Meeting:
        meeting = self.get_meeting(meeting_id)
        if meeting.state is MeetingState.COMPLETED:
            return meeting
        try:
            return self.repository.transition(meeting_id, {MeetingState.ACCEPTED}, MeetingState.COMPLETED)
        except InvalidState:
            current = self.get_meeting(meeting_id)
            if current.state is MeetingState.COMPLETED:
                return current
            raise

    def acknowledge(self, meeting_id: str, acknowledger_id: str) -> CancellationRecord:
        record = self.cancellations.get_cancellation(meeting_id)
        if record is None:
            raise InvalidState(f"Meeting {meeting_id} has no cancellation to acknowledge")
        if acknowledger_id != record.counterpart_id:
            raise NotAuthorized("Only the other participant can acknowledge this cancellation")
        if record.acknowledged_by_counterpart:
            return record
        return self.cancellations.acknowledge(meeting_id, utc_now())

    def list_unacknowledged(self, user_id: str) -> list[UnacknowledgedCancellation]:
        results: list[UnacknowledgedCancellation] = []
        for record in self.cancellations.list_unacknowledged(user_id):
            meeting = self.repository.get_meeting(record.meeting_id)
            try:
                canceller_name = self.directory.get_participant(record.cancelled_by).display_name
            except LookupFailure:
                canceller_name = "Unknown User"
            results.append(
                UnacknowledgedCancellation(
                    meeting_id=record.meeting_id,
                    reason=record.reason,
                    cancelled_at=to_storage(record.cancelled_at),
                    canceller_id=record.cancelled_by,
                    canceller_name=canceller_name,
                    meeting_time=to_storage(meeting.scheduled_time) if meeting else "",
                    meeting_description=(meeting.description if meeting else "") or "Meeting",
                )
            )
        return results

    def complete_overdue(self, now: datetime | None = None) -> CompletionResult:
        """Retire accepted meetings whose start passed more than the grace period ago."""
        now = now or utc_now()
        cutoff = now - timedelta(minutes=self.settings.completion_grace_minutes)
        completed = 0
        errors: list[str] = []
        for meeting in self.repository.list_overdue_meetings(cutoff):
            try:
                self.repository.transition(meeting.id, {MeetingState.ACCEPTED}, MeetingState.COMPLETED)
                completed += 1
            except (InvalidState, LookupFailure) as exc:
                logger.info("Skip completing meeting %s: %s", meeting.id, exc)
                errors.append(f"Meeting {meeting.id}: {exc}")
        logger.info("Overdue completion finished: completed=%s cutoff=%s", completed, to_storage(cutoff))
        return CompletionResult(
            success=True,
            message=f"Completed {completed} overdue meetings",
            timestamp=to_storage(now),
            completed=completed,
            errors=errors or None,
        )
