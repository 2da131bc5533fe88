from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from pydantic import BaseModel

from backend.errors import InvalidState, LookupFailure
from backend.models.meeting_model import (
    CANCELLABLE_STATES,
    CancellationRecord,
    LedgerEntry,
    Meeting,
    MeetingState,
    ParticipantRole,
)
from backend.utils.time_utils import to_storage, utc_now

logger = logging.getLogger(__name__)


def to_record(model: BaseModel) -> dict[str, Any]:
    """Flatten a model into storage primitives (fixed-width timestamps, enum values)."""
    record: dict[str, Any] = {}
    for key, value in model.model_dump().items():
        if isinstance(value, datetime):
            value = to_storage(value)
        elif isinstance(value, Enum):
            value = value.value
        record[key] = value
    return record


class JsonFileStore:
    """JSON-file backed collections sharing one lock, for local development."""

    def __init__(self, data_dir: Path | None = None):
        self.data_dir = data_dir or Path(__file__).resolve().parents[2] / "data"
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.lock = threading.RLock()

    def _path(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    def read(self, collection: str) -> dict[str, dict]:
        path = self._path(collection)
        if not path.exists():
            return {}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Corrupt collection file %s, treating as empty", path)
            return {}

    def write(self, collection: str, payload: dict[str, dict]) -> None:
        path = self._path(collection)
        staging = path.with_suffix(".json.tmp")
        staging.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        staging.replace(path)


class MeetingRepository:
    MEETINGS = "meetings"
    CANCELLATIONS = "cancellations"

    def __init__(self, store: JsonFileStore | None = None):
        self.store = store or JsonFileStore()

    def create_meeting(self, meeting: Meeting) -> Meeting:
        with self.store.lock:
            data = self.store.read(self.MEETINGS)
            data[meeting.id] = to_record(meeting)
            self.store.write(self.MEETINGS, data)
        return meeting

    def get_meeting(self, meeting_id: str) -> Meeting | None:
        with self.store.lock:
            item = self.store.read(self.MEETINGS).get(meeting_id)
        return Meeting(**item) if item else None

    def transition(
        self,
        meeting_id: str,
        allowed: Iterable[MeetingState],
        new_state: MeetingState,
        **updates: Any,
    ) -> Meeting:
        allowed = set(allowed)
        with self.store.lock:
            data = self.store.read(self.MEETINGS)
            item = data.get(meeting_id)
            if not item:
                raise LookupFailure(f"Meeting {meeting_id} not found")
            current = Meeting(**item)
            if current.state not in allowed:
                raise InvalidState(f"Meeting {meeting_id} is {current.state.value}")
            updated = current.model_copy(update={**updates, "state": new_state, "updated_at": utc_now()})
            data[meeting_id] = to_record(updated)
            self.store.write(self.MEETINGS, data)
        return updated

    def cancel_meeting(self, meeting_id: str, record: CancellationRecord) -> Meeting:
        """Flip the meeting to cancelled and store its cancellation record in one step."""
        with self.store.lock:
            meetings = self.store.read(self.MEETINGS)
            cancellations = self.store.read(self.CANCELLATIONS)
            item = meetings.get(meeting_id)
            if not item:
                raise LookupFailure(f"Meeting {meeting_id} not found")
            current = Meeting(**item)
            if current.state not in CANCELLABLE_STATES:
                raise InvalidState(f"Meeting {meeting_id} is {current.state.value}")
            # A record left next to a still-cancellable meeting is from an interrupted cancel; replace it
            previous = dict(cancellations)
            updated = current.model_copy(update={"state": MeetingState.CANCELLED, "updated_at": record.cancelled_at})
            meetings[meeting_id] = to_record(updated)
            cancellations[meeting_id] = to_record(record)
            self.store.write(self.CANCELLATIONS, cancellations)
            try:
                self.store.write(self.MEETINGS, meetings)
            except OSError:
                logger.exception("Cancel of meeting %s failed, restoring cancellations", meeting_id)
                self.store.write(self.CANCELLATIONS, previous)
                raise
        return updated

    def _query(self, state: MeetingState, predicate) -> list[Meeting]:
        with self.store.lock:
            items = list(self.store.read(self.MEETINGS).values())
        meetings = [Meeting(**item) for item in items if item.get("state") == state.value]
        return [meeting for meeting in meetings if predicate(meeting.scheduled_time)]

    def list_due_meetings(self, window_start: datetime, window_end: datetime) -> list[Meeting]:
        return self._query(MeetingState.ACCEPTED, lambda at: window_start <= at <= window_end)

    def list_overdue_meetings(self, cutoff: datetime) -> list[Meeting]:
        return self._query(MeetingState.ACCEPTED, lambda at: at < cutoff)


class NotificationLedger:
    LEDGER = "meeting_email_notifications"

    def __init__(self, store: JsonFileStore | None = None):
        self.store = store or JsonFileStore()

    def get_status(self, meeting_id: str) -> LedgerEntry | None:
        with self.store.lock:
            item = self.store.read(self.LEDGER).get(meeting_id)
        return LedgerEntry(**item) if item else None

    def _update(self, meeting_id: str, mutate) -> bool:
        with self.store.lock:
            data = self.store.read(self.LEDGER)
            entry = LedgerEntry(**data[meeting_id]) if meeting_id in data else LedgerEntry(meeting_id=meeting_id)
            changes = mutate(entry)
            if changes is None:
                return False
            data[meeting_id] = to_record(entry.model_copy(update=changes))
            self.store.write(self.LEDGER, data)
        return True

    def acquire_lease(self, meeting_id: str, role: ParticipantRole, now: datetime, until: datetime) -> bool:
        lease_field = f"{role.value}_lease_until"

        def mutate(entry: LedgerEntry):
            lease = getattr(entry, lease_field)
            if entry.is_notified(role) or (lease is not None and lease > now):
                return None
            return {lease_field: until}

        return self._update(meeting_id, mutate)

    def release_lease(self, meeting_id: str, role: ParticipantRole) -> None:
        lease_field = f"{role.value}_lease_until"
        self._update(meeting_id, lambda entry: {lease_field: None})

    def mark_notified(self, meeting_id: str, role: ParticipantRole, now: datetime | None = None) -> bool:
        """Set the role's flag; returns False when it was already set."""
        now = now or utc_now()

        def mutate(entry: LedgerEntry):
            if entry.is_notified(role):
                return None
            return {
                f"{role.value}_notified": True,
                f"{role.value}_lease_until": None,
                "notification_sent_at": entry.notification_sent_at or now,
            }

        return self._update(meeting_id, mutate)


class CancellationRepository:
    CANCELLATIONS = MeetingRepository.CANCELLATIONS

    def __init__(self, store: JsonFileStore | None = None):
        self.store = store or JsonFileStore()

    def get_cancellation(self, meeting_id: str) -> CancellationRecord | None:
        with self.store.lock:
            item = self.store.read(self.CANCELLATIONS).get(meeting_id)
        return CancellationRecord(**item) if item else None

    def acknowledge(self, meeting_id: str, acknowledged_at: datetime) -> CancellationRecord:
        with self.store.lock:
            data = self.store.read(self.CANCELLATIONS)
            item = data.get(meeting_id)
            if not item:
                raise InvalidState(f"Meeting {meeting_id} has no cancellation")
            record = CancellationRecord(**item)
            if record.acknowledged_by_counterpart:
                return record
            record = record.model_copy(update={"acknowledged_by_counterpart": True, "acknowledged_at": acknowledged_at})
            data[meeting_id] = to_record(record)
            self.store.write(self.CANCELLATIONS, data)
        return record

    def list_unacknowledged(self, user_id: str) -> list[CancellationRecord]:
        with self.store.lock:
            items = list(self.store.read(self.CANCELLATIONS).values())
            meetings = self.store.read(MeetingRepository.MEETINGS)
        records = [CancellationRecord(**item) for item in items]
        # A record whose meeting never reached cancelled is an interrupted cancel, not a cancellation
        return [
            record
            for record in records
            if record.counterpart_id == user_id
            and not record.acknowledged_by_counterpart
            and meetings.get(record.meeting_id, {}).get("state") == MeetingState.CANCELLED.value
        ]
