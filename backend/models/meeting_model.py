from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class MeetingState(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


CANCELLABLE_STATES = frozenset({MeetingState.PENDING, MeetingState.ACCEPTED})


class ParticipantRole(str, Enum):
    INITIATOR = "initiator"
    COUNTERPART = "counterpart"

    @property
    def other(self) -> ParticipantRole:
        if self is ParticipantRole.INITIATOR:
            return ParticipantRole.COUNTERPART
        return ParticipantRole.INITIATOR


class Decision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class Meeting(BaseModel):
    id: str
    initiator_id: str
    counterpart_id: str
    scheduled_time: datetime
    description: str = ""
    meeting_link: str | None = None
    state: MeetingState = MeetingState.PENDING
    created_at: datetime
    updated_at: datetime | None = None

    def participant_id(self, role: ParticipantRole) -> str:
        if role is ParticipantRole.INITIATOR:
            return self.initiator_id
        return self.counterpart_id

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.initiator_id, self.counterpart_id)

    def other_party(self, user_id: str) -> str:
        return self.counterpart_id if user_id == self.initiator_id else self.initiator_id


class LedgerEntry(BaseModel):
    meeting_id: str
    initiator_notified: bool = False
    counterpart_notified: bool = False
    notification_sent_at: datetime | None = None
    initiator_lease_until: datetime | None = None
    counterpart_lease_until: datetime | None = None

    def is_notified(self, role: ParticipantRole) -> bool:
        return getattr(self, f"{role.value}_notified")

    @property
    def fully_notified(self) -> bool:
        return self.initiator_notified and self.counterpart_notified


class CancellationRecord(BaseModel):
    meeting_id: str
    cancelled_by: str
    counterpart_id: str
    reason: str
    cancelled_at: datetime
    acknowledged_by_counterpart: bool = False
    acknowledged_at: datetime | None = None


class Participant(BaseModel):
    user_id: str
    first_name: str = ""
    last_name: str = ""
    email: str

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email


class ProposeRequest(BaseModel):
    initiator_id: str
    counterpart_id: str
    scheduled_time: datetime
    description: str = ""


class RespondRequest(BaseModel):
    responder_id: str
    decision: Decision


class CancelRequest(BaseModel):
    cancelled_by: str
    reason: str


class AcknowledgeRequest(BaseModel):
    user_id: str
