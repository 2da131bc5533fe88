from datetime import timedelta

import pytest

from backend.errors import InvalidInput, InvalidState, LookupFailure, NotAuthorized
from backend.models.meeting_model import Decision, MeetingState
from backend.services.templates import NotificationKind
from backend.utils.join_token import verify_join_token
from backend.utils.time_utils import utc_now


def _propose(controller, minutes=60):
    return controller.propose("alice", "bob", utc_now() + timedelta(minutes=minutes), "Intro call")


def test_propose_creates_pending_meeting_and_notifies_counterpart(controller, repository, outbox, mailer):
    meeting = _propose(controller)

    assert meeting.state is MeetingState.PENDING
    assert meeting.meeting_link is None
    assert repository.get_meeting(meeting.id) == meeting
    assert outbox.drain() == 1
    assert mailer.addresses() == ["bob@example.com"]
    assert "Alice Kim sent you a meeting request" in mailer.sent[0][1].text


def test_propose_rejects_past_time_and_same_participant(controller):
    with pytest.raises(InvalidInput):
        controller.propose("alice", "bob", utc_now() - timedelta(minutes=1))
    with pytest.raises(InvalidInput):
        controller.propose("alice", "alice", utc_now() + timedelta(hours=1))


def test_propose_rejects_time_equal_to_now(controller):
    now = utc_now()
    with pytest.raises(InvalidInput):
        controller.propose("alice", "bob", now, now=now)


def test_accept_assigns_signed_link(controller, outbox, mailer):
    meeting = _propose(controller)
    accepted = controller.respond(meeting.id, "bob", Decision.ACCEPT)

    assert accepted.state is MeetingState.ACCEPTED
    assert accepted.meeting_link.startswith(f"https://meet.example.com/meeting/{meeting.id}?token=")
    token = accepted.meeting_link.split("token=", 1)[1]
    assert verify_join_token(token, meeting.id, secret="link-secret")
    assert not verify_join_token(token, "mtg-other", secret="link-secret")

    outbox.drain()
    assert mailer.addresses()[-1] == "alice@example.com"


def test_reject_changes_only_state(controller):
    meeting = _propose(controller)
    rejected = controller.respond(meeting.id, "bob", Decision.REJECT)

    assert rejected.state is MeetingState.REJECTED
    assert rejected.meeting_link is None
    assert rejected.scheduled_time == meeting.scheduled_time


def test_respond_requires_counterpart(controller):
    meeting = _propose(controller)
    with pytest.raises(NotAuthorized):
        controller.respond(meeting.id, "alice", Decision.ACCEPT)
    with pytest.raises(NotAuthorized):
        controller.respond(meeting.id, "carol", Decision.ACCEPT)


@pytest.mark.parametrize("terminal", ["accept", "reject", "cancel", "complete"])
def test_respond_fails_unless_pending(controller, terminal):
    meeting = _propose(controller)
    if terminal == "reject":
        controller.respond(meeting.id, "bob", Decision.REJECT)
    else:
        controller.respond(meeting.id, "bob", Decision.ACCEPT)
        if terminal == "cancel":
            controller.cancel(meeting.id, "alice", "schedule conflict")
        elif terminal == "complete":
            controller.complete(meeting.id)

    with pytest.raises(InvalidState):
        controller.respond(meeting.id, "bob", Decision.ACCEPT)


def test_respond_unknown_meeting(controller):
    with pytest.raises(LookupFailure):
        controller.respond("mtg-missing", "bob", Decision.ACCEPT)


def test_cancel_accepted_meeting_records_cancellation_and_notifies(controller, cancellations, outbox, mailer):
    meeting = _propose(controller)
    controller.respond(meeting.id, "bob", Decision.ACCEPT)
    outbox.drain()
    mailer.sent.clear()

    cancelled = controller.cancel(meeting.id, "alice", "schedule conflict")

    assert cancelled.state is MeetingState.CANCELLED
    record = cancellations.get_cancellation(meeting.id)
    assert record.cancelled_by == "alice"
    assert record.counterpart_id == "bob"
    assert record.reason == "schedule conflict"
    assert record.acknowledged_by_counterpart is False

    assert outbox.drain() == 2
    sent = dict(mailer.sent)
    assert sorted(sent) == ["alice@example.com", "bob@example.com"]

    notice = sent["bob@example.com"]
    assert notice.subject == "Meeting Cancelled: Your meeting has been cancelled"
    assert "Alice Kim has cancelled your scheduled meeting." in notice.text
    assert "schedule conflict" in notice.text

    confirmation = sent["alice@example.com"]
    assert confirmation.subject == "Meeting Cancelled: Confirmation of your cancellation"
    assert "You have successfully cancelled your meeting with Bob Lee." in confirmation.text
    assert "schedule conflict" in confirmation.text


def test_cancel_pending_meeting_by_counterpart(controller, cancellations):
    meeting = _propose(controller)
    cancelled = controller.cancel(meeting.id, "bob", "not available")

    assert cancelled.state is MeetingState.CANCELLED
    assert cancellations.get_cancellation(meeting.id).counterpart_id == "alice"


def test_cancel_validation(controller):
    meeting = _propose(controller)
    with pytest.raises(NotAuthorized):
        controller.cancel(meeting.id, "carol", "I am not invited")
    with pytest.raises(InvalidInput):
        controller.cancel(meeting.id, "alice", "   ")

    controller.respond(meeting.id, "bob", Decision.REJECT)
    with pytest.raises(InvalidState):
        controller.cancel(meeting.id, "alice", "too late")


def test_cancel_is_not_blocked_by_notification_failure(controller, outbox, mailer):
    meeting = _propose(controller)
    outbox.drain()
    mailer.sent.clear()
    mailer.failing.add("bob@example.com")

    cancelled = controller.cancel(meeting.id, "alice", "sick")

    assert cancelled.state is MeetingState.CANCELLED
    assert outbox.drain() == 1
    assert mailer.addresses() == ["alice@example.com"]
    assert controller.get_meeting(meeting.id).state is MeetingState.CANCELLED


def test_complete_is_idempotent(controller):
    meeting = _propose(controller)
    with pytest.raises(InvalidState):
        controller.complete(meeting.id)

    controller.respond(meeting.id, "bob", Decision.ACCEPT)
    assert controller.complete(meeting.id).state is MeetingState.COMPLETED
    assert controller.complete(meeting.id).state is MeetingState.COMPLETED


def test_acknowledge_flow(controller, cancellations):
    meeting = _propose(controller)
    with pytest.raises(InvalidState):
        controller.acknowledge(meeting.id, "bob")

    controller.cancel(meeting.id, "alice", "schedule conflict")
    with pytest.raises(NotAuthorized):
        controller.acknowledge(meeting.id, "alice")
    with pytest.raises(NotAuthorized):
        controller.acknowledge(meeting.id, "carol")

    record = controller.acknowledge(meeting.id, "bob")
    assert record.acknowledged_by_counterpart is True
    assert record.acknowledged_at is not None

    again = controller.acknowledge(meeting.id, "bob")
    assert again.acknowledged_at == record.acknowledged_at


def test_list_unacknowledged_only_for_counterpart(controller):
    first = _propose(controller)
    second = _propose(controller, minutes=120)
    controller.cancel(first.id, "alice", "schedule conflict")
    controller.cancel(second.id, "bob", "travelling")

    for_bob = controller.list_unacknowledged("bob")
    assert [item.meeting_id for item in for_bob] == [first.id]
    assert for_bob[0].canceller_name == "Alice Kim"
    assert for_bob[0].meeting_description == "Intro call"

    controller.acknowledge(first.id, "bob")
    assert controller.list_unacknowledged("bob") == []
    assert [item.meeting_id for item in controller.list_unacknowledged("alice")] == [second.id]


def test_complete_overdue_retires_old_accepted_meetings(controller, repository):
    meeting = _propose(controller, minutes=30)
    controller.respond(meeting.id, "bob", Decision.ACCEPT)
    upcoming = _propose(controller, minutes=600)
    controller.respond(upcoming.id, "bob", Decision.ACCEPT)

    later = utc_now() + timedelta(hours=5)
    result = controller.complete_overdue(now=later)

    assert result.completed == 1
    assert repository.get_meeting(meeting.id).state is MeetingState.COMPLETED
    assert repository.get_meeting(upcoming.id).state is MeetingState.ACCEPTED


def test_notification_kinds_cover_lifecycle():
    assert {kind.value for kind in NotificationKind} == {
        "meeting_request",
        "meeting_accepted",
        "meeting_rejected",
        "meeting_cancelled",
        "meeting_cancellation_confirmed",
        "meeting_reminder",
    }
