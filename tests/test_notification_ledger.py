from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from backend.models.meeting_model import ParticipantRole
from backend.utils.time_utils import utc_now


def test_absent_entry_reads_as_none(ledger):
    assert ledger.get_status("mtg-1") is None


def test_mark_notified_creates_entry_and_is_idempotent(ledger):
    first_at = utc_now()
    assert ledger.mark_notified("mtg-1", ParticipantRole.INITIATOR, first_at) is True

    entry = ledger.get_status("mtg-1")
    assert entry.initiator_notified is True
    assert entry.counterpart_notified is False
    assert entry.notification_sent_at == first_at

    assert ledger.mark_notified("mtg-1", ParticipantRole.INITIATOR, first_at + timedelta(minutes=1)) is False
    assert ledger.mark_notified("mtg-1", ParticipantRole.COUNTERPART, first_at + timedelta(minutes=2)) is True

    entry = ledger.get_status("mtg-1")
    assert entry.fully_notified
    assert entry.notification_sent_at == first_at


def test_concurrent_marks_flip_each_flag_once(ledger):
    roles = [ParticipantRole.INITIATOR, ParticipantRole.COUNTERPART] * 8
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda role: (role, ledger.mark_notified("mtg-2", role)), roles))

    flips = [role for role, flipped in results if flipped]
    assert sorted(flips) == sorted([ParticipantRole.INITIATOR, ParticipantRole.COUNTERPART])
    assert ledger.get_status("mtg-2").fully_notified


def test_lease_blocks_second_claim_until_expiry(ledger):
    now = utc_now()
    role = ParticipantRole.COUNTERPART
    assert ledger.acquire_lease("mtg-3", role, now, now + timedelta(minutes=2)) is True
    assert ledger.acquire_lease("mtg-3", role, now + timedelta(seconds=30), now + timedelta(minutes=3)) is False
    assert ledger.acquire_lease("mtg-3", ParticipantRole.INITIATOR, now, now + timedelta(minutes=2)) is True

    later = now + timedelta(minutes=5)
    assert ledger.acquire_lease("mtg-3", role, later, later + timedelta(minutes=2)) is True


def test_released_or_notified_lease(ledger):
    now = utc_now()
    role = ParticipantRole.INITIATOR
    assert ledger.acquire_lease("mtg-4", role, now, now + timedelta(minutes=2))
    ledger.release_lease("mtg-4", role)
    assert ledger.acquire_lease("mtg-4", role, now, now + timedelta(minutes=2))

    ledger.mark_notified("mtg-4", role, now)
    assert ledger.get_status("mtg-4").initiator_lease_until is None
    assert ledger.acquire_lease("mtg-4", role, now + timedelta(hours=1), now + timedelta(hours=2)) is False
