import sys
from datetime import timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.config import Settings, get_settings  # noqa: E402
from backend.errors import DeliveryFailure, LookupFailure  # noqa: E402
from backend.meetings.controller import MeetingController  # noqa: E402
from backend.models.meeting_model import Decision, Participant  # noqa: E402
from backend.reminders.controller import ReminderSweep  # noqa: E402
from backend.services.notifications import NotificationDispatcher, NotificationOutbox  # noqa: E402
from backend.services.repository import (  # noqa: E402
    CancellationRepository,
    JsonFileStore,
    MeetingRepository,
    NotificationLedger,
)
from backend.services.room_client import RoomClient  # noqa: E402
from backend.utils.auth_aws import get_session  # noqa: E402
from backend.utils.time_utils import utc_now  # noqa: E402


@pytest.fixture(autouse=True)
def _env(monkeypatch, tmp_path):
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "test")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "test")
    monkeypatch.setenv("SYSTEM_API_KEY", "cron-secret")
    monkeypatch.setenv("MAIL_SENDER_ADDRESS", "reminders@example.com")
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    get_settings.cache_clear()
    get_session.cache_clear()
    yield
    get_settings.cache_clear()
    get_session.cache_clear()


class FakeDirectory:
    def __init__(self, participants):
        self.participants = {p.user_id: p for p in participants}

    def get_participant(self, user_id):
        if user_id not in self.participants:
            raise LookupFailure(f"Participant {user_id} not found")
        return self.participants[user_id]


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.failing = set()

    def send(self, address, message):
        if address in self.failing:
            raise DeliveryFailure(f"Failed to send email to {address}: mailbox unavailable")
        self.sent.append((address, message))
        return f"msg-{len(self.sent)}"

    def addresses(self):
        return [address for address, _ in self.sent]


@pytest.fixture
def alice():
    return Participant(user_id="alice", first_name="Alice", last_name="Kim", email="alice@example.com")


@pytest.fixture
def bob():
    return Participant(user_id="bob", first_name="Bob", last_name="Lee", email="bob@example.com")


@pytest.fixture
def store(tmp_path):
    return JsonFileStore(tmp_path / "store")


@pytest.fixture
def repository(store):
    return MeetingRepository(store)


@pytest.fixture
def ledger(store):
    return NotificationLedger(store)


@pytest.fixture
def cancellations(store):
    return CancellationRepository(store)


@pytest.fixture
def directory(alice, bob):
    carol = Participant(user_id="carol", first_name="Carol", last_name="Park", email="carol@example.com")
    return FakeDirectory([alice, bob, carol])


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def dispatcher(directory, mailer):
    return NotificationDispatcher(directory, mailer, tz_name="UTC")


@pytest.fixture
def outbox(dispatcher):
    return NotificationOutbox(dispatcher)


@pytest.fixture
def controller(repository, cancellations, outbox, directory):
    room_client = RoomClient(base_url="https://meet.example.com", secret="link-secret")
    return MeetingController(repository, cancellations, outbox, directory, room_client=room_client)


@pytest.fixture
def sweep_settings():
    return Settings(reminder_lead_minutes=10, reminder_send_delay_ms=0, sweep_workers=2)


@pytest.fixture
def sweep(repository, ledger, directory, dispatcher, sweep_settings):
    return ReminderSweep(repository, ledger, directory, dispatcher, settings=sweep_settings, sleep=lambda _: None)


@pytest.fixture
def accepted_meeting(controller, outbox, mailer):
    """Factory for an accepted alice->bob meeting starting `minutes` after `now`."""

    def _make(now=None, minutes=7, description="Python pairing"):
        now = now or utc_now()
        meeting = controller.propose("alice", "bob", now + timedelta(minutes=minutes), description, now=now)
        meeting = controller.respond(meeting.id, "bob", Decision.ACCEPT)
        outbox.drain()
        mailer.sent.clear()
        return meeting

    return _make
