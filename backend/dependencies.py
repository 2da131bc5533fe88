from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from backend.config import get_settings
from backend.meetings.controller import MeetingController
from backend.reminders.controller import ReminderSweep
from backend.services.directory import DynamoParticipantDirectory, ParticipantDirectory
from backend.services.dynamo_repository import (
    DynamoCancellationRepository,
    DynamoMeetingRepository,
    DynamoNotificationLedger,
)
from backend.services.mailer import SesMailer
from backend.services.notifications import NotificationDispatcher, NotificationOutbox
from backend.services.repository import (
    CancellationRepository,
    JsonFileStore,
    MeetingRepository,
    NotificationLedger,
)


def _uses_dynamodb() -> bool:
    return get_settings().storage_backend == "dynamodb"


@lru_cache
def get_file_store() -> JsonFileStore:
    return JsonFileStore(Path(get_settings().data_dir))


@lru_cache
def get_meeting_repository() -> Any:
    return DynamoMeetingRepository() if _uses_dynamodb() else MeetingRepository(get_file_store())


@lru_cache
def get_ledger() -> Any:
    return DynamoNotificationLedger() if _uses_dynamodb() else NotificationLedger(get_file_store())


@lru_cache
def get_cancellation_repository() -> Any:
    return DynamoCancellationRepository() if _uses_dynamodb() else CancellationRepository(get_file_store())


@lru_cache
def get_directory() -> Any:
    return DynamoParticipantDirectory() if _uses_dynamodb() else ParticipantDirectory()


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(get_directory(), SesMailer())


@lru_cache
def get_outbox() -> NotificationOutbox:
    return NotificationOutbox(get_dispatcher())


def get_meeting_controller() -> MeetingController:
    return MeetingController(
        repository=get_meeting_repository(),
        cancellations=get_cancellation_repository(),
        outbox=get_outbox(),
        directory=get_directory(),
    )


def get_reminder_sweep() -> ReminderSweep:
    return ReminderSweep(
        repository=get_meeting_repository(),
        ledger=get_ledger(),
        directory=get_directory(),
        dispatcher=get_dispatcher(),
    )
