from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CronResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    message: str = ""
    timestamp: str | None = None
    errors: list[str] | None = None


class SweepResult(CronResponse):
    examined: int = 0
    skipped: int = 0
    reminders_sent: int = 0


class CompletionResult(CronResponse):
    completed: int = 0


class UnacknowledgedCancellation(BaseModel):
    meeting_id: str
    reason: str
    cancelled_at: str
    canceller_id: str
    canceller_name: str
    meeting_time: str
    meeting_description: str
