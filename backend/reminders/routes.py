import hmac
import logging

from fastapi import APIRouter, Depends, Header, Response
from fastapi.responses import JSONResponse

from backend.config import get_settings
from backend.dependencies import get_meeting_controller, get_reminder_sweep
from backend.meetings.controller import MeetingController
from backend.utils.time_utils import now_iso

from .controller import ReminderSweep

logger = logging.getLogger(__name__)

router = APIRouter()


def _authorized(api_key: str | None) -> bool:
    expected = get_settings().system_api_key
    return bool(api_key and expected and hmac.compare_digest(api_key, expected))


def _unauthorized() -> JSONResponse:
    logger.error("Unauthorized cron call: invalid or missing API key")
    return JSONResponse(
        status_code=401,
        content={"success": False, "message": "Unauthorized: Invalid or missing API key", "timestamp": now_iso()},
    )


def _failure(message: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": message, "error": str(exc), "timestamp": now_iso()},
    )


@router.head("/reminders")
def reminders_liveness():
    return Response(status_code=200)


@router.get("/reminders")
def run_reminder_sweep(
    x_api_key: str | None = Header(default=None),
    sweep: ReminderSweep = Depends(get_reminder_sweep),
):
    if not _authorized(x_api_key):
        return _unauthorized()
    try:
        get_settings().validate_required()
        result = sweep.run()
    except Exception as exc:
        logger.exception("Meeting reminder sweep failed")
        return _failure("Meeting reminders cron job failed", exc)
    return JSONResponse(content=result.model_dump(by_alias=True, exclude_none=True))


@router.post("/complete")
def complete_overdue_meetings(
    x_api_key: str | None = Header(default=None),
    controller: MeetingController = Depends(get_meeting_controller),
):
    if not _authorized(x_api_key):
        return _unauthorized()
    try:
        result = controller.complete_overdue()
    except Exception as exc:
        logger.exception("Overdue meeting completion failed")
        return _failure("Meeting completion cron job failed", exc)
    return JSONResponse(content=result.model_dump(by_alias=True, exclude_none=True))
