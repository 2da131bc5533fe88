from fastapi import APIRouter, Depends, HTTPException

from backend.dependencies import get_meeting_controller
from backend.errors import InvalidInput, InvalidState, LookupFailure, MeetingError, NotAuthorized
from backend.models.meeting_model import AcknowledgeRequest, CancelRequest, ProposeRequest, RespondRequest
from backend.utils.join_token import verify_join_token

from .controller import MeetingController

router = APIRouter()

_STATUS_BY_ERROR = {
    InvalidInput: 400,
    NotAuthorized: 403,
    LookupFailure: 404,
    InvalidState: 409,
}


def _http_error(exc: MeetingError) -> HTTPException:
    return HTTPException(status_code=_STATUS_BY_ERROR.get(type(exc), 500), detail=str(exc))


@router.post("", status_code=201)
def propose_meeting(payload: ProposeRequest, controller: MeetingController = Depends(get_meeting_controller)):
    try:
        return controller.propose(payload.initiator_id, payload.counterpart_id, payload.scheduled_time,
                                  payload.description)
    except MeetingError as exc:
        raise _http_error(exc) from exc


@router.get("/cancellations/unacknowledged")
def list_unacknowledged(user_id: str, controller: MeetingController = Depends(get_meeting_controller)):
    return controller.list_unacknowledged(user_id)


@router.get("/{meeting_id}")
def get_meeting(meeting_id: str, controller: MeetingController = Depends(get_meeting_controller)):
    try:
        return controller.get_meeting(meeting_id)
    except MeetingError as exc:
        raise _http_error(exc) from exc


@router.post("/{meeting_id}/respond")
def respond_to_meeting(meeting_id: str, payload: RespondRequest,
                       controller: MeetingController = Depends(get_meeting_controller)):
    try:
        return controller.respond(meeting_id, payload.responder_id, payload.decision)
    except MeetingError as exc:
        raise _http_error(exc) from exc


@router.post("/{meeting_id}/cancel")
def cancel_meeting(meeting_id: str, payload: CancelRequest,
                   controller: MeetingController = Depends(get_meeting_controller)):
    try:
        meeting = controller.cancel(meeting_id, payload.cancelled_by, payload.reason)
    except MeetingError as exc:
        raise _http_error(exc) from exc
    return {"meeting": meeting, "cancellation": controller.cancellations.get_cancellation(meeting_id)}


@router.post("/{meeting_id}/complete")
def complete_meeting(meeting_id: str, controller: MeetingController = Depends(get_meeting_controller)):
    try:
        return controller.complete(meeting_id)
    except MeetingError as exc:
        raise _http_error(exc) from exc


@router.post("/{meeting_id}/acknowledge")
def acknowledge_cancellation(meeting_id: str, payload: AcknowledgeRequest,
                             controller: MeetingController = Depends(get_meeting_controller)):
    try:
        return controller.acknowledge(meeting_id, payload.user_id)
    except MeetingError as exc:
        raise _http_error(exc) from exc


@router.get("/{meeting_id}/join")
def join_meeting(meeting_id: str, token: str = "", controller: MeetingController = Depends(get_meeting_controller)):
    if not verify_join_token(token, meeting_id):
        raise HTTPException(status_code=403, detail="Invalid or expired meeting link")
    try:
        meeting = controller.get_meeting(meeting_id)
    except MeetingError as exc:
        raise _http_error(exc) from exc
    return {"meeting_id": meeting.id, "state": meeting.state, "meeting_link": meeting.meeting_link}
