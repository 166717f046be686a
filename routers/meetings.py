from fastapi import APIRouter, Depends, HTTPException

from dependencies import get_registry, require_token
from errors import MeetingNotFound, WrongPassword
from logging_config import get_logger
from registry import MeetingRegistry
from schemas.meetings import CreateMeetingResponse, JoinMeetingRequest, JoinMeetingResponse

logger = get_logger(__name__)

meetings_router = APIRouter(prefix="/api/meetings", tags=["meetings"], dependencies=[Depends(require_token)])


@meetings_router.post("/create", response_model=CreateMeetingResponse, response_model_by_alias=True)
async def create_meeting(registry: MeetingRegistry = Depends(get_registry)):
    # Response 200: { "meetingId": "9F3A0C51D2E47B86", "password": "4C1D9E0A" }
    meeting = registry.create()
    return CreateMeetingResponse(meeting_id=meeting.id, password=meeting.password)


@meetings_router.post("/join", response_model=JoinMeetingResponse, response_model_by_alias=True)
async def join_meeting(body: JoinMeetingRequest, registry: MeetingRegistry = Depends(get_registry)):
    # Body: { "meetingId": "...", "password": "..." }
    # Only checks the credentials. The participant is added when it joins over the WebSocket.
    try:
        meeting = registry.verify_password(body.meeting_id, body.password)
    except MeetingNotFound as e:
        logger.warning(f"Join pre-check failed: meeting {body.meeting_id} not found")
        raise HTTPException(status_code=404, detail=e.message)
    except WrongPassword as e:
        logger.warning(f"Join pre-check failed: invalid password for meeting {body.meeting_id}")
        raise HTTPException(status_code=403, detail=e.message)

    logger.info(f"Join pre-check passed for meeting {meeting.id}")
    return JoinMeetingResponse(meeting_id=meeting.id)
