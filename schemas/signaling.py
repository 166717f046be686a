from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class SignalingMessageType(str, Enum):
    # Client -> Server
    JOIN_MEETING = "join-meeting"
    LEAVE_MEETING = "leave-meeting"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    # Server -> Client
    CONNECTED = "connected"
    PARTICIPANTS_LIST = "participants-list"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    ERROR = "error"


# Message kinds forwarded point to point, and the payload field each carries
RELAYED_PAYLOAD_FIELDS = {
    SignalingMessageType.OFFER: "offer",
    SignalingMessageType.ANSWER: "answer",
    SignalingMessageType.ICE_CANDIDATE: "candidate",
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JoinMeetingMessage(_CamelModel):
    meeting_id: str = Field(alias="meetingId", min_length=1)
    participant_id: str = Field(
        alias="participantId", validation_alias=AliasChoices("participantId", "participant_id", "userId"), min_length=1
    )


class LeaveMeetingMessage(_CamelModel):
    meeting_id: Optional[str] = Field(default=None, alias="meetingId")


class RelayedMessage(_CamelModel):
    target_connection_id: str = Field(alias="targetConnectionId", min_length=1)


class ParticipantInfo(_CamelModel):
    connection_id: str = Field(alias="connectionId")
    participant_id: str = Field(alias="participantId")
