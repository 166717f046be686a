from pydantic import BaseModel, ConfigDict, Field


class CreateMeetingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    meeting_id: str = Field(alias="meetingId")
    password: str


class JoinMeetingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    meeting_id: str = Field(alias="meetingId")
    password: str


class JoinMeetingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    meeting_id: str = Field(alias="meetingId")


class HealthResponse(BaseModel):
    status: str = "ok"
    privacy: str = "zero-data-collection"
