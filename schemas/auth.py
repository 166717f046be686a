from pydantic import AliasChoices, BaseModel, Field


class SendOtpRequest(BaseModel):
    email: str


class SendOtpResponse(BaseModel):
    success: bool = True
    message: str = "OTP sent to email"


class VerifyOtpRequest(BaseModel):
    email: str
    otp: str = Field(validation_alias=AliasChoices("otp", "code"))


class VerifyOtpResponse(BaseModel):
    success: bool = True
    token: str
