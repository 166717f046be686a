from fastapi import APIRouter, Depends, HTTPException, Request

from credentials import CredentialService
from dependencies import get_credentials
from errors import CodeExpired, CodeMismatch, CodeNotFound, DeliveryFailure
from logging_config import get_logger, mask_email
from schemas.auth import SendOtpRequest, SendOtpResponse, VerifyOtpRequest, VerifyOtpResponse

logger = get_logger(__name__)

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/send-otp", response_model=SendOtpResponse)
async def send_otp(body: SendOtpRequest, request: Request, credentials: CredentialService = Depends(get_credentials)):
    # Body: { "email": "user@example.com" }
    # Response 200: { "success": true, "message": "OTP sent to email" }
    email = body.email.strip()
    if "@" not in email:
        raise HTTPException(status_code=400, detail="Valid email required")

    client_host = request.client.host if request.client else "unknown"
    logger.info(f"OTP request for {mask_email(email)} from {client_host}")
    try:
        await credentials.issue_code(email)
    except DeliveryFailure as e:
        logger.error(f"OTP send error for {mask_email(email)}: {e}")
        raise HTTPException(status_code=502, detail="Failed to send OTP")
    return SendOtpResponse()


@auth_router.post("/verify-otp", response_model=VerifyOtpResponse)
async def verify_otp(body: VerifyOtpRequest, credentials: CredentialService = Depends(get_credentials)):
    # Body: { "email": "user@example.com", "otp": "123456" }
    # Response 200: { "success": true, "token": "<64 hex chars>" }
    try:
        token = credentials.verify_code(body.email.strip(), body.otp.strip())
    except (CodeNotFound, CodeExpired, CodeMismatch) as e:
        raise HTTPException(status_code=401, detail=e.message)
    return VerifyOtpResponse(token=token)
