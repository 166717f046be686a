from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from credentials import CredentialService
from errors import Unauthenticated
from logging_config import get_logger
from registry import MeetingRegistry

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_credentials(request: Request) -> CredentialService:
    return request.app.state.credentials


def get_registry(request: Request) -> MeetingRegistry:
    return request.app.state.registry


def require_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    credential_service: CredentialService = Depends(get_credentials),
) -> str:
    """Reject the request with 401 unless it carries a currently valid bearer token."""
    token = credentials.credentials if credentials else None
    if not credential_service.is_valid(token):
        logger.warning("Rejected request with missing or invalid bearer token")
        raise HTTPException(status_code=401, detail=Unauthenticated.message)
    return token
