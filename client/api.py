from typing import Optional

import httpx

from errors import (
    CodeExpired,
    CodeMismatch,
    CodeNotFound,
    DeliveryFailure,
    MeetingError,
    MeetingNotFound,
    Unauthenticated,
    WrongPassword,
)
from logging_config import get_logger

logger = get_logger(__name__)


class MeetingApiClient:
    """REST calls a participant makes before opening the signaling channel."""

    def __init__(self, base_url: str, token: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=10.0)

    def _headers(self) -> dict:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    @staticmethod
    def _detail(response: httpx.Response) -> Optional[str]:
        try:
            return response.json().get("detail")
        except ValueError:
            return None

    async def send_otp(self, email: str):
        response = await self._client.post("/api/auth/send-otp", json={"email": email})
        if response.status_code == 502:
            raise DeliveryFailure(self._detail(response))
        if response.status_code != 200:
            raise MeetingError(self._detail(response))

    async def verify_otp(self, email: str, otp: str) -> str:
        response = await self._client.post("/api/auth/verify-otp", json={"email": email, "otp": otp})
        if response.status_code == 401:
            detail = self._detail(response)
            error = {CodeNotFound.message: CodeNotFound, CodeExpired.message: CodeExpired}.get(detail, CodeMismatch)
            raise error(detail)
        response.raise_for_status()
        self.token = response.json()["token"]
        return self.token

    async def create_meeting(self) -> dict:
        response = await self._client.post("/api/meetings/create", headers=self._headers())
        if response.status_code == 401:
            raise Unauthenticated(self._detail(response))
        response.raise_for_status()
        return response.json()

    async def join_meeting(self, meeting_id: str, password: str) -> dict:
        response = await self._client.post(
            "/api/meetings/join",
            headers=self._headers(),
            json={"meetingId": meeting_id, "password": password},
        )
        if response.status_code == 401:
            raise Unauthenticated(self._detail(response))
        if response.status_code == 404:
            raise MeetingNotFound(self._detail(response))
        if response.status_code == 403:
            raise WrongPassword(self._detail(response))
        response.raise_for_status()
        return response.json()

    async def aclose(self):
        await self._client.aclose()
