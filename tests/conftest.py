"""Shared fixtures: controllable clock, recording code delivery, fake sockets and peer connections."""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingDelivery:
    def __init__(self):
        self.sent: List[tuple] = []

    async def deliver(self, email: str, code: str) -> None:
        self.sent.append((email, code))

    def last_code(self, email: str) -> str:
        return [code for sent_to, code in self.sent if sent_to == email][-1]


class FakeWebSocket:
    """Collects what the relay sends; can be slowed down, hooked or told to fail on send."""

    def __init__(self, fail_on_send: bool = False, delay: float = 0.0, on_send: Optional[Callable] = None):
        self.accepted = False
        self.fail_on_send = fail_on_send
        self.delay = delay
        self.on_send = on_send
        self.sent: List[Dict[str, Any]] = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, data: str):
        message = json.loads(data)
        if self.on_send is not None:
            self.on_send(message)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on_send:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m.get("type") == message_type]


class FakePeerConnection:
    def __init__(self, on_connected, on_track, on_ice_candidate):
        self.on_connected = on_connected
        self.on_track = on_track
        self.on_ice_candidate = on_ice_candidate
        self.offers_created = 0
        self.answers_created = 0
        self.remote_descriptions: List[Dict[str, Any]] = []
        self.candidates: List[Dict[str, Any]] = []
        self.tracks: List[Any] = []
        self.closed = False

    async def create_offer(self):
        self.offers_created += 1
        return {"type": "offer", "sdp": "v=0 offer"}

    async def create_answer(self):
        self.answers_created += 1
        return {"type": "answer", "sdp": "v=0 answer"}

    async def set_remote_description(self, description):
        self.remote_descriptions.append(description)

    async def add_ice_candidate(self, candidate):
        self.candidates.append(candidate)

    def add_tracks(self, tracks):
        self.tracks.extend(tracks)

    async def close(self):
        self.closed = True


class FakePeerConnectionFactory:
    def __init__(self):
        self.created: List[FakePeerConnection] = []

    def __call__(self, on_connected, on_track, on_ice_candidate) -> FakePeerConnection:
        connection = FakePeerConnection(on_connected, on_track, on_ice_candidate)
        self.created.append(connection)
        return connection


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def connection_factory() -> FakePeerConnectionFactory:
    return FakePeerConnectionFactory()


@pytest.fixture
def client():
    """TestClient with the lifespan running and code delivery captured in memory."""
    from app import app

    with TestClient(app) as test_client:
        recording = RecordingDelivery()
        test_client.app.state.credentials.delivery = recording
        test_client.delivery = recording
        yield test_client


@pytest.fixture
def auth_headers(client) -> Dict[str, str]:
    client.post("/api/auth/send-otp", json={"email": "host@example.com"})
    code = client.delivery.last_code("host@example.com")
    response = client.post("/api/auth/verify-otp", json={"email": "host@example.com", "otp": code})
    return {"Authorization": f"Bearer {response.json()['token']}"}
