import asyncio
import json
from typing import Any, Dict, Iterable, Optional

import websockets

from client.orchestrator import MeshOrchestrator, PeerConnectionFactory
from logging_config import get_logger

logger = get_logger(__name__)


class MeetingSession:
    """One participant's signaling connection plus the mesh of peer-links it drives."""

    def __init__(
        self,
        ws_url: str,
        meeting_id: str,
        participant_id: str,
        connection_factory: PeerConnectionFactory,
        local_tracks: Iterable[Any] = (),
    ):
        self.ws_url = ws_url
        self.meeting_id = meeting_id
        self.participant_id = participant_id
        self.orchestrator = MeshOrchestrator(self.send, connection_factory, local_tracks)
        self._ws = None
        self._receive_task: Optional[asyncio.Task] = None

    async def send(self, message: Dict[str, Any]):
        if self._ws is None:
            logger.warning(f"Not connected, dropping outgoing {message.get('type')}")
            return
        await self._ws.send(json.dumps(message))

    async def join(self):
        logger.info(f"Connecting to signaling server {self.ws_url}")
        self._ws = await websockets.connect(self.ws_url)
        self._receive_task = asyncio.create_task(self._receive_loop())
        await self.send({
            "type": "join-meeting",
            "meetingId": self.meeting_id,
            "participantId": self.participant_id,
        })
        logger.info(f"Joining meeting {self.meeting_id} as {self.participant_id}")

    async def _receive_loop(self):
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Dropping non-JSON frame from signaling server")
                    continue
                await self.orchestrator.handle_event(message)
        except websockets.ConnectionClosed:
            logger.info("Signaling connection closed")
        finally:
            await self.orchestrator.close()

    async def leave(self):
        if self._ws is None:
            return
        try:
            await self.send({"type": "leave-meeting", "meetingId": self.meeting_id})
        except websockets.ConnectionClosed:
            pass
        await self._ws.close()
        if self._receive_task:
            await self._receive_task
            self._receive_task = None
        await self.orchestrator.close()
        self._ws = None
        logger.info(f"Left meeting {self.meeting_id}")

    async def __aenter__(self):
        await self.join()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.leave()
