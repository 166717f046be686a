from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol

from logging_config import get_logger

logger = get_logger(__name__)

SendSignal = Callable[[Dict[str, Any]], Awaitable[None]]


class PeerLinkState(str, Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


class PeerConnection(Protocol):
    """The slice of a WebRTC peer connection a peer-link drives.

    Session descriptions and candidates travel as plain dicts
    ({"type", "sdp"} and {"candidate", "sdpMid", "sdpMLineIndex"}).
    """

    async def create_offer(self) -> Dict[str, Any]:
        ...

    async def create_answer(self) -> Dict[str, Any]:
        ...

    async def set_remote_description(self, description: Dict[str, Any]) -> None:
        ...

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        ...

    def add_tracks(self, tracks: Iterable[Any]) -> None:
        ...

    async def close(self) -> None:
        ...


class PeerLink:
    """State machine for the media connection to one remote participant.

    idle -> negotiating -> connected, and closed from any state. The initiator
    leaves idle by sending an offer, the answerer by receiving one.
    """

    def __init__(
        self,
        remote_connection_id: str,
        remote_participant_id: str,
        connection: PeerConnection,
        send: SendSignal,
        initiator: bool,
    ):
        self.remote_connection_id = remote_connection_id
        self.remote_participant_id = remote_participant_id
        self.connection = connection
        self.send = send
        self.initiator = initiator
        self.state = PeerLinkState.IDLE
        self.remote_stream: Optional[Any] = None
        self.local_tracks: list = []

    @property
    def is_closed(self) -> bool:
        return self.state == PeerLinkState.CLOSED

    def attach_tracks(self, tracks: Iterable[Any]):
        tracks = list(tracks)
        if tracks:
            self.connection.add_tracks(tracks)
            self.local_tracks.extend(tracks)

    async def start(self):
        """Initiator only: create the offer and address it to the remote connection."""
        if not self.initiator or self.state != PeerLinkState.IDLE:
            return
        self.state = PeerLinkState.NEGOTIATING
        offer = await self.connection.create_offer()
        if self.is_closed:
            return
        await self.send({
            "type": "offer",
            "offer": offer,
            "targetConnectionId": self.remote_connection_id,
        })
        logger.debug(f"Sent offer to {self.remote_connection_id}")

    async def handle_offer(self, offer: Dict[str, Any]) -> bool:
        if self.state != PeerLinkState.IDLE:
            logger.warning(f"Ignoring offer from {self.remote_connection_id} in state {self.state.value}")
            return False
        self.state = PeerLinkState.NEGOTIATING
        await self.connection.set_remote_description(offer)
        answer = await self.connection.create_answer()
        if self.is_closed:
            return False
        await self.send({
            "type": "answer",
            "answer": answer,
            "targetConnectionId": self.remote_connection_id,
        })
        logger.debug(f"Answered offer from {self.remote_connection_id}")
        return True

    async def handle_answer(self, answer: Dict[str, Any]) -> bool:
        if not self.initiator or self.state != PeerLinkState.NEGOTIATING:
            logger.warning(f"Ignoring answer from {self.remote_connection_id} in state {self.state.value}")
            return False
        await self.connection.set_remote_description(answer)
        return True

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> bool:
        if self.is_closed:
            return False
        await self.connection.add_ice_candidate(candidate)
        return True

    def mark_connected(self):
        """Called once the transport reports a usable media path."""
        if self.state == PeerLinkState.NEGOTIATING:
            self.state = PeerLinkState.CONNECTED
            logger.info(f"Peer link to {self.remote_connection_id} connected")

    def set_remote_stream(self, stream: Any):
        if not self.is_closed:
            self.remote_stream = stream

    async def close(self):
        if self.is_closed:
            return
        self.state = PeerLinkState.CLOSED
        self.remote_stream = None
        await self.connection.close()
        logger.info(f"Peer link to {self.remote_connection_id} closed")
