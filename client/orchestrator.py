from typing import Any, Callable, Dict, Iterable, List, Optional

from client.peer_link import PeerConnection, PeerLink, PeerLinkState, SendSignal
from logging_config import get_logger

logger = get_logger(__name__)

# factory(on_connected, on_track, on_ice_candidate) -> PeerConnection
PeerConnectionFactory = Callable[
    [Callable[[], None], Callable[[Any], None], Callable[[Dict[str, Any]], Any]],
    PeerConnection,
]


class MeshOrchestrator:
    """Keeps one peer-link per remote participant in a full-mesh meeting.

    Members already present when we join (participants-list) are answerers;
    members announced later (user-joined) get an offer from us. Every pair of
    participants therefore has exactly one initiator.
    """

    def __init__(self, send: SendSignal, connection_factory: PeerConnectionFactory, local_tracks: Iterable[Any] = ()):
        self.send = send
        self.connection_factory = connection_factory
        self.local_tracks = list(local_tracks)
        self.local_connection_id: Optional[str] = None
        self.links: Dict[str, PeerLink] = {}
        self.last_error: Optional[str] = None
        self._handlers = {
            "connected": self._on_connected,
            "participants-list": self._on_participants_list,
            "user-joined": self._on_user_joined,
            "offer": self._on_offer,
            "answer": self._on_answer,
            "ice-candidate": self._on_ice_candidate,
            "user-left": self._on_user_left,
            "error": self._on_error,
        }

    @property
    def participants(self) -> List[Dict[str, str]]:
        """Remote participants currently visible, in the order they became known."""
        return [
            {"connectionId": link.remote_connection_id, "participantId": link.remote_participant_id}
            for link in self.links.values()
        ]

    def remote_streams(self) -> Dict[str, Any]:
        return {cid: link.remote_stream for cid, link in self.links.items() if link.remote_stream is not None}

    def state_of(self, connection_id: str) -> Optional[PeerLinkState]:
        link = self.links.get(connection_id)
        return link.state if link else None

    async def handle_event(self, message: Dict[str, Any]):
        handler = self._handlers.get(message.get("type"))
        if handler is None:
            logger.debug(f"Ignoring signaling event {message.get('type')!r}")
            return
        try:
            await handler(message)
        except Exception as e:
            # One bad negotiation must not take down the other links
            logger.error(f"Error handling {message.get('type')} event: {e}", exc_info=True)

    async def _on_connected(self, message: Dict[str, Any]):
        self.local_connection_id = message.get("connectionId")

    async def _on_participants_list(self, message: Dict[str, Any]):
        for participant in message.get("participants", []):
            connection_id = participant.get("connectionId")
            if not connection_id or connection_id == self.local_connection_id:
                continue
            self._create_link(connection_id, participant.get("participantId", ""), initiator=False)

    async def _on_user_joined(self, message: Dict[str, Any]):
        connection_id = message.get("connectionId")
        if not connection_id or connection_id == self.local_connection_id:
            return
        link = self._create_link(connection_id, message.get("participantId", ""), initiator=True)
        if link is not None:
            await link.start()

    async def _on_offer(self, message: Dict[str, Any]):
        link = self.links.get(message.get("connectionId"))
        if link is None:
            logger.warning(f"Dropping offer from unknown connection {message.get('connectionId')}")
            return
        await link.handle_offer(message.get("offer"))

    async def _on_answer(self, message: Dict[str, Any]):
        link = self.links.get(message.get("connectionId"))
        if link is None:
            logger.warning(f"Dropping answer from unknown connection {message.get('connectionId')}")
            return
        await link.handle_answer(message.get("answer"))

    async def _on_ice_candidate(self, message: Dict[str, Any]):
        link = self.links.get(message.get("connectionId"))
        if link is None:
            # Out-of-order delivery, harmless
            logger.debug(f"Dropping ICE candidate for unknown connection {message.get('connectionId')}")
            return
        candidate = message.get("candidate")
        if candidate:
            await link.add_ice_candidate(candidate)

    async def _on_user_left(self, message: Dict[str, Any]):
        await self.remove_peer(message.get("connectionId"))

    async def _on_error(self, message: Dict[str, Any]):
        self.last_error = message.get("message")
        logger.error(f"Signaling error: {self.last_error}")

    def _create_link(self, connection_id: str, participant_id: str, initiator: bool) -> Optional[PeerLink]:
        if connection_id in self.links:
            logger.warning(f"Peer link to {connection_id} already exists, ignoring duplicate announcement")
            return None

        connection = self.connection_factory(
            lambda: self._on_link_connected(connection_id),
            lambda stream: self._on_link_track(connection_id, stream),
            lambda candidate: self._send_candidate(connection_id, candidate),
        )
        link = PeerLink(connection_id, participant_id, connection, self.send, initiator=initiator)
        link.attach_tracks(self.local_tracks)
        self.links[connection_id] = link
        role = "initiator" if initiator else "answerer"
        logger.info(f"Created peer link to {participant_id} ({connection_id}) as {role}")
        return link

    def _on_link_connected(self, connection_id: str):
        link = self.links.get(connection_id)
        if link is not None:
            link.mark_connected()

    def _on_link_track(self, connection_id: str, stream: Any):
        link = self.links.get(connection_id)
        if link is not None:
            link.set_remote_stream(stream)

    async def _send_candidate(self, connection_id: str, candidate: Dict[str, Any]):
        link = self.links.get(connection_id)
        if link is None or link.is_closed:
            return
        await self.send({
            "type": "ice-candidate",
            "candidate": candidate,
            "targetConnectionId": connection_id,
        })

    async def remove_peer(self, connection_id: Optional[str]):
        link = self.links.pop(connection_id, None) if connection_id else None
        if link is None:
            return
        await link.close()

    async def close(self):
        """Tear down every peer-link, as when the local session ends."""
        for connection_id in list(self.links):
            await self.remove_peer(connection_id)
