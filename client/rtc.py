from typing import Any, Callable, Dict, Iterable, List, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from constants import ICE_SERVERS
from logging_config import get_logger

logger = get_logger(__name__)


def build_configuration(ice_servers: Optional[Iterable[str]] = None) -> RTCConfiguration:
    urls = list(ICE_SERVERS if ice_servers is None else ice_servers)
    return RTCConfiguration(iceServers=[RTCIceServer(urls=[url]) for url in urls])


def description_to_dict(description: RTCSessionDescription) -> Dict[str, str]:
    return {"type": description.type, "sdp": description.sdp}


def candidate_from_dict(data: Dict[str, Any]):
    """Browser-style ICE candidate JSON -> aiortc RTCIceCandidate.

    Returns None for the end-of-candidates marker (an empty candidate string).
    """
    candidate_str = data.get("candidate", "") or ""
    prefix = "candidate:"
    if candidate_str.startswith(prefix):
        candidate_str = candidate_str[len(prefix):]
    if not candidate_str.strip():
        return None
    candidate = candidate_from_sdp(candidate_str)
    candidate.sdpMid = data.get("sdpMid")
    candidate.sdpMLineIndex = data.get("sdpMLineIndex")
    return candidate


class AiortcPeerConnection:
    """PeerConnection adapter over aiortc.

    aiortc gathers candidates before returning the local description, so they
    travel inside the SDP and on_ice_candidate is never called.
    """

    def __init__(
        self,
        on_connected: Callable[[], None],
        on_track: Callable[[Any], None],
        on_ice_candidate: Callable[[Dict[str, Any]], Any],
        ice_servers: Optional[Iterable[str]] = None,
    ):
        self.pc = RTCPeerConnection(configuration=build_configuration(ice_servers))
        self.on_ice_candidate = on_ice_candidate
        self.remote_tracks: List[Any] = []

        @self.pc.on("connectionstatechange")
        async def on_connectionstatechange():
            state = self.pc.connectionState
            logger.debug(f"Peer connection state changed to {state}")
            if state == "connected":
                on_connected()
            elif state == "failed":
                logger.warning("Peer connection failed")

        @self.pc.on("track")
        def on_remote_track(track):
            logger.info(f"Received remote {track.kind} track")
            self.remote_tracks.append(track)
            on_track(list(self.remote_tracks))

    async def create_offer(self) -> Dict[str, str]:
        offer = await self.pc.createOffer()
        await self.pc.setLocalDescription(offer)
        return description_to_dict(self.pc.localDescription)

    async def create_answer(self) -> Dict[str, str]:
        answer = await self.pc.createAnswer()
        await self.pc.setLocalDescription(answer)
        return description_to_dict(self.pc.localDescription)

    async def set_remote_description(self, description: Dict[str, Any]) -> None:
        await self.pc.setRemoteDescription(RTCSessionDescription(sdp=description["sdp"], type=description["type"]))

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        parsed = candidate_from_dict(candidate)
        if parsed is None:
            logger.debug("Remote end of candidates")
            return
        await self.pc.addIceCandidate(parsed)

    def add_tracks(self, tracks: Iterable[Any]) -> None:
        for track in tracks:
            self.pc.addTrack(track)

    async def close(self) -> None:
        await self.pc.close()


def aiortc_connection_factory(ice_servers: Optional[Iterable[str]] = None):
    """Build the factory MeshOrchestrator expects."""
    def factory(on_connected, on_track, on_ice_candidate) -> AiortcPeerConnection:
        return AiortcPeerConnection(on_connected, on_track, on_ice_candidate, ice_servers=ice_servers)
    return factory
