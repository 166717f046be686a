import asyncio
import json
import uuid
from typing import Dict, Optional, Set

from fastapi import WebSocket
from pydantic import ValidationError

from logging_config import get_logger
from registry import MeetingRegistry
from schemas.signaling import (
    RELAYED_PAYLOAD_FIELDS,
    JoinMeetingMessage,
    LeaveMeetingMessage,
    ParticipantInfo,
    RelayedMessage,
    SignalingMessageType,
)

logger = get_logger(__name__)


class SignalingRelay:
    """Binds WebSocket connections to meetings and routes negotiation messages between them.

    Membership lives in the registry; the relay only keeps the sockets and the
    per-meeting broadcast groups.
    """

    def __init__(self, registry: MeetingRegistry):
        self.registry = registry
        # connection_id -> websocket
        self._connections: Dict[str, WebSocket] = {}
        # meeting_id -> connection ids, the broadcast group
        self._groups: Dict[str, Set[str]] = {}
        # connection_id -> meeting_id of the group it sits in
        self._connection_groups: Dict[str, str] = {}
        # leave tasks still running after their endpoint was cancelled
        self._cleanup_tasks: Set[asyncio.Future] = set()

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        connection_id = str(uuid.uuid4())
        self._connections[connection_id] = websocket
        logger.info(f"Connection {connection_id} opened (active connections: {len(self._connections)})")
        await self.send(connection_id, {
            "type": SignalingMessageType.CONNECTED.value,
            "connectionId": connection_id,
        })
        return connection_id

    async def handle_message(self, connection_id: str, data: str):
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Dropping non-JSON message from {connection_id}")
            return
        if not isinstance(message, dict):
            logger.warning(f"Dropping non-object message from {connection_id}")
            return

        message_type = message.get("type")
        try:
            if message_type == SignalingMessageType.JOIN_MEETING.value:
                join = JoinMeetingMessage.model_validate(message)
                await self.join(connection_id, join.meeting_id, join.participant_id)
            elif message_type == SignalingMessageType.LEAVE_MEETING.value:
                leave = LeaveMeetingMessage.model_validate(message)
                await self.leave(connection_id, leave.meeting_id)
            elif message_type in {kind.value for kind in RELAYED_PAYLOAD_FIELDS}:
                await self.relay(connection_id, SignalingMessageType(message_type), message)
            else:
                logger.warning(f"Dropping message of unknown type {message_type!r} from {connection_id}")
        except ValidationError as e:
            logger.warning(f"Dropping malformed {message_type!r} message from {connection_id}: {e.error_count()} errors")

    async def join(self, connection_id: str, meeting_id: str, participant_id: str) -> bool:
        meeting = self.registry.get(meeting_id)
        if meeting is None:
            logger.info(f"Join rejected for {connection_id}: meeting {meeting_id} not found")
            await self.send(connection_id, {
                "type": SignalingMessageType.ERROR.value,
                "message": "Meeting not found",
            })
            return False

        # A connection sits in at most one meeting
        if connection_id in self._connection_groups or self.registry.find_meeting_of(connection_id) is not None:
            await self.leave(connection_id)

        # Snapshot before the insert so the joiner never sees itself
        existing = [
            ParticipantInfo(connection_id=p.connection_id, participant_id=p.participant_id).model_dump(by_alias=True)
            for p in self.registry.list_participants(meeting_id)
            if p.connection_id != connection_id
        ]
        if not self.registry.add_participant(meeting_id, connection_id, participant_id):
            # Deleted while the previous meeting was being left
            logger.info(f"Join rejected for {connection_id}: meeting {meeting_id} went away before admission")
            await self.send(connection_id, {
                "type": SignalingMessageType.ERROR.value,
                "message": "Meeting not found",
            })
            return False
        self._groups.setdefault(meeting_id, set()).add(connection_id)
        self._connection_groups[connection_id] = meeting_id
        logger.info(f"Participant {participant_id} ({connection_id}) joined meeting {meeting_id}, {len(existing)} already present")

        # The joiner learns the existing members before any of them is told to offer
        await self.send(connection_id, {
            "type": SignalingMessageType.PARTICIPANTS_LIST.value,
            "participants": existing,
        })
        await self.broadcast(meeting_id, {
            "type": SignalingMessageType.USER_JOINED.value,
            "participantId": participant_id,
            "connectionId": connection_id,
        }, exclude_connection_id=connection_id)
        return True

    async def relay(self, connection_id: str, message_type: SignalingMessageType, message: dict) -> bool:
        routed = RelayedMessage.model_validate(message)
        target_id = routed.target_connection_id
        payload_field = RELAYED_PAYLOAD_FIELDS[message_type]
        if payload_field not in message:
            logger.warning(f"Dropping {message_type.value} from {connection_id}: missing {payload_field}")
            return False

        sender_meeting = self._connection_groups.get(connection_id)
        if sender_meeting is None or target_id not in self._groups.get(sender_meeting, ()):
            logger.warning(f"Dropping {message_type.value} from {connection_id}: target {target_id} is not in the same meeting")
            return False

        logger.debug(f"Relaying {message_type.value} from {connection_id} to {target_id}")
        return await self.send(target_id, {
            "type": message_type.value,
            payload_field: message[payload_field],
            "connectionId": connection_id,
        })

    async def leave(self, connection_id: str, meeting_id: Optional[str] = None) -> bool:
        if meeting_id is None:
            meeting_id = self.registry.find_meeting_of(connection_id)
        if meeting_id is None:
            meeting_id = self._connection_groups.get(connection_id)
        if meeting_id is None:
            return False

        if self._connection_groups.get(connection_id) == meeting_id:
            del self._connection_groups[connection_id]
        group = self._groups.get(meeting_id)
        if group is not None:
            group.discard(connection_id)
            if not group:
                del self._groups[meeting_id]

        if not self.registry.remove_participant(meeting_id, connection_id):
            return False

        logger.info(f"Connection {connection_id} left meeting {meeting_id}")
        await self.broadcast(meeting_id, {
            "type": SignalingMessageType.USER_LEFT.value,
            "connectionId": connection_id,
        })
        return True

    async def disconnect(self, connection_id: str):
        """Idempotent: a connection that never joined produces no broadcast.

        The endpoint calls this from a ``finally`` that may already be
        cancelled, so the socket is dropped synchronously and the leave runs
        as its own task behind ``asyncio.shield``.
        """
        if self._connections.pop(connection_id, None) is not None:
            logger.info(f"Connection {connection_id} closed (active connections: {len(self._connections)})")
        cleanup = asyncio.ensure_future(self.leave(connection_id))
        self._cleanup_tasks.add(cleanup)
        cleanup.add_done_callback(self._cleanup_tasks.discard)
        await asyncio.shield(cleanup)

    async def send(self, connection_id: str, message: dict) -> bool:
        websocket = self._connections.get(connection_id)
        if websocket is None:
            logger.debug(f"Cannot send {message.get('type')} to unknown connection {connection_id}")
            return False
        try:
            await websocket.send_text(json.dumps(message))
            return True
        except Exception as e:
            # The receive loop of that connection performs the cleanup
            logger.warning(f"Error sending to connection {connection_id}: {e}")
            return False

    async def broadcast(self, meeting_id: str, message: dict, exclude_connection_id: Optional[str] = None) -> int:
        targets = [cid for cid in self._groups.get(meeting_id, ()) if cid != exclude_connection_id]
        if not targets:
            return 0
        results = await asyncio.gather(*(self.send(cid, message) for cid in targets))
        delivered = sum(1 for ok in results if ok)
        logger.debug(f"Broadcast {message.get('type')} to {delivered}/{len(targets)} connections in meeting {meeting_id}")
        return delivered

    def group_members(self, meeting_id: str) -> Set[str]:
        return set(self._groups.get(meeting_id, ()))

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections
