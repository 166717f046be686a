import asyncio
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from constants import (
    EMPTY_MEETING_GRACE_SECONDS,
    MEETING_SWEEP_INTERVAL_SECONDS,
    MEETING_TTL_SECONDS,
    STRICT_INVARIANTS,
)
from errors import InvariantViolation, MeetingNotFound, WrongPassword
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Meeting:
    id: str
    password: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        # The only expiry comparison; lazy lookup and the sweep both use it
        return now >= self.expires_at


@dataclass
class Participant:
    connection_id: str
    participant_id: str


def generate_meeting_id() -> str:
    # 64 bits, no collision check against live meetings (accepted risk)
    return secrets.token_hex(8).upper()


def generate_password() -> str:
    return secrets.token_hex(4).upper()


class MeetingRegistry:
    """Meeting records, per-meeting membership and the connection -> meeting reverse index.

    All mutations are plain dict operations with no awaits in between, so on a
    single event loop each one is atomic with respect to other connections.
    """

    def __init__(
        self,
        ttl: float = MEETING_TTL_SECONDS,
        grace_period: float = EMPTY_MEETING_GRACE_SECONDS,
        sweep_interval: float = MEETING_SWEEP_INTERVAL_SECONDS,
        strict: bool = STRICT_INVARIANTS,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl = ttl
        self.grace_period = grace_period
        self.sweep_interval = sweep_interval
        self.strict = strict
        self.clock = clock
        self._meetings: Dict[str, Meeting] = {}
        # meeting_id -> {connection_id -> participant_id}
        self._participants: Dict[str, Dict[str, str]] = {}
        # connection_id -> meeting_id
        self._connection_meetings: Dict[str, str] = {}
        self._empty_checks: Dict[str, asyncio.TimerHandle] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    def create(self) -> Meeting:
        created_at = self.clock()
        meeting = Meeting(
            id=generate_meeting_id(),
            password=generate_password(),
            created_at=created_at,
            expires_at=created_at + self.ttl,
        )
        self._meetings[meeting.id] = meeting
        self._participants[meeting.id] = {}
        logger.info(f"Meeting {meeting.id} created, expires in {self.ttl}s")
        return meeting

    def get(self, meeting_id: str) -> Optional[Meeting]:
        meeting = self._meetings.get(meeting_id)
        if meeting is None:
            return None
        if meeting.is_expired(self.clock()):
            logger.info(f"Meeting {meeting_id} expired, deleting it")
            self.delete(meeting_id)
            return None
        return meeting

    def verify_password(self, meeting_id: str, password: str) -> Meeting:
        meeting = self.get(meeting_id)
        if meeting is None:
            raise MeetingNotFound()
        if not secrets.compare_digest(meeting.password.encode(), str(password or "").encode()):
            raise WrongPassword()
        return meeting

    def add_participant(self, meeting_id: str, connection_id: str, participant_id: str) -> bool:
        participants = self._participants.get(meeting_id)
        if participants is None:
            # Meeting went away between admission and insert
            logger.debug(f"Ignoring add of {connection_id} to missing meeting {meeting_id}")
            return False

        previous = self._connection_meetings.get(connection_id)
        if previous is not None and previous != meeting_id:
            self.remove_participant(previous, connection_id)

        participants[connection_id] = participant_id
        self._connection_meetings[connection_id] = meeting_id
        logger.debug(f"Participant {participant_id} ({connection_id}) added to meeting {meeting_id}, size={len(participants)}")
        return True

    def remove_participant(self, meeting_id: str, connection_id: str) -> bool:
        participants = self._participants.get(meeting_id)
        if participants is None or connection_id not in participants:
            return False

        del participants[connection_id]
        if self._connection_meetings.get(connection_id) == meeting_id:
            del self._connection_meetings[connection_id]
        logger.debug(f"Connection {connection_id} removed from meeting {meeting_id}, size={len(participants)}")

        if not participants:
            self._schedule_empty_check(meeting_id)
        return True

    def _schedule_empty_check(self, meeting_id: str):
        loop = asyncio.get_running_loop()
        previous = self._empty_checks.pop(meeting_id, None)
        if previous is not None:
            previous.cancel()
        self._empty_checks[meeting_id] = loop.call_later(self.grace_period, self.delete_if_empty, meeting_id)
        logger.info(f"Meeting {meeting_id} is empty, deletion check in {self.grace_period}s")

    def delete_if_empty(self, meeting_id: str) -> bool:
        """Grace-period callback: re-reads membership at fire time."""
        self._empty_checks.pop(meeting_id, None)
        participants = self._participants.get(meeting_id)
        if participants is None:
            return False
        if participants:
            logger.debug(f"Meeting {meeting_id} was rejoined within the grace period, keeping it")
            return False
        logger.info(f"Meeting {meeting_id} stayed empty for the grace period, deleting it")
        self.delete(meeting_id)
        return True

    def list_participants(self, meeting_id: str) -> List[Participant]:
        participants = self._participants.get(meeting_id)
        if not participants:
            return []
        return [
            Participant(connection_id=connection_id, participant_id=participant_id)
            for connection_id, participant_id in participants.items()
        ]

    def find_meeting_of(self, connection_id: str) -> Optional[str]:
        meeting_id = self._connection_meetings.get(connection_id)
        if meeting_id is None:
            return None
        participants = self._participants.get(meeting_id)
        if participants is None or connection_id not in participants:
            message = f"Reverse index maps {connection_id} to {meeting_id} without a membership entry"
            if self.strict:
                raise InvariantViolation(message)
            logger.error(message)
            del self._connection_meetings[connection_id]
            return None
        return meeting_id

    def delete(self, meeting_id: str) -> bool:
        participants = self._participants.pop(meeting_id, None) or {}
        for connection_id in participants:
            if self._connection_meetings.get(connection_id) == meeting_id:
                del self._connection_meetings[connection_id]
        meeting = self._meetings.pop(meeting_id, None)
        if meeting is not None:
            logger.info(f"Meeting {meeting_id} deleted ({len(participants)} participants dropped)")
        return meeting is not None

    def sweep(self) -> int:
        now = self.clock()
        expired = [meeting_id for meeting_id, meeting in self._meetings.items() if meeting.is_expired(now)]
        for meeting_id in expired:
            self.delete(meeting_id)
        if expired:
            logger.info(f"Meeting sweep removed {len(expired)} expired meetings")
        return len(expired)

    def meeting_count(self) -> int:
        return len(self._meetings)

    def connection_count(self) -> int:
        return len(self._connection_meetings)

    async def _sweep_loop(self):
        logger.info(f"Starting meeting sweep every {self.sweep_interval}s")
        try:
            while True:
                await asyncio.sleep(self.sweep_interval)
                try:
                    self.sweep()
                except Exception as e:
                    logger.error(f"Error during meeting sweep: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.info("Meeting sweep task cancelled")
            raise

    def start(self):
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        for handle in self._empty_checks.values():
            handle.cancel()
        self._empty_checks.clear()
