"""MeetingRegistry: creation, expiry, membership, reverse index and the empty-meeting grace period."""

import asyncio
import re

import pytest

from errors import InvariantViolation, MeetingNotFound, WrongPassword
from registry import MeetingRegistry


@pytest.fixture
def registry(clock) -> MeetingRegistry:
    return MeetingRegistry(clock=clock, grace_period=0.05)


def test_create_generates_uppercase_hex_credentials(registry):
    meeting = registry.create()

    assert re.fullmatch(r"[0-9A-F]{16}", meeting.id)
    assert re.fullmatch(r"[0-9A-F]{8}", meeting.password)
    assert meeting.expires_at - meeting.created_at == 2 * 60 * 60
    assert registry.get(meeting.id) is meeting


def test_get_unknown_meeting(registry):
    assert registry.get("DOESNOTEXIST0000") is None


def test_get_after_expiry_deletes_meeting(registry, clock):
    meeting = registry.create()
    clock.advance(2 * 60 * 60)

    assert registry.get(meeting.id) is None
    assert registry.meeting_count() == 0
    assert registry.sweep() == 0


def test_lookup_and_sweep_agree_on_expiry(registry, clock):
    meeting = registry.create()
    clock.advance(2 * 60 * 60 - 1)
    assert registry.sweep() == 0
    assert registry.get(meeting.id) is meeting

    clock.advance(1)
    assert registry.sweep() == 1
    assert registry.get(meeting.id) is None


def test_sweep_cascades_to_membership(registry, clock):
    meeting = registry.create()
    registry.add_participant(meeting.id, "conn-a", "alice")
    clock.advance(3 * 60 * 60)

    registry.sweep()

    assert registry.find_meeting_of("conn-a") is None
    assert registry.list_participants(meeting.id) == []
    assert registry.connection_count() == 0


def test_verify_password(registry):
    meeting = registry.create()

    assert registry.verify_password(meeting.id, meeting.password) is meeting
    with pytest.raises(WrongPassword):
        registry.verify_password(meeting.id, "WRONGPWD")
    with pytest.raises(MeetingNotFound):
        registry.verify_password("0000000000000000", meeting.password)


def test_add_participant_to_missing_meeting_is_noop(registry):
    assert registry.add_participant("0000000000000000", "conn-a", "alice") is False
    assert registry.find_meeting_of("conn-a") is None


@pytest.mark.asyncio
async def test_add_then_remove_restores_sizes(registry):
    meeting = registry.create()
    registry.add_participant(meeting.id, "conn-a", "alice")
    before_members = len(registry.list_participants(meeting.id))
    before_index = registry.connection_count()

    registry.add_participant(meeting.id, "conn-b", "bob")
    registry.remove_participant(meeting.id, "conn-b")

    assert len(registry.list_participants(meeting.id)) == before_members
    assert registry.connection_count() == before_index
    assert registry.find_meeting_of("conn-b") is None


@pytest.mark.asyncio
async def test_connection_is_in_at_most_one_meeting(registry):
    first = registry.create()
    second = registry.create()

    registry.add_participant(first.id, "conn-a", "alice")
    registry.add_participant(second.id, "conn-a", "alice")

    assert registry.find_meeting_of("conn-a") == second.id
    assert registry.list_participants(first.id) == []


@pytest.mark.asyncio
async def test_list_participants_is_a_snapshot(registry):
    meeting = registry.create()
    registry.add_participant(meeting.id, "conn-a", "alice")
    registry.add_participant(meeting.id, "conn-b", "bob")

    snapshot = registry.list_participants(meeting.id)
    registry.remove_participant(meeting.id, "conn-a")

    assert {(p.connection_id, p.participant_id) for p in snapshot} == {("conn-a", "alice"), ("conn-b", "bob")}


@pytest.mark.asyncio
async def test_empty_meeting_deleted_after_grace_period(registry):
    meeting = registry.create()
    registry.add_participant(meeting.id, "conn-a", "alice")
    registry.remove_participant(meeting.id, "conn-a")

    assert registry.get(meeting.id) is meeting
    await asyncio.sleep(0.1)

    assert registry.get(meeting.id) is None


@pytest.mark.asyncio
async def test_rejoin_within_grace_period_keeps_meeting(registry):
    meeting = registry.create()
    registry.add_participant(meeting.id, "conn-a", "alice")
    registry.remove_participant(meeting.id, "conn-a")

    registry.add_participant(meeting.id, "conn-b", "alice")
    await asyncio.sleep(0.1)

    assert registry.get(meeting.id) is meeting
    assert registry.find_meeting_of("conn-b") == meeting.id


@pytest.mark.asyncio
async def test_deleted_meeting_never_resurrects(registry):
    meeting = registry.create()
    registry.add_participant(meeting.id, "conn-a", "alice")
    registry.remove_participant(meeting.id, "conn-a")
    assert registry.delete_if_empty(meeting.id) is True

    assert registry.add_participant(meeting.id, "conn-b", "bob") is False
    assert registry.get(meeting.id) is None


def test_delete_cascades(registry):
    meeting = registry.create()
    registry.add_participant(meeting.id, "conn-a", "alice")

    assert registry.delete(meeting.id) is True
    assert registry.delete(meeting.id) is False
    assert registry.find_meeting_of("conn-a") is None


def test_broken_reverse_index_fails_loudly_when_strict(clock):
    registry = MeetingRegistry(clock=clock, strict=True)
    meeting = registry.create()
    registry._connection_meetings["conn-ghost"] = meeting.id

    with pytest.raises(InvariantViolation):
        registry.find_meeting_of("conn-ghost")


def test_broken_reverse_index_degrades_to_not_found(clock):
    registry = MeetingRegistry(clock=clock, strict=False)
    meeting = registry.create()
    registry._connection_meetings["conn-ghost"] = meeting.id

    assert registry.find_meeting_of("conn-ghost") is None
    assert registry.connection_count() == 0


@pytest.mark.asyncio
async def test_sweep_task_and_stop(clock):
    registry = MeetingRegistry(clock=clock, sweep_interval=0.01)
    registry.create()
    clock.advance(3 * 60 * 60)

    registry.start()
    await asyncio.sleep(0.05)
    await registry.stop()

    assert registry.meeting_count() == 0
