"""CredentialService: one-time codes, token minting, expiry and sweeping."""

import asyncio
import re
from unittest.mock import AsyncMock

import pytest

from credentials import CredentialService
from errors import CodeExpired, CodeMismatch, CodeNotFound, DeliveryFailure


@pytest.fixture
def service(delivery, clock) -> CredentialService:
    return CredentialService(delivery=delivery, clock=clock)


@pytest.mark.asyncio
async def test_issue_code_is_six_digits_and_delivered(service, delivery):
    code = await service.issue_code("alice@example.com")

    assert re.fullmatch(r"\d{6}", code)
    assert delivery.sent == [("alice@example.com", code)]
    assert service.pending_code_count() == 1


@pytest.mark.asyncio
async def test_verify_code_returns_256_bit_token(service):
    code = await service.issue_code("alice@example.com")

    token = service.verify_code("alice@example.com", code)

    assert re.fullmatch(r"[0-9a-f]{64}", token)
    assert service.is_valid(token)
    assert service.pending_code_count() == 0


@pytest.mark.asyncio
async def test_code_is_single_use(service):
    code = await service.issue_code("alice@example.com")
    service.verify_code("alice@example.com", code)

    with pytest.raises(CodeNotFound):
        service.verify_code("alice@example.com", code)


@pytest.mark.asyncio
async def test_newer_code_replaces_older(service, monkeypatch):
    codes = iter(["111111", "222222"])
    monkeypatch.setattr(CredentialService, "generate_code", staticmethod(lambda: next(codes)))

    await service.issue_code("alice@example.com")
    await service.issue_code("alice@example.com")

    with pytest.raises(CodeMismatch):
        service.verify_code("alice@example.com", "111111")
    assert service.is_valid(service.verify_code("alice@example.com", "222222"))


@pytest.mark.asyncio
async def test_unknown_email_is_not_found(service):
    with pytest.raises(CodeNotFound):
        service.verify_code("nobody@example.com", "123456")


@pytest.mark.asyncio
async def test_expired_code_is_rejected_and_deleted(service, clock):
    code = await service.issue_code("alice@example.com")
    clock.advance(10 * 60 + 1)

    with pytest.raises(CodeExpired):
        service.verify_code("alice@example.com", code)
    with pytest.raises(CodeNotFound):
        service.verify_code("alice@example.com", code)


@pytest.mark.asyncio
async def test_mismatch_keeps_the_code_alive(service, monkeypatch):
    monkeypatch.setattr(CredentialService, "generate_code", staticmethod(lambda: "654321"))
    await service.issue_code("alice@example.com")

    with pytest.raises(CodeMismatch):
        service.verify_code("alice@example.com", "000000")
    assert service.verify_code("alice@example.com", "654321")


@pytest.mark.asyncio
async def test_delivery_failure_surfaces_and_code_stays_valid(clock):
    failing = AsyncMock()
    failing.deliver = AsyncMock(side_effect=DeliveryFailure())
    service = CredentialService(delivery=failing, clock=clock)

    with pytest.raises(DeliveryFailure):
        await service.issue_code("alice@example.com")

    code = failing.deliver.call_args[0][1]
    assert service.is_valid(service.verify_code("alice@example.com", code))


@pytest.mark.asyncio
async def test_token_invalid_after_ttl(service, clock):
    code = await service.issue_code("alice@example.com")
    token = service.verify_code("alice@example.com", code)

    clock.advance(24 * 60 * 60)

    assert not service.is_valid(token)


@pytest.mark.asyncio
async def test_token_revoked_by_timer(delivery):
    service = CredentialService(delivery=delivery, token_ttl=0.01)
    code = await service.issue_code("alice@example.com")
    token = service.verify_code("alice@example.com", code)
    assert service.token_count() == 1

    await asyncio.sleep(0.05)

    assert service.token_count() == 0
    assert not service.is_valid(token)


def test_is_valid_rejects_missing_token(service):
    assert not service.is_valid(None)
    assert not service.is_valid("")
    assert not service.is_valid("f" * 64)


@pytest.mark.asyncio
async def test_sweep_removes_only_expired_codes(service, clock):
    await service.issue_code("old@example.com")
    clock.advance(9 * 60)
    await service.issue_code("new@example.com")
    clock.advance(2 * 60)

    removed = service.sweep()

    assert removed == 1
    assert service.pending_code_count() == 1
    with pytest.raises(CodeNotFound):
        service.verify_code("old@example.com", "123456")


@pytest.mark.asyncio
async def test_sweep_task_runs_until_stopped(delivery, clock):
    service = CredentialService(delivery=delivery, sweep_interval=0.01, clock=clock)
    await service.issue_code("alice@example.com")
    clock.advance(11 * 60)

    service.start()
    await asyncio.sleep(0.05)
    await service.stop()

    assert service.pending_code_count() == 0
