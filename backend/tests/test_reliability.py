"""
Store reliability tests: timeouts, connection failures and retries.
"""

import asyncio

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, PendingRollbackError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core import reliability
from backend.app.core.exceptions import TransientIOError
from backend.app.core.reliability import guard_io, is_transient_db_error, retry_transient
from backend.app.models.shipment_enums import ShipmentStatus
from backend.app.services import shipment_workflow


async def _slow():
    await asyncio.sleep(1)


async def _raise(exc):
    raise exc


def test_connection_errors_are_transient():
    assert is_transient_db_error(OperationalError("SELECT 1", {}, Exception("connection refused")))
    assert not is_transient_db_error(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))


async def test_timeout_becomes_transient_error():
    with pytest.raises(TransientIOError) as exc_info:
        await guard_io(_slow(), "slow lookup", timeout=0.01)

    assert exc_info.value.status_code == 503
    assert exc_info.value.details == {"operation": "slow lookup", "retryable": True}


async def test_operational_error_becomes_transient_error():
    with pytest.raises(TransientIOError):
        await guard_io(_raise(OperationalError("SELECT 1", {}, Exception("server closed"))), "lookup")


async def test_integrity_error_passes_through():
    with pytest.raises(IntegrityError):
        await guard_io(_raise(IntegrityError("INSERT", {}, Exception("duplicate"))), "insert")


async def test_retry_recovers_from_transient_failure(mocker):
    sleep = mocker.patch.object(reliability.asyncio, "sleep", mocker.AsyncMock())
    calls = mocker.AsyncMock(side_effect=[TransientIOError("lookup"), "ok"])

    @retry_transient(attempts=3, base_delay=0.5)
    async def lookup():
        return await calls()

    assert await lookup() == "ok"
    assert calls.await_count == 2
    sleep.assert_awaited_once_with(0.5)


async def test_retry_gives_up_after_attempts(mocker):
    mocker.patch.object(reliability.asyncio, "sleep", mocker.AsyncMock())
    calls = mocker.AsyncMock(side_effect=TransientIOError("lookup"))

    @retry_transient(attempts=3)
    async def lookup():
        return await calls()

    with pytest.raises(TransientIOError):
        await lookup()
    assert calls.await_count == 3


async def test_validation_errors_are_not_retried(mocker):
    calls = mocker.AsyncMock(side_effect=ValueError("bad"))

    @retry_transient(attempts=3)
    async def lookup():
        return await calls()

    with pytest.raises(ValueError):
        await lookup()
    assert calls.await_count == 1


async def test_session_needing_rollback_is_transient():
    pending = PendingRollbackError("Can't reconnect until invalid transaction is rolled back")

    with pytest.raises(TransientIOError) as exc_info:
        await guard_io(_raise(pending), "lookup")

    assert exc_info.value.status_code == 503


async def test_retry_rolls_back_the_session_between_attempts(mocker):
    mocker.patch.object(reliability.asyncio, "sleep", mocker.AsyncMock())
    session = mocker.AsyncMock(spec=AsyncSession)
    calls = mocker.AsyncMock(side_effect=[TransientIOError("lookup"), "ok"])

    @retry_transient(attempts=3)
    async def lookup(db):
        return await calls(db)

    assert await lookup(session) == "ok"
    session.rollback.assert_awaited_once()


async def test_mappable_listing_recovers_on_the_same_session(db_session, factory, mocker):
    shipment = await factory.shipment(status=ShipmentStatus.CONFIRMED)
    mocker.patch.object(reliability.asyncio, "sleep", mocker.AsyncMock())
    operations = []

    async def dropped_once(awaitable, operation, timeout=None):
        operations.append(operation)
        if len(operations) == 1:
            awaitable.close()
            raise TransientIOError(operation, "server closed the connection")
        return await guard_io(awaitable, operation, timeout)

    mocker.patch.object(shipment_workflow, "guard_io", new=dropped_once)

    shipments = await shipment_workflow.list_mappable_shipments(db_session)

    assert [s.id for s in shipments] == [shipment.id]
    assert len(operations) == 2
