"""Tests for the durable outbox of remote case API operations."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.models.enums import OutboxOperationType
from src.models.outbox import PendingOperation
from src.services.errors import RemoteServerError
from src.services.outbox import PRIORITY_CRITICAL, PRIORITY_LOW, SyncOutbox


@pytest.fixture
def outbox(store, clock) -> SyncOutbox:
    return SyncOutbox(store, clock, max_attempts=3, base_delay_seconds=1, max_delay_seconds=4)


class TestEnqueue:
    async def test_replay_order_is_priority_then_age(self, outbox: SyncOutbox, clock) -> None:
        message = await outbox.enqueue(OutboxOperationType.SEND_MESSAGE, {"body": "hi"})
        clock.advance(seconds=1)
        first_accept = await outbox.enqueue(
            OutboxOperationType.ACCEPT_ASSIGNMENT, {"incident_id": "inc-1"}
        )
        clock.advance(seconds=1)
        create = await outbox.enqueue(OutboxOperationType.CREATE_INCIDENT, {"title": "x"})
        clock.advance(seconds=1)
        second_accept = await outbox.enqueue(
            OutboxOperationType.DECLINE_ASSIGNMENT, {"incident_id": "inc-2"}
        )

        pending = await outbox.list_pending()
        assert [op.operation_id for op in pending] == [
            create.operation_id,
            first_accept.operation_id,
            second_accept.operation_id,
            message.operation_id,
        ]
        assert pending[0].priority == PRIORITY_CRITICAL
        assert pending[-1].priority == PRIORITY_LOW

    async def test_explicit_priority(self, outbox: SyncOutbox) -> None:
        op = await outbox.enqueue(OutboxOperationType.SEND_MESSAGE, {}, priority=99)
        assert op.priority == 99

    async def test_known_operation_id_is_not_duplicated(self, outbox: SyncOutbox) -> None:
        first = await outbox.enqueue(
            OutboxOperationType.UPDATE_INCIDENT, {"incident_id": "inc-1"}, operation_id="op-1"
        )
        second = await outbox.enqueue(
            OutboxOperationType.UPDATE_INCIDENT, {"incident_id": "inc-1"}, operation_id="op-1"
        )
        assert first == second
        assert len(await outbox.list_pending()) == 1

    async def test_remove(self, outbox: SyncOutbox) -> None:
        op = await outbox.enqueue(OutboxOperationType.SEND_MESSAGE, {})
        assert await outbox.remove(op.operation_id) is True
        assert await outbox.remove(op.operation_id) is False
        assert await outbox.list_pending() == []


class TestBackoff:
    def test_exponential_and_capped(self, outbox: SyncOutbox) -> None:
        assert outbox.backoff_delay(0) == timedelta(0)
        assert outbox.backoff_delay(1) == timedelta(seconds=1)
        assert outbox.backoff_delay(2) == timedelta(seconds=2)
        assert outbox.backoff_delay(3) == timedelta(seconds=4)
        assert outbox.backoff_delay(10) == timedelta(seconds=4)


class TestReplay:
    async def test_successful_operations_leave_the_queue(self, outbox: SyncOutbox) -> None:
        await outbox.enqueue(OutboxOperationType.CREATE_INCIDENT, {})
        await outbox.enqueue(OutboxOperationType.SEND_MESSAGE, {})
        handler = AsyncMock()

        result = await outbox.replay(handler)

        assert result == {"succeeded": 2, "failed": 0, "skipped": 0}
        assert handler.await_count == 2
        assert await outbox.list_pending() == []

    async def test_handler_sees_operations_in_priority_order(self, outbox: SyncOutbox) -> None:
        await outbox.enqueue(OutboxOperationType.SEND_MESSAGE, {})
        await outbox.enqueue(OutboxOperationType.CREATE_INCIDENT, {})
        seen: list[OutboxOperationType] = []

        async def handler(op: PendingOperation) -> None:
            seen.append(op.operation_type)

        await outbox.replay(handler)
        assert seen == [OutboxOperationType.CREATE_INCIDENT, OutboxOperationType.SEND_MESSAGE]

    async def test_failure_isolated_and_backed_off(self, outbox: SyncOutbox, clock) -> None:
        bad = await outbox.enqueue(OutboxOperationType.CREATE_INCIDENT, {})
        await outbox.enqueue(OutboxOperationType.SEND_MESSAGE, {})

        async def handler(op: PendingOperation) -> None:
            if op.operation_id == bad.operation_id:
                raise RemoteServerError("503", status_code=503)

        assert await outbox.replay(handler) == {"succeeded": 1, "failed": 1, "skipped": 0}
        [remaining] = await outbox.list_pending()
        assert remaining.operation_id == bad.operation_id
        assert remaining.retry_count == 1
        assert remaining.error == "503"

        # still inside the one-second backoff window
        assert await outbox.replay(handler) == {"succeeded": 0, "failed": 0, "skipped": 1}

        clock.advance(seconds=1)
        assert await outbox.replay(handler) == {"succeeded": 0, "failed": 1, "skipped": 0}

    async def test_exhausted_operations_are_kept_and_retryable(
        self, outbox: SyncOutbox, clock
    ) -> None:
        op = await outbox.enqueue(OutboxOperationType.UPDATE_INCIDENT, {"incident_id": "i"})
        handler = AsyncMock(side_effect=RuntimeError("down"))

        for _ in range(3):
            await outbox.replay(handler)
            clock.advance(seconds=10)

        [failed] = await outbox.get_failed()
        assert failed.operation_id == op.operation_id
        assert failed.retry_count == 3
        assert await outbox.replay(handler) == {"succeeded": 0, "failed": 0, "skipped": 1}

        assert await outbox.retry_failed() == 1
        assert await outbox.get_failed() == []

        handler.side_effect = None
        assert await outbox.replay(handler) == {"succeeded": 1, "failed": 0, "skipped": 0}

    async def test_enqueue_not_blocked_by_slow_replay(self, outbox: SyncOutbox) -> None:
        slow = await outbox.enqueue(OutboxOperationType.CREATE_INCIDENT, {"title": "x"})
        failing = await outbox.enqueue(OutboxOperationType.SEND_MESSAGE, {"body": "hi"})
        started = asyncio.Event()
        release = asyncio.Event()

        async def handler(op: PendingOperation) -> None:
            if op.operation_id == slow.operation_id:
                started.set()
                await release.wait()
            else:
                raise RemoteServerError("bad gateway", status_code=502)

        replay = asyncio.create_task(outbox.replay(handler))
        await started.wait()

        # completes while the replay is still waiting on the remote side
        accepted = await asyncio.wait_for(
            outbox.enqueue(OutboxOperationType.ACCEPT_ASSIGNMENT, {"incident_id": "inc-1"}),
            timeout=1,
        )
        assert not replay.done()

        release.set()
        assert await replay == {"succeeded": 1, "failed": 1, "skipped": 0}

        pending = {op.operation_id: op for op in await outbox.list_pending()}
        assert set(pending) == {accepted.operation_id, failing.operation_id}
        assert pending[failing.operation_id].retry_count == 1
        assert pending[accepted.operation_id].retry_count == 0


class TestStatistics:
    async def test_counts_by_type_and_state(self, outbox: SyncOutbox, clock) -> None:
        await outbox.enqueue(OutboxOperationType.SEND_MESSAGE, {})
        await outbox.enqueue(OutboxOperationType.SEND_MESSAGE, {})
        parked = await outbox.enqueue(OutboxOperationType.ACCEPT_ASSIGNMENT, {})

        async def handler(op: PendingOperation) -> None:
            if op.operation_id == parked.operation_id:
                raise RuntimeError("rejected")
            raise RemoteServerError("not yet")

        for _ in range(3):
            await outbox.replay(handler)
            clock.advance(seconds=10)

        stats = await outbox.get_statistics()
        assert stats.total == 3
        assert stats.failed == 3
        assert stats.pending == 0
        assert stats.by_type == {"SEND_MESSAGE": 2, "ACCEPT_ASSIGNMENT": 1}
