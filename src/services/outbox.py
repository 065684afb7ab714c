"""Durable outbox for operations that must reach the remote case API.

Accepts, declines and incident updates made while the remote API is
unreachable are queued here and replayed later.  Replay is idempotent:
each operation carries an ``operation_id`` that the remote side uses as an
idempotency key, and an operation leaves the queue only after its handler
succeeds.

Ordering is priority descending, then enqueue time ascending.  Failed
attempts back off exponentially (``base * multiplier ** (n - 1)``, capped).
Operations that exhaust ``max_attempts`` stay in the queue marked with
their last error so an operator can inspect and retry or purge them.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, Final

import structlog

from src.models.enums import OutboxOperationType
from src.models.outbox import OutboxStatistics, PendingOperation
from src.services.clock import Clock, SystemClock
from src.services.store import JsonStateStore

logger = structlog.get_logger(__name__)

_QUEUE_KEY: Final[str] = "outbox:queue"

PRIORITY_CRITICAL: Final[int] = 100
PRIORITY_HIGH: Final[int] = 85
PRIORITY_MEDIUM: Final[int] = 70
PRIORITY_LOW: Final[int] = 50

OPERATION_PRIORITIES: Final[dict[OutboxOperationType, int]] = {
    OutboxOperationType.CREATE_INCIDENT: PRIORITY_CRITICAL,
    OutboxOperationType.UPDATE_INCIDENT: PRIORITY_HIGH,
    OutboxOperationType.ACCEPT_ASSIGNMENT: PRIORITY_HIGH,
    OutboxOperationType.DECLINE_ASSIGNMENT: PRIORITY_HIGH,
    OutboxOperationType.UPDATE_APPOINTMENT_STATUS: PRIORITY_MEDIUM,
    OutboxOperationType.SEND_MESSAGE: PRIORITY_LOW,
}

ReplayHandler = Callable[[PendingOperation], Awaitable[Any]]


class SyncOutbox:
    """Priority queue of pending remote operations.

    Parameters
    ----------
    store:
        State store holding the queue under ``outbox:queue``.
    clock:
        Time source for enqueue stamps and backoff windows.
    max_attempts:
        Attempts after which an operation is parked as failed.
    base_delay_seconds, max_delay_seconds, multiplier:
        Exponential backoff between attempts.
    """

    __slots__ = (
        "_base_delay",
        "_clock",
        "_lock",
        "_max_attempts",
        "_max_delay",
        "_multiplier",
        "_replay_lock",
        "_store",
    )

    def __init__(
        self,
        store: JsonStateStore,
        clock: Clock | None = None,
        *,
        max_attempts: int = 5,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 30.0,
        multiplier: float = 2.0,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts
        self._base_delay = base_delay_seconds
        self._max_delay = max_delay_seconds
        self._multiplier = multiplier
        self._lock = asyncio.Lock()
        self._replay_lock = asyncio.Lock()

    # -- Internal helpers ------------------------------------------------------

    async def _load(self) -> list[PendingOperation]:
        return await self._store.get_models(_QUEUE_KEY, PendingOperation)

    async def _save(self, operations: list[PendingOperation]) -> None:
        operations.sort(key=lambda op: (-op.priority, op.enqueued_at))
        await self._store.set_models(_QUEUE_KEY, operations)

    def backoff_delay(self, retry_count: int) -> timedelta:
        """Wait required after the *retry_count*-th failed attempt."""
        if retry_count <= 0:
            return timedelta(0)
        seconds = self._base_delay * self._multiplier ** (retry_count - 1)
        return timedelta(seconds=min(seconds, self._max_delay))

    def is_exhausted(self, operation: PendingOperation) -> bool:
        return operation.retry_count >= self._max_attempts

    def is_due(self, operation: PendingOperation, now: datetime) -> bool:
        if self.is_exhausted(operation):
            return False
        if operation.last_attempt_at is None:
            return True
        return now >= operation.last_attempt_at + self.backoff_delay(operation.retry_count)

    # -- Queue API -------------------------------------------------------------

    async def enqueue(
        self,
        operation_type: OutboxOperationType,
        payload: dict[str, Any],
        *,
        priority: int | None = None,
        operation_id: str | None = None,
    ) -> PendingOperation:
        """Queue an operation.  Re-enqueueing a known ``operation_id`` is a no-op."""
        async with self._lock:
            operations = await self._load()
            if operation_id is not None:
                for existing in operations:
                    if existing.operation_id == operation_id:
                        return existing

            fields: dict[str, Any] = {
                "operation_type": operation_type,
                "payload": payload,
                "priority": priority if priority is not None else OPERATION_PRIORITIES[operation_type],
                "enqueued_at": self._clock.now(),
            }
            if operation_id is not None:
                fields["operation_id"] = operation_id
            operation = PendingOperation(**fields)
            operations.append(operation)
            await self._save(operations)

        logger.info(
            "outbox.enqueued",
            operation_id=operation.operation_id,
            operation_type=operation_type,
            priority=operation.priority,
        )
        return operation

    async def list_pending(self) -> list[PendingOperation]:
        """Every queued operation in replay order, including parked failures."""
        operations = await self._load()
        operations.sort(key=lambda op: (-op.priority, op.enqueued_at))
        return operations

    async def get_failed(self) -> list[PendingOperation]:
        return [op for op in await self.list_pending() if self.is_exhausted(op)]

    async def remove(self, operation_id: str) -> bool:
        async with self._lock:
            operations = await self._load()
            kept = [op for op in operations if op.operation_id != operation_id]
            if len(kept) == len(operations):
                return False
            await self._save(kept)
        return True

    async def retry_failed(self) -> int:
        """Reset parked operations so the next replay tries them again."""
        async with self._lock:
            operations = await self._load()
            reset = 0
            for index, op in enumerate(operations):
                if self.is_exhausted(op):
                    operations[index] = op.model_copy(
                        update={"retry_count": 0, "last_attempt_at": None, "error": None}
                    )
                    reset += 1
            if reset:
                await self._save(operations)
        return reset

    async def replay(self, handler: ReplayHandler) -> dict[str, int]:
        """Hand every due operation to *handler* in priority order.

        Successful operations are removed.  A handler exception counts as a
        failed attempt for that operation only.  Returns counts of
        ``succeeded``, ``failed`` and ``skipped`` (not yet due or parked).

        The queue lock is held only while snapshotting and while merging
        results, never across *handler*, so ``enqueue`` is not blocked by
        remote calls.  Only one replay runs at a time.
        """
        result = {"succeeded": 0, "failed": 0, "skipped": 0}
        async with self._replay_lock:
            async with self._lock:
                now = self._clock.now()
                due: list[PendingOperation] = []
                for op in await self.list_pending():
                    if self.is_due(op, now):
                        due.append(op)
                    else:
                        result["skipped"] += 1

            succeeded: set[str] = set()
            failed: dict[str, PendingOperation] = {}
            for op in due:
                try:
                    await handler(op)
                except Exception as exc:
                    result["failed"] += 1
                    op = op.model_copy(
                        update={
                            "retry_count": op.retry_count + 1,
                            "last_attempt_at": now,
                            "error": str(exc),
                        }
                    )
                    failed[op.operation_id] = op
                    if self.is_exhausted(op):
                        logger.error(
                            "outbox.max_attempts_reached",
                            operation_id=op.operation_id,
                            operation_type=op.operation_type,
                            error=op.error,
                        )
                    else:
                        logger.warning(
                            "outbox.replay_failed",
                            operation_id=op.operation_id,
                            retry_count=op.retry_count,
                            error=op.error,
                        )
                else:
                    result["succeeded"] += 1
                    succeeded.add(op.operation_id)

            if succeeded or failed:
                # merge into the current queue; operations enqueued meanwhile are kept
                async with self._lock:
                    merged = [
                        failed.get(op.operation_id, op)
                        for op in await self._load()
                        if op.operation_id not in succeeded
                    ]
                    await self._save(merged)

        if result["succeeded"] or result["failed"]:
            logger.info("outbox.replay_complete", **result)
        return result

    async def get_statistics(self) -> OutboxStatistics:
        operations = await self._load()
        failed = sum(1 for op in operations if self.is_exhausted(op))
        by_type = Counter(str(op.operation_type) for op in operations)
        return OutboxStatistics(
            total=len(operations),
            pending=len(operations) - failed,
            failed=failed,
            by_type=dict(by_type),
        )
