"""Assignment lifecycle: ``pending -> accepted | declined | expired``.

Every assignment reaches at most one terminal state.  Accepting is the
only transition with a directory side effect: it takes one slot of the
provider's capacity, exactly once, under a per-assignment lock so that
racing accepts for the same assignment resolve to one winner and one
:class:`~src.services.errors.ConcurrencyConflictError`.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import timedelta

import structlog

from src.models.assignment import ProviderAssignment
from src.models.enums import AssignmentStatus
from src.services.clock import Clock, SystemClock
from src.services.errors import ConcurrencyConflictError, NotFoundError, StoreUnavailableError
from src.services.locks import KeyedLocks
from src.services.provider_directory import ProviderDirectory
from src.services.store import JsonStateStore

logger = structlog.get_logger(__name__)

DeclinedCallback = Callable[[ProviderAssignment], Awaitable[None]]


def _assignment_key(assignment_id: str) -> str:
    return f"assignment:{assignment_id}"


def _incident_key(incident_id: str) -> str:
    return f"incident:{incident_id}:assignments"


class AssignmentLifecycle:
    """Persists assignments and drives their state machine.

    Parameters
    ----------
    store:
        State store for ``assignment:{id}`` records.
    directory:
        Provider directory whose case load is incremented on accept.
    clock:
        Time source for ``responded_at`` and staleness checks.
    on_declined:
        Optional async hook invoked after a decline is persisted.  The
        dispatcher uses it to decide whether to re-route; the lifecycle
        itself never re-routes.
    """

    __slots__ = ("_clock", "_directory", "_locks", "_on_declined", "_store")

    def __init__(
        self,
        store: JsonStateStore,
        directory: ProviderDirectory,
        clock: Clock | None = None,
        on_declined: DeclinedCallback | None = None,
    ) -> None:
        self._store = store
        self._directory = directory
        self._clock = clock or SystemClock()
        self._on_declined = on_declined
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def record(self, assignments: list[ProviderAssignment]) -> list[ProviderAssignment]:
        """Store freshly routed assignments as ``pending``."""
        for assignment in assignments:
            await self._store.set_model(_assignment_key(assignment.assignment_id), assignment)
            await self._store.add_to_index(
                _incident_key(assignment.incident_id), assignment.assignment_id
            )
        if assignments:
            logger.info(
                "assignments.recorded",
                incident_id=assignments[0].incident_id,
                count=len(assignments),
            )
        return assignments

    async def get(self, assignment_id: str) -> ProviderAssignment | None:
        return await self._store.get_model(_assignment_key(assignment_id), ProviderAssignment)

    async def require(self, assignment_id: str) -> ProviderAssignment:
        assignment = await self.get(assignment_id)
        if assignment is None:
            raise NotFoundError(f"unknown assignment {assignment_id!r}")
        return assignment

    async def list_for_incident(self, incident_id: str) -> list[ProviderAssignment]:
        """Assignments for *incident_id* in the order they were recorded."""
        result: list[ProviderAssignment] = []
        for assignment_id in await self._store.get_index(_incident_key(incident_id)):
            assignment = await self.get(assignment_id)
            if assignment is not None:
                result.append(assignment)
        return result

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _ensure_pending(self, assignment: ProviderAssignment, action: str) -> None:
        if assignment.is_terminal:
            logger.warning(
                "assignments.conflict",
                assignment_id=assignment.assignment_id,
                action=action,
                status=assignment.status,
            )
            raise ConcurrencyConflictError(
                f"cannot {action} assignment {assignment.assignment_id!r}: "
                f"already {assignment.status}"
            )

    async def accept(self, assignment_id: str) -> ProviderAssignment:
        """Accept a pending assignment and take one slot of provider capacity.

        Raises
        ------
        NotFoundError
            Unknown assignment id.
        ConcurrencyConflictError
            The assignment is no longer pending.
        ProviderAtCapacityError
            The provider filled up since routing; the assignment stays pending.
        """
        async with self._locks(assignment_id):
            assignment = await self.require(assignment_id)
            self._ensure_pending(assignment, "accept")

            await self._directory.increment_case_load(assignment.provider_id)

            accepted = assignment.model_copy(
                update={
                    "status": AssignmentStatus.ACCEPTED,
                    "responded_at": self._clock.now(),
                }
            )
            try:
                await self._store.set_model(_assignment_key(assignment_id), accepted)
            except StoreUnavailableError:
                # give the slot back so a retry can take it again
                await self._directory.release_case(assignment.provider_id)
                raise

        logger.info(
            "assignments.accepted",
            assignment_id=assignment_id,
            incident_id=accepted.incident_id,
            provider_id=accepted.provider_id,
        )
        return accepted

    async def decline(self, assignment_id: str, reason: str | None = None) -> ProviderAssignment:
        """Decline a pending assignment.  No directory mutation."""
        async with self._locks(assignment_id):
            assignment = await self.require(assignment_id)
            self._ensure_pending(assignment, "decline")
            declined = assignment.model_copy(
                update={
                    "status": AssignmentStatus.DECLINED,
                    "responded_at": self._clock.now(),
                    "decline_reason": reason,
                }
            )
            await self._store.set_model(_assignment_key(assignment_id), declined)

        logger.info(
            "assignments.declined",
            assignment_id=assignment_id,
            incident_id=declined.incident_id,
            provider_id=declined.provider_id,
        )
        if self._on_declined is not None:
            await self._on_declined(declined)
        return declined

    async def expire(self, assignment_id: str) -> ProviderAssignment:
        async with self._locks(assignment_id):
            assignment = await self.require(assignment_id)
            self._ensure_pending(assignment, "expire")
            expired = assignment.model_copy(
                update={"status": AssignmentStatus.EXPIRED, "responded_at": self._clock.now()}
            )
            await self._store.set_model(_assignment_key(assignment_id), expired)

        logger.info("assignments.expired", assignment_id=assignment_id)
        return expired

    async def expire_stale(
        self, incident_id: str, max_age: timedelta
    ) -> list[ProviderAssignment]:
        """Expire every pending assignment of *incident_id* older than *max_age*.

        Assignments that win a race to a terminal state in the meantime are
        skipped.
        """
        cutoff = self._clock.now() - max_age
        expired: list[ProviderAssignment] = []
        for assignment in await self.list_for_incident(incident_id):
            if assignment.is_terminal or assignment.created_at > cutoff:
                continue
            try:
                expired.append(await self.expire(assignment.assignment_id))
            except ConcurrencyConflictError:
                continue
        return expired
