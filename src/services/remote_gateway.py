"""HTTP client for the remote case-management API.

Used as the replay handler of the :class:`~src.services.outbox.SyncOutbox`:
each queued operation is mapped to one request.  Every request carries the
operation id in an ``Idempotency-Key`` header so the remote side can drop
duplicates when a replay follows a lost response.

Transport errors and 5xx responses are retried with exponential backoff
(tenacity).  Any other non-2xx response raises
:class:`~src.services.errors.RemoteApiError` at once.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.models.enums import OutboxOperationType
from src.models.outbox import PendingOperation
from src.services.errors import InvalidInputError, RemoteApiError, RemoteServerError

logger = structlog.get_logger(__name__)


class RemoteCaseGateway:
    """Thin async client over the remote ``/incidents`` and ``/appointments`` API.

    Parameters
    ----------
    base_url:
        Root URL of the remote API, e.g. ``https://cases.example.org/api``.
    timeout:
        Per-request timeout in seconds.
    auth_token:
        Optional bearer token.
    transport:
        Optional httpx transport (tests pass :class:`httpx.MockTransport`).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        auth_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json", "User-Agent": "Tumaini/1.0"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, RemoteServerError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _send(
        self,
        method: str,
        path: str,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        response = await self._client.request(method, path, json=payload, headers=headers)

        if response.status_code >= 500:
            logger.warning("remote.server_error", path=path, status=response.status_code)
            raise RemoteServerError(
                f"{method} {path} failed with {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            logger.warning("remote.request_rejected", path=path, status=response.status_code)
            raise RemoteApiError(
                f"{method} {path} rejected with {response.status_code}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        return response.json()

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def create_incident(
        self, payload: dict[str, Any], idempotency_key: str | None = None
    ) -> dict[str, Any]:
        return await self._send("POST", "/incidents/", payload, idempotency_key)

    async def update_incident(
        self, incident_id: str, payload: dict[str, Any], idempotency_key: str | None = None
    ) -> dict[str, Any]:
        return await self._send("PATCH", f"/incidents/{incident_id}/", payload, idempotency_key)

    async def accept_assignment(
        self, incident_id: str, notes: str = "", idempotency_key: str | None = None
    ) -> dict[str, Any]:
        return await self._send(
            "PATCH", f"/incidents/{incident_id}/accept/", {"notes": notes}, idempotency_key
        )

    async def reject_assignment(
        self, incident_id: str, reason: str = "", idempotency_key: str | None = None
    ) -> dict[str, Any]:
        return await self._send(
            "PATCH", f"/incidents/{incident_id}/reject/", {"reason": reason}, idempotency_key
        )

    async def update_appointment_status(
        self, appointment_id: str, payload: dict[str, Any], idempotency_key: str | None = None
    ) -> dict[str, Any]:
        return await self._send(
            "PATCH", f"/appointments/{appointment_id}/status/", payload, idempotency_key
        )

    async def send_message(
        self, payload: dict[str, Any], idempotency_key: str | None = None
    ) -> dict[str, Any]:
        return await self._send("POST", "/messages/", payload, idempotency_key)

    # ------------------------------------------------------------------
    # Outbox replay
    # ------------------------------------------------------------------

    async def handle(self, operation: PendingOperation) -> dict[str, Any]:
        """Replay one outbox operation against the remote API."""
        payload = dict(operation.payload)
        key = operation.operation_id

        match operation.operation_type:
            case OutboxOperationType.CREATE_INCIDENT:
                return await self.create_incident(payload, key)
            case OutboxOperationType.UPDATE_INCIDENT:
                incident_id = _require(payload, "incident_id")
                return await self.update_incident(incident_id, payload, key)
            case OutboxOperationType.ACCEPT_ASSIGNMENT:
                incident_id = _require(payload, "incident_id")
                return await self.accept_assignment(incident_id, payload.get("notes", ""), key)
            case OutboxOperationType.DECLINE_ASSIGNMENT:
                incident_id = _require(payload, "incident_id")
                return await self.reject_assignment(incident_id, payload.get("reason", ""), key)
            case OutboxOperationType.UPDATE_APPOINTMENT_STATUS:
                appointment_id = _require(payload, "appointment_id")
                return await self.update_appointment_status(appointment_id, payload, key)
            case OutboxOperationType.SEND_MESSAGE:
                return await self.send_message(payload, key)
        raise InvalidInputError(f"unsupported operation type {operation.operation_type!r}")


def _require(payload: dict[str, Any], field: str) -> str:
    value = payload.get(field)
    if not value:
        raise InvalidInputError(f"outbox payload is missing {field!r}")
    return str(value)
