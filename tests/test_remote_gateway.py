"""Tests for the remote case API client.

All tests run WITHOUT network access: requests go to an
:class:`httpx.MockTransport`.
"""

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import orjson
import pytest
from tenacity import wait_none

from src.models.enums import OutboxOperationType
from src.models.outbox import PendingOperation
from src.services.errors import InvalidInputError, RemoteApiError, RemoteServerError
from src.services.remote_gateway import RemoteCaseGateway

BASE_URL = "https://cases.example.org/api"


def _operation(operation_type: OutboxOperationType, **payload) -> PendingOperation:
    return PendingOperation(
        operation_id="op_123",
        operation_type=operation_type,
        payload=payload,
        priority=85,
        enqueued_at=datetime(2026, 10, 21, 7, 0, tzinfo=UTC),
    )


class Recorder:
    """Mock transport handler that records requests and replays canned statuses."""

    def __init__(self, *statuses: int) -> None:
        self.statuses = list(statuses) or [200]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status, json={"ok": status < 400})


@pytest.fixture(autouse=True)
def _no_retry_wait(monkeypatch) -> None:
    monkeypatch.setattr(RemoteCaseGateway._send.retry, "wait", wait_none())


def _gateway(recorder: Recorder, **kwargs) -> RemoteCaseGateway:
    return RemoteCaseGateway(BASE_URL, transport=httpx.MockTransport(recorder), **kwargs)


class TestRequests:
    @pytest.mark.parametrize(
        ("operation_type", "payload", "method", "path"),
        [
            (OutboxOperationType.CREATE_INCIDENT, {"title": "x"}, "POST", "/api/incidents/"),
            (
                OutboxOperationType.UPDATE_INCIDENT,
                {"incident_id": "inc-1", "status": "assigned"},
                "PATCH",
                "/api/incidents/inc-1/",
            ),
            (
                OutboxOperationType.ACCEPT_ASSIGNMENT,
                {"incident_id": "inc-1"},
                "PATCH",
                "/api/incidents/inc-1/accept/",
            ),
            (
                OutboxOperationType.DECLINE_ASSIGNMENT,
                {"incident_id": "inc-1", "reason": "full"},
                "PATCH",
                "/api/incidents/inc-1/reject/",
            ),
            (
                OutboxOperationType.UPDATE_APPOINTMENT_STATUS,
                {"appointment_id": "appt-1", "status": "confirmed"},
                "PATCH",
                "/api/appointments/appt-1/status/",
            ),
            (OutboxOperationType.SEND_MESSAGE, {"body": "hello"}, "POST", "/api/messages/"),
        ],
    )
    async def test_operation_routes(
        self, operation_type, payload, method: str, path: str
    ) -> None:
        recorder = Recorder()
        gateway = _gateway(recorder)
        try:
            result = await gateway.handle(_operation(operation_type, **payload))
        finally:
            await gateway.close()

        assert result == {"ok": True}
        [request] = recorder.requests
        assert request.method == method
        assert request.url.path == path
        assert request.headers["Idempotency-Key"] == "op_123"

    async def test_decline_sends_reason(self) -> None:
        recorder = Recorder()
        gateway = _gateway(recorder)
        await gateway.handle(
            _operation(OutboxOperationType.DECLINE_ASSIGNMENT, incident_id="inc-1", reason="full")
        )
        await gateway.close()
        assert orjson.loads(recorder.requests[0].content) == {"reason": "full"}

    async def test_bearer_token(self) -> None:
        recorder = Recorder()
        gateway = _gateway(recorder, auth_token="secret")
        await gateway.send_message({"body": "hi"})
        await gateway.close()
        assert recorder.requests[0].headers["Authorization"] == "Bearer secret"

    async def test_missing_identifier(self) -> None:
        recorder = Recorder()
        gateway = _gateway(recorder)
        with pytest.raises(InvalidInputError):
            await gateway.handle(_operation(OutboxOperationType.ACCEPT_ASSIGNMENT))
        await gateway.close()
        assert recorder.requests == []


class TestErrors:
    async def test_client_error_is_not_retried(self) -> None:
        recorder = Recorder(409)
        gateway = _gateway(recorder)
        with pytest.raises(RemoteApiError) as exc_info:
            await gateway.create_incident({"title": "x"})
        await gateway.close()

        assert not isinstance(exc_info.value, RemoteServerError)
        assert exc_info.value.status_code == 409
        assert len(recorder.requests) == 1

    async def test_server_error_retried_then_raised(self) -> None:
        recorder = Recorder(503)
        gateway = _gateway(recorder)
        with pytest.raises(RemoteServerError):
            await gateway.create_incident({"title": "x"})
        await gateway.close()
        assert len(recorder.requests) == 3

    async def test_server_error_recovers(self) -> None:
        recorder = Recorder(502, 200)
        gateway = _gateway(recorder)
        assert await gateway.create_incident({"title": "x"}) == {"ok": True}
        await gateway.close()
        assert len(recorder.requests) == 2

    async def test_empty_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(204)

        gateway = RemoteCaseGateway(BASE_URL, transport=httpx.MockTransport(handler))
        assert await gateway.update_incident("inc-1", {"status": "closed"}) == {}
        await gateway.close()
