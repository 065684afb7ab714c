"""Shared helpers for looking up services on ``app.state``."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request


def require_service(request: Request, name: str) -> Any:
    """Return ``app.state.<name>`` or answer 503 if it was never initialised."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name.replace('_', ' ')} service not available")
    return service
