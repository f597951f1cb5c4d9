from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from coursehub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from coursehub.apps.api.response import SuccessEnvelope, success_response

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    event_bus_running: bool
    event_bus_pending: int
    event_bus_dropped: int


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    # Report liveness plus event bus backlog so dropped notifications are visible.
    registry = getattr(request.app.state, "registry", None)
    bus = registry.bus if registry is not None else None
    payload = HealthResponse(
        status="ok",
        event_bus_running=bool(bus and bus.running),
        event_bus_pending=bus.pending if bus else 0,
        event_bus_dropped=bus.dropped if bus else 0,
    )
    return success_response(request=request, data=payload)
