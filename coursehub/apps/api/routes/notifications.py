from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict

from coursehub.apps.api.deps import get_current_actor, get_registry
from coursehub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from coursehub.apps.api.response import SuccessEnvelope, success_response
from coursehub.domain.principals import Actor
from coursehub.services.registry import ServiceRegistry

router = APIRouter(prefix="/notifications", tags=["notifications"], responses=DEFAULT_ERROR_RESPONSES)


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    tenant_id: str
    kind: str
    message: str
    data: dict[str, Any]
    read: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UnreadCountResponse(BaseModel):
    count: int


class MarkAllReadResponse(BaseModel):
    updated: int


class DeletedResponse(BaseModel):
    id: str
    deleted: bool


def _serialize(row: Any) -> NotificationResponse:
    return NotificationResponse.model_validate(row)


@router.get("", response_model=SuccessEnvelope[list[NotificationResponse]])
async def list_notifications(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    kind: str | None = Query(default=None),
    read: bool | None = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    registry: ServiceRegistry = Depends(get_registry),
) -> dict:
    rows = await registry.notifications.get_user_notifications(
        actor.id, actor.tenant_id, page=page, limit=limit, kind=kind, read=read
    )
    return success_response(request=request, data=[_serialize(row) for row in rows])


@router.get("/unread-count", response_model=SuccessEnvelope[UnreadCountResponse])
async def unread_count(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    registry: ServiceRegistry = Depends(get_registry),
) -> dict:
    count = await registry.notifications.get_unread_count(actor.id, actor.tenant_id)
    return success_response(request=request, data=UnreadCountResponse(count=count))


@router.post("/read-all", response_model=SuccessEnvelope[MarkAllReadResponse])
async def mark_all_read(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    registry: ServiceRegistry = Depends(get_registry),
) -> dict:
    updated = await registry.notifications.mark_all_as_read(actor.id, actor.tenant_id)
    return success_response(request=request, data=MarkAllReadResponse(updated=updated))


@router.post("/{notification_id}/read", response_model=SuccessEnvelope[NotificationResponse])
async def mark_read(
    notification_id: str,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    registry: ServiceRegistry = Depends(get_registry),
) -> dict:
    row = await registry.notifications.mark_as_read(notification_id, actor.id)
    return success_response(request=request, data=_serialize(row))


@router.delete("/{notification_id}", response_model=SuccessEnvelope[DeletedResponse])
async def delete_notification(
    notification_id: str,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    registry: ServiceRegistry = Depends(get_registry),
) -> dict:
    await registry.notifications.delete(notification_id, actor.id)
    return success_response(request=request, data=DeletedResponse(id=notification_id, deleted=True))
