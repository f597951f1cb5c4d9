from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from coursehub.apps.api.deps import get_current_actor, get_registry
from coursehub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from coursehub.apps.api.response import SuccessEnvelope, success_response
from coursehub.domain.principals import Actor
from coursehub.services.likes import TargetKind, ToggleResult
from coursehub.services.registry import ServiceRegistry

router = APIRouter(prefix="/likes", tags=["likes"], responses=DEFAULT_ERROR_RESPONSES)


class ToggleResponse(BaseModel):
    target_id: str
    target_kind: TargetKind
    active: bool
    total_count: int


def _payload(target_id: str, target_kind: TargetKind, result: ToggleResult) -> ToggleResponse:
    return ToggleResponse(
        target_id=target_id,
        target_kind=target_kind,
        active=result.active,
        total_count=result.total_count,
    )


@router.post("/{target_kind}/{target_id}", response_model=SuccessEnvelope[ToggleResponse])
async def toggle_like(
    target_kind: TargetKind,
    target_id: str,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    registry: ServiceRegistry = Depends(get_registry),
) -> dict:
    # The liker is always the authenticated actor; there is no user id in the path.
    result = await registry.likes.toggle(actor.id, target_id, target_kind)
    return success_response(request=request, data=_payload(target_id, target_kind, result))


@router.get("/{target_kind}/{target_id}", response_model=SuccessEnvelope[ToggleResponse])
async def like_status(
    target_kind: TargetKind,
    target_id: str,
    request: Request,
    actor: Actor = Depends(get_current_actor),
    registry: ServiceRegistry = Depends(get_registry),
) -> dict:
    result = await registry.likes.get_status(actor.id, target_id, target_kind)
    return success_response(request=request, data=_payload(target_id, target_kind, result))
