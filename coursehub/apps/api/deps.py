from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status
import jwt

from coursehub.core.config import Settings, get_settings
from coursehub.core.errors import AuthenticationError
from coursehub.domain.principals import Actor, normalize_role
from coursehub.services.registry import ServiceRegistry


def _auth_error(message: str) -> HTTPException:
    # Normalize auth errors for clients without leaking internal details.
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


def actor_from_claims(claims: dict[str, Any]) -> Actor:
    # tenant_id comes only from verified claims, never from the request body.
    subject = claims.get("sub")
    tenant_id = claims.get("tenant_id")
    if not subject or not tenant_id:
        raise AuthenticationError("Token is missing sub or tenant_id")
    try:
        role = normalize_role(claims.get("role") or "student")
    except ValueError as exc:
        raise AuthenticationError(str(exc)) from exc
    return Actor(id=str(subject), role=role, tenant_id=str(tenant_id), name=claims.get("name"))


def decode_actor_token(token: str, settings: Settings | None = None) -> Actor:
    settings = settings or get_settings()
    try:
        claims = jwt.decode(token, settings.auth_jwt_secret, algorithms=[settings.auth_jwt_algorithm])
    except jwt.PyJWTError as exc:
        raise AuthenticationError("Invalid or expired token") from exc
    return actor_from_claims(claims)


def _actor_from_dev_headers(request: Request) -> Actor | None:
    # Allow header-supplied identity only when explicitly enabled for local dev.
    user_id = request.headers.get("X-User-Id")
    tenant_id = request.headers.get("X-Tenant-Id")
    if not user_id or not tenant_id:
        return None
    try:
        role = normalize_role(request.headers.get("X-Role", "student"))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "AUTH_INVALID_ROLE", "message": str(exc)},
        ) from exc
    return Actor(id=user_id, role=role, tenant_id=tenant_id, name=request.headers.get("X-User-Name"))


async def get_current_actor(request: Request) -> Actor:
    settings = get_settings()
    token = _parse_bearer_token(request.headers.get("Authorization"))
    if token is None:
        if settings.auth_dev_bypass:
            actor = _actor_from_dev_headers(request)
            if actor is not None:
                return actor
        raise _auth_error("Missing or invalid bearer token")
    try:
        return decode_actor_token(token, settings)
    except AuthenticationError as exc:
        raise _auth_error(str(exc)) from exc


def get_registry(request: Request) -> ServiceRegistry:
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "SERVICE_UNAVAILABLE", "message": "Services are not initialized"},
        )
    return registry
