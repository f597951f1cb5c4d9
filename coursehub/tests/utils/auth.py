from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt

from coursehub.core.config import get_settings
from coursehub.domain.models import User


def issue_test_token(user: User, *, expires_in: timedelta = timedelta(minutes=5), secret: str | None = None) -> str:
    # Sign a token the way the upstream identity provider would.
    settings = get_settings()
    claims = {
        "sub": user.id,
        "tenant_id": user.tenant_id,
        "role": user.role,
        "name": user.name,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(claims, secret or settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)


def auth_headers(user: User, **kwargs) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_test_token(user, **kwargs)}"}


def dev_headers(user: User) -> dict[str, str]:
    # Identity headers honoured only when AUTH_DEV_BYPASS is enabled.
    return {
        "X-User-Id": user.id,
        "X-Tenant-Id": user.tenant_id,
        "X-Role": user.role,
        "X-User-Name": user.name,
    }
