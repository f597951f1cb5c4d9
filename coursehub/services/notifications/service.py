from __future__ import annotations

import logging
from typing import Any, Mapping

from coursehub.core.config import get_settings
from coursehub.core.errors import NotFoundError, OwnershipViolationError
from coursehub.domain.models import Notification
from coursehub.persistence.guards import tenant_filters
from coursehub.persistence.repos.base import Repository


logger = logging.getLogger(__name__)


class NotificationService:
    """Persistence and read-state API for per-user notifications.

    Reads are scoped by both ``user_id`` and ``tenant_id``. Mutations verify
    that the notification belongs to the caller and fail closed with
    ``OwnershipViolationError`` otherwise, leaving the row untouched.
    """

    def __init__(self, repo: Repository[Notification], *, page_size_max: int | None = None) -> None:
        self._repo = repo
        self._page_size_max = max(1, int(page_size_max or get_settings().notification_page_size_max))

    async def create(
        self,
        *,
        user_id: str,
        tenant_id: str,
        kind: str,
        message: str,
        data: Mapping[str, Any] | None = None,
        event_id: str | None = None,
    ) -> Notification | None:
        # Event-sourced rows are unique per (event, recipient); None means this delivery already happened.
        values = {
            "user_id": user_id,
            "tenant_id": tenant_id,
            "kind": kind,
            "message": message,
            "data": dict(data or {}),
            "read": False,
            "event_id": event_id,
        }
        if event_id is None:
            row = await self._repo.create(values)
        else:
            row = await self._repo.create_if_absent(values, unique_on=("event_id", "user_id"))
        if row is None:
            logger.info("notification_duplicate_skipped event_id=%s user_id=%s", event_id, user_id)
            return None
        logger.info(
            "notification_created notification_id=%s user_id=%s tenant_id=%s kind=%s",
            row.id,
            user_id,
            tenant_id,
            kind,
        )
        return row

    async def get_user_notifications(
        self,
        user_id: str,
        tenant_id: str,
        *,
        page: int = 1,
        limit: int = 20,
        kind: str | None = None,
        read: bool | None = None,
    ) -> list[Notification]:
        # Newest first; page/limit are clamped rather than rejected.
        limit = min(max(1, int(limit)), self._page_size_max)
        page = max(1, int(page))
        filters: dict[str, Any] = tenant_filters(tenant_id, user_id=user_id)
        if kind is not None:
            filters["kind"] = kind
        if read is not None:
            filters["read"] = read
        return await self._repo.find_many(
            filters,
            order_by="created_at",
            descending=True,
            offset=(page - 1) * limit,
            limit=limit,
        )

    async def get_unread_count(self, user_id: str, tenant_id: str) -> int:
        return await self._repo.count(tenant_filters(tenant_id, user_id=user_id, read=False))

    async def _owned(self, notification_id: str, user_id: str) -> Notification:
        row = await self._repo.find_by_id(notification_id)
        if row is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if row.user_id != user_id:
            logger.warning(
                "notification_ownership_violation notification_id=%s owner_id=%s actor_id=%s",
                notification_id,
                row.user_id,
                user_id,
            )
            raise OwnershipViolationError("Cannot access this notification")
        return row

    async def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        row = await self._owned(notification_id, user_id)
        if row.read:
            return row
        updated = await self._repo.update(notification_id, {"read": True})
        if updated is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        logger.info("notification_marked_read notification_id=%s user_id=%s", notification_id, user_id)
        return updated

    async def mark_all_as_read(self, user_id: str, tenant_id: str) -> int:
        updated = await self._repo.update_where(
            tenant_filters(tenant_id, user_id=user_id, read=False), {"read": True}
        )
        logger.info("notifications_marked_read user_id=%s tenant_id=%s count=%s", user_id, tenant_id, updated)
        return updated

    async def delete(self, notification_id: str, user_id: str) -> None:
        await self._owned(notification_id, user_id)
        await self._repo.delete(notification_id)
        logger.info("notification_deleted notification_id=%s user_id=%s", notification_id, user_id)
