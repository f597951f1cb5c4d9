from __future__ import annotations

import asyncio
import functools
import logging
from typing import Awaitable, Callable, Sequence

from coursehub.core.config import Settings, get_settings
from coursehub.core.errors import TransientDependencyError
from coursehub.domain.events import DomainEvent, EventType
from coursehub.services.directory import Directory
from coursehub.services.events import EventBus
from coursehub.services.notifications.messages import (
    MessageFormat,
    RenderedNotification,
    render_comment_created,
    render_comment_liked,
    render_comment_replied,
    render_course_published,
    render_lesson_created,
    render_lesson_liked,
    render_user_enrolled,
    render_welcome,
)
from coursehub.services.notifications.service import NotificationService


logger = logging.getLogger(__name__)

Handler = Callable[[DomainEvent], Awaitable[int]]


class NotificationDispatcher:
    """Standing bus subscriber that turns domain events into notifications.

    Each handler resolves its recipient set, renders one message from the
    event, and persists one row per recipient. Lookup and persistence
    failures are logged and skipped; handlers never raise into the bus.
    """

    def __init__(
        self,
        notifications: NotificationService,
        directory: Directory,
        *,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._notifications = notifications
        self._directory = directory
        self._format = MessageFormat.from_settings(settings)
        self._concurrency = max(1, int(settings.notification_fanout_concurrency))

    def handlers(self) -> dict[EventType, Handler]:
        return {
            EventType.LESSON_CREATED: self.handle_lesson_created,
            EventType.COURSE_PUBLISHED: self.handle_course_published,
            EventType.USER_ENROLLED: self.handle_user_enrolled,
            EventType.USER_REGISTERED: self.handle_user_registered,
            EventType.COMMENT_LIKED: self.handle_comment_liked,
            EventType.LESSON_LIKED: self.handle_lesson_liked,
            EventType.COMMENT_REPLIED: self.handle_comment_replied,
            EventType.COMMENT_CREATED: self.handle_comment_created,
        }

    def register(self, bus: EventBus) -> None:
        for event_type, handler in self.handlers().items():
            bus.subscribe(event_type, self._guard(handler), name=f"notifications.{event_type.value}")

    def _guard(self, handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def guarded(event: DomainEvent) -> int:
            try:
                return await handler(event)
            except Exception:  # noqa: BLE001 - notification delivery is best-effort.
                logger.exception("notification_dispatch_failed event_type=%s event_id=%s", event.key, event.id)
                return 0

        return guarded

    async def _resolve(self, event: DomainEvent, lookup: Awaitable[Sequence[str]]) -> list[str]:
        try:
            return [user_id for user_id in await lookup if user_id]
        except TransientDependencyError as exc:
            logger.warning(
                "notification_recipients_unavailable event_type=%s event_id=%s",
                event.key,
                event.id,
                exc_info=exc,
            )
            return []

    async def _fan_out(self, event: DomainEvent, recipients: Sequence[str], rendered: RenderedNotification) -> int:
        # Persist per recipient independently; one failed write never aborts the others.
        if not recipients:
            logger.info("notification_no_recipients event_type=%s event_id=%s", event.key, event.id)
            return 0
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _deliver(user_id: str):
            async with semaphore:
                return await self._notifications.create(
                    user_id=user_id,
                    tenant_id=event.tenant_id,
                    kind=rendered.kind,
                    message=rendered.message,
                    data=rendered.data,
                    event_id=event.id,
                )

        unique_recipients = list(dict.fromkeys(recipients))
        results = await asyncio.gather(*(_deliver(user_id) for user_id in unique_recipients), return_exceptions=True)
        delivered = 0
        for user_id, result in zip(unique_recipients, results):
            if isinstance(result, BaseException):
                logger.error(
                    "notification_delivery_failed event_type=%s event_id=%s user_id=%s",
                    event.key,
                    event.id,
                    user_id,
                    exc_info=result,
                )
            elif result is not None:
                delivered += 1
        logger.info(
            "notifications_dispatched event_type=%s event_id=%s recipients=%s delivered=%s",
            event.key,
            event.id,
            len(unique_recipients),
            delivered,
        )
        return delivered

    def _is_self(self, event: DomainEvent, recipient_id: str | None) -> bool:
        actor_id = event.payload.get("actor_id") or event.origin_user_id
        if recipient_id is not None and recipient_id == actor_id:
            logger.debug("notification_self_skipped event_type=%s event_id=%s", event.key, event.id)
            return True
        return False

    async def handle_lesson_created(self, event: DomainEvent) -> int:
        course_id = event.payload.get("course_id")
        recipients = await self._resolve(event, self._directory.get_enrolled_students(course_id))
        return await self._fan_out(event, recipients, render_lesson_created(event, self._format))

    async def handle_course_published(self, event: DomainEvent) -> int:
        recipients = await self._resolve(event, self._directory.get_tenant_students(event.tenant_id))
        return await self._fan_out(event, recipients, render_course_published(event, self._format))

    async def handle_user_enrolled(self, event: DomainEvent) -> int:
        course_id = event.payload.get("course_id")
        instructor_id = await self._instructor(event, course_id)
        if instructor_id is None:
            return 0
        return await self._fan_out(event, [instructor_id], render_user_enrolled(event, self._format))

    async def handle_user_registered(self, event: DomainEvent) -> int:
        user_id = event.payload.get("user_id")
        if not user_id:
            return 0
        return await self._fan_out(event, [user_id], render_welcome(event, self._format))

    async def handle_comment_liked(self, event: DomainEvent) -> int:
        author_id = event.payload.get("comment_author_id")
        if not author_id or self._is_self(event, author_id):
            return 0
        return await self._fan_out(event, [author_id], render_comment_liked(event, self._format))

    async def handle_lesson_liked(self, event: DomainEvent) -> int:
        instructor_id = event.payload.get("instructor_id")
        if not instructor_id or self._is_self(event, instructor_id):
            return 0
        return await self._fan_out(event, [instructor_id], render_lesson_liked(event, self._format))

    async def handle_comment_replied(self, event: DomainEvent) -> int:
        author_id = event.payload.get("parent_author_id")
        if not author_id or self._is_self(event, author_id):
            return 0
        return await self._fan_out(event, [author_id], render_comment_replied(event, self._format))

    async def handle_comment_created(self, event: DomainEvent) -> int:
        instructor_id = event.payload.get("instructor_id")
        if self._is_self(event, instructor_id):
            return 0
        if instructor_id is None:
            instructor_id = await self._instructor(event, event.payload.get("course_id"))
            if instructor_id is None or self._is_self(event, instructor_id):
                return 0
        return await self._fan_out(event, [instructor_id], render_comment_created(event, self._format))

    async def _instructor(self, event: DomainEvent, course_id: str | None) -> str | None:
        if not course_id:
            return None
        try:
            instructor_id = await self._directory.get_course_instructor(course_id)
        except TransientDependencyError as exc:
            logger.warning(
                "notification_instructor_unavailable event_id=%s course_id=%s", event.id, course_id, exc_info=exc
            )
            return None
        if instructor_id is None:
            logger.info("notification_instructor_missing event_id=%s course_id=%s", event.id, course_id)
        return instructor_id
