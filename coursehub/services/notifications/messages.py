from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
import logging
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from coursehub.core.config import Settings, get_settings
from coursehub.domain.events import DomainEvent


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%d/%m/%Y %H:%M"


@dataclass(frozen=True)
class RenderedNotification:
    kind: str
    message: str
    data: dict[str, Any]


class MessageFormat:
    # Deterministic rendering: every value comes from the event, never from the wall clock.
    def __init__(self, *, preview_chars: int, timezone_name: str) -> None:
        self.preview_chars = max(1, int(preview_chars))
        try:
            self.zone: tzinfo = ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("notification_timezone_invalid timezone=%s fallback=UTC", timezone_name)
            self.zone = timezone.utc

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "MessageFormat":
        settings = settings or get_settings()
        return cls(
            preview_chars=settings.notification_preview_chars,
            timezone_name=settings.notification_timezone,
        )

    def timestamp(self, value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(self.zone).strftime(TIMESTAMP_FORMAT)

    def preview(self, text: str | None) -> str:
        text = text or ""
        if len(text) <= self.preview_chars:
            return text
        return f"{text[: self.preview_chars]}..."


def _base_data(event: DomainEvent, kind: str, fmt: MessageFormat) -> dict[str, Any]:
    return {
        "event_id": event.id,
        "type": kind,
        "timestamp": event.timestamp.isoformat(),
        "occurred_at": fmt.timestamp(event.timestamp),
    }


def _lesson_url(course_id: Any, lesson_id: Any) -> str:
    return f"/courses/{course_id}/lessons/{lesson_id}"


def render_lesson_created(event: DomainEvent, fmt: MessageFormat) -> RenderedNotification:
    payload = event.payload
    posted_at = fmt.timestamp(event.timestamp)
    course_name = payload.get("course_name") or "Course"
    lesson_name = payload.get("lesson_name") or "lesson"
    return RenderedNotification(
        kind="lesson_created",
        message=f'New lesson: "{lesson_name}" | Course: {course_name} | Posted on {posted_at}',
        data={
            **_base_data(event, "lesson_created", fmt),
            "lesson_id": payload.get("lesson_id"),
            "lesson_name": payload.get("lesson_name"),
            "course_id": payload.get("course_id"),
            "course_name": payload.get("course_name"),
            "instructor_name": payload.get("instructor_name"),
            "action_url": _lesson_url(payload.get("course_id"), payload.get("lesson_id")),
        },
    )


def render_course_published(event: DomainEvent, fmt: MessageFormat) -> RenderedNotification:
    payload = event.payload
    published_at = fmt.timestamp(event.timestamp)
    category = payload.get("category") or "Uncategorized"
    course_title = payload.get("course_title") or "course"
    return RenderedNotification(
        kind="course_published",
        message=f'New course: "{course_title}" | {category} | Published on {published_at}',
        data={
            **_base_data(event, "course_published", fmt),
            "course_id": payload.get("course_id"),
            "course_title": payload.get("course_title"),
            "course_description": payload.get("course_description"),
            "category": payload.get("category"),
            "instructor_name": payload.get("instructor_name"),
            "thumbnail": payload.get("thumbnail"),
            "action_url": f"/courses/{payload.get('course_id')}",
        },
    )


def render_user_enrolled(event: DomainEvent, fmt: MessageFormat) -> RenderedNotification:
    payload = event.payload
    return RenderedNotification(
        kind="user_enrolled",
        message=f"New student enrolled in course: {payload.get('course_title') or 'course'}",
        data={
            **_base_data(event, "user_enrolled", fmt),
            "course_id": payload.get("course_id"),
            "course_title": payload.get("course_title"),
            "student_id": payload.get("user_id"),
            "student_name": payload.get("user_name"),
            "enrolled_at": payload.get("enrolled_at"),
            "action_url": f"/courses/{payload.get('course_id')}",
        },
    )


def render_welcome(event: DomainEvent, fmt: MessageFormat) -> RenderedNotification:
    payload = event.payload
    registered_at = fmt.timestamp(event.timestamp)
    return RenderedNotification(
        kind="welcome",
        message=(
            f"Welcome {payload.get('user_name') or 'there'}! Your account was created on {registered_at}. "
            "Start your learning journey now!"
        ),
        data={
            **_base_data(event, "welcome", fmt),
            "user_id": payload.get("user_id"),
            "user_name": payload.get("user_name"),
            "user_email": payload.get("user_email"),
            "action_url": "/home",
        },
    )


def render_comment_liked(event: DomainEvent, fmt: MessageFormat) -> RenderedNotification:
    payload = event.payload
    return RenderedNotification(
        kind="comment_liked",
        message=f'{payload.get("actor_name") or "Someone"} liked your comment: "{fmt.preview(payload.get("comment_text"))}"',
        data={
            **_base_data(event, "comment_liked", fmt),
            "comment_id": payload.get("target_id"),
            "liked_by_user_id": payload.get("actor_id"),
            "liked_by_user_name": payload.get("actor_name"),
            "lesson_id": payload.get("lesson_id"),
            "course_id": payload.get("course_id"),
            "action_url": _lesson_url(payload.get("course_id"), payload.get("lesson_id")),
        },
    )


def render_comment_replied(event: DomainEvent, fmt: MessageFormat) -> RenderedNotification:
    payload = event.payload
    return RenderedNotification(
        kind="comment_replied",
        message=f'{payload.get("actor_name") or "Someone"} replied to your comment: "{fmt.preview(payload.get("content"))}"',
        data={
            **_base_data(event, "comment_replied", fmt),
            "comment_id": payload.get("parent_id"),
            "reply_id": payload.get("comment_id"),
            "reply_author_id": payload.get("actor_id"),
            "reply_author_name": payload.get("actor_name"),
            "lesson_id": payload.get("lesson_id"),
            "course_id": payload.get("course_id"),
            "action_url": (
                f"{_lesson_url(payload.get('course_id'), payload.get('lesson_id'))}"
                f"#comment-{payload.get('parent_id')}"
            ),
        },
    )


def render_comment_created(event: DomainEvent, fmt: MessageFormat) -> RenderedNotification:
    payload = event.payload
    lesson_name = payload.get("lesson_name") or "lesson"
    return RenderedNotification(
        kind="comment_created",
        message=(
            f'{payload.get("actor_name") or "Someone"} commented on "{lesson_name}": '
            f'"{fmt.preview(payload.get("content"))}"'
        ),
        data={
            **_base_data(event, "comment_created", fmt),
            "comment_id": payload.get("comment_id"),
            "author_id": payload.get("actor_id"),
            "author_name": payload.get("actor_name"),
            "lesson_id": payload.get("lesson_id"),
            "course_id": payload.get("course_id"),
            "action_url": (
                f"{_lesson_url(payload.get('course_id'), payload.get('lesson_id'))}"
                f"#comment-{payload.get('comment_id')}"
            ),
        },
    )


def render_lesson_liked(event: DomainEvent, fmt: MessageFormat) -> RenderedNotification:
    payload = event.payload
    lesson_name = payload.get("lesson_name") or "lesson"
    return RenderedNotification(
        kind="lesson_liked",
        message=f'{payload.get("actor_name") or "Someone"} liked your lesson "{lesson_name}"',
        data={
            **_base_data(event, "lesson_liked", fmt),
            "lesson_id": payload.get("lesson_id"),
            "lesson_name": payload.get("lesson_name"),
            "course_id": payload.get("course_id"),
            "liked_by_user_id": payload.get("actor_id"),
            "liked_by_user_name": payload.get("actor_name"),
            "action_url": _lesson_url(payload.get("course_id"), payload.get("lesson_id")),
        },
    )
