from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, TypedDict
from uuid import uuid4


class EventType(str, Enum):
    LESSON_CREATED = "lesson.created"
    COURSE_PUBLISHED = "course.published"
    USER_ENROLLED = "user.enrolled"
    USER_REGISTERED = "user.registered"
    COMMENT_CREATED = "comment.created"
    COMMENT_REPLIED = "comment.replied"
    COMMENT_LIKED = "comment.liked"
    LESSON_LIKED = "lesson.liked"


def event_key(event_type: EventType | str) -> str:
    # Subscriptions match on the raw string so the bus stays free of domain knowledge.
    if isinstance(event_type, EventType):
        return event_type.value
    return str(event_type)


class LessonCreatedPayload(TypedDict):
    lesson_id: str
    lesson_name: str
    course_id: str
    course_name: str
    instructor_id: str | None
    instructor_name: str | None


class CoursePublishedPayload(TypedDict, total=False):
    course_id: str
    course_title: str
    course_description: str | None
    category: str | None
    thumbnail: str | None
    instructor_id: str | None
    instructor_name: str | None


class UserEnrolledPayload(TypedDict):
    user_id: str
    user_name: str | None
    course_id: str
    course_title: str
    enrolled_at: str


class UserRegisteredPayload(TypedDict):
    user_id: str
    user_name: str
    user_email: str | None


class CommentCreatedPayload(TypedDict):
    comment_id: str
    content: str
    actor_id: str
    actor_name: str | None
    lesson_id: str
    lesson_name: str | None
    course_id: str
    # Resolved at publish time so the dispatcher can skip self-notification without a lookup.
    instructor_id: str | None


class CommentRepliedPayload(TypedDict):
    comment_id: str
    parent_id: str
    parent_author_id: str
    content: str
    actor_id: str
    actor_name: str | None
    lesson_id: str
    course_id: str


class LikedPayload(TypedDict, total=False):
    target_id: str
    target_kind: str
    actor_id: str
    actor_name: str | None
    # Comment targets carry author and content so the dispatcher needs no extra lookups.
    comment_author_id: str | None
    comment_text: str | None
    lesson_id: str | None
    lesson_name: str | None
    course_id: str | None
    # Lesson targets carry the course instructor, the recipient of lesson likes.
    instructor_id: str | None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    id: str
    type: EventType
    timestamp: datetime
    tenant_id: str
    origin_user_id: str | None
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Freeze the payload so subscribers cannot mutate what other subscribers see.
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @property
    def key(self) -> str:
        return event_key(self.type)

    @classmethod
    def create(
        cls,
        event_type: EventType,
        *,
        tenant_id: str,
        origin_user_id: str | None,
        payload: Mapping[str, Any],
        timestamp: datetime | None = None,
    ) -> "DomainEvent":
        return cls(
            id=uuid4().hex,
            type=event_type,
            timestamp=timestamp or _utc_now(),
            tenant_id=tenant_id,
            origin_user_id=origin_user_id,
            payload=payload,
        )
