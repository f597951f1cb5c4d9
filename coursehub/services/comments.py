from __future__ import annotations

from datetime import datetime
import logging

from pydantic import BaseModel, ConfigDict

from coursehub.core.errors import NotFoundError
from coursehub.domain.events import DomainEvent, EventType
from coursehub.domain.models import Lesson
from coursehub.domain.principals import Actor, ResourceRef
from coursehub.persistence.repositories import Repositories
from coursehub.services.authz.evaluator import Action, authorize
from coursehub.services.cache import CacheLayer
from coursehub.services.events import EventBus


logger = logging.getLogger(__name__)


class CommentView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    lesson_id: str
    course_id: str
    user_id: str
    parent_id: str | None = None
    content: str
    created_at: datetime | None = None


class CommentService:
    def __init__(self, repos: Repositories, cache: CacheLayer, bus: EventBus) -> None:
        self._repos = repos
        self._cache = cache
        self._bus = bus
        self._load_comments = cache.cached("comment:by_lesson", None, self._fetch_comments, model=CommentView)

    async def _fetch_comments(self, lesson_id: str) -> list[CommentView]:
        rows = await self._repos.comments.find_many({"lesson_id": lesson_id}, order_by="created_at")
        return [CommentView.model_validate(row) for row in rows]

    async def _lesson_ref(self, lesson_id: str) -> tuple[Lesson, ResourceRef, str | None]:
        lesson = await self._repos.lessons.find_by_id(lesson_id)
        if lesson is None:
            raise NotFoundError(f"Lesson {lesson_id} not found")
        course = await self._repos.courses.find_by_id(lesson.course_id)
        instructor_id = course.instructor_id if course is not None else None
        ref = ResourceRef(
            kind="lesson",
            tenant_id=lesson.tenant_id,
            resource_id=lesson.id,
            status=lesson.status,
            owner_id=instructor_id,
        )
        return lesson, ref, instructor_id

    async def create_comment(
        self,
        actor: Actor,
        lesson_id: str,
        content: str,
        *,
        parent_id: str | None = None,
    ) -> CommentView:
        lesson, ref, instructor_id = await self._lesson_ref(lesson_id)
        authorize(actor, ref, Action.COMMENT_CREATE)
        parent = None
        if parent_id is not None:
            parent = await self._repos.comments.find_by_id(parent_id)
            if parent is None or parent.lesson_id != lesson_id:
                raise NotFoundError(f"Comment {parent_id} not found")

        row = await self._repos.comments.create(
            {
                "tenant_id": ref.tenant_id,
                "lesson_id": lesson_id,
                "course_id": lesson.course_id,
                "user_id": actor.id,
                "parent_id": parent_id,
                "content": content,
            }
        )
        await self._cache.invalidate("comment", lesson_id)
        comment = CommentView.model_validate(row)

        self._bus.publish(
            DomainEvent.create(
                EventType.COMMENT_CREATED,
                tenant_id=ref.tenant_id,
                origin_user_id=actor.id,
                payload={
                    "comment_id": comment.id,
                    "content": comment.content,
                    "actor_id": actor.id,
                    "actor_name": actor.name,
                    "lesson_id": lesson_id,
                    "lesson_name": lesson.name,
                    "course_id": comment.course_id,
                    "instructor_id": instructor_id,
                },
            )
        )
        if parent is not None:
            self._bus.publish(
                DomainEvent.create(
                    EventType.COMMENT_REPLIED,
                    tenant_id=ref.tenant_id,
                    origin_user_id=actor.id,
                    payload={
                        "comment_id": comment.id,
                        "parent_id": parent.id,
                        "parent_author_id": parent.user_id,
                        "content": comment.content,
                        "actor_id": actor.id,
                        "actor_name": actor.name,
                        "lesson_id": lesson_id,
                        "course_id": comment.course_id,
                    },
                )
            )
        logger.info(
            "comment_created comment_id=%s lesson_id=%s actor_id=%s reply=%s",
            comment.id,
            lesson_id,
            actor.id,
            parent is not None,
        )
        return comment

    async def get_comment(self, actor: Actor, comment_id: str) -> CommentView:
        row = await self._repos.comments.find_by_id(comment_id)
        if row is None:
            raise NotFoundError(f"Comment {comment_id} not found")
        _, ref, _ = await self._lesson_ref(row.lesson_id)
        authorize(actor, ref, Action.LESSON_READ)
        return CommentView.model_validate(row)

    async def list_comments(self, actor: Actor, lesson_id: str) -> list[CommentView]:
        _, ref, _ = await self._lesson_ref(lesson_id)
        authorize(actor, ref, Action.LESSON_READ)
        return await self._load_comments(lesson_id)
