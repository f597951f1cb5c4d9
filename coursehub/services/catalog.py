from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict

from coursehub.core.errors import AuthorizationError, NotFoundError
from coursehub.domain.events import DomainEvent, EventType
from coursehub.domain.principals import Actor, ContentStatus, ResourceRef, Role, normalize_role
from coursehub.persistence.repositories import Repositories
from coursehub.services.authz.evaluator import Action, authorize
from coursehub.services.cache import CacheLayer
from coursehub.services.events import EventBus


logger = logging.getLogger(__name__)

_COURSE_FIELDS = {"title", "description", "category", "thumbnail"}
_LESSON_FIELDS = {"name", "description", "status"}


class CourseView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    title: str
    description: str | None = None
    category: str | None = None
    thumbnail: str | None = None
    status: str
    instructor_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def ref(self) -> ResourceRef:
        return ResourceRef(
            kind="course",
            tenant_id=self.tenant_id,
            resource_id=self.id,
            status=self.status,
            owner_id=self.instructor_id,
        )


class LessonView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    course_id: str
    name: str
    description: str | None = None
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def ref(self, *, owner_id: str | None) -> ResourceRef:
        return ResourceRef(
            kind="lesson",
            tenant_id=self.tenant_id,
            resource_id=self.id,
            status=self.status,
            owner_id=owner_id,
        )


def _pick(data: dict[str, Any], allowed: set[str]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key in allowed}


class CatalogService:
    """Courses and lessons.

    Every operation evaluates the policy before touching data, every write
    invalidates its entity family before returning, and state changes that
    other users care about are published on the bus.
    """

    def __init__(self, repos: Repositories, cache: CacheLayer, bus: EventBus) -> None:
        self._repos = repos
        self._cache = cache
        self._bus = bus
        self._load_course = cache.cached("course:detail", None, self._fetch_course, model=CourseView)
        self._load_lesson = cache.cached("lesson:detail", None, self._fetch_lesson, model=LessonView)
        self._load_lessons = cache.cached("lesson:by_course", None, self._fetch_lessons, model=LessonView)

    async def _fetch_course(self, course_id: str) -> CourseView | None:
        row = await self._repos.courses.find_by_id(course_id)
        return CourseView.model_validate(row) if row is not None else None

    async def _fetch_lesson(self, lesson_id: str) -> LessonView | None:
        row = await self._repos.lessons.find_by_id(lesson_id)
        return LessonView.model_validate(row) if row is not None else None

    async def _fetch_lessons(self, course_id: str) -> list[LessonView]:
        rows = await self._repos.lessons.find_many({"course_id": course_id}, order_by="created_at")
        return [LessonView.model_validate(row) for row in rows]

    async def _course(self, course_id: str) -> CourseView:
        course = await self._load_course(course_id)
        if course is None:
            raise NotFoundError(f"Course {course_id} not found")
        return course

    async def _lesson(self, lesson_id: str) -> tuple[LessonView, CourseView]:
        lesson = await self._load_lesson(lesson_id)
        if lesson is None:
            raise NotFoundError(f"Lesson {lesson_id} not found")
        return lesson, await self._course(lesson.course_id)

    async def _instructor_name(self, instructor_id: str | None) -> str | None:
        if instructor_id is None:
            return None
        user = await self._repos.users.find_by_id(instructor_id)
        return user.name if user is not None else None

    async def _resolve_instructor(self, actor: Actor, requested: str | None) -> str:
        # Only an admin assigns another owner, and only a staff member of the same tenant.
        if not requested or requested == actor.id:
            return actor.id
        if actor.role != Role.ADMIN:
            raise AuthorizationError("only an admin may assign the course instructor", action=Action.COURSE_CREATE.value)
        user = await self._repos.users.find_by_id(requested)
        if user is None:
            raise NotFoundError(f"User {requested} not found")
        if user.tenant_id != actor.tenant_id:
            raise AuthorizationError("cross-tenant access not allowed", action=Action.COURSE_CREATE.value)
        if normalize_role(user.role) not in (Role.INSTRUCTOR, Role.ADMIN):
            raise AuthorizationError("course instructor must be staff", action=Action.COURSE_CREATE.value)
        return user.id

    async def create_course(self, actor: Actor, data: dict[str, Any]) -> CourseView:
        authorize(actor, ResourceRef(kind="course", tenant_id=actor.tenant_id), Action.COURSE_CREATE)
        instructor_id = await self._resolve_instructor(actor, data.get("instructor_id"))
        row = await self._repos.courses.create(
            {
                **_pick(data, _COURSE_FIELDS),
                "tenant_id": actor.tenant_id,
                "instructor_id": instructor_id,
                "status": ContentStatus.DRAFT.value,
            }
        )
        await self._cache.invalidate("course")
        logger.info("course_created course_id=%s tenant_id=%s actor_id=%s", row.id, actor.tenant_id, actor.id)
        return CourseView.model_validate(row)

    async def get_course(self, actor: Actor, course_id: str) -> CourseView:
        course = await self._course(course_id)
        authorize(actor, course.ref(), Action.COURSE_READ)
        return course

    async def update_course(self, actor: Actor, course_id: str, data: dict[str, Any]) -> CourseView:
        course = await self._course(course_id)
        authorize(actor, course.ref(), Action.COURSE_UPDATE)
        row = await self._repos.courses.update(course_id, _pick(data, _COURSE_FIELDS))
        await self._cache.invalidate("course", course_id)
        if row is None:
            raise NotFoundError(f"Course {course_id} not found")
        return CourseView.model_validate(row)

    async def publish_course(self, actor: Actor, course_id: str) -> CourseView:
        course = await self._course(course_id)
        authorize(actor, course.ref(), Action.COURSE_PUBLISH)
        # Only the draft -> published transition conditionally flips the row; re-publishing is a no-op.
        flipped = await self._repos.courses.update_where(
            {"id": course_id, "status": ContentStatus.DRAFT.value},
            {"status": ContentStatus.PUBLISHED.value},
        )
        await self._cache.invalidate("course", course_id)
        published = await self._course(course_id)
        if flipped:
            self._bus.publish(
                DomainEvent.create(
                    EventType.COURSE_PUBLISHED,
                    tenant_id=published.tenant_id,
                    origin_user_id=actor.id,
                    payload={
                        "course_id": published.id,
                        "course_title": published.title,
                        "course_description": published.description,
                        "category": published.category,
                        "thumbnail": published.thumbnail,
                        "instructor_id": published.instructor_id,
                        "instructor_name": await self._instructor_name(published.instructor_id),
                    },
                )
            )
            logger.info("course_published course_id=%s tenant_id=%s", course_id, published.tenant_id)
        return published

    async def delete_course(self, actor: Actor, course_id: str) -> None:
        course = await self._course(course_id)
        authorize(actor, course.ref(), Action.COURSE_DELETE)
        await self._repos.lessons.delete_where({"course_id": course_id})
        await self._repos.courses.delete(course_id)
        await self._cache.invalidate("course", course_id)
        await self._cache.invalidate("lesson")
        logger.info("course_deleted course_id=%s actor_id=%s", course_id, actor.id)

    async def create_lesson(self, actor: Actor, course_id: str, data: dict[str, Any]) -> LessonView:
        course = await self._course(course_id)
        # Creating a lesson is gated on the role and on tenant isolation of the parent course.
        authorize(
            actor,
            ResourceRef(kind="lesson", tenant_id=course.tenant_id, owner_id=course.instructor_id),
            Action.LESSON_CREATE,
        )
        fields = _pick(data, _LESSON_FIELDS)
        row = await self._repos.lessons.create(
            {
                **fields,
                "status": fields.get("status") or ContentStatus.DRAFT.value,
                "tenant_id": course.tenant_id,
                "course_id": course_id,
            }
        )
        await self._cache.invalidate("lesson", course_id)
        lesson = LessonView.model_validate(row)
        self._bus.publish(
            DomainEvent.create(
                EventType.LESSON_CREATED,
                tenant_id=course.tenant_id,
                origin_user_id=actor.id,
                payload={
                    "lesson_id": lesson.id,
                    "lesson_name": lesson.name,
                    "course_id": course.id,
                    "course_name": course.title,
                    "instructor_id": course.instructor_id,
                    "instructor_name": await self._instructor_name(course.instructor_id),
                },
            )
        )
        logger.info("lesson_created lesson_id=%s course_id=%s actor_id=%s", lesson.id, course_id, actor.id)
        return lesson

    async def get_lesson(self, actor: Actor, lesson_id: str) -> LessonView:
        lesson, course = await self._lesson(lesson_id)
        authorize(actor, lesson.ref(owner_id=course.instructor_id), Action.LESSON_READ)
        return lesson

    async def list_lessons(self, actor: Actor, course_id: str) -> list[LessonView]:
        course = await self._course(course_id)
        authorize(actor, course.ref(), Action.COURSE_READ)
        lessons = await self._load_lessons(course_id)
        if actor.is_staff:
            return lessons
        return [lesson for lesson in lessons if lesson.status == ContentStatus.PUBLISHED.value]

    async def update_lesson(self, actor: Actor, lesson_id: str, data: dict[str, Any]) -> LessonView:
        lesson, course = await self._lesson(lesson_id)
        authorize(actor, lesson.ref(owner_id=course.instructor_id), Action.LESSON_UPDATE)
        row = await self._repos.lessons.update(lesson_id, _pick(data, _LESSON_FIELDS))
        await self._invalidate_lesson(lesson)
        if row is None:
            raise NotFoundError(f"Lesson {lesson_id} not found")
        return LessonView.model_validate(row)

    async def delete_lesson(self, actor: Actor, lesson_id: str) -> None:
        lesson, course = await self._lesson(lesson_id)
        authorize(actor, lesson.ref(owner_id=course.instructor_id), Action.LESSON_DELETE)
        await self._repos.lessons.delete(lesson_id)
        await self._invalidate_lesson(lesson)
        logger.info("lesson_deleted lesson_id=%s actor_id=%s", lesson_id, actor.id)

    async def _invalidate_lesson(self, lesson: LessonView) -> None:
        # Detail keys end with the lesson id, list keys with the course id.
        await self._cache.invalidate("lesson", lesson.id)
        await self._cache.invalidate("lesson", lesson.course_id)
