from __future__ import annotations

import logging

from coursehub.domain.models import Comment, Course, Lesson, User
from coursehub.domain.principals import Role
from coursehub.persistence.guards import tenant_filters
from coursehub.persistence.repositories import Repositories


logger = logging.getLogger(__name__)


class Directory:
    """Read-only lookups shared by the dispatcher and the domain services.

    Lookups return ``None`` or empty lists for absent records; repository
    failures propagate as ``TransientDependencyError`` so callers decide
    whether to fail closed or skip.
    """

    def __init__(self, repos: Repositories) -> None:
        self._repos = repos

    async def get_user(self, user_id: str) -> User | None:
        return await self._repos.users.find_by_id(user_id)

    async def get_course(self, course_id: str) -> Course | None:
        return await self._repos.courses.find_by_id(course_id)

    async def get_lesson(self, lesson_id: str) -> Lesson | None:
        return await self._repos.lessons.find_by_id(lesson_id)

    async def get_comment(self, comment_id: str) -> Comment | None:
        return await self._repos.comments.find_by_id(comment_id)

    async def get_enrolled_students(self, course_id: str) -> list[str]:
        # Recipients are user ids; duplicates collapse while keeping enrollment order.
        enrollments = await self._repos.enrollments.find_many(
            {"course_id": course_id}, order_by="created_at"
        )
        return list(dict.fromkeys(enrollment.user_id for enrollment in enrollments))

    async def get_tenant_students(self, tenant_id: str) -> list[str]:
        users = await self._repos.users.find_many(
            tenant_filters(tenant_id, role=Role.STUDENT.value, is_active=True),
            order_by="created_at",
        )
        return [user.id for user in users]

    async def get_course_instructor(self, course_id: str) -> str | None:
        course = await self._repos.courses.find_by_id(course_id)
        if course is None:
            logger.info("course_missing course_id=%s", course_id)
            return None
        return course.instructor_id
