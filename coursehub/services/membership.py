from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from coursehub.core.errors import AuthorizationError, NotFoundError
from coursehub.domain.events import DomainEvent, EventType
from coursehub.domain.models import User
from coursehub.domain.principals import Actor, ResourceRef, Role, normalize_role
from coursehub.persistence.repositories import Repositories
from coursehub.services.authz.evaluator import Action, authorize
from coursehub.services.events import EventBus


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrollmentResult:
    enrollment_id: str | None
    user_id: str
    course_id: str
    created: bool


class MembershipService:
    def __init__(self, repos: Repositories, bus: EventBus) -> None:
        self._repos = repos
        self._bus = bus

    async def register_user(
        self,
        *,
        tenant_id: str,
        name: str,
        email: str | None = None,
        role: Role | str = Role.STUDENT,
        actor: Actor | None = None,
    ) -> User:
        # Self-service signup creates students; any other role is user management.
        resolved_role = normalize_role(role)
        if resolved_role != Role.STUDENT:
            if actor is None:
                raise AuthorizationError("requires admin role", action=Action.USER_MANAGE.value)
            authorize(actor, ResourceRef(kind="user", tenant_id=tenant_id), Action.USER_MANAGE)
        user = await self._repos.users.create(
            {"tenant_id": tenant_id, "name": name, "email": email, "role": resolved_role.value}
        )
        self._bus.publish(
            DomainEvent.create(
                EventType.USER_REGISTERED,
                tenant_id=tenant_id,
                origin_user_id=user.id,
                payload={"user_id": user.id, "user_name": user.name, "user_email": user.email},
            )
        )
        logger.info("user_registered user_id=%s tenant_id=%s role=%s", user.id, tenant_id, resolved_role.value)
        return user

    async def enroll(self, actor: Actor, course_id: str, *, user_id: str | None = None) -> EnrollmentResult:
        course = await self._repos.courses.find_by_id(course_id)
        if course is None:
            raise NotFoundError(f"Course {course_id} not found")
        authorize(
            actor,
            ResourceRef(
                kind="course",
                tenant_id=course.tenant_id,
                resource_id=course.id,
                status=course.status,
                owner_id=course.instructor_id,
            ),
            Action.COURSE_READ,
        )
        student_id = user_id or actor.id
        if student_id != actor.id:
            authorize(actor, ResourceRef(kind="user", tenant_id=course.tenant_id), Action.USER_MANAGE)
        student = await self._repos.users.find_by_id(student_id)
        if student is None or student.tenant_id != course.tenant_id:
            raise NotFoundError(f"User {student_id} not found")

        row = await self._repos.enrollments.create_if_absent(
            {"tenant_id": course.tenant_id, "user_id": student_id, "course_id": course_id},
            unique_on=("user_id", "course_id"),
        )
        if row is None:
            logger.info("enrollment_exists user_id=%s course_id=%s", student_id, course_id)
            return EnrollmentResult(enrollment_id=None, user_id=student_id, course_id=course_id, created=False)

        self._bus.publish(
            DomainEvent.create(
                EventType.USER_ENROLLED,
                tenant_id=course.tenant_id,
                origin_user_id=actor.id,
                payload=self._enrolled_payload(student, course_id, course.title, row.created_at),
            )
        )
        logger.info("user_enrolled user_id=%s course_id=%s", student_id, course_id)
        return EnrollmentResult(enrollment_id=row.id, user_id=student_id, course_id=course_id, created=True)

    def _enrolled_payload(self, student: User, course_id: str, course_title: str, enrolled_at: Any) -> dict[str, Any]:
        return {
            "user_id": student.id,
            "user_name": student.name,
            "course_id": course_id,
            "course_title": course_title,
            "enrolled_at": enrolled_at.isoformat() if enrolled_at is not None else None,
        }
