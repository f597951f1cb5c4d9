from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any

from coursehub.core.errors import NotFoundError
from coursehub.domain.events import DomainEvent, EventType
from coursehub.domain.models import Like, User
from coursehub.domain.principals import Actor, ResourceRef, normalize_role
from coursehub.persistence.repos.base import Repository
from coursehub.services.authz.evaluator import Action, authorize
from coursehub.services.directory import Directory
from coursehub.services.events import EventBus


logger = logging.getLogger(__name__)


class TargetKind(str, Enum):
    LESSON = "lesson"
    COMMENT = "comment"


_LIKED_EVENTS = {
    TargetKind.LESSON: EventType.LESSON_LIKED,
    TargetKind.COMMENT: EventType.COMMENT_LIKED,
}


def normalize_target_kind(value: TargetKind | str) -> TargetKind:
    if isinstance(value, TargetKind):
        return value
    try:
        return TargetKind(str(value).strip().lower())
    except ValueError as exc:
        raise NotFoundError(f"Unknown like target kind: {value}") from exc


@dataclass(frozen=True)
class ToggleResult:
    # changed=False marks a call that wrote nothing: a status read, or a toggle that lost the insert race.
    active: bool
    total_count: int
    changed: bool = True


@dataclass(frozen=True)
class _Target:
    ref: ResourceRef
    context: dict[str, Any]


def actor_for_user(user: User) -> Actor:
    return Actor(id=user.id, role=normalize_role(user.role), tenant_id=user.tenant_id, name=user.name)


class LikeService:
    """Like/unlike toggles over the unique (user, target, kind) relation.

    Row presence is the liked state. A toggle is a conditional delete
    followed, only when nothing was deleted, by an insert-if-absent on the
    unique index; the repository's row counts decide the outcome, so two
    concurrent toggles can never both insert or both publish.
    """

    def __init__(self, repo: Repository[Like], directory: Directory, bus: EventBus) -> None:
        self._repo = repo
        self._directory = directory
        self._bus = bus

    async def _actor(self, user_id: str) -> Actor:
        user = await self._directory.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return actor_for_user(user)

    async def _target(self, target_id: str, kind: TargetKind) -> _Target:
        # Load the target and the context the liked event needs, so the dispatcher does no lookups.
        if kind == TargetKind.COMMENT:
            comment = await self._directory.get_comment(target_id)
            if comment is None:
                raise NotFoundError(f"Comment {target_id} not found")
            lesson = await self._directory.get_lesson(comment.lesson_id)
            ref = ResourceRef(
                kind=kind.value,
                tenant_id=comment.tenant_id,
                resource_id=comment.id,
                status=lesson.status if lesson is not None else None,
                owner_id=comment.user_id,
            )
            return _Target(
                ref=ref,
                context={
                    "comment_author_id": comment.user_id,
                    "comment_text": comment.content,
                    "lesson_id": comment.lesson_id,
                    "lesson_name": lesson.name if lesson is not None else None,
                    "course_id": comment.course_id,
                },
            )
        lesson = await self._directory.get_lesson(target_id)
        if lesson is None:
            raise NotFoundError(f"Lesson {target_id} not found")
        course = await self._directory.get_course(lesson.course_id)
        instructor_id = course.instructor_id if course is not None else None
        ref = ResourceRef(
            kind=kind.value,
            tenant_id=lesson.tenant_id,
            resource_id=lesson.id,
            status=lesson.status,
            owner_id=instructor_id,
        )
        return _Target(
            ref=ref,
            context={
                "lesson_id": lesson.id,
                "lesson_name": lesson.name,
                "course_id": lesson.course_id,
                "instructor_id": instructor_id,
            },
        )

    def _relation(self, user_id: str, target_id: str, kind: TargetKind) -> dict[str, str]:
        return {"user_id": user_id, "target_id": target_id, "target_kind": kind.value}

    async def _count(self, target_id: str, kind: TargetKind) -> int:
        return await self._repo.count({"target_id": target_id, "target_kind": kind.value})

    async def toggle(self, user_id: str, target_id: str, target_kind: TargetKind | str) -> ToggleResult:
        kind = normalize_target_kind(target_kind)
        actor = await self._actor(user_id)
        target = await self._target(target_id, kind)
        authorize(actor, target.ref, Action.LIKE_TOGGLE)

        relation = self._relation(actor.id, target_id, kind)
        removed = await self._repo.delete_where(relation)
        if removed:
            total = await self._count(target_id, kind)
            logger.info(
                "like_removed user_id=%s target_kind=%s target_id=%s total=%s", actor.id, kind.value, target_id, total
            )
            return ToggleResult(active=False, total_count=total)

        inserted = await self._repo.create_if_absent(
            {**relation, "tenant_id": actor.tenant_id},
            unique_on=("user_id", "target_id", "target_kind"),
        )
        total = await self._count(target_id, kind)
        if inserted is None:
            # A concurrent identical toggle won the insert and owns the activation; this call activated nothing.
            logger.info(
                "like_coalesced user_id=%s target_kind=%s target_id=%s", actor.id, kind.value, target_id
            )
            return ToggleResult(active=False, total_count=total, changed=False)

        logger.info("like_added user_id=%s target_kind=%s target_id=%s total=%s", actor.id, kind.value, target_id, total)
        self._publish_liked(actor, target_id, kind, target.context)
        return ToggleResult(active=True, total_count=total)

    def _publish_liked(self, actor: Actor, target_id: str, kind: TargetKind, context: dict[str, Any]) -> None:
        payload = {
            "target_id": target_id,
            "target_kind": kind.value,
            "actor_id": actor.id,
            "actor_name": actor.name,
            **context,
        }
        event = DomainEvent.create(
            _LIKED_EVENTS[kind],
            tenant_id=actor.tenant_id,
            origin_user_id=actor.id,
            payload=payload,
        )
        self._bus.publish(event)

    async def get_status(self, user_id: str, target_id: str, target_kind: TargetKind | str) -> ToggleResult:
        kind = normalize_target_kind(target_kind)
        actor = await self._actor(user_id)
        target = await self._target(target_id, kind)
        authorize(actor, target.ref, Action.LIKE_TOGGLE)
        active = await self._repo.count(self._relation(actor.id, target_id, kind)) > 0
        total = await self._count(target_id, kind)
        return ToggleResult(active=active, total_count=total, changed=False)
