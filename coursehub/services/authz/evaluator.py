from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Callable

from coursehub.core.errors import AuthorizationError
from coursehub.domain.principals import Actor, ResourceRef, Role


logger = logging.getLogger(__name__)

CROSS_TENANT_REASON = "cross-tenant access not allowed"
UNKNOWN_ACTION_REASON = "unknown action"


class Action(str, Enum):
    COURSE_CREATE = "course.create"
    COURSE_READ = "course.read"
    COURSE_UPDATE = "course.update"
    COURSE_DELETE = "course.delete"
    COURSE_PUBLISH = "course.publish"
    LESSON_CREATE = "lesson.create"
    LESSON_READ = "lesson.read"
    LESSON_UPDATE = "lesson.update"
    LESSON_DELETE = "lesson.delete"
    COMMENT_CREATE = "comment.create"
    LIKE_TOGGLE = "like.toggle"
    USER_MANAGE = "user.manage"
    TENANT_MANAGE = "tenant.manage"


@dataclass(frozen=True)
class PolicyDecision:
    # Value result of one evaluation; denials carry a human-readable reason.
    allowed: bool
    reason: str | None = None

    @classmethod
    def allow(cls) -> "PolicyDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> "PolicyDecision":
        return cls(allowed=False, reason=reason)


Rule = Callable[[Actor, ResourceRef | None], PolicyDecision]


def _staff_only(actor: Actor, resource: ResourceRef | None) -> PolicyDecision:
    if actor.is_staff:
        return PolicyDecision.allow()
    return PolicyDecision.deny("requires instructor or admin role")


def _admin_only(actor: Actor, resource: ResourceRef | None) -> PolicyDecision:
    if actor.role == Role.ADMIN:
        return PolicyDecision.allow()
    return PolicyDecision.deny("requires admin role")


def _published_or_staff(actor: Actor, resource: ResourceRef | None) -> PolicyDecision:
    # Any tenant member may see published content; drafts and archives stay with staff.
    if resource is not None and resource.is_published:
        return PolicyDecision.allow()
    if actor.is_staff:
        return PolicyDecision.allow()
    return PolicyDecision.deny("resource is not published")


def _admin_or_owner(actor: Actor, resource: ResourceRef | None) -> PolicyDecision:
    if actor.role == Role.ADMIN:
        return PolicyDecision.allow()
    if actor.role == Role.INSTRUCTOR:
        if resource is not None and resource.owner_id is not None and resource.owner_id == actor.id:
            return PolicyDecision.allow()
        return PolicyDecision.deny("instructor does not own this resource")
    return PolicyDecision.deny("requires admin role or resource ownership")


_RULES: dict[Action, Rule] = {
    Action.COURSE_CREATE: _staff_only,
    Action.COURSE_READ: _published_or_staff,
    Action.COURSE_UPDATE: _admin_or_owner,
    Action.COURSE_DELETE: _admin_only,
    Action.COURSE_PUBLISH: _admin_or_owner,
    Action.LESSON_CREATE: _staff_only,
    Action.LESSON_READ: _published_or_staff,
    Action.LESSON_UPDATE: _admin_or_owner,
    Action.LESSON_DELETE: _admin_only,
    Action.COMMENT_CREATE: _published_or_staff,
    Action.LIKE_TOGGLE: _published_or_staff,
    Action.USER_MANAGE: _admin_only,
    Action.TENANT_MANAGE: _admin_only,
}


def _missing_rules() -> list[Action]:
    return [action for action in Action if action not in _RULES]


# Fail at import time when an action is added without a rule.
if _missing_rules():
    raise RuntimeError(f"Policy rules missing for actions: {sorted(a.value for a in _missing_rules())}")


def _coerce_action(action: Action | str) -> Action | None:
    if isinstance(action, Action):
        return action
    try:
        return Action(str(action))
    except ValueError:
        return None


def evaluate(actor: Actor, resource: ResourceRef | None, action: Action | str) -> PolicyDecision:
    # Pure decision: tenant isolation first, then the per-action role rule, default deny.
    if resource is not None and resource.tenant_id != actor.tenant_id:
        return PolicyDecision.deny(CROSS_TENANT_REASON)
    resolved = _coerce_action(action)
    if resolved is None:
        return PolicyDecision.deny(UNKNOWN_ACTION_REASON)
    return _RULES[resolved](actor, resource)


def authorize(actor: Actor, resource: ResourceRef | None, action: Action | str) -> PolicyDecision:
    # Convert denials into AuthorizationError at service boundaries.
    decision = evaluate(actor, resource, action)
    if not decision.allowed:
        action_name = action.value if isinstance(action, Action) else str(action)
        logger.info(
            "access_denied actor_id=%s tenant_id=%s action=%s resource_kind=%s resource_id=%s reason=%s",
            actor.id,
            actor.tenant_id,
            action_name,
            resource.kind if resource else None,
            resource.resource_id if resource else None,
            decision.reason,
        )
        raise AuthorizationError(decision.reason or "access denied", action=action_name)
    return decision
