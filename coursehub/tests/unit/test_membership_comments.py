from __future__ import annotations

import pytest

from coursehub.core.errors import AuthorizationError, NotFoundError
from coursehub.domain.principals import Role
from coursehub.services.registry import ServiceRegistry
from coursehub.tests.utils.seed import World, actor_of, create_course, create_user


@pytest.mark.asyncio
async def test_register_student_sends_welcome(registry: ServiceRegistry, world: World) -> None:
    user = await registry.membership.register_user(tenant_id=world.tenant_id, name="Nia New", email="nia@example.test")
    await registry.bus.join()

    assert user.role == "student"
    (row,) = await registry.repos.notifications.find_many({"user_id": user.id})
    assert row.kind == "welcome"
    assert row.message.startswith("Welcome Nia New!")


@pytest.mark.asyncio
async def test_registering_staff_requires_admin(registry: ServiceRegistry, world: World) -> None:
    with pytest.raises(AuthorizationError):
        await registry.membership.register_user(tenant_id=world.tenant_id, name="Eve", role=Role.INSTRUCTOR)
    with pytest.raises(AuthorizationError):
        await registry.membership.register_user(
            tenant_id=world.tenant_id, name="Eve", role="admin", actor=actor_of(world.instructor)
        )
    user = await registry.membership.register_user(
        tenant_id=world.tenant_id, name="Ian", role="instructor", actor=actor_of(world.admin)
    )
    assert user.role == "instructor"


@pytest.mark.asyncio
async def test_enroll_is_idempotent_and_notifies_instructor_once(registry: ServiceRegistry, world: World) -> None:
    newcomer = await create_user(registry.repos, tenant_id=world.tenant_id, name="Nico Newcomer")
    actor = actor_of(newcomer)

    first = await registry.membership.enroll(actor, world.course.id)
    second = await registry.membership.enroll(actor, world.course.id)
    await registry.bus.join()

    assert first.created is True and first.enrollment_id is not None
    assert second.created is False
    assert await registry.repos.enrollments.count({"course_id": world.course.id}) == 3
    rows = await registry.repos.notifications.find_many({"user_id": world.instructor.id, "kind": "user_enrolled"})
    assert len(rows) == 1
    assert rows[0].data["student_name"] == "Nico Newcomer"


@pytest.mark.asyncio
async def test_enrolling_someone_else_requires_admin(registry: ServiceRegistry, world: World) -> None:
    newcomer = await create_user(registry.repos, tenant_id=world.tenant_id)
    with pytest.raises(AuthorizationError):
        await registry.membership.enroll(actor_of(world.student), world.course.id, user_id=newcomer.id)
    result = await registry.membership.enroll(actor_of(world.admin), world.course.id, user_id=newcomer.id)
    assert result.created is True


@pytest.mark.asyncio
async def test_enroll_in_draft_or_foreign_course_is_denied(registry: ServiceRegistry, world: World) -> None:
    draft = await create_course(registry.repos, tenant_id=world.tenant_id, instructor_id=world.instructor.id, status="draft")
    with pytest.raises(AuthorizationError):
        await registry.membership.enroll(actor_of(world.student), draft.id)
    with pytest.raises(AuthorizationError):
        await registry.membership.enroll(actor_of(world.outsider), world.course.id)
    with pytest.raises(NotFoundError):
        await registry.membership.enroll(actor_of(world.student), "missing")


@pytest.mark.asyncio
async def test_comment_notifies_instructor(registry: ServiceRegistry, world: World) -> None:
    comment = await registry.comments.create_comment(actor_of(world.classmate), world.lesson.id, "What about async?")
    await registry.bus.join()

    assert comment.user_id == world.classmate.id
    (row,) = await registry.repos.notifications.find_many({"user_id": world.instructor.id})
    assert row.kind == "comment_created"
    assert row.data["comment_id"] == comment.id


@pytest.mark.asyncio
async def test_reply_notifies_parent_author(registry: ServiceRegistry, world: World) -> None:
    reply = await registry.comments.create_comment(
        actor_of(world.instructor), world.lesson.id, "Thanks for the feedback", parent_id=world.comment.id
    )
    await registry.bus.join()

    assert reply.parent_id == world.comment.id
    (row,) = await registry.repos.notifications.find_many({"user_id": world.student.id})
    assert row.kind == "comment_replied"
    assert row.message == 'Ivy Instructor replied to your comment: "Thanks for the feedback"'
    # The instructor commented on their own lesson, so no comment_created notification for them.
    assert await registry.repos.notifications.count({"user_id": world.instructor.id}) == 0


@pytest.mark.asyncio
async def test_reply_to_comment_on_other_lesson_is_rejected(registry: ServiceRegistry, world: World) -> None:
    other = await registry.catalog.create_lesson(
        actor_of(world.instructor), world.course.id, {"name": "Other", "status": "published"}
    )
    with pytest.raises(NotFoundError):
        await registry.comments.create_comment(
            actor_of(world.student), other.id, "Misplaced reply", parent_id=world.comment.id
        )


@pytest.mark.asyncio
async def test_list_comments_reflects_new_comment(registry: ServiceRegistry, world: World) -> None:
    actor = actor_of(world.student)
    before = await registry.comments.list_comments(actor, world.lesson.id)
    await registry.comments.create_comment(actor, world.lesson.id, "Follow-up question")
    after = await registry.comments.list_comments(actor, world.lesson.id)

    assert [comment.id for comment in before] == [world.comment.id]
    assert len(after) == 2
    assert (await registry.comments.get_comment(actor, world.comment.id)).content == "Great lesson, thanks!"


@pytest.mark.asyncio
async def test_outsider_cannot_comment(registry: ServiceRegistry, world: World) -> None:
    with pytest.raises(AuthorizationError):
        await registry.comments.create_comment(actor_of(world.outsider), world.lesson.id, "Hello?")
    assert registry.bus.published == []
