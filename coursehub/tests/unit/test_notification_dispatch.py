from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from coursehub.core.config import Settings
from coursehub.domain.events import DomainEvent, EventType
from coursehub.persistence.repositories import Repositories
from coursehub.services.directory import Directory
from coursehub.services.notifications.dispatch import NotificationDispatcher
from coursehub.services.notifications.messages import (
    MessageFormat,
    render_course_published,
    render_lesson_created,
    render_lesson_liked,
)
from coursehub.services.notifications.service import NotificationService
from coursehub.tests.utils.fakes import FlakyRepository
from coursehub.tests.utils.seed import World, create_course


_SETTINGS = Settings(notification_timezone="UTC", notification_preview_chars=50)
_WHEN = datetime(2024, 3, 1, 15, 30, tzinfo=timezone.utc)


def _dispatcher(repos: Repositories, *, notifications_repo=None) -> NotificationDispatcher:
    service = NotificationService(notifications_repo or repos.notifications, page_size_max=100)
    return NotificationDispatcher(service, Directory(repos), settings=_SETTINGS)


def _event(world: World, event_type: EventType, *, origin: str | None, **payload) -> DomainEvent:
    return DomainEvent.create(
        event_type,
        tenant_id=world.tenant_id,
        origin_user_id=origin,
        payload=payload,
        timestamp=_WHEN,
    )


def _lesson_created(world: World) -> DomainEvent:
    return _event(
        world,
        EventType.LESSON_CREATED,
        origin=world.instructor.id,
        lesson_id="l-new",
        lesson_name="Decorators",
        course_id=world.course.id,
        course_name=world.course.title,
        instructor_id=world.instructor.id,
        instructor_name=world.instructor.name,
    )


async def _rows(repos: Repositories, user_id: str):
    return await repos.notifications.find_many({"user_id": user_id})


@pytest.mark.asyncio
async def test_lesson_created_fans_out_to_enrolled_students(repos: Repositories, world: World) -> None:
    dispatcher = _dispatcher(repos)
    delivered = await dispatcher.handle_lesson_created(_lesson_created(world))

    assert delivered == 2
    for user in (world.student, world.classmate):
        (row,) = await _rows(repos, user.id)
        assert row.kind == "lesson_created"
        assert row.tenant_id == world.tenant_id
        assert row.read is False
        assert row.data["lesson_id"] == "l-new"
        assert row.message == 'New lesson: "Decorators" | Course: Python Basics | Posted on 01/03/2024 15:30'
        assert row.data["action_url"] == f"/courses/{world.course.id}/lessons/l-new"
    assert await _rows(repos, world.instructor.id) == []


@pytest.mark.asyncio
async def test_redelivered_event_does_not_duplicate(repos: Repositories, world: World) -> None:
    dispatcher = _dispatcher(repos)
    event = _lesson_created(world)
    assert await dispatcher.handle_lesson_created(event) == 2
    assert await dispatcher.handle_lesson_created(event) == 0
    assert await repos.notifications.count({"event_id": event.id}) == 2


@pytest.mark.asyncio
async def test_one_failed_recipient_does_not_abort_the_rest(repos: Repositories, world: World) -> None:
    flaky = FlakyRepository(repos.notifications, fail_for={world.student.id})
    dispatcher = _dispatcher(repos, notifications_repo=flaky)

    delivered = await dispatcher.handle_lesson_created(_lesson_created(world))

    assert delivered == 1
    assert await _rows(repos, world.student.id) == []
    assert len(await _rows(repos, world.classmate.id)) == 1


@pytest.mark.asyncio
async def test_recipient_lookup_failure_is_skipped(repos: Repositories, world: World) -> None:
    flaky_repos = replace(repos, enrollments=FlakyRepository(repos.enrollments, fail_reads=True))
    service = NotificationService(repos.notifications, page_size_max=100)
    dispatcher = NotificationDispatcher(service, Directory(flaky_repos), settings=_SETTINGS)

    assert await dispatcher.handle_lesson_created(_lesson_created(world)) == 0
    assert await repos.notifications.count() == 0


@pytest.mark.asyncio
async def test_self_like_creates_no_notification(repos: Repositories, world: World) -> None:
    dispatcher = _dispatcher(repos)
    event = _event(
        world,
        EventType.COMMENT_LIKED,
        origin=world.student.id,
        target_id=world.comment.id,
        target_kind="comment",
        actor_id=world.student.id,
        actor_name=world.student.name,
        comment_author_id=world.student.id,
        comment_text=world.comment.content,
        lesson_id=world.lesson.id,
        course_id=world.course.id,
    )
    assert await dispatcher.handle_comment_liked(event) == 0
    assert await repos.notifications.count() == 0


@pytest.mark.asyncio
async def test_comment_like_notifies_author_with_preview(repos: Repositories, world: World) -> None:
    dispatcher = _dispatcher(repos)
    long_text = "x" * 60
    event = _event(
        world,
        EventType.COMMENT_LIKED,
        origin=world.classmate.id,
        target_id=world.comment.id,
        target_kind="comment",
        actor_id=world.classmate.id,
        actor_name="Cleo Classmate",
        comment_author_id=world.student.id,
        comment_text=long_text,
        lesson_id=world.lesson.id,
        course_id=world.course.id,
    )
    assert await dispatcher.handle_comment_liked(event) == 1
    (row,) = await _rows(repos, world.student.id)
    assert row.kind == "comment_liked"
    assert row.message == f'Cleo Classmate liked your comment: "{"x" * 50}..."'
    assert row.data["liked_by_user_id"] == world.classmate.id


@pytest.mark.asyncio
async def test_user_enrolled_without_instructor_is_skipped(repos: Repositories, world: World) -> None:
    orphan = await create_course(repos, tenant_id=world.tenant_id, instructor_id=None, title="Orphan")
    dispatcher = _dispatcher(repos)
    event = _event(
        world,
        EventType.USER_ENROLLED,
        origin=world.student.id,
        user_id=world.student.id,
        user_name=world.student.name,
        course_id=orphan.id,
        course_title=orphan.title,
        enrolled_at=_WHEN.isoformat(),
    )
    assert await dispatcher.handle_user_enrolled(event) == 0
    assert await repos.notifications.count() == 0


@pytest.mark.asyncio
async def test_user_enrolled_notifies_course_instructor(repos: Repositories, world: World) -> None:
    dispatcher = _dispatcher(repos)
    event = _event(
        world,
        EventType.USER_ENROLLED,
        origin=world.student.id,
        user_id=world.student.id,
        user_name=world.student.name,
        course_id=world.course.id,
        course_title=world.course.title,
        enrolled_at=_WHEN.isoformat(),
    )
    assert await dispatcher.handle_user_enrolled(event) == 1
    (row,) = await _rows(repos, world.instructor.id)
    assert row.message == "New student enrolled in course: Python Basics"
    assert row.data["student_id"] == world.student.id


@pytest.mark.asyncio
async def test_course_published_reaches_active_tenant_students(repos: Repositories, world: World) -> None:
    await repos.users.update(world.classmate.id, {"is_active": False})
    dispatcher = _dispatcher(repos)
    event = _event(
        world,
        EventType.COURSE_PUBLISHED,
        origin=world.instructor.id,
        course_id=world.course.id,
        course_title="Python Basics",
        category="Programming",
        instructor_id=world.instructor.id,
    )
    assert await dispatcher.handle_course_published(event) == 1
    (row,) = await _rows(repos, world.student.id)
    assert row.message == 'New course: "Python Basics" | Programming | Published on 01/03/2024 15:30'
    # The other tenant's admin never hears about it.
    assert await _rows(repos, world.outsider.id) == []


@pytest.mark.asyncio
async def test_user_registered_sends_welcome(repos: Repositories, world: World) -> None:
    dispatcher = _dispatcher(repos)
    event = _event(
        world,
        EventType.USER_REGISTERED,
        origin=world.student.id,
        user_id=world.student.id,
        user_name="Sam Student",
        user_email=world.student.email,
    )
    assert await dispatcher.handle_user_registered(event) == 1
    (row,) = await _rows(repos, world.student.id)
    assert row.kind == "welcome"
    assert row.message.startswith("Welcome Sam Student! Your account was created on 01/03/2024 15:30.")


@pytest.mark.asyncio
async def test_comment_created_notifies_instructor_but_not_self(repos: Repositories, world: World) -> None:
    dispatcher = _dispatcher(repos)
    by_student = _event(
        world,
        EventType.COMMENT_CREATED,
        origin=world.student.id,
        comment_id="cm-1",
        content="Question about closures",
        actor_id=world.student.id,
        actor_name="Sam Student",
        lesson_id=world.lesson.id,
        lesson_name=world.lesson.name,
        course_id=world.course.id,
        instructor_id=world.instructor.id,
    )
    by_instructor = _event(
        world,
        EventType.COMMENT_CREATED,
        origin=world.instructor.id,
        comment_id="cm-2",
        content="Answer",
        actor_id=world.instructor.id,
        actor_name="Ivy Instructor",
        lesson_id=world.lesson.id,
        lesson_name=world.lesson.name,
        course_id=world.course.id,
        instructor_id=world.instructor.id,
    )
    assert await dispatcher.handle_comment_created(by_student) == 1
    assert await dispatcher.handle_comment_created(by_instructor) == 0
    (row,) = await _rows(repos, world.instructor.id)
    assert row.message == 'Sam Student commented on "Intro": "Question about closures"'


@pytest.mark.asyncio
async def test_comment_replied_notifies_parent_author(repos: Repositories, world: World) -> None:
    dispatcher = _dispatcher(repos)
    event = _event(
        world,
        EventType.COMMENT_REPLIED,
        origin=world.instructor.id,
        comment_id="cm-reply",
        parent_id=world.comment.id,
        parent_author_id=world.student.id,
        content="Glad it helped",
        actor_id=world.instructor.id,
        actor_name="Ivy Instructor",
        lesson_id=world.lesson.id,
        course_id=world.course.id,
    )
    assert await dispatcher.handle_comment_replied(event) == 1
    (row,) = await _rows(repos, world.student.id)
    assert row.kind == "comment_replied"
    assert row.data["action_url"].endswith(f"#comment-{world.comment.id}")


@pytest.mark.asyncio
async def test_lesson_like_notifies_instructor(repos: Repositories, world: World) -> None:
    dispatcher = _dispatcher(repos)
    event = _event(
        world,
        EventType.LESSON_LIKED,
        origin=world.student.id,
        target_id=world.lesson.id,
        target_kind="lesson",
        actor_id=world.student.id,
        actor_name="Sam Student",
        lesson_id=world.lesson.id,
        lesson_name="Intro",
        course_id=world.course.id,
        instructor_id=world.instructor.id,
    )
    assert await dispatcher.handle_lesson_liked(event) == 1
    (row,) = await _rows(repos, world.instructor.id)
    assert row.message == 'Sam Student liked your lesson "Intro"'


@pytest.mark.asyncio
async def test_guarded_handler_never_raises(repos: Repositories, world: World) -> None:
    dispatcher = _dispatcher(repos)

    async def broken(event: DomainEvent) -> int:
        raise RuntimeError("boom")

    guarded = dispatcher._guard(broken)
    assert await guarded(_lesson_created(world)) == 0


def test_rendering_is_deterministic_and_truncates() -> None:
    fmt = MessageFormat(preview_chars=50, timezone_name="UTC")
    assert fmt.timestamp(datetime(2024, 12, 31, 23, 59)) == "31/12/2024 23:59"
    assert fmt.preview("short") == "short"
    assert fmt.preview("y" * 50) == "y" * 50
    assert fmt.preview("y" * 51) == "y" * 50 + "..."
    assert fmt.preview(None) == ""


def test_unknown_timezone_falls_back_to_utc() -> None:
    fmt = MessageFormat(preview_chars=10, timezone_name="Not/AZone")
    assert fmt.timestamp(_WHEN) == "01/03/2024 15:30"


def test_missing_names_render_generic_labels() -> None:
    fmt = MessageFormat(preview_chars=50, timezone_name="UTC")

    def bare(event_type: EventType, **payload) -> DomainEvent:
        return DomainEvent.create(event_type, tenant_id="t-1", origin_user_id=None, payload=payload, timestamp=_WHEN)

    liked = render_lesson_liked(bare(EventType.LESSON_LIKED, actor_name="Sam"), fmt)
    created = render_lesson_created(bare(EventType.LESSON_CREATED), fmt)
    published = render_course_published(bare(EventType.COURSE_PUBLISHED), fmt)

    assert liked.message == 'Sam liked your lesson "lesson"'
    assert created.message == 'New lesson: "lesson" | Course: Course | Posted on 01/03/2024 15:30'
    assert "None" not in published.message
