from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursehub.domain.models import (
    Comment,
    Course,
    Enrollment,
    Lesson,
    Like,
    Notification,
    Tenant,
    User,
)
from coursehub.persistence.repos.base import Repository
from coursehub.persistence.repos.memory import InMemoryRepository
from coursehub.persistence.repos.sql import SqlRepository


@dataclass(frozen=True)
class Repositories:
    # One repository per entity kind, injected into every service.
    tenants: Repository[Tenant]
    users: Repository[User]
    courses: Repository[Course]
    lessons: Repository[Lesson]
    comments: Repository[Comment]
    enrollments: Repository[Enrollment]
    likes: Repository[Like]
    notifications: Repository[Notification]


def sql_repositories(session_factory: async_sessionmaker[AsyncSession]) -> Repositories:
    return Repositories(
        tenants=SqlRepository(Tenant, session_factory),
        users=SqlRepository(User, session_factory),
        courses=SqlRepository(Course, session_factory),
        lessons=SqlRepository(Lesson, session_factory),
        comments=SqlRepository(Comment, session_factory),
        enrollments=SqlRepository(Enrollment, session_factory),
        likes=SqlRepository(Like, session_factory),
        notifications=SqlRepository(Notification, session_factory),
    )


def memory_repositories() -> Repositories:
    # Process-local state; suitable for tests and single-process development only.
    return Repositories(
        tenants=InMemoryRepository(Tenant),
        users=InMemoryRepository(User),
        courses=InMemoryRepository(Course),
        lessons=InMemoryRepository(Lesson),
        comments=InMemoryRepository(Comment),
        enrollments=InMemoryRepository(Enrollment),
        likes=InMemoryRepository(Like),
        notifications=InMemoryRepository(Notification),
    )
