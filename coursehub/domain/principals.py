from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class ContentStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


def normalize_role(value: str | Role) -> Role:
    # Accept enum members or case-insensitive strings from tokens and headers.
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown role: {value}") from exc


@dataclass(frozen=True)
class Actor:
    # Authenticated identity for one request; tenant_id is credential-bound, never client-supplied.
    id: str
    role: Role
    tenant_id: str
    name: str | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.INSTRUCTOR, Role.ADMIN)


@dataclass(frozen=True)
class ResourceRef:
    # Policy view of a tenant-scoped entity; owner_id is the owning user's id, resolved by the caller.
    kind: str
    tenant_id: str
    resource_id: str | None = None
    status: str | None = None
    owner_id: str | None = None

    @property
    def is_published(self) -> bool:
        return self.status == ContentStatus.PUBLISHED.value
