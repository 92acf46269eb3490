"""Domain models shared by the identity layer and the bug engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """Privilege level attached to a user account."""

    USER = "user"
    ADMIN = "admin"


class BugStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"


class BugPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the tracker database.

    The password hash never leaves the credential store, so it is not part of
    this value.
    """

    id: int
    name: str
    email: str
    role: Role
    created_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of a request, with its current role."""

    id: int
    role: Role


@dataclass(frozen=True)
class NewBug:
    """Validated input for a bug that has not been persisted yet."""

    title: str
    description: str
    status: BugStatus
    priority: BugPriority
    created_by: int
    assigned_to: Optional[int] = None


@dataclass(frozen=True)
class Bug:
    """A persisted bug record."""

    id: int
    title: str
    description: str
    status: BugStatus
    priority: BugPriority
    created_by: int
    assigned_to: Optional[int]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class BugFilter:
    """Exact-match listing filter; unset fields match everything."""

    status: Optional[BugStatus] = None
    priority: Optional[BugPriority] = None
    assigned_to: Optional[int] = None

    def matches(self, bug: Bug) -> bool:
        if self.status is not None and bug.status is not self.status:
            return False
        if self.priority is not None and bug.priority is not self.priority:
            return False
        if self.assigned_to is not None and bug.assigned_to != self.assigned_to:
            return False
        return True


@dataclass(frozen=True)
class BugStats:
    """Dashboard counters derived from a single repository snapshot."""

    total_bugs: int
    open_bugs: int
    in_progress_bugs: int
    resolved_bugs: int
    assigned_to_me: int


__all__ = [
    "Bug",
    "BugFilter",
    "BugPriority",
    "BugStats",
    "BugStatus",
    "NewBug",
    "Principal",
    "Role",
    "User",
]
