"""Domain entities touched by bulk operations."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class UserRole(str, Enum):
    """Roles an account can hold."""

    MEMBER = "member"
    TEACHER = "teacher"
    STAFF = "staff"
    ADMIN = "admin"


class WorkgroupStatus(str, Enum):
    """Lifecycle status of a workgroup."""

    ACTIVE = "active"
    ARCHIVED = "archived"


@dataclass
class User:
    """An account in the directory."""

    id: str
    upn: str
    first_name: str
    last_name: str
    role: UserRole = UserRole.MEMBER
    department_id: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    deactivated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Workgroup:
    """A group of accounts with an owner, scoped to a period."""

    id: str
    display_name: str
    owner_id: Optional[str] = None
    period_id: Optional[str] = None
    status: WorkgroupStatus = WorkgroupStatus.ACTIVE
    member_ids: List[str] = field(default_factory=list)
    category: Optional[str] = None
    template_id: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == WorkgroupStatus.ACTIVE

    @property
    def last_activity_at(self) -> Optional[datetime]:
        return self.modified_at or self.created_at


@dataclass
class Department:
    """An organizational unit accounts belong to."""

    id: str
    name: str
    is_active: bool = True


@dataclass
class Period:
    """A time period (for example a school year) that workgroups belong to."""

    id: str
    name: str
    starts_on: Optional[datetime] = None
    ends_on: Optional[datetime] = None
    is_current: bool = False


@dataclass
class WorkgroupTemplate:
    """Naming template used to create the workgroups of a new period."""

    id: str
    name: str
    prefix: Optional[str] = None
    suffix: Optional[str] = None
    separator: str = " - "
    category: Optional[str] = None
    max_length: Optional[int] = None

    def render_name(self, period: Period) -> str:
        """Build a workgroup display name for the given period."""
        name = f"{self.prefix or ''}{self.name}{self.separator}{period.name}{self.suffix or ''}"
        if self.max_length and len(name) > self.max_length:
            name = name[: self.max_length].rstrip()
        return name
