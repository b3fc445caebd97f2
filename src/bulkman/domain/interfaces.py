"""Interfaces for the domain collaborators consumed by the orchestrator.

Concrete implementations live outside this package; bulk operation handlers
only talk to these abstractions.

Classes:
    UserService: Account lookups and mutations
    WorkgroupService: Workgroup lookups, membership and lifecycle
    DepartmentService: Department lookups
    PeriodService: Period lookups
    TemplateService: Workgroup template lookups
    RemoteBulkCommandService: Commands the remote API batches itself
    NotificationSink: Delivery of user, progress and admin notifications
    DomainServices: Container handed to operation handlers
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .entities import Department, Period, User, UserRole, Workgroup, WorkgroupTemplate

if TYPE_CHECKING:
    from ..bulk.models import BulkOperationResult


class UserService(ABC):
    """Account operations."""

    @abstractmethod
    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_upn(self, upn: str) -> Optional[User]:
        pass

    @abstractmethod
    async def get_users_by_department(self, department_id: str) -> List[User]:
        pass

    @abstractmethod
    async def create_user(
        self,
        upn: str,
        first_name: str,
        last_name: str,
        role: UserRole,
        department_id: Optional[str] = None,
    ) -> User:
        """
        Create an account.

        Returns:
            The created user
        """
        pass

    @abstractmethod
    async def update_user(self, user: User) -> bool:
        pass

    @abstractmethod
    async def deactivate_user(self, user_id: str) -> bool:
        pass


class WorkgroupService(ABC):
    """Workgroup operations."""

    @abstractmethod
    async def get_workgroup_by_id(self, workgroup_id: str) -> Optional[Workgroup]:
        pass

    @abstractmethod
    async def get_all_workgroups(self) -> List[Workgroup]:
        pass

    @abstractmethod
    async def get_workgroups_by_period(self, period_id: str) -> List[Workgroup]:
        pass

    @abstractmethod
    async def get_workgroups_owned_by(self, user_id: str) -> List[Workgroup]:
        pass

    @abstractmethod
    async def add_member(self, workgroup_id: str, user_id: str, role: str = "member") -> bool:
        pass

    @abstractmethod
    async def remove_member(self, workgroup_id: str, user_id: str) -> bool:
        pass

    @abstractmethod
    async def transfer_ownership(self, workgroup_id: str, new_owner_id: str) -> bool:
        pass

    @abstractmethod
    async def archive_workgroup(self, workgroup_id: str, reason: str) -> bool:
        pass

    @abstractmethod
    async def restore_workgroup(self, workgroup_id: str) -> bool:
        pass

    @abstractmethod
    async def clone_workgroup(
        self, workgroup_id: str, target_period_id: str, copy_members: bool = True
    ) -> Optional[Workgroup]:
        """
        Create a copy of a workgroup in another period.

        Returns:
            The new workgroup, or None if it could not be created
        """
        pass

    @abstractmethod
    async def create_workgroup(
        self,
        display_name: str,
        period_id: str,
        owner_id: Optional[str] = None,
        template_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Optional[Workgroup]:
        """
        Create an empty workgroup in a period.

        Returns:
            The new workgroup, or None if it could not be created
        """
        pass


class DepartmentService(ABC):
    """Department lookups."""

    @abstractmethod
    async def get_department_by_id(self, department_id: str) -> Optional[Department]:
        pass

    @abstractmethod
    async def get_departments(self) -> List[Department]:
        pass


class PeriodService(ABC):
    """Period lookups."""

    @abstractmethod
    async def get_period_by_id(self, period_id: str) -> Optional[Period]:
        pass

    @abstractmethod
    async def get_current_period(self) -> Optional[Period]:
        pass


class TemplateService(ABC):
    """Workgroup template lookups."""

    @abstractmethod
    async def get_template_by_id(self, template_id: str) -> Optional[WorkgroupTemplate]:
        pass


class RemoteBulkCommandService(ABC):
    """Operations the remote API performs as a single batched command."""

    @abstractmethod
    async def execute_bulk_command(self, ids: List[str], context: Dict[str, Any]) -> "BulkOperationResult":
        """
        Run one batched remote command over many entity ids.

        Args:
            ids: Entity ids the command applies to
            context: Command name and parameters

        Returns:
            Per-id outcomes aggregated into a BulkOperationResult
        """
        pass


class NotificationSink(ABC):
    """Receives progress and completion events."""

    @abstractmethod
    async def notify_user(self, user_id: str, message: str, severity: str = "info") -> None:
        pass

    @abstractmethod
    async def notify_progress(self, job_id: str, user_id: str, percent: float, message: str) -> None:
        pass

    @abstractmethod
    async def notify_admins(
        self,
        summary: str,
        counts: Dict[str, int],
        actor: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass


@dataclass
class DomainServices:
    """Domain collaborators available to operation handlers."""

    users: UserService
    workgroups: WorkgroupService
    departments: DepartmentService
    periods: PeriodService
    bulk_commands: Optional[RemoteBulkCommandService] = None
    templates: Optional[TemplateService] = None
