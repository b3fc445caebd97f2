"""Domain entities and collaborator interfaces."""

from .entities import Department, Period, User, UserRole, Workgroup, WorkgroupStatus, WorkgroupTemplate
from .interfaces import (
    DepartmentService,
    DomainServices,
    NotificationSink,
    PeriodService,
    RemoteBulkCommandService,
    TemplateService,
    UserService,
    WorkgroupService,
)

__all__ = [
    "Department",
    "DepartmentService",
    "DomainServices",
    "NotificationSink",
    "Period",
    "PeriodService",
    "RemoteBulkCommandService",
    "TemplateService",
    "User",
    "UserRole",
    "UserService",
    "Workgroup",
    "WorkgroupService",
    "WorkgroupStatus",
    "WorkgroupTemplate",
]
