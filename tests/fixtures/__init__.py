"""Test fixtures package for bulkman.

- domain: in-memory domain services, a recording transport, notification
  sinks and a manually advanced clock

Usage:
    from tests.fixtures.domain import build_services, FakeTransport, ManualClock
"""

from .domain import (
    FakeTransport,
    InMemoryDepartmentService,
    InMemoryPeriodService,
    InMemoryTemplateService,
    InMemoryUserService,
    InMemoryWorkgroupService,
    ManualClock,
    RecordingBulkCommandService,
    RecordingNotificationSink,
    build_services,
    sample_templates,
    sample_users,
    sample_workgroups,
)

__all__ = [
    "FakeTransport",
    "InMemoryDepartmentService",
    "InMemoryPeriodService",
    "InMemoryTemplateService",
    "InMemoryUserService",
    "InMemoryWorkgroupService",
    "ManualClock",
    "RecordingBulkCommandService",
    "RecordingNotificationSink",
    "build_services",
    "sample_templates",
    "sample_users",
    "sample_workgroups",
]
