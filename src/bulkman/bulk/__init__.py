"""Bulk operation orchestration: registry, batch execution, operation kinds and reports."""

from .batch import BatchEventHandler, BatchExecutor, BatchReport, BatchTermination, ProgressEvent
from .exceptions import BulkOperationError, CancellationRequested, UnknownOperationError, ValidationError
from .models import (
    BatchPolicy,
    BulkJob,
    BulkOperationResult,
    ItemError,
    ItemOutcome,
    JobStatus,
    PartialSuccessMode,
    PartialSuccessPolicy,
    ProcessStatus,
    RunOptions,
)
from .operations import (
    MembershipChange,
    OnboardingPlan,
    OperationContext,
    OperationHandler,
    OperationKind,
    RoleChange,
    default_handlers,
)
from .orchestrator import BulkOrchestrator
from .registry import CancellationToken, ProcessRegistry
from .reporting import ReportGenerator

__all__ = [
    "BatchEventHandler",
    "BatchExecutor",
    "BatchPolicy",
    "BatchReport",
    "BatchTermination",
    "BulkJob",
    "BulkOperationError",
    "BulkOperationResult",
    "BulkOrchestrator",
    "CancellationRequested",
    "CancellationToken",
    "ItemError",
    "ItemOutcome",
    "JobStatus",
    "MembershipChange",
    "OnboardingPlan",
    "OperationContext",
    "OperationHandler",
    "OperationKind",
    "PartialSuccessMode",
    "PartialSuccessPolicy",
    "ProcessRegistry",
    "ProcessStatus",
    "ProgressEvent",
    "ReportGenerator",
    "RoleChange",
    "RunOptions",
    "UnknownOperationError",
    "ValidationError",
    "default_handlers",
]
