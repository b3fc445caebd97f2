"""Data models for bulk jobs and their results.

Classes:
    JobStatus: Lifecycle status of a bulk job
    ItemOutcome: A successful per-item action
    ItemError: A failed per-item action or whole-batch failure reason
    BulkOperationResult: Immutable aggregate returned to callers
    BatchPolicy: Chunking and error policy for BatchExecutor
    PartialSuccessMode / PartialSuccessPolicy: When a partially failed batch still counts as success
    RunOptions: Per-call options accepted by BulkOrchestrator.run_bulk
    BulkJob: Mutable registry record of a running job
    ProcessStatus: Read-only snapshot of a BulkJob
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class JobStatus(str, Enum):
    """Bulk job statuses."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self != JobStatus.RUNNING


@dataclass(frozen=True)
class ItemOutcome:
    """Result of a successful per-item action."""

    operation: str
    entity_id: str
    message: str = ""
    entity_name: Optional[str] = None


@dataclass(frozen=True)
class ItemError:
    """Result of a failed per-item action."""

    operation: str
    message: str
    entity_id: Optional[str] = None
    entity_name: Optional[str] = None
    error_type: Optional[str] = None


@dataclass(frozen=True)
class BulkOperationResult:
    """Aggregate result of a bulk operation. Immutable once returned."""

    is_success: bool
    operation_type: str
    successful_operations: Tuple[ItemOutcome, ...] = ()
    errors: Tuple[ItemError, ...] = ()
    error_message: Optional[str] = None
    job_id: Optional[str] = None
    cancelled: bool = False
    duration: float = 0.0

    @property
    def success_count(self) -> int:
        """Number of successful operations."""
        return len(self.successful_operations)

    @property
    def error_count(self) -> int:
        """Number of failed operations."""
        return len(self.errors)

    @property
    def total_processed(self) -> int:
        return self.success_count + self.error_count

    @property
    def success_rate(self) -> float:
        """Success rate as a percentage."""
        if self.total_processed == 0:
            return 0.0
        return (self.success_count / self.total_processed) * 100

    @property
    def has_partial_failure(self) -> bool:
        return self.success_count > 0 and self.error_count > 0

    def with_job(self, job_id: Optional[str], duration: float) -> "BulkOperationResult":
        """Return a copy tagged with the job id and duration."""
        return replace(self, job_id=job_id, duration=duration)

    @classmethod
    def create_error(
        cls,
        message: str,
        operation_type: str,
        errors: Tuple[ItemError, ...] = (),
        job_id: Optional[str] = None,
    ) -> "BulkOperationResult":
        """Create a whole-batch failure result."""
        return cls(
            is_success=False,
            operation_type=operation_type,
            successful_operations=(),
            errors=tuple(errors),
            error_message=message,
            job_id=job_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_success": self.is_success,
            "operation_type": self.operation_type,
            "job_id": self.job_id,
            "cancelled": self.cancelled,
            "duration": self.duration,
            "error_message": self.error_message,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "successful_operations": [
                {"operation": o.operation, "entity_id": o.entity_id, "message": o.message}
                for o in self.successful_operations
            ],
            "errors": [
                {"operation": e.operation, "entity_id": e.entity_id, "message": e.message}
                for e in self.errors
            ],
        }


@dataclass
class BatchPolicy:
    """Chunking and error policy for BatchExecutor."""

    batch_size: int = 10
    continue_on_error: bool = True
    max_concurrency: int = 5

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")


class PartialSuccessMode(str, Enum):
    """How a batch with some item errors is judged."""

    STRICT = "strict"  # no errors allowed
    ANY_SUCCESS = "any_success"  # at least one success
    MAJORITY = "majority"  # more successes than errors
    THRESHOLD = "threshold"  # error percentage within a limit


@dataclass(frozen=True)
class PartialSuccessPolicy:
    """Per-operation-kind rule deciding is_success for finished batches."""

    mode: PartialSuccessMode = PartialSuccessMode.STRICT
    acceptable_error_percentage: float = 0.0

    @classmethod
    def strict(cls) -> "PartialSuccessPolicy":
        return cls(PartialSuccessMode.STRICT)

    @classmethod
    def any_success(cls) -> "PartialSuccessPolicy":
        return cls(PartialSuccessMode.ANY_SUCCESS)

    @classmethod
    def majority(cls) -> "PartialSuccessPolicy":
        return cls(PartialSuccessMode.MAJORITY)

    @classmethod
    def threshold(cls, acceptable_error_percentage: float) -> "PartialSuccessPolicy":
        if not 0 <= acceptable_error_percentage <= 100:
            raise ValueError("acceptable_error_percentage must be between 0 and 100")
        return cls(PartialSuccessMode.THRESHOLD, acceptable_error_percentage)

    def evaluate(self, success_count: int, error_count: int) -> bool:
        """
        Decide whether a finished batch counts as successful.

        Args:
            success_count: Number of successful items
            error_count: Number of failed items

        Returns:
            True if the batch is reported as successful
        """
        if error_count == 0:
            return True
        if self.mode == PartialSuccessMode.STRICT:
            return False
        if self.mode == PartialSuccessMode.ANY_SUCCESS:
            return success_count > 0
        if self.mode == PartialSuccessMode.MAJORITY:
            return success_count > error_count

        error_percentage = error_count / (success_count + error_count) * 100
        return error_percentage <= self.acceptable_error_percentage


@dataclass
class RunOptions:
    """Per-call options for BulkOrchestrator.run_bulk. None means use the configured default."""

    batch_size: Optional[int] = None
    max_concurrency: Optional[int] = None
    continue_on_error: Optional[bool] = None
    partial_success: Optional[PartialSuccessPolicy] = None
    dry_run: bool = False
    actor: Optional[str] = None
    scopes: Optional[Tuple[str, ...]] = None
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProcessStatus:
    """Snapshot of a tracked bulk job."""

    job_id: str
    kind: str
    status: JobStatus
    started_at: datetime
    total_items: int
    processed_items: int
    failed_items: int = 0
    completed_at: Optional[datetime] = None
    current_operation: Optional[str] = None
    actor: Optional[str] = None
    cancel_requested: bool = False

    @property
    def progress_percent(self) -> float:
        if self.total_items == 0:
            return 100.0 if self.status.is_terminal else 0.0
        return min(100.0, self.processed_items / self.total_items * 100)

    @property
    def can_be_cancelled(self) -> bool:
        return self.status == JobStatus.RUNNING and not self.cancel_requested


@dataclass
class BulkJob:
    """A bulk job tracked by the ProcessRegistry."""

    id: str
    kind: str
    started_at: datetime
    total_items: int
    cancel_handle: Any
    processed_items: int = 0
    failed_items: int = 0
    status: JobStatus = JobStatus.RUNNING
    completed_at: Optional[datetime] = None
    current_operation: Optional[str] = None
    actor: Optional[str] = None
    # Monotonic clock value of the terminal transition, used for retention
    terminal_since: Optional[float] = None

    def snapshot(self) -> ProcessStatus:
        """Return an immutable view of this job."""
        return ProcessStatus(
            job_id=self.id,
            kind=self.kind,
            status=self.status,
            started_at=self.started_at,
            total_items=self.total_items,
            processed_items=self.processed_items,
            failed_items=self.failed_items,
            completed_at=self.completed_at,
            current_operation=self.current_operation,
            actor=self.actor,
            cancel_requested=bool(getattr(self.cancel_handle, "is_cancelled", False)),
        )
