"""Exceptions raised inside the bulk orchestration layer."""

from typing import Any, Dict, List, Optional

from .models import ItemError


class BulkOperationError(Exception):
    """Base exception for bulk operation errors."""

    def __init__(
        self,
        message: str,
        operation_type: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation_type = operation_type
        self.context = context or {}


class ValidationError(BulkOperationError):
    """Raised when a request is structurally invalid and must not be dispatched."""

    def __init__(
        self,
        message: str,
        operation_type: Optional[str] = None,
        errors: Optional[List[ItemError]] = None,
    ):
        super().__init__(message, operation_type)
        self.errors = list(errors or [])


class UnknownOperationError(ValidationError):
    """Raised when run_bulk is asked for an operation kind with no handler."""

    def __init__(self, kind: str):
        super().__init__(f"Unknown bulk operation kind: {kind}", operation_type=kind)
        self.kind = kind


class CancellationRequested(BulkOperationError):
    """Raised by CancellationToken.raise_if_cancelled when a job has been cancelled."""

    def __init__(self, job_id: Optional[str] = None):
        super().__init__(f"Cancellation requested for job {job_id}", context={"job_id": job_id})
        self.job_id = job_id
