"""Tests for bulk result models and policies."""

from dataclasses import FrozenInstanceError
from datetime import datetime, timezone

import pytest

from src.bulkman.bulk.models import (
    BatchPolicy,
    BulkOperationResult,
    ItemError,
    ItemOutcome,
    JobStatus,
    PartialSuccessMode,
    PartialSuccessPolicy,
    ProcessStatus,
)


class TestBulkOperationResult:
    """Test cases for BulkOperationResult."""

    def setup_method(self):
        """Set up a partially failed result."""
        self.result = BulkOperationResult(
            is_success=False,
            operation_type="deactivate_users",
            successful_operations=(
                ItemOutcome("deactivate_users", "u1"),
                ItemOutcome("deactivate_users", "u2"),
                ItemOutcome("deactivate_users", "u3"),
            ),
            errors=(ItemError("deactivate_users", "User not found", entity_id="u9"),),
        )

    def test_counts(self):
        """Test derived counters."""
        assert self.result.success_count == 3
        assert self.result.error_count == 1
        assert self.result.total_processed == 4
        assert self.result.success_rate == 75.0
        assert self.result.has_partial_failure

    def test_is_immutable(self):
        """Test that results cannot be modified once returned."""
        with pytest.raises(FrozenInstanceError):
            self.result.is_success = True

    def test_with_job(self):
        """Test tagging a copy with job id and duration."""
        tagged = self.result.with_job("job-1", 1.5)

        assert tagged.job_id == "job-1"
        assert tagged.duration == 1.5
        assert self.result.job_id is None

    def test_create_error(self):
        """Test whole-batch failure results."""
        result = BulkOperationResult.create_error("No items to process", "archive_workgroups")

        assert not result.is_success
        assert result.error_message == "No items to process"
        assert result.successful_operations == ()
        assert result.success_rate == 0.0

    def test_to_dict(self):
        """Test dictionary conversion."""
        data = self.result.to_dict()

        assert data["success_count"] == 3
        assert data["error_count"] == 1
        assert data["errors"][0]["entity_id"] == "u9"


class TestPartialSuccessPolicy:
    """Test cases for PartialSuccessPolicy."""

    def test_no_errors_is_always_success(self):
        """Test that error-free batches succeed under every mode."""
        for policy in (
            PartialSuccessPolicy.strict(),
            PartialSuccessPolicy.any_success(),
            PartialSuccessPolicy.majority(),
            PartialSuccessPolicy.threshold(0),
        ):
            assert policy.evaluate(3, 0)

    def test_strict(self):
        """Test that any error fails a strict batch."""
        assert not PartialSuccessPolicy.strict().evaluate(99, 1)

    def test_any_success(self):
        """Test the any-success mode."""
        policy = PartialSuccessPolicy.any_success()

        assert policy.evaluate(1, 99)
        assert not policy.evaluate(0, 1)

    def test_majority(self):
        """Test the majority mode."""
        policy = PartialSuccessPolicy.majority()

        assert policy.evaluate(2, 1)
        assert not policy.evaluate(1, 1)

    def test_threshold(self):
        """Test the error percentage threshold."""
        policy = PartialSuccessPolicy.threshold(15)

        assert policy.mode == PartialSuccessMode.THRESHOLD
        assert policy.evaluate(17, 3)
        assert not policy.evaluate(16, 4)

    def test_threshold_bounds(self):
        """Test that threshold percentages are validated."""
        with pytest.raises(ValueError):
            PartialSuccessPolicy.threshold(101)
        with pytest.raises(ValueError):
            PartialSuccessPolicy.threshold(-1)


class TestBatchPolicy:
    """Test cases for BatchPolicy."""

    def test_defaults(self):
        """Test default chunking policy."""
        policy = BatchPolicy()

        assert policy.batch_size == 10
        assert policy.continue_on_error
        assert policy.max_concurrency == 5

    @pytest.mark.parametrize("kwargs", [{"batch_size": 0}, {"max_concurrency": 0}])
    def test_rejects_invalid_values(self, kwargs):
        """Test that sizes below one are rejected."""
        with pytest.raises(ValueError):
            BatchPolicy(**kwargs)


class TestProcessStatus:
    """Test cases for ProcessStatus."""

    def _status(self, **kwargs):
        values = {
            "job_id": "job-1",
            "kind": "archive_workgroups",
            "status": JobStatus.RUNNING,
            "started_at": datetime.now(timezone.utc),
            "total_items": 4,
            "processed_items": 1,
        }
        values.update(kwargs)
        return ProcessStatus(**values)

    def test_progress_percent(self):
        """Test progress calculation."""
        assert self._status().progress_percent == 25.0

    def test_empty_job_progress(self):
        """Test progress for jobs without items."""
        assert self._status(total_items=0, processed_items=0).progress_percent == 0.0
        assert (
            self._status(total_items=0, processed_items=0, status=JobStatus.COMPLETED).progress_percent
            == 100.0
        )

    def test_can_be_cancelled(self):
        """Test cancellability by status."""
        assert self._status().can_be_cancelled
        assert not self._status(cancel_requested=True).can_be_cancelled
        assert not self._status(status=JobStatus.FAILED).can_be_cancelled

    def test_terminal_statuses(self):
        """Test terminal status detection."""
        assert not JobStatus.RUNNING.is_terminal
        assert all(status.is_terminal for status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED))
