"""Tests for the process registry and cancellation tokens."""

import asyncio

import pytest

from src.bulkman.bulk.exceptions import CancellationRequested
from src.bulkman.bulk.models import JobStatus
from src.bulkman.bulk.registry import CancellationToken, ProcessRegistry
from tests.fixtures.domain import ManualClock


class TestCancellationToken:
    """Test cases for CancellationToken."""

    def test_cancel_flips_once(self):
        """Test that only the first cancel call reports the flip."""
        token = CancellationToken("job-1")

        assert not token.is_cancelled
        assert token.cancel()
        assert not token.cancel()
        assert token.is_cancelled

    def test_raise_if_cancelled(self):
        """Test raising after cancellation."""
        token = CancellationToken("job-1")
        token.raise_if_cancelled()

        token.cancel()

        with pytest.raises(CancellationRequested) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.job_id == "job-1"

    @pytest.mark.asyncio
    async def test_wait(self):
        """Test waiting for cancellation."""
        token = CancellationToken()
        waiter = asyncio.ensure_future(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        token.cancel()
        await asyncio.wait_for(waiter, timeout=1.0)

        assert waiter.done()


class TestProcessRegistry:
    """Test cases for ProcessRegistry."""

    def setup_method(self):
        """Set up a registry with a manual clock."""
        self.clock = ManualClock()
        self.registry = ProcessRegistry(max_concurrent_processes=2, retention_seconds=30.0, clock=self.clock)

    def test_rejects_zero_ceiling(self):
        """Test that the concurrency ceiling must be positive."""
        with pytest.raises(ValueError):
            ProcessRegistry(max_concurrent_processes=0)

    @pytest.mark.asyncio
    async def test_register_creates_running_job(self):
        """Test registering a job."""
        job_id, token = await self.registry.register("deactivate_users", 5, actor="alice")

        status = self.registry.get(job_id)
        assert status.status == JobStatus.RUNNING
        assert status.kind == "deactivate_users"
        assert status.total_items == 5
        assert status.processed_items == 0
        assert status.actor == "alice"
        assert status.can_be_cancelled
        assert token.job_id == job_id
        assert self.registry.held_slots == 1
        assert self.registry.available_slots == 1

    @pytest.mark.asyncio
    async def test_report_progress(self):
        """Test progress checkpoints."""
        job_id, _ = await self.registry.register("deactivate_users", 5)

        self.registry.report_progress(job_id, 3, failed_items=1, current_operation="chunk 1/2")

        status = self.registry.get(job_id)
        assert status.processed_items == 3
        assert status.failed_items == 1
        assert status.current_operation == "chunk 1/2"
        assert status.progress_percent == 60.0

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_bounded(self):
        """Test that counters never go backwards or past the total."""
        job_id, _ = await self.registry.register("deactivate_users", 5)
        self.registry.report_progress(job_id, 4)

        self.registry.report_progress(job_id, 2)
        assert self.registry.get(job_id).processed_items == 4

        self.registry.report_progress(job_id, 9)
        assert self.registry.get(job_id).processed_items == 5

    @pytest.mark.asyncio
    async def test_complete_releases_slot(self):
        """Test completing a job."""
        job_id, _ = await self.registry.register("deactivate_users", 5)

        assert self.registry.complete(job_id, JobStatus.COMPLETED)
        assert not self.registry.complete(job_id, JobStatus.FAILED)

        status = self.registry.get(job_id)
        assert status.status == JobStatus.COMPLETED
        assert status.completed_at is not None
        assert self.registry.held_slots == 0
        assert self.registry.list_running() == []

    @pytest.mark.asyncio
    async def test_complete_requires_terminal_status(self):
        """Test that RUNNING is not a valid completion status."""
        job_id, _ = await self.registry.register("deactivate_users", 5)

        with pytest.raises(ValueError):
            self.registry.complete(job_id, JobStatus.RUNNING)

    @pytest.mark.asyncio
    async def test_cancel_returns_true_exactly_once(self):
        """Test that cancellation is reported once for a running job."""
        job_id, token = await self.registry.register("deactivate_users", 5)

        assert self.registry.cancel(job_id)
        assert not self.registry.cancel(job_id)

        assert token.is_cancelled
        status = self.registry.get(job_id)
        assert status.cancel_requested
        assert not status.can_be_cancelled

    @pytest.mark.asyncio
    async def test_cancel_unknown_or_finished_job(self):
        """Test that only running jobs can be cancelled."""
        job_id, _ = await self.registry.register("deactivate_users", 5)
        self.registry.complete(job_id, JobStatus.COMPLETED)

        assert not self.registry.cancel(job_id)
        assert not self.registry.cancel("no-such-job")

    @pytest.mark.asyncio
    async def test_register_waits_for_free_slot(self):
        """Test that the concurrency ceiling suspends registration."""
        first, _ = await self.registry.register("a", 1)
        await self.registry.register("b", 1)

        third = asyncio.ensure_future(self.registry.register("c", 1))
        await asyncio.sleep(0)
        assert not third.done()
        assert self.registry.available_slots == 0

        self.registry.complete(first, JobStatus.COMPLETED)
        job_id, _ = await asyncio.wait_for(third, timeout=1.0)

        assert self.registry.get(job_id).status == JobStatus.RUNNING
        assert len(self.registry.list_running()) == 2

    @pytest.mark.asyncio
    async def test_terminal_jobs_evicted_after_retention(self):
        """Test that finished jobs stay listed for the retention window only."""
        job_id, _ = await self.registry.register("deactivate_users", 5)
        self.registry.complete(job_id, JobStatus.CANCELLED)

        self.clock.advance(29.0)
        assert [status.job_id for status in self.registry.list()] == [job_id]

        self.clock.advance(1.0)
        assert self.registry.list() == []
        assert self.registry.get(job_id) is None

    @pytest.mark.asyncio
    async def test_running_jobs_are_never_evicted(self):
        """Test that retention only applies to terminal jobs."""
        job_id, _ = await self.registry.register("deactivate_users", 5)

        self.clock.advance(3600.0)

        assert self.registry.get(job_id) is not None

    def test_progress_for_unknown_job_is_ignored(self):
        """Test that progress for an unknown job does nothing."""
        self.registry.report_progress("missing", 3)

        assert self.registry.get("missing") is None
