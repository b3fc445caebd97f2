"""Process registry for running bulk jobs.

Classes:
    CancellationToken: Cooperative cancellation handle for one job
    ProcessRegistry: Bounded table of running and recently finished jobs
"""

import asyncio
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from .exceptions import CancellationRequested
from .models import BulkJob, JobStatus, ProcessStatus

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation handle passed to every stage of a job."""

    def __init__(self, job_id: Optional[str] = None):
        self.job_id = job_id
        self._cancelled = False
        self._event = asyncio.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        """
        Signal cancellation.

        Returns:
            True for the call that flipped the token, False afterwards
        """
        if self._cancelled:
            return False
        self._cancelled = True
        self._event.set()
        return True

    def raise_if_cancelled(self):
        """Raise CancellationRequested if the token has been cancelled."""
        if self._cancelled:
            raise CancellationRequested(self.job_id)

    async def wait(self):
        """Wait until the token is cancelled."""
        await self._event.wait()


class ProcessRegistry:
    """
    Tracks in-flight bulk jobs and bounds how many run at once.

    ``register`` suspends until one of ``max_concurrent_processes`` slots is
    free; ``complete`` releases it. Terminal jobs stay listed for
    ``retention_seconds`` and are then purged on the next read or registration.
    One registry is owned by the application and passed to each orchestrator.
    """

    def __init__(
        self,
        max_concurrent_processes: int = 3,
        retention_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the registry.

        Args:
            max_concurrent_processes: Concurrency ceiling for running jobs
            retention_seconds: How long terminal jobs remain queryable
            clock: Monotonic time source used for retention
        """
        if max_concurrent_processes < 1:
            raise ValueError("max_concurrent_processes must be at least 1")

        self.max_concurrent_processes = max_concurrent_processes
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._slots = asyncio.Semaphore(max_concurrent_processes)
        self._jobs: Dict[str, BulkJob] = {}
        self._lock = threading.Lock()
        self._held_slots = 0

    @property
    def held_slots(self) -> int:
        """Number of concurrency slots currently held by running jobs."""
        return self._held_slots

    @property
    def available_slots(self) -> int:
        return self.max_concurrent_processes - self._held_slots

    async def register(
        self, kind: str, total_items: int, actor: Optional[str] = None
    ) -> Tuple[str, CancellationToken]:
        """
        Register a new job once a concurrency slot is free.

        Args:
            kind: Operation kind
            total_items: Number of items the job will process
            actor: Identity that started the job

        Returns:
            Tuple of (job_id, cancellation token)
        """
        await self._slots.acquire()

        job_id = str(uuid.uuid4())
        token = CancellationToken(job_id)
        job = BulkJob(
            id=job_id,
            kind=kind,
            started_at=datetime.now(timezone.utc),
            total_items=total_items,
            cancel_handle=token,
            actor=actor,
        )

        with self._lock:
            self._held_slots += 1
            self._jobs[job_id] = job
            self._purge_expired()

        logger.info(f"Registered {kind} job {job_id} ({total_items} items)")
        return job_id, token

    def report_progress(
        self,
        job_id: str,
        processed_items: int,
        failed_items: Optional[int] = None,
        current_operation: Optional[str] = None,
    ):
        """
        Record progress for a running job. Unknown or finished jobs are ignored.

        Counters only move forward.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.is_terminal:
                return
            job.processed_items = min(max(job.processed_items, processed_items), job.total_items)
            if failed_items is not None:
                job.failed_items = max(job.failed_items, failed_items)
            if current_operation is not None:
                job.current_operation = current_operation

    def complete(self, job_id: str, status: JobStatus) -> bool:
        """
        Move a running job to a terminal status and release its slot.

        Args:
            job_id: Job to complete
            status: Terminal status

        Returns:
            True if the job was running and is now terminal

        Raises:
            ValueError: If status is RUNNING
        """
        if not status.is_terminal:
            raise ValueError("complete() requires a terminal status")

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.is_terminal:
                return False
            job.status = status
            job.completed_at = datetime.now(timezone.utc)
            job.terminal_since = self._clock()
            job.current_operation = None
            self._held_slots -= 1

        self._slots.release()
        logger.info(f"{job.kind} job {job_id} finished with status {status.value}")
        return True

    def cancel(self, job_id: str) -> bool:
        """
        Request cooperative cancellation of a running job.

        Returns:
            True only for the first request against a job that is running
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.RUNNING:
                return False
            cancelled = job.cancel_handle.cancel()

        if cancelled:
            logger.info(f"Cancellation requested for job {job_id}")
        return cancelled

    def get(self, job_id: str) -> Optional[ProcessStatus]:
        """Return a snapshot of one job, if tracked."""
        self._purge_expired_unlocked()
        job = self._jobs.get(job_id)
        return job.snapshot() if job else None

    def list(self) -> List[ProcessStatus]:
        """Return snapshots of all running and recently finished jobs."""
        self._purge_expired_unlocked()
        jobs = list(self._jobs.values())
        return [job.snapshot() for job in jobs]

    def list_running(self) -> List[ProcessStatus]:
        return [status for status in self.list() if status.status == JobStatus.RUNNING]

    def _purge_expired_unlocked(self):
        # Readers never wait on the write lock; purging is skipped if it is held
        if self._lock.acquire(blocking=False):
            try:
                self._purge_expired()
            finally:
                self._lock.release()

    def _purge_expired(self):
        now = self._clock()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.terminal_since is not None and now - job.terminal_since >= self.retention_seconds
        ]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.debug(f"Evicted {len(expired)} finished jobs from the registry")
