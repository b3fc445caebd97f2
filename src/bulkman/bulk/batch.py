"""Batch execution for bulk operations.

This module applies a per-item action to a list of work items in ordered chunks,
with bounded concurrency inside each chunk, partial-failure tolerance,
cooperative cancellation and deterministic result aggregation.

Classes:
    BatchTermination: Why a batch run stopped
    ProgressEvent: Progress checkpoint emitted after each chunk
    BatchEventHandler: Typed progress/completion callbacks
    BatchReport: Result of one BatchExecutor run
    ProgressTracker: Manages rich progress display for a batch run
    BatchExecutor: Chunked, concurrent, cancellable item processing
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Union

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from ..cache.invalidation import CacheInvalidationHub, InvalidationReport, InvalidationTarget
from .exceptions import ValidationError
from .models import (
    BatchPolicy,
    BulkOperationResult,
    ItemError,
    ItemOutcome,
    PartialSuccessPolicy,
)
from .registry import CancellationToken, ProcessRegistry

logger = logging.getLogger(__name__)
console = Console()

ItemResult = Union[ItemOutcome, ItemError]
ItemAction = Callable[[Any], Awaitable[ItemResult]]
ChunkAction = Callable[[List[Any]], Awaitable[Sequence[ItemResult]]]
Validator = Callable[[List[Any]], Awaitable[List[ItemError]]]
AffectedEntities = Callable[[Any, ItemOutcome], Iterable[InvalidationTarget]]


class BatchTermination(str, Enum):
    """How a batch run ended."""

    FINISHED = "finished"  # every item was dispatched
    ABORTED = "aborted"  # stopped on first failure (continue_on_error=False)
    CANCELLED = "cancelled"  # cancellation token observed
    REJECTED = "rejected"  # pre-flight validation failed, nothing dispatched


@dataclass(frozen=True)
class ProgressEvent:
    """Progress checkpoint emitted after each chunk."""

    job_id: Optional[str]
    operation_type: str
    processed_items: int
    total_items: int
    failed_items: int
    chunk_index: int
    chunk_count: int

    @property
    def percent(self) -> float:
        if self.total_items == 0:
            return 100.0
        return self.processed_items / self.total_items * 100


class BatchEventHandler:
    """Receives batch progress and completion events. Methods are no-ops by default."""

    async def on_progress(self, event: ProgressEvent) -> None:
        pass

    async def on_completed(self, job_id: Optional[str], result: BulkOperationResult) -> None:
        pass


@dataclass
class BatchReport:
    """Result of one BatchExecutor run."""

    result: BulkOperationResult
    termination: BatchTermination
    processed_items: int
    total_items: int
    invalidation: Optional[InvalidationReport] = None
    affected: List[InvalidationTarget] = field(default_factory=list)


class ProgressTracker:
    """Manages progress display for a batch run."""

    def __init__(self, console: Console):
        """Initialize progress tracker.

        Args:
            console: Rich console for output
        """
        self.console = console
        self.progress: Optional[Progress] = None
        self.task_id: Optional[TaskID] = None
        self.start_time: Optional[float] = None

    def start_progress(self, total: int, description: str = "Processing items"):
        """Start progress tracking.

        Args:
            total: Total number of items to process
            description: Description for the progress bar
        """
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("({task.completed}/{task.total})"),
            TimeElapsedColumn(),
            console=self.console,
        )
        self.progress.start()
        self.task_id = self.progress.add_task(description, total=total)
        self.start_time = time.time()

    def set_progress(self, completed: int, description: Optional[str] = None):
        """Set absolute progress value."""
        if self.progress and self.task_id is not None:
            self.progress.update(self.task_id, completed=completed)
            if description:
                self.progress.update(self.task_id, description=description)

    def finish_progress(self):
        """Complete progress tracking."""
        if self.progress:
            self.progress.stop()
            self.progress = None
            self.task_id = None


class BatchExecutor:
    """Applies a per-item action to work items in ordered chunks."""

    def __init__(
        self,
        registry: Optional[ProcessRegistry] = None,
        invalidation_hub: Optional[CacheInvalidationHub] = None,
        show_progress: bool = False,
        console: Optional[Console] = None,
    ):
        """Initialize batch executor.

        Args:
            registry: Registry receiving progress checkpoints
            invalidation_hub: Hub invalidating caches for successful mutations
            show_progress: Whether to render a rich progress bar
            console: Rich console for the progress bar
        """
        self.registry = registry
        self.invalidation_hub = invalidation_hub
        self.show_progress = show_progress
        self.console = console

    async def execute(
        self,
        items: Sequence[Any],
        action: ItemAction,
        policy: Optional[BatchPolicy] = None,
        *,
        operation_type: str,
        job_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
        validator: Optional[Validator] = None,
        chunk_action: Optional[ChunkAction] = None,
        affected: Optional[AffectedEntities] = None,
        describe_item: Optional[Callable[[Any], Optional[str]]] = None,
        success_policy: Optional[PartialSuccessPolicy] = None,
        events: Optional[BatchEventHandler] = None,
    ) -> BatchReport:
        """Process items in chunks and aggregate their outcomes.

        Args:
            items: Work items
            action: Coroutine function applied to each item
            policy: Chunk size, concurrency and continue-on-error policy
            operation_type: Operation name recorded in results
            job_id: Registry job id for progress checkpoints
            cancel_token: Cancellation token checked between chunks and items
            validator: Pre-flight check returning per-item errors
            chunk_action: Replaces ``action`` with one call per chunk
            affected: Maps a successful item to the entities it mutated
            describe_item: Maps an item to the entity id used in errors
            success_policy: Rule for judging batches with some item errors
            events: Receives progress and completion events

        Returns:
            BatchReport with the immutable result and how the run ended
        """
        start_time = time.time()
        policy = policy or BatchPolicy()
        success_policy = success_policy or PartialSuccessPolicy.strict()
        events = events or BatchEventHandler()
        items = list(items)
        total = len(items)

        if total == 0:
            report = self._rejected(
                "No items to process", operation_type, [], total, job_id, start_time
            )
            await self._emit_completed(events, job_id, report.result)
            return report

        if validator is not None:
            rejection = await self._run_validation(
                validator, items, operation_type, job_id, start_time
            )
            if rejection is not None:
                await self._emit_completed(events, job_id, rejection.result)
                return rejection

        successes: List[ItemOutcome] = []
        errors: List[ItemError] = []
        targets: List[InvalidationTarget] = []
        processed = 0
        termination = BatchTermination.FINISHED
        chunk_count = (total + policy.batch_size - 1) // policy.batch_size

        progress_tracker = None
        if self.show_progress:
            progress_tracker = ProgressTracker(self.console or console)
            progress_tracker.start_progress(total, f"Processing {operation_type}")

        try:
            for chunk_index in range(chunk_count):
                if cancel_token is not None and cancel_token.is_cancelled:
                    termination = BatchTermination.CANCELLED
                    break

                offset = chunk_index * policy.batch_size
                chunk = items[offset : offset + policy.batch_size]

                if chunk_action is not None:
                    chunk_results = await self._run_chunk_action(
                        chunk_action, chunk, operation_type, describe_item
                    )
                else:
                    chunk_results = await self._run_chunk(
                        chunk, action, policy, operation_type, cancel_token, describe_item
                    )

                # Aggregate in submission order regardless of completion order
                chunk_failed = False
                skipped = 0
                for item, item_result in zip(chunk, chunk_results):
                    if item_result is None:
                        skipped += 1
                        continue
                    processed += 1
                    if isinstance(item_result, ItemOutcome):
                        successes.append(item_result)
                        if affected is not None:
                            targets.extend(affected(item, item_result))
                    else:
                        errors.append(item_result)
                        chunk_failed = True

                if self.registry is not None and job_id is not None:
                    self.registry.report_progress(
                        job_id,
                        processed,
                        failed_items=len(errors),
                        current_operation=f"{operation_type}: chunk {chunk_index + 1}/{chunk_count}",
                    )
                if progress_tracker:
                    progress_tracker.set_progress(processed)

                await self._emit_progress(
                    events,
                    ProgressEvent(
                        job_id=job_id,
                        operation_type=operation_type,
                        processed_items=processed,
                        total_items=total,
                        failed_items=len(errors),
                        chunk_index=chunk_index,
                        chunk_count=chunk_count,
                    ),
                )

                if chunk_failed and not policy.continue_on_error:
                    termination = BatchTermination.ABORTED
                    remaining = total - processed
                    logger.warning(
                        f"Stopping {operation_type} after item failure "
                        f"(continue_on_error=False), {remaining} items not processed"
                    )
                    errors.append(
                        ItemError(
                            operation=operation_type,
                            message=(
                                f"Batch aborted after item failure; {remaining} of {total} "
                                f"items were not processed"
                            ),
                            error_type="BatchAborted",
                        )
                    )
                    break

                if skipped and cancel_token is not None and cancel_token.is_cancelled:
                    termination = BatchTermination.CANCELLED
                    break
        finally:
            if progress_tracker:
                progress_tracker.finish_progress()

        invalidation = self._invalidate(targets)
        result = self._build_result(
            termination,
            operation_type,
            successes,
            errors,
            processed,
            total,
            success_policy,
        ).with_job(job_id, time.time() - start_time)

        if termination == BatchTermination.CANCELLED:
            logger.info(f"{operation_type} cancelled after {processed} of {total} items")

        await self._emit_completed(events, job_id, result)
        return BatchReport(
            result=result,
            termination=termination,
            processed_items=processed,
            total_items=total,
            invalidation=invalidation,
            affected=targets,
        )

    async def _run_validation(
        self,
        validator: Validator,
        items: List[Any],
        operation_type: str,
        job_id: Optional[str],
        start_time: float,
    ) -> Optional[BatchReport]:
        try:
            validation_errors = await validator(items)
        except ValidationError as e:
            validation_errors = e.errors or [
                ItemError(operation=operation_type, message=e.message, error_type="ValidationError")
            ]
        except Exception as e:
            # Faults during pre-flight reject the whole batch
            logger.warning(f"Pre-flight validation for {operation_type} failed: {e}")
            return self._rejected(
                f"Pre-flight validation could not complete: {e}",
                operation_type,
                [ItemError(operation=operation_type, message=str(e), error_type=type(e).__name__)],
                len(items),
                job_id,
                start_time,
            )

        if not validation_errors:
            return None

        logger.warning(
            f"Pre-flight validation rejected {operation_type}: "
            f"{len(validation_errors)} invalid item(s)"
        )
        return self._rejected(
            f"Pre-flight validation failed for {len(validation_errors)} item(s)",
            operation_type,
            validation_errors,
            len(items),
            job_id,
            start_time,
        )

    def _rejected(
        self,
        message: str,
        operation_type: str,
        errors: List[ItemError],
        total: int,
        job_id: Optional[str],
        start_time: float,
    ) -> BatchReport:
        result = BulkOperationResult.create_error(
            message, operation_type, errors=tuple(errors), job_id=job_id
        ).with_job(job_id, time.time() - start_time)
        return BatchReport(
            result=result,
            termination=BatchTermination.REJECTED,
            processed_items=0,
            total_items=total,
        )

    async def _run_chunk(
        self,
        chunk: List[Any],
        action: ItemAction,
        policy: BatchPolicy,
        operation_type: str,
        cancel_token: Optional[CancellationToken],
        describe_item: Optional[Callable[[Any], Optional[str]]],
    ) -> List[Optional[ItemResult]]:
        """Run one chunk; None marks an item that was never dispatched."""
        semaphore = asyncio.Semaphore(policy.max_concurrency)
        halted = False

        async def run_one(item: Any) -> Optional[ItemResult]:
            nonlocal halted
            async with semaphore:
                if halted or (cancel_token is not None and cancel_token.is_cancelled):
                    return None
                item_result = await self._process_item_with_isolation(
                    item, action, operation_type, describe_item
                )
                if isinstance(item_result, ItemError) and not policy.continue_on_error:
                    halted = True
                return item_result

        return list(await asyncio.gather(*(run_one(item) for item in chunk)))

    async def _run_chunk_action(
        self,
        chunk_action: ChunkAction,
        chunk: List[Any],
        operation_type: str,
        describe_item: Optional[Callable[[Any], Optional[str]]],
    ) -> List[Optional[ItemResult]]:
        try:
            chunk_results = list(await chunk_action(chunk))
        except Exception as e:
            logger.warning(f"Chunk command for {operation_type} failed: {e}")
            return [
                ItemError(
                    operation=operation_type,
                    message=str(e) or type(e).__name__,
                    entity_id=describe_item(item) if describe_item else None,
                    error_type=type(e).__name__,
                )
                for item in chunk
            ]

        while len(chunk_results) < len(chunk):
            item = chunk[len(chunk_results)]
            chunk_results.append(
                ItemError(
                    operation=operation_type,
                    message="No result returned for item",
                    entity_id=describe_item(item) if describe_item else None,
                )
            )
        return chunk_results[: len(chunk)]

    async def _process_item_with_isolation(
        self,
        item: Any,
        action: ItemAction,
        operation_type: str,
        describe_item: Optional[Callable[[Any], Optional[str]]],
    ) -> ItemResult:
        """Run the action for one item, converting any exception into an ItemError."""
        entity_id = None
        if describe_item is not None:
            try:
                entity_id = describe_item(item)
            except Exception:
                entity_id = None

        try:
            item_result = await action(item)
        except Exception as e:
            logger.warning(f"Isolated error processing {entity_id or item!r} in {operation_type}: {e}")
            return ItemError(
                operation=operation_type,
                message=str(e) or type(e).__name__,
                entity_id=entity_id,
                error_type=type(e).__name__,
            )

        if isinstance(item_result, (ItemOutcome, ItemError)):
            return item_result

        return ItemError(
            operation=operation_type,
            message=f"Action returned unexpected result type {type(item_result).__name__}",
            entity_id=entity_id,
            error_type="InvalidResult",
        )

    def _build_result(
        self,
        termination: BatchTermination,
        operation_type: str,
        successes: List[ItemOutcome],
        errors: List[ItemError],
        processed: int,
        total: int,
        success_policy: PartialSuccessPolicy,
    ) -> BulkOperationResult:
        error_message = None
        if termination == BatchTermination.FINISHED:
            is_success = success_policy.evaluate(len(successes), len(errors))
            if errors:
                error_message = f"{len(errors)} of {total} items failed"
        elif termination == BatchTermination.ABORTED:
            is_success = False
            error_message = "Processing stopped after the first item failure"
        else:
            is_success = False
            error_message = f"Operation cancelled after {processed} of {total} items"

        return BulkOperationResult(
            is_success=is_success,
            operation_type=operation_type,
            successful_operations=tuple(successes),
            errors=tuple(errors),
            error_message=error_message,
            cancelled=termination == BatchTermination.CANCELLED,
        )

    def _invalidate(self, targets: List[InvalidationTarget]) -> Optional[InvalidationReport]:
        if not targets or self.invalidation_hub is None:
            return None
        try:
            return self.invalidation_hub.invalidate(targets)
        except Exception as e:
            logger.warning(f"Cache invalidation failed: {e}")
            return None

    async def _emit_progress(self, events: BatchEventHandler, event: ProgressEvent):
        try:
            await events.on_progress(event)
        except Exception as e:
            logger.warning(f"Progress handler failed: {e}")

    async def _emit_completed(
        self, events: BatchEventHandler, job_id: Optional[str], result: BulkOperationResult
    ):
        try:
            await events.on_completed(job_id, result)
        except Exception as e:
            logger.warning(f"Completion handler failed: {e}")
