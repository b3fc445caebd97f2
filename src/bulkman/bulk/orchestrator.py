"""Bulk operation orchestrator.

BulkOrchestrator is the entry point callers use to run a bulk operation. It
opens the audit entry, makes sure a remote session exists, registers the job
against the concurrency ceiling, runs the batch and maps the outcome onto the
registry, the audit trail and the notification gateway. Callers always get a
BulkOperationResult back; only constructor contract violations raise.

Classes:
    BulkOrchestrator: Runs, lists and cancels bulk jobs
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from ..audit.recorder import AuditRecorder, AuditSeverity, AuditStatus
from ..cache.interfaces import ICacheManager
from ..cache.invalidation import CacheInvalidationHub
from ..domain.interfaces import DomainServices, NotificationSink
from ..session.circuit_breaker import CircuitBreaker
from ..session.credentials import CredentialProvider
from ..session.manager import ResilientSessionManager
from ..session.models import ConnectionHealth
from ..session.transport import RemoteTransport
from ..utils.config import OrchestrationSettings
from ..utils.notification_system import NotificationGateway
from .batch import BatchEventHandler, BatchExecutor, BatchReport, BatchTermination, ProgressEvent
from .exceptions import UnknownOperationError, ValidationError
from .models import (
    BatchPolicy,
    BulkOperationResult,
    ItemError,
    ItemOutcome,
    JobStatus,
    ProcessStatus,
    RunOptions,
)
from .operations import OperationContext, OperationHandler, OperationKind, default_handlers
from .registry import CancellationToken, ProcessRegistry

logger = logging.getLogger(__name__)


class _JobEvents(BatchEventHandler):
    """Forwards batch progress to the audit entry and the notification gateway."""

    def __init__(
        self,
        audit: AuditRecorder,
        notifications: NotificationGateway,
        audit_id: str,
        actor: str,
        kind: str,
    ):
        self.audit = audit
        self.notifications = notifications
        self.audit_id = audit_id
        self.actor = actor
        self.kind = kind

    async def on_progress(self, event: ProgressEvent) -> None:
        self.audit.update_progress(
            self.audit_id,
            event.processed_items,
            failed_items=event.failed_items,
            details=f"Processed {event.processed_items} of {event.total_items} items",
        )
        if event.job_id:
            await self.notifications.progress(
                event.job_id,
                self.actor,
                event.percent,
                f"{self.kind}: {event.processed_items}/{event.total_items} items processed",
            )


class BulkOrchestrator:
    """Runs bulk operations against the remote management API."""

    def __init__(
        self,
        session_manager: ResilientSessionManager,
        registry: ProcessRegistry,
        audit_recorder: AuditRecorder,
        services: DomainServices,
        invalidation_hub: Optional[CacheInvalidationHub] = None,
        notifications: Optional[NotificationGateway] = None,
        settings: Optional[OrchestrationSettings] = None,
        handlers: Optional[Dict[str, OperationHandler]] = None,
        default_actor: str = "system",
        show_progress: bool = False,
    ):
        """
        Initialize the orchestrator.

        Args:
            session_manager: Session manager routing every remote call
            registry: Process registry shared by every orchestrator in the application
            audit_recorder: Audit trail for bulk jobs
            services: Domain service container used by operation handlers
            invalidation_hub: Hub invalidating caches after successful mutations
            notifications: Gateway for progress and completion notifications
            settings: Orchestration settings (defaults when omitted)
            handlers: Operation handlers keyed by kind (all built-in kinds when omitted)
            default_actor: Actor used when RunOptions does not name one
            show_progress: Render a rich progress bar for each job

        Raises:
            ValueError: If a required collaborator is None
        """
        for name, value in (
            ("session_manager", session_manager),
            ("registry", registry),
            ("audit_recorder", audit_recorder),
            ("services", services),
        ):
            if value is None:
                raise ValueError(f"{name} is required")

        self.session_manager = session_manager
        self.registry = registry
        self.audit = audit_recorder
        self.services = services
        self.invalidation_hub = invalidation_hub or CacheInvalidationHub()
        self.notifications = notifications or NotificationGateway()
        self.settings = settings or OrchestrationSettings()
        self.handlers = handlers if handlers is not None else default_handlers()
        self.default_actor = default_actor
        self.executor = BatchExecutor(
            registry=registry, invalidation_hub=self.invalidation_hub, show_progress=show_progress
        )

    @classmethod
    def from_settings(
        cls,
        settings: OrchestrationSettings,
        transport: RemoteTransport,
        credential_provider: CredentialProvider,
        services: DomainServices,
        notification_sink: Optional[NotificationSink] = None,
        caches: Optional[Sequence[ICacheManager]] = None,
        default_actor: str = "system",
    ) -> "BulkOrchestrator":
        """
        Build an orchestrator and its collaborators from settings.

        Args:
            settings: Orchestration settings
            transport: Remote transport
            credential_provider: Credential provider for the session manager
            services: Domain service container
            notification_sink: Optional notification sink
            caches: Caches to keep consistent with bulk mutations

        Returns:
            Configured BulkOrchestrator
        """
        audit_recorder = AuditRecorder()
        session_manager = ResilientSessionManager(
            transport,
            credential_provider,
            retry_policy=settings.retry_policy(),
            circuit_breaker=CircuitBreaker("remote-api", settings.circuit_breaker_config()),
            call_timeout=settings.call_timeout,
            default_scopes=settings.default_scopes,
            audit_recorder=audit_recorder,
            default_actor=default_actor,
        )
        registry = ProcessRegistry(
            max_concurrent_processes=settings.max_concurrent_processes,
            retention_seconds=settings.process_retention_seconds,
        )
        return cls(
            session_manager=session_manager,
            registry=registry,
            audit_recorder=audit_recorder,
            services=services,
            invalidation_hub=CacheInvalidationHub(caches),
            notifications=NotificationGateway(notification_sink),
            settings=settings,
            default_actor=default_actor,
        )

    async def run_bulk(
        self,
        kind: Union[OperationKind, str],
        items: Optional[Sequence[Any]],
        options: Optional[RunOptions] = None,
        credential_token: Optional[str] = None,
    ) -> BulkOperationResult:
        """
        Run a bulk operation.

        Args:
            kind: Operation kind
            items: Work items for the operation
            options: Per-call options (batch size, concurrency, policies, parameters)
            credential_token: Credential used to connect to the remote API

        Returns:
            BulkOperationResult; failures are reported in the result, never raised
        """
        options = options or RunOptions()
        kind_value = kind.value if isinstance(kind, Enum) else str(kind)
        actor = options.actor or self.default_actor

        handler = self.handlers.get(kind_value)
        if handler is None:
            error = UnknownOperationError(kind_value)
            logger.warning(error.message)
            return BulkOperationResult.create_error(error.message, kind_value)

        try:
            policy = self._batch_policy(options)
        except ValueError as e:
            message = f"Invalid run options: {e}"
            logger.warning(f"Rejected {kind_value}: {message}")
            return BulkOperationResult.create_error(
                message, kind_value, errors=(ItemError(kind_value, str(e), error_type="ValidationError"),)
            )

        work_items = [handler.coerce_item(item) for item in (items or [])]
        if not work_items and not handler.resolves_targets:
            logger.warning(f"Rejected {kind_value}: no items to process")
            return BulkOperationResult.create_error("No items to process", kind_value)

        start_time = time.time()
        target_name = "resolved targets" if handler.resolves_targets else f"{len(work_items)} items"
        audit_id = self.audit.open(
            kind_value,
            handler.entity_kind,
            target_name=target_name,
            details=f"Bulk {kind_value} of {target_name}" + (" (dry run)" if options.dry_run else ""),
            actor=actor,
            metadata={"dry_run": options.dry_run, "parameters": dict(options.parameters)},
        )
        job_id: Optional[str] = None
        registry_status = JobStatus.FAILED

        try:
            if handler.requires_remote and not await self._ensure_session(credential_token, options, actor):
                health = self.session_manager.get_connection_health()
                message = f"Could not connect to the remote API: {health.last_error or 'no valid credential'}"
                logger.warning(f"Rejected {kind_value} for {actor}: {message}")
                self.audit.fail(audit_id, message)
                result = BulkOperationResult.create_error(message, kind_value).with_job(
                    None, time.time() - start_time
                )
                await self._notify_completion(kind_value, result, len(work_items), actor, options)
                return result

            context = OperationContext(
                self.services,
                session=self.session_manager if handler.requires_remote else None,
                parameters=options.parameters,
                actor=actor,
            )

            if handler.resolves_targets:
                try:
                    work_items = await handler.resolve_items(work_items, context)
                except ValidationError as e:
                    logger.warning(f"Rejected {kind_value} for {actor}: {e.message}")
                    self.audit.fail(audit_id, e.message)
                    result = BulkOperationResult.create_error(
                        e.message, kind_value, errors=tuple(e.errors)
                    ).with_job(None, time.time() - start_time)
                    await self._notify_completion(kind_value, result, 0, actor, options)
                    return result

                if not work_items:
                    logger.info(f"No targets matched {kind_value} for {actor}, nothing to do")
                    self.audit.complete(audit_id, AuditStatus.COMPLETED, details="No matching targets")
                    result = BulkOperationResult(is_success=True, operation_type=kind_value).with_job(
                        None, time.time() - start_time
                    )
                    await self._notify_completion(kind_value, result, 0, actor, options)
                    return result

                self.audit.update_progress(
                    audit_id, 0, details=f"Resolved {len(work_items)} targets for {kind_value}"
                )

            job_id, cancel_token = await self.registry.register(kind_value, len(work_items), actor)
            logger.info(f"Started {kind_value} job {job_id} for {actor} ({len(work_items)} items)")

            report = await self._execute(
                handler, work_items, options, policy, context, job_id, cancel_token, audit_id, actor
            )
            registry_status = self._close_audit(audit_id, report)
            await self._notify_completion(kind_value, report.result, len(work_items), actor, options)
            return report.result

        except asyncio.CancelledError:
            registry_status = JobStatus.CANCELLED
            self.audit.complete(audit_id, AuditStatus.COMPLETED, details="Cancelled: the calling task was cancelled")
            raise
        except Exception as e:
            logger.exception(f"Unexpected error while running {kind_value} job {job_id}: {e}")
            self.audit.fail(audit_id, f"Unexpected error: {type(e).__name__}: {e}")
            result = BulkOperationResult.create_error(
                f"An unexpected error occurred while running {kind_value}", kind_value, job_id=job_id
            ).with_job(job_id, time.time() - start_time)
            await self._notify_completion(kind_value, result, len(work_items), actor, options)
            return result
        finally:
            if job_id is not None:
                self.registry.complete(job_id, registry_status)

    def get_active_processes(self, include_recent: bool = False) -> List[ProcessStatus]:
        """
        List tracked bulk jobs.

        Args:
            include_recent: Also return jobs that finished within the retention window

        Returns:
            Snapshots of running (and optionally recently finished) jobs
        """
        if include_recent:
            return self.registry.list()
        return self.registry.list_running()

    def cancel_process(self, job_id: str) -> bool:
        """Request cooperative cancellation of a running job."""
        return self.registry.cancel(job_id)

    def get_connection_health(self) -> ConnectionHealth:
        return self.session_manager.get_connection_health()

    async def _ensure_session(self, credential_token: Optional[str], options: RunOptions, actor: str) -> bool:
        if credential_token:
            return await self.session_manager.connect_with_credential(credential_token, options.scopes, actor)
        if self.session_manager.is_connected:
            return True

        async def connected() -> bool:
            return True

        return bool(await self.session_manager.execute_with_auto_connect(connected, default=False))

    async def _execute(
        self,
        handler: OperationHandler,
        items: List[Any],
        options: RunOptions,
        policy: BatchPolicy,
        context: OperationContext,
        job_id: str,
        cancel_token: CancellationToken,
        audit_id: str,
        actor: str,
    ) -> BatchReport:
        kind_value = handler.kind.value

        async def validate(batch_items: List[Any]):
            return await handler.validate(batch_items, context)

        if options.dry_run:

            async def action(item: Any) -> ItemOutcome:
                return ItemOutcome(
                    operation=kind_value,
                    entity_id=handler.describe_item(item) or "",
                    message="validated (dry run)",
                )

            chunk_action = None
            affected = None
        else:

            async def action(item: Any):
                return await handler.execute_item(item, context)

            chunk_action = handler.chunk_action(context)
            affected = handler.invalidation_targets

        return await self.executor.execute(
            items,
            action,
            policy,
            operation_type=kind_value,
            job_id=job_id,
            cancel_token=cancel_token,
            validator=validate,
            chunk_action=chunk_action,
            affected=affected,
            describe_item=handler.describe_item,
            success_policy=options.partial_success or handler.default_policy,
            events=_JobEvents(self.audit, self.notifications, audit_id, actor, kind_value),
        )

    def _batch_policy(self, options: RunOptions) -> BatchPolicy:
        return BatchPolicy(
            batch_size=options.batch_size if options.batch_size is not None else self.settings.batch_size,
            continue_on_error=(
                options.continue_on_error
                if options.continue_on_error is not None
                else self.settings.continue_on_error
            ),
            max_concurrency=(
                options.max_concurrency
                if options.max_concurrency is not None
                else self.settings.max_concurrency_per_batch
            ),
        )

    def _close_audit(self, audit_id: str, report: BatchReport) -> JobStatus:
        """Close the audit entry for a finished batch and return the registry status."""
        result = report.result

        if report.termination == BatchTermination.FINISHED:
            details = f"{result.success_count} succeeded, {result.error_count} failed"
            if result.errors and not result.is_success:
                details += " (partial failure exceeds the operation's tolerance)"
            self.audit.complete(
                audit_id,
                AuditStatus.COMPLETED,
                details=details,
                severity=AuditSeverity.WARNING if result.errors else AuditSeverity.INFO,
            )
            return JobStatus.COMPLETED

        if report.termination == BatchTermination.CANCELLED:
            self.audit.complete(
                audit_id,
                AuditStatus.COMPLETED,
                details=(
                    f"Cancelled after {report.processed_items} of {report.total_items} items: "
                    f"{result.success_count} succeeded, {result.error_count} failed"
                ),
            )
            return JobStatus.CANCELLED

        self.audit.fail(audit_id, result.error_message or "Bulk operation failed")
        return JobStatus.FAILED

    async def _notify_completion(
        self,
        kind: str,
        result: BulkOperationResult,
        total_items: int,
        actor: str,
        options: RunOptions,
    ):
        if result.cancelled:
            outcome = "cancelled"
        elif result.is_success:
            outcome = "completed"
        else:
            outcome = "failed"

        await self.notifications.admins(
            f"Bulk {kind} {outcome}: {result.success_count} succeeded, {result.error_count} failed",
            {"total": total_items, "succeeded": result.success_count, "failed": result.error_count},
            actor,
            {
                "kind": kind,
                "job_id": result.job_id,
                "duration": round(result.duration, 3),
                "dry_run": options.dry_run,
            },
        )

        if result.cancelled:
            await self.notifications.user(actor, f"Bulk {kind} was cancelled", "warning")
        elif not result.is_success:
            await self.notifications.user(
                actor, f"Bulk {kind} failed: {result.error_message or 'see error details'}", "error"
            )
