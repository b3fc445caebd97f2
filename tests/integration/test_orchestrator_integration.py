"""Integration tests for running bulk operations through the orchestrator."""

import asyncio
from datetime import datetime, timezone

import pytest

from src.bulkman.audit.recorder import AuditRecorder, AuditSeverity, AuditStatus
from src.bulkman.bulk.models import JobStatus, PartialSuccessPolicy, RunOptions
from src.bulkman.bulk.orchestrator import BulkOrchestrator
from src.bulkman.bulk.registry import ProcessRegistry
from src.bulkman.cache.invalidation import CacheInvalidationHub
from src.bulkman.cache.memory import InMemoryCacheManager
from src.bulkman.domain.entities import WorkgroupStatus
from src.bulkman.session.circuit_breaker import CircuitState
from src.bulkman.session.credentials import CachedCredentialProvider
from src.bulkman.session.manager import ResilientSessionManager
from src.bulkman.session.retry import RetryPolicy
from src.bulkman.utils.config import OrchestrationSettings
from src.bulkman.utils.notification_system import NotificationGateway
from tests.fixtures.domain import FakeTransport, ManualClock, RecordingNotificationSink, build_services

TOKEN = "token-abc"


class TestBulkOrchestratorIntegration:
    """End-to-end runs with in-memory services and a fake transport."""

    def setup_method(self):
        """Wire an orchestrator with real collaborators."""
        self.services = build_services()
        self.transport = FakeTransport()
        self.audit = AuditRecorder()
        self.session = ResilientSessionManager(
            self.transport,
            CachedCredentialProvider(),
            retry_policy=RetryPolicy(max_attempts=3, initial_delay=0, max_delay=0),
            audit_recorder=self.audit,
        )
        self.clock = ManualClock()
        self.registry = ProcessRegistry(max_concurrent_processes=3, retention_seconds=30.0, clock=self.clock)
        self.cache = InMemoryCacheManager()
        self.sink = RecordingNotificationSink()
        self.orchestrator = BulkOrchestrator(
            self.session,
            self.registry,
            self.audit,
            self.services,
            invalidation_hub=CacheInvalidationHub([self.cache]),
            notifications=NotificationGateway(self.sink),
        )

    def audit_entry(self, kind):
        entries = self.audit.list_entries(type=kind)
        assert len(entries) == 1
        return entries[0]

    def test_requires_collaborators(self):
        """Test that missing collaborators are rejected."""
        with pytest.raises(ValueError, match="services is required"):
            BulkOrchestrator(self.session, self.registry, self.audit, None)

    @pytest.mark.asyncio
    async def test_successful_deactivation(self):
        """Test a fully successful run."""
        result = await self.orchestrator.run_bulk(
            "deactivate_users", ["u1", "u2", "u4"], RunOptions(actor="alice"), credential_token=TOKEN
        )

        assert result.is_success
        assert result.success_count == 3
        assert result.job_id is not None
        assert self.services.users.deactivated == ["u1", "u2", "u4"]
        assert self.transport.open_calls == 1
        assert self.transport.credentials == [TOKEN]

        entry = self.audit_entry("deactivate_users")
        assert entry.status == AuditStatus.COMPLETED
        assert entry.severity == AuditSeverity.INFO
        assert entry.processed_items == 3
        assert entry.actor == "alice"

        assert self.orchestrator.get_active_processes() == []
        recent = self.orchestrator.get_active_processes(include_recent=True)
        assert [(status.job_id, status.status) for status in recent] == [(result.job_id, JobStatus.COMPLETED)]

        assert self.sink.progress_events == [
            (result.job_id, "alice", 100.0, "deactivate_users: 3/3 items processed")
        ]
        assert self.sink.admin_summaries[0][0] == "Bulk deactivate_users completed: 3 succeeded, 0 failed"
        assert self.sink.user_messages == []

    @pytest.mark.asyncio
    async def test_invalid_item_rejects_whole_batch(self):
        """Test that one invalid item stops the batch before anything is dispatched."""
        items = [
            {"workgroup_id": "wg2", "user_id": "u1"},
            {"workgroup_id": "wg2", "user_id": "u404"},
            {"workgroup_id": "wg3", "user_id": "u2"},
        ]

        result = await self.orchestrator.run_bulk("add_members", items, credential_token=TOKEN)

        assert not result.is_success
        assert result.success_count == 0
        assert [error.entity_id for error in result.errors] == ["wg2/u404"]
        assert result.error_message == "Pre-flight validation failed for 1 item(s)"
        assert self.services.workgroups.workgroups["wg2"].member_ids == []

        entry = self.audit_entry("add_members")
        assert entry.status == AuditStatus.FAILED
        assert entry.error_message == "Pre-flight validation failed for 1 item(s)"
        recent = self.orchestrator.get_active_processes(include_recent=True)
        assert recent[0].status == JobStatus.FAILED
        assert self.sink.user_messages[0][2] == "error"

    @pytest.mark.asyncio
    async def test_item_failure_is_isolated(self):
        """Test that a throwing item does not stop its siblings."""
        self.services.workgroups.failures["wg2"] = RuntimeError("backend timeout")
        items = [
            {"workgroup_id": "wg1", "user_id": "u2"},
            {"workgroup_id": "wg2", "user_id": "u1"},
            {"workgroup_id": "wg3", "user_id": "u1"},
        ]
        options = RunOptions(continue_on_error=True, partial_success=PartialSuccessPolicy.majority())

        result = await self.orchestrator.run_bulk("add_members", items, options, credential_token=TOKEN)

        assert result.is_success
        assert [outcome.entity_id for outcome in result.successful_operations] == ["wg1/u2", "wg3/u1"]
        assert len(result.errors) == 1
        assert result.errors[0].entity_id == "wg2/u1"
        assert result.errors[0].error_type == "RuntimeError"
        assert result.errors[0].message == "backend timeout"

        entry = self.audit_entry("add_members")
        assert entry.status == AuditStatus.COMPLETED
        assert entry.severity == AuditSeverity.WARNING
        assert entry.details == "2 succeeded, 1 failed"

    @pytest.mark.asyncio
    async def test_strict_policy_reports_failure_but_finishes(self):
        """Test that errors beyond tolerance fail the result while the audit completes."""
        self.services.workgroups.failures["wg2"] = RuntimeError("backend timeout")
        items = [{"workgroup_id": "wg1", "user_id": "u2"}, {"workgroup_id": "wg2", "user_id": "u1"}]

        result = await self.orchestrator.run_bulk("add_members", items, credential_token=TOKEN)

        assert not result.is_success
        assert result.error_message == "1 of 2 items failed"
        entry = self.audit_entry("add_members")
        assert entry.status == AuditStatus.COMPLETED
        assert entry.details.endswith("(partial failure exceeds the operation's tolerance)")

    @pytest.mark.asyncio
    async def test_cancel_mid_run(self):
        """Test cooperative cancellation between chunks."""
        original = self.services.users.deactivate_user
        cancelled = []

        async def deactivate_and_cancel(user_id):
            if user_id == "u2":
                job_id = self.registry.list_running()[0].job_id
                cancelled.append(self.orchestrator.cancel_process(job_id))
            return await original(user_id)

        self.services.users.deactivate_user = deactivate_and_cancel
        options = RunOptions(batch_size=2, max_concurrency=1, actor="alice")

        result = await self.orchestrator.run_bulk(
            "deactivate_users", ["u1", "u2", "u3", "u4"], options, credential_token=TOKEN
        )

        assert cancelled == [True]
        assert result.cancelled
        assert not result.is_success
        assert result.total_processed == 2
        assert result.error_message == "Operation cancelled after 2 of 4 items"
        assert self.services.users.users["u3"].is_active

        entry = self.audit_entry("deactivate_users")
        assert entry.status == AuditStatus.COMPLETED
        assert entry.details.startswith("Cancelled after 2 of 4 items")

        assert self.orchestrator.get_active_processes() == []
        recent = self.orchestrator.get_active_processes(include_recent=True)
        assert recent[0].status == JobStatus.CANCELLED
        assert self.sink.user_messages == [("alice", "Bulk deactivate_users was cancelled", "warning")]

    @pytest.mark.asyncio
    async def test_stop_on_first_failure(self):
        """Test continue_on_error=False aborts the remaining items."""
        self.services.users.failures["u1"] = RuntimeError("locked")
        options = RunOptions(batch_size=1, continue_on_error=False)

        result = await self.orchestrator.run_bulk(
            "deactivate_users", ["u1", "u2"], options, credential_token=TOKEN
        )

        assert not result.is_success
        assert result.error_message == "Processing stopped after the first item failure"
        assert [error.error_type for error in result.errors] == ["RuntimeError", "BatchAborted"]
        assert self.services.users.deactivated == []
        assert self.audit_entry("deactivate_users").status == AuditStatus.FAILED

    @pytest.mark.asyncio
    async def test_empty_request(self):
        """Test that an empty request is rejected without side effects."""
        result = await self.orchestrator.run_bulk("archive_workgroups", [], credential_token=TOKEN)

        assert not result.is_success
        assert result.error_message == "No items to process"
        assert self.audit.list_entries(type="archive_workgroups") == []
        assert self.orchestrator.get_active_processes(include_recent=True) == []
        assert self.transport.open_calls == 0

    @pytest.mark.asyncio
    async def test_unknown_kind(self):
        """Test that an unknown kind is reported in the result."""
        result = await self.orchestrator.run_bulk("teleport_users", ["u1"], credential_token=TOKEN)

        assert not result.is_success
        assert result.error_message == "Unknown bulk operation kind: teleport_users"
        assert self.registry.list() == []

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        """Test that a run without a usable credential fails as a whole."""
        result = await self.orchestrator.run_bulk("archive_workgroups", ["wg1"], credential_token="")

        assert not result.is_success
        assert result.error_message.startswith("Could not connect to the remote API")
        assert result.job_id is None
        assert self.transport.open_calls == 0
        assert self.registry.list() == []
        assert self.audit_entry("archive_workgroups").status == AuditStatus.FAILED
        assert self.services.workgroups.archived == []

    @pytest.mark.asyncio
    async def test_reuses_existing_session(self):
        """Test that later runs reuse the connected session."""
        await self.orchestrator.run_bulk("archive_workgroups", ["wg1"], credential_token=TOKEN)

        result = await self.orchestrator.run_bulk("restore_workgroups", ["wg1"])

        assert result.is_success
        assert self.transport.open_calls == 1
        assert self.orchestrator.get_connection_health().is_connected

    @pytest.mark.asyncio
    async def test_dry_run_validates_only(self):
        """Test that a dry run makes no changes."""
        self.cache.set("workgroup:describe:wg1", {"id": "wg1"})

        result = await self.orchestrator.run_bulk(
            "archive_workgroups", ["wg1", "wg2"], RunOptions(dry_run=True), credential_token=TOKEN
        )

        assert result.is_success
        assert [outcome.message for outcome in result.successful_operations] == ["validated (dry run)"] * 2
        assert self.services.workgroups.archived == []
        assert self.cache.exists("workgroup:describe:wg1")
        assert self.audit_entry("archive_workgroups").metadata["dry_run"] is True

    @pytest.mark.asyncio
    async def test_successful_items_invalidate_caches(self):
        """Test that caches for mutated workgroups are invalidated."""
        self.cache.set("workgroup:describe:wg1", {"id": "wg1"})
        self.cache.set("workgroup:describe:wg3", {"id": "wg3"})

        result = await self.orchestrator.run_bulk(
            "archive_workgroups", ["wg1"], RunOptions(parameters={"reason": "End of term"}), credential_token=TOKEN
        )

        assert result.is_success
        assert self.services.workgroups.workgroups["wg1"].status == WorkgroupStatus.ARCHIVED
        assert not self.cache.exists("workgroup:describe:wg1")
        assert self.cache.exists("workgroup:describe:wg3")

    @pytest.mark.asyncio
    async def test_role_change_pushes_remote_command(self):
        """Test that role changes reach the remote transport."""
        result = await self.orchestrator.run_bulk(
            "change_roles", [{"user_id": "u1", "new_role": "staff"}], credential_token=TOKEN
        )

        assert result.is_success
        assert self.transport.invoke_calls[0]["command"] == "set_user_role"
        assert self.transport.invoke_calls[0]["params"] == {"user_id": "u1", "role": "staff"}

    @pytest.mark.asyncio
    async def test_concurrent_runs_share_ceiling(self):
        """Test that concurrent runs wait for a free registry slot."""
        self.registry = ProcessRegistry(max_concurrent_processes=1, clock=self.clock)
        self.orchestrator = BulkOrchestrator(self.session, self.registry, self.audit, self.services)
        await self.session.connect_with_credential(TOKEN)

        first, second = await asyncio.gather(
            self.orchestrator.run_bulk("archive_workgroups", ["wg1"]),
            self.orchestrator.run_bulk("archive_workgroups", ["wg2"]),
        )

        assert first.is_success and second.is_success
        assert first.job_id != second.job_id
        assert self.registry.held_slots == 0

    @pytest.mark.asyncio
    async def test_failing_notifications_do_not_change_outcome(self):
        """Test that notification failures are ignored."""
        self.orchestrator.notifications = NotificationGateway(RecordingNotificationSink(fail=True))

        result = await self.orchestrator.run_bulk("deactivate_users", ["u1"], credential_token=TOKEN)

        assert result.is_success

    @pytest.mark.asyncio
    async def test_invalid_run_options_rejected_before_audit(self):
        """Test that a zero batch size is reported as a validation failure with no side effects."""
        result = await self.orchestrator.run_bulk(
            "deactivate_users", ["u1"], RunOptions(batch_size=0), credential_token=TOKEN
        )

        assert not result.is_success
        assert result.error_message == "Invalid run options: batch_size must be at least 1"
        assert [error.error_type for error in result.errors] == ["ValidationError"]
        assert self.audit.list_entries() == []
        assert self.registry.list() == []
        assert self.transport.open_calls == 0
        assert self.services.users.deactivated == []

    @pytest.mark.asyncio
    async def test_item_faults_leave_circuit_closed(self):
        """Test that repeated item-level errors do not block the remaining items."""
        plans = [
            {"upn": f"n{index}@school.example", "first_name": "New", "last_name": f"Student {index}"}
            for index in range(8)
        ]
        for plan in plans[:5]:
            self.services.users.failures[plan["upn"]] = ValueError("mailbox quota exceeded")
        options = RunOptions(batch_size=1, max_concurrency=1, continue_on_error=True)

        result = await self.orchestrator.run_bulk("onboard_users", plans, options, credential_token=TOKEN)

        assert result.success_count == 3
        assert self.services.users.created == ["n5@school.example", "n6@school.example", "n7@school.example"]
        assert [error.message for error in result.errors] == ["mailbox quota exceeded"] * 5
        assert self.session.circuit_breaker.state == CircuitState.CLOSED
        assert self.orchestrator.get_connection_health().circuit_state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_consolidate_inactive_workgroups(self):
        """Test that idle workgroups are selected and archived without caller items."""
        workgroups = self.services.workgroups.workgroups
        workgroups["wg1"].created_at = datetime(2024, 9, 1, tzinfo=timezone.utc)
        workgroups["wg2"].created_at = datetime(2025, 5, 20, tzinfo=timezone.utc)
        workgroups["wg3"].modified_at = datetime(2024, 12, 1, tzinfo=timezone.utc)
        options = RunOptions(actor="alice", parameters={"as_of": datetime(2025, 6, 1, tzinfo=timezone.utc)})

        result = await self.orchestrator.run_bulk(
            "consolidate_inactive_workgroups", None, options, credential_token=TOKEN
        )

        assert result.is_success
        assert result.job_id is not None
        assert self.services.workgroups.archived == ["wg1", "wg3"]
        assert [outcome.message for outcome in result.successful_operations] == [
            "Workgroup archived (Consolidated: workgroup inactive)"
        ] * 2
        assert workgroups["wg2"].is_active

        entry = self.audit_entry("consolidate_inactive_workgroups")
        assert entry.status == AuditStatus.COMPLETED
        assert entry.processed_items == 2

    @pytest.mark.asyncio
    async def test_archive_period_workgroups(self):
        """Test archiving every active workgroup of a period."""
        options = RunOptions(parameters={"period_id": "p2024", "allow_current": True})

        result = await self.orchestrator.run_bulk("archive_period_workgroups", [], options, credential_token=TOKEN)

        assert result.is_success
        assert result.success_count == 3
        assert self.services.workgroups.archived == ["wg1", "wg2", "wg3"]
        assert result.successful_operations[0].message == "Workgroup archived (Period p2024 closed)"
        assert self.audit_entry("archive_period_workgroups").status == AuditStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_period_without_targets_succeeds_without_job(self):
        """Test that a selection matching nothing finishes successfully and registers no job."""
        options = RunOptions(parameters={"period_id": "p2025"})

        result = await self.orchestrator.run_bulk("archive_period_workgroups", [], options, credential_token=TOKEN)

        assert result.is_success
        assert result.total_processed == 0
        assert result.job_id is None
        assert self.registry.list() == []
        entry = self.audit_entry("archive_period_workgroups")
        assert entry.status == AuditStatus.COMPLETED
        assert entry.details == "No matching targets"

    @pytest.mark.asyncio
    async def test_rejected_target_selection(self):
        """Test that an invalid selection fails the run before a job is registered."""
        result = await self.orchestrator.run_bulk(
            "archive_period_workgroups", [], RunOptions(parameters={"period_id": "p2024"}), credential_token=TOKEN
        )

        assert not result.is_success
        assert result.error_message == "Period p2024 is the current period"
        assert [error.error_type for error in result.errors] == ["ValidationError"]
        assert self.registry.list() == []
        assert self.services.workgroups.archived == []
        entry = self.audit_entry("archive_period_workgroups")
        assert entry.status == AuditStatus.FAILED
        assert entry.error_message == "Period p2024 is the current period"

    @pytest.mark.asyncio
    async def test_create_period_workgroups(self):
        """Test creating next period workgroups from templates."""
        options = RunOptions(parameters={"period_id": "p2025", "owner_id": "u3"})

        result = await self.orchestrator.run_bulk(
            "create_period_workgroups", ["t-math", "t-art"], options, credential_token=TOKEN
        )

        assert result.is_success
        assert self.services.workgroups.created == ["Mathematics - 2025-2026", "[Club] Art - 2025-2026"]
        assert [outcome.entity_name for outcome in result.successful_operations] == self.services.workgroups.created
        assert self.audit_entry("create_period_workgroups").status == AuditStatus.COMPLETED
        assert result.is_success


class TestOrchestratorFromSettings:
    """Test cases for building an orchestrator from settings."""

    def test_from_settings(self):
        """Test that settings flow into every collaborator."""
        settings = OrchestrationSettings(max_concurrent_processes=2, batch_size=4, default_scopes=["directory"])

        orchestrator = BulkOrchestrator.from_settings(
            settings, FakeTransport(), CachedCredentialProvider(), build_services(), caches=[InMemoryCacheManager()]
        )

        assert orchestrator.settings is settings
        assert orchestrator.registry.available_slots == 2
        assert orchestrator.session_manager.default_scopes == ["directory"]
        assert orchestrator.session_manager.audit_recorder is orchestrator.audit
        assert len(orchestrator.invalidation_hub.caches) == 1
