"""Tests for notification sinks and the notification gateway."""

import logging
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from src.bulkman.utils.notification_system import (
    CompositeNotificationSink,
    LogNotificationSink,
    NotificationError,
    NotificationGateway,
    WebhookNotificationConfig,
    WebhookNotificationError,
    WebhookNotificationSink,
)
from tests.fixtures.domain import RecordingNotificationSink


class TestNotificationGateway:
    """Test cases for NotificationGateway."""

    @pytest.mark.asyncio
    async def test_without_sink(self):
        """Test that a gateway without a sink delivers nothing."""
        assert not await NotificationGateway().user("u1", "hello")

    @pytest.mark.asyncio
    async def test_delivers_events(self):
        """Test delivery of each event type."""
        sink = RecordingNotificationSink()
        gateway = NotificationGateway(sink)

        assert await gateway.progress("job-1", "alice", 50.0, "Processed 2 of 4 items")
        assert await gateway.user("alice", "Done", "warning")
        assert await gateway.admins("Bulk deactivate_users completed", {"succeeded": 4}, "alice")

        assert sink.progress_events == [("job-1", "alice", 50.0, "Processed 2 of 4 items")]
        assert sink.user_messages == [("alice", "Done", "warning")]
        assert sink.admin_summaries == [("Bulk deactivate_users completed", {"succeeded": 4}, "alice", None)]

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self, caplog):
        """Test that a failing sink never raises."""
        gateway = NotificationGateway(RecordingNotificationSink(fail=True))

        with caplog.at_level(logging.WARNING):
            delivered = await gateway.user("alice", "Done")

        assert not delivered
        assert "Notification notify_user failed" in caplog.text


class TestCompositeNotificationSink:
    """Test cases for CompositeNotificationSink."""

    @pytest.mark.asyncio
    async def test_fans_out(self):
        """Test that every sink receives the event."""
        first = RecordingNotificationSink()
        second = RecordingNotificationSink()

        await CompositeNotificationSink([first, second]).notify_user("alice", "hello")

        assert first.user_messages == second.user_messages == [("alice", "hello", "info")]

    @pytest.mark.asyncio
    async def test_reports_failed_sinks(self):
        """Test that failures are raised after the other sinks were served."""
        healthy = RecordingNotificationSink()
        composite = CompositeNotificationSink([RecordingNotificationSink(fail=True), healthy])

        with pytest.raises(NotificationError, match="1 of 2 sinks failed"):
            await composite.notify_admins("summary", {"failed": 1}, "alice")

        assert healthy.admin_summaries == [("summary", {"failed": 1}, "alice", None)]


class TestLogNotificationSink:
    """Test cases for LogNotificationSink."""

    @pytest.mark.asyncio
    async def test_logs_by_severity(self, caplog):
        """Test that user notifications use the severity as log level."""
        sink = LogNotificationSink()

        with caplog.at_level(logging.DEBUG, logger="bulkman.notifications"):
            await sink.notify_user("alice", "Job failed", "error")
            await sink.notify_progress("job-1", "alice", 25.0, "chunk 1/4")
            await sink.notify_admins("Bulk run", {"succeeded": 3, "failed": 1}, "alice")

        records = [r for r in caplog.records if r.name == "bulkman.notifications"]
        assert records[0].levelno == logging.ERROR
        assert records[0].getMessage() == "[user:alice] Job failed"
        assert records[1].getMessage() == "[job:job-1] 25% chunk 1/4"
        assert records[2].getMessage() == "[admins] Bulk run (succeeded=3, failed=1) by alice"


class TestWebhookNotificationSink:
    """Test cases for WebhookNotificationSink."""

    def setup_method(self):
        """Set up a webhook sink."""
        self.config = WebhookNotificationConfig(url="https://hooks.example.com/bulk", retry_delay_seconds=0)
        self.sink = WebhookNotificationSink(self.config)

    @pytest.mark.asyncio
    async def test_admin_summary_payload(self):
        """Test the admin summary payload."""
        with patch.object(self.sink, "_send_webhook_with_retry", new=AsyncMock()) as send:
            await self.sink.notify_admins("Bulk run", {"succeeded": 2}, "alice", {"job_id": "job-1"})

        payload = send.call_args[0][0]
        assert payload["event"] == "bulk_operation_summary"
        assert payload["counts"] == {"succeeded": 2}
        assert payload["details"] == {"job_id": "job-1"}
        assert "timestamp" in payload

    @pytest.mark.asyncio
    async def test_progress_skipped_by_default(self):
        """Test that progress events are not posted unless enabled."""
        with patch.object(self.sink, "_send_webhook_with_retry", new=AsyncMock()) as send:
            await self.sink.notify_progress("job-1", "alice", 10.0, "chunk 1/10")

        send.assert_not_called()

    @pytest.mark.asyncio
    async def test_progress_sent_when_enabled(self):
        """Test progress posting when enabled."""
        self.config.send_progress = True

        with patch.object(self.sink, "_send_webhook_with_retry", new=AsyncMock()) as send:
            await self.sink.notify_progress("job-1", "alice", 33.333, "chunk 1/3")

        assert send.call_args[0][0]["percent"] == 33.3

    @pytest.mark.asyncio
    async def test_send_failure_raises(self):
        """Test that delivery failures are wrapped."""
        failing = AsyncMock(side_effect=aiohttp.ClientError("connection refused"))

        with patch.object(self.sink, "_send_webhook_with_retry", new=failing):
            with pytest.raises(WebhookNotificationError):
                await self.sink.notify_user("alice", "hello")

    @pytest.mark.asyncio
    async def test_retries_before_giving_up(self):
        """Test that every attempt is made before the error is raised."""
        self.config.retry_attempts = 2

        with patch(
            "src.bulkman.utils.notification_system.aiohttp.ClientSession",
            side_effect=aiohttp.ClientError("connection refused"),
        ) as session_cls:
            with patch("src.bulkman.utils.notification_system.asyncio.sleep", new=AsyncMock()) as sleep:
                with pytest.raises(aiohttp.ClientError):
                    await self.sink._send_webhook_with_retry({"event": "test"})

        assert session_cls.call_count == 2
        sleep.assert_awaited_once_with(0)
