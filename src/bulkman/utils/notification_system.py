"""Notification delivery for bulk job progress and completion."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from ..domain.interfaces import NotificationSink

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Base exception for notification errors."""

    pass


class WebhookNotificationError(NotificationError):
    """Exception for webhook notification errors."""

    pass


class LogNotificationSink(NotificationSink):
    """Writes notifications to the ``bulkman.notifications`` logger."""

    SEVERITY_LEVELS = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }

    def __init__(self, logger_name: str = "bulkman.notifications"):
        self.logger = logging.getLogger(logger_name)

    async def notify_user(self, user_id: str, message: str, severity: str = "info") -> None:
        level = self.SEVERITY_LEVELS.get(severity.lower(), logging.INFO)
        self.logger.log(level, f"[user:{user_id}] {message}")

    async def notify_progress(self, job_id: str, user_id: str, percent: float, message: str) -> None:
        self.logger.info(f"[job:{job_id}] {percent:.0f}% {message}")

    async def notify_admins(
        self,
        summary: str,
        counts: Dict[str, int],
        actor: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        counts_text = ", ".join(f"{key}={value}" for key, value in counts.items())
        self.logger.info(f"[admins] {summary} ({counts_text}) by {actor}")


@dataclass
class WebhookNotificationConfig:
    """Webhook endpoint settings."""

    url: str
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 10.0
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    send_progress: bool = False


class WebhookNotificationSink(NotificationSink):
    """Posts notifications to a webhook as JSON."""

    def __init__(self, config: WebhookNotificationConfig):
        """
        Initialize the webhook sink.

        Args:
            config: Webhook endpoint settings
        """
        self.config = config

    async def notify_user(self, user_id: str, message: str, severity: str = "info") -> None:
        await self._send(
            {"event": "user_notification", "user_id": user_id, "message": message, "severity": severity}
        )

    async def notify_progress(self, job_id: str, user_id: str, percent: float, message: str) -> None:
        # Progress events are frequent; only forwarded when asked for
        if not self.config.send_progress:
            return
        await self._send(
            {
                "event": "job_progress",
                "job_id": job_id,
                "user_id": user_id,
                "percent": round(percent, 1),
                "message": message,
            }
        )

    async def notify_admins(
        self,
        summary: str,
        counts: Dict[str, int],
        actor: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._send(
            {
                "event": "bulk_operation_summary",
                "summary": summary,
                "counts": counts,
                "actor": actor,
                "details": extra or {},
            }
        )

    async def _send(self, payload: Dict[str, Any]):
        payload["timestamp"] = datetime.now(timezone.utc).isoformat()
        try:
            await self._send_webhook_with_retry(payload)
        except Exception as e:
            logger.error(f"Failed to send webhook notification: {e}")
            raise WebhookNotificationError(f"Webhook notification failed: {e}") from e
        logger.debug(f"Webhook notification sent to {self.config.url}")

    async def _send_webhook_with_retry(self, payload: Dict[str, Any]):
        """Send webhook with retry logic."""
        last_exception = None

        for attempt in range(self.config.retry_attempts):
            try:
                timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)

                async with aiohttp.ClientSession(timeout=timeout) as session:
                    async with session.request(
                        method=self.config.method,
                        url=self.config.url,
                        json=payload,
                        headers=self.config.headers,
                    ) as response:
                        if response.status < 400:
                            return
                        raise aiohttp.ClientResponseError(
                            request_info=response.request_info,
                            history=response.history,
                            status=response.status,
                            message=f"HTTP {response.status}: {await response.text()}",
                        )

            except Exception as e:
                last_exception = e
                if attempt < self.config.retry_attempts - 1:
                    logger.warning(f"Webhook attempt {attempt + 1} failed, retrying: {e}")
                    await asyncio.sleep(self.config.retry_delay_seconds)
                else:
                    logger.error(f"All webhook attempts failed: {e}")

        if last_exception:
            raise last_exception


class CompositeNotificationSink(NotificationSink):
    """Fans notifications out to several sinks."""

    def __init__(self, sinks: Sequence[NotificationSink]):
        self.sinks: List[NotificationSink] = list(sinks)

    async def notify_user(self, user_id: str, message: str, severity: str = "info") -> None:
        await self._fan_out("notify_user", user_id, message, severity)

    async def notify_progress(self, job_id: str, user_id: str, percent: float, message: str) -> None:
        await self._fan_out("notify_progress", job_id, user_id, percent, message)

    async def notify_admins(
        self,
        summary: str,
        counts: Dict[str, int],
        actor: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._fan_out("notify_admins", summary, counts, actor, extra)

    async def _fan_out(self, method: str, *args):
        results = await asyncio.gather(
            *(getattr(sink, method)(*args) for sink in self.sinks), return_exceptions=True
        )
        failures = [result for result in results if isinstance(result, Exception)]
        if failures:
            raise NotificationError(f"{len(failures)} of {len(self.sinks)} sinks failed: {failures[0]}")


class NotificationGateway:
    """
    Delivers orchestrator events to a notification sink.

    Delivery problems are logged and swallowed: a notification failure never
    changes the outcome of a bulk job.
    """

    def __init__(self, sink: Optional[NotificationSink] = None):
        self.sink = sink

    async def progress(self, job_id: str, user_id: str, percent: float, message: str) -> bool:
        return await self._deliver("notify_progress", job_id, user_id, percent, message)

    async def user(self, user_id: str, message: str, severity: str = "info") -> bool:
        return await self._deliver("notify_user", user_id, message, severity)

    async def admins(
        self,
        summary: str,
        counts: Dict[str, int],
        actor: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return await self._deliver("notify_admins", summary, counts, actor, extra)

    async def _deliver(self, method: str, *args) -> bool:
        if self.sink is None:
            return False
        try:
            await getattr(self.sink, method)(*args)
            return True
        except Exception as e:
            logger.warning(f"Notification {method} failed: {e}")
            return False
