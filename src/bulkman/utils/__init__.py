"""Core utility modules for bulkman."""

# Configuration utilities
from .config import CONFIG_DIR, CONFIG_FILE_YAML, DEFAULT_ORCHESTRATION_CONFIG, Config, OrchestrationSettings

# Logging utilities
from .logging_config import LoggingConfig, SensitiveDataFilter, StructuredFormatter, setup_logging

# Notification delivery
from .notification_system import (
    CompositeNotificationSink,
    LogNotificationSink,
    NotificationGateway,
    WebhookNotificationConfig,
    WebhookNotificationSink,
)

__all__ = [
    "CONFIG_DIR",
    "CONFIG_FILE_YAML",
    "DEFAULT_ORCHESTRATION_CONFIG",
    "Config",
    "OrchestrationSettings",
    "LoggingConfig",
    "SensitiveDataFilter",
    "StructuredFormatter",
    "setup_logging",
    "CompositeNotificationSink",
    "LogNotificationSink",
    "NotificationGateway",
    "WebhookNotificationConfig",
    "WebhookNotificationSink",
]
