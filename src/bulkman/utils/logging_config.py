"""Logging configuration for bulkman."""

import json
import logging
import logging.handlers
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "bulkman"


class LogLevel(str, Enum):
    """Log levels for configuration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# (pattern, replacement) pairs; replacements keep the label and drop the secret
DEFAULT_REDACTIONS = [
    (r"(?i)(bearer\s+)[A-Za-z0-9\-._~+/]+=*", r"\1[REDACTED]"),
    (r"(?i)\b(token|access_token|secret|password|credential)(\s*[=:]\s*)[^\s,;'\"]+", r"\1\2[REDACTED]"),
    (r"\b(AKIA|ASIA)[A-Z0-9]{16}\b", "[REDACTED]"),
    (r"(?i)(aws_secret_access_key\s*[=:]\s*)[A-Za-z0-9/+=]{40}", r"\1[REDACTED]"),
]


@dataclass
class LoggingConfig:
    """Configuration for the logging system."""

    level: LogLevel = LogLevel.INFO
    structured: bool = False
    enable_console_logging: bool = True
    log_file: Optional[str] = None
    max_file_size_mb: int = 10
    backup_count: int = 5
    log_aws_requests: bool = False
    redactions: List[tuple] = field(default_factory=lambda: list(DEFAULT_REDACTIONS))


class SensitiveDataFilter(logging.Filter):
    """Filter to redact credentials and tokens from log messages."""

    def __init__(self, redactions: Optional[List[tuple]] = None) -> None:
        """
        Initialize the filter.

        Args:
            redactions: List of (regex pattern, replacement) pairs
        """
        super().__init__()
        self.compiled_patterns = [
            (re.compile(pattern), replacement) for pattern, replacement in (redactions or DEFAULT_REDACTIONS)
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Redact sensitive data from a log record.

        Returns:
            bool: Always True (records are modified, never dropped)
        """
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    key: self.redact(value) if isinstance(value, str) else value
                    for key, value in record.args.items()
                }
            else:
                record.args = tuple(
                    self.redact(arg) if isinstance(arg, str) else arg for arg in record.args
                )

        return True

    def redact(self, text: str) -> str:
        """Redact sensitive data from text."""
        for pattern, replacement in self.compiled_patterns:
            text = pattern.sub(replacement, text)
        return text


class StructuredFormatter(logging.Formatter):
    """Formatter for structured logging with JSON output."""

    STANDARD_ATTRS = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
    }

    def __init__(self, include_extra: bool = True) -> None:
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as structured JSON.

        Args:
            record: Log record to format

        Returns:
            str: JSON formatted log message
        """
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            extra_data = {}
            for key, value in record.__dict__.items():
                if key in self.STANDARD_ATTRS or key.startswith("_"):
                    continue
                try:
                    json.dumps(value)
                    extra_data[key] = value
                except (TypeError, ValueError):
                    extra_data[key] = str(value)
            if extra_data:
                log_data["extra"] = extra_data

        return json.dumps(log_data, default=str)


class LoggingManager:
    """
    Centralized logging setup for bulkman.

    Installs a rich console handler (or a JSON handler when structured output
    is requested) and an optional rotating file handler on the ``bulkman``
    logger. Every handler redacts sensitive data.
    """

    def __init__(self, config: Optional[LoggingConfig] = None, console: Optional[Console] = None):
        self.config = config or LoggingConfig()
        self.console = console
        self._handlers: List[logging.Handler] = []

    def setup_logging(self) -> logging.Logger:
        """Set up logging for all bulkman components."""
        root_logger = logging.getLogger(ROOT_LOGGER)
        root_logger.setLevel(getattr(logging, self.config.level.value))

        # Replace handlers installed by an earlier call
        for handler in self._handlers:
            root_logger.removeHandler(handler)
        self._handlers = []

        if self.config.enable_console_logging:
            self._handlers.append(self._create_console_handler())
        if self.config.log_file:
            self._handlers.append(self._create_file_handler())

        for handler in self._handlers:
            root_logger.addHandler(handler)

        self._configure_aws_logging()
        return root_logger

    def _create_console_handler(self) -> logging.Handler:
        handler: logging.Handler
        if self.config.structured:
            handler = logging.StreamHandler()
            handler.setFormatter(StructuredFormatter())
        else:
            handler = RichHandler(
                console=self.console,
                show_path=False,
                rich_tracebacks=True,
                markup=False,
            )
            handler.setFormatter(logging.Formatter("%(name)s - %(message)s"))

        handler.setLevel(getattr(logging, self.config.level.value))
        handler.addFilter(SensitiveDataFilter(self.config.redactions))
        return handler

    def _create_file_handler(self) -> logging.Handler:
        """Create rotating file handler."""
        log_file = Path(self.config.log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.handlers.RotatingFileHandler(
            filename=str(log_file),
            maxBytes=self.config.max_file_size_mb * 1024 * 1024,
            backupCount=self.config.backup_count,
            encoding="utf-8",
        )
        handler.setLevel(getattr(logging, self.config.level.value))
        handler.setFormatter(StructuredFormatter())
        handler.addFilter(SensitiveDataFilter(self.config.redactions))
        return handler

    def _configure_aws_logging(self) -> None:
        """Configure AWS SDK logging."""
        for logger_name in ["boto3", "botocore", "urllib3.connectionpool"]:
            logger = logging.getLogger(logger_name)
            logger.setLevel(logging.DEBUG if self.config.log_aws_requests else logging.WARNING)


_logging_managers: Dict[str, LoggingManager] = {}


def setup_logging(
    level: Union[str, LogLevel] = LogLevel.INFO,
    log_file: Optional[str] = None,
    structured: bool = False,
    console: Optional[Console] = None,
) -> logging.Logger:
    """
    Configure logging for bulkman.

    Args:
        level: Log level name
        log_file: Optional path of a rotating JSON log file
        structured: Emit JSON lines on the console instead of rich output
        console: Rich console for console output

    Returns:
        The configured ``bulkman`` logger
    """
    config = LoggingConfig(
        level=LogLevel(level.upper() if isinstance(level, str) else level.value),
        structured=structured,
        log_file=log_file,
    )
    manager = _logging_managers.get(ROOT_LOGGER)
    if manager is None:
        manager = LoggingManager(config, console)
        _logging_managers[ROOT_LOGGER] = manager
    else:
        manager.config = config
        manager.console = console
    return manager.setup_logging()
