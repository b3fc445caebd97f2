"""
Audit recording for bulk jobs and remote connections.

Each bulk job gets one audit entry. The entry is opened InProgress, updated in
place while the job runs, and frozen at its first terminal transition.
"""

import copy
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("bulkman.audit")


class AuditStatus(str, Enum):
    """Lifecycle status of an audit entry."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self != AuditStatus.IN_PROGRESS


class AuditSeverity(str, Enum):
    """Severity levels for audit entries."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class AuditEntry:
    """Represents the audit record of one bulk job or connection."""

    id: str
    type: str
    target_entity_type: str
    actor: str
    started_at: datetime
    status: AuditStatus = AuditStatus.IN_PROGRESS
    target_entity_id: Optional[str] = None
    target_entity_name: Optional[str] = None
    details: str = ""
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    severity: AuditSeverity = AuditSeverity.INFO
    processed_items: int = 0
    failed_items: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert audit entry to dictionary for serialization."""
        return {
            "id": self.id,
            "type": self.type,
            "target_entity_type": self.target_entity_type,
            "target_entity_id": self.target_entity_id,
            "target_entity_name": self.target_entity_name,
            "actor": self.actor,
            "status": self.status.value,
            "severity": self.severity.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "details": self.details,
            "error_message": self.error_message,
            "processed_items": self.processed_items,
            "failed_items": self.failed_items,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        """Create audit entry from dictionary."""
        completed_at = data.get("completed_at")
        return cls(
            id=data["id"],
            type=data["type"],
            target_entity_type=data["target_entity_type"],
            target_entity_id=data.get("target_entity_id"),
            target_entity_name=data.get("target_entity_name"),
            actor=data["actor"],
            status=AuditStatus(data["status"]),
            severity=AuditSeverity(data.get("severity", "info")),
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            details=data.get("details", ""),
            error_message=data.get("error_message"),
            processed_items=data.get("processed_items", 0),
            failed_items=data.get("failed_items", 0),
            metadata=data.get("metadata", {}),
        )


class AuditRecorder:
    """
    In-memory audit recorder.

    Terminal transitions (complete, fail) are serialized per recorder; only the
    first one for an entry takes effect and later calls return False. Every
    transition is logged as a JSON line on the ``bulkman.audit`` logger.
    """

    def __init__(self, max_entries: int = 10000):
        """
        Initialize the recorder.

        Args:
            max_entries: Oldest terminal entries are dropped beyond this count
        """
        self.max_entries = max_entries
        self._entries: Dict[str, AuditEntry] = {}
        self._lock = threading.Lock()

    def open(
        self,
        type: str,
        target_type: str,
        target_id: Optional[str] = None,
        target_name: Optional[str] = None,
        details: str = "",
        actor: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Open a new InProgress audit entry.

        Args:
            type: Operation type being audited
            target_type: Kind of entity the operation targets
            target_id: Target entity id, when a single entity is targeted
            target_name: Human readable target description
            details: Free-text details
            actor: Identity performing the operation
            metadata: Additional structured data

        Returns:
            The new entry id
        """
        entry = AuditEntry(
            id=str(uuid.uuid4()),
            type=type,
            target_entity_type=target_type,
            target_entity_id=target_id,
            target_entity_name=target_name,
            actor=actor or "system",
            started_at=datetime.now(timezone.utc),
            details=details,
            metadata=dict(metadata or {}),
        )

        with self._lock:
            self._entries[entry.id] = entry
            self._trim()
            snapshot = copy.deepcopy(entry)

        self._log(snapshot)
        return entry.id

    def update_progress(
        self,
        entry_id: str,
        processed_items: int,
        failed_items: int = 0,
        details: Optional[str] = None,
    ) -> bool:
        """
        Update progress of an InProgress entry in place.

        Returns:
            False if the entry is unknown or already terminal
        """
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None or entry.status.is_terminal:
                return False
            entry.processed_items = max(entry.processed_items, processed_items)
            entry.failed_items = max(entry.failed_items, failed_items)
            if details is not None:
                entry.details = details
        return True

    def complete(
        self,
        entry_id: str,
        status: AuditStatus = AuditStatus.COMPLETED,
        details: Optional[str] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> bool:
        """
        Close an entry with a terminal status.

        Args:
            entry_id: Entry to close
            status: Terminal status (COMPLETED or FAILED)
            details: Replacement details text
            severity: Severity recorded with the terminal transition

        Returns:
            True if this call performed the terminal transition

        Raises:
            ValueError: If status is not terminal
        """
        if not status.is_terminal:
            raise ValueError(f"Audit entries can only be closed with a terminal status, not {status.value}")
        return self._close(entry_id, status, details, None, severity)

    def fail(self, entry_id: str, error_message: str) -> bool:
        """
        Close an entry as Failed.

        Returns:
            True if this call performed the terminal transition
        """
        return self._close(entry_id, AuditStatus.FAILED, None, error_message, AuditSeverity.ERROR)

    def get(self, entry_id: str) -> Optional[AuditEntry]:
        """Return a copy of an entry."""
        with self._lock:
            entry = self._entries.get(entry_id)
            return copy.deepcopy(entry) if entry else None

    def list_entries(
        self,
        status: Optional[AuditStatus] = None,
        type: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> List[AuditEntry]:
        """Return copies of entries matching the filters, oldest first."""
        with self._lock:
            entries = [copy.deepcopy(entry) for entry in self._entries.values()]

        if status is not None:
            entries = [entry for entry in entries if entry.status == status]
        if type is not None:
            entries = [entry for entry in entries if entry.type == type]
        if actor is not None:
            entries = [entry for entry in entries if entry.actor == actor]
        return sorted(entries, key=lambda entry: entry.started_at)

    def _close(
        self,
        entry_id: str,
        status: AuditStatus,
        details: Optional[str],
        error_message: Optional[str],
        severity: AuditSeverity,
    ) -> bool:
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                logger.debug(f"Ignoring terminal transition for unknown audit entry {entry_id}")
                return False
            if entry.status.is_terminal:
                logger.debug(
                    f"Audit entry {entry_id} already {entry.status.value}, ignoring {status.value}"
                )
                return False

            entry.status = status
            entry.severity = severity
            entry.completed_at = datetime.now(timezone.utc)
            if details is not None:
                entry.details = details
            if error_message is not None:
                entry.error_message = error_message
            snapshot = copy.deepcopy(entry)

        self._log(snapshot)
        return True

    def _trim(self):
        if len(self._entries) <= self.max_entries:
            return
        for entry_id in [key for key, entry in self._entries.items() if entry.status.is_terminal]:
            del self._entries[entry_id]
            if len(self._entries) <= self.max_entries:
                break

    def _log(self, entry: AuditEntry):
        log_message = json.dumps(entry.to_dict(), default=str)

        # Log based on severity
        if entry.severity == AuditSeverity.ERROR:
            audit_logger.error(log_message)
        elif entry.severity == AuditSeverity.WARNING:
            audit_logger.warning(log_message)
        else:
            audit_logger.info(log_message)
