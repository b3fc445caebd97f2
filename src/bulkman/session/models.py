"""Data models for the resilient session layer."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .circuit_breaker import CircuitState


class SessionState(str, Enum):
    """Lifecycle state of the remote session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class ConnectionHealth:
    """Point-in-time view of the remote session."""

    is_connected: bool
    session_state: SessionState
    circuit_state: CircuitState
    last_attempt: Optional[datetime] = None
    last_success: Optional[datetime] = None
    credential_valid: bool = False
    actor: Optional[str] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "is_connected": self.is_connected,
            "session_state": self.session_state.value,
            "circuit_state": self.circuit_state.value,
            "last_attempt": self.last_attempt.isoformat() if self.last_attempt else None,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "credential_valid": self.credential_valid,
            "actor": self.actor,
            "last_error": self.last_error,
        }


@dataclass(frozen=True)
class CommandResult:
    """Outcome of ResilientSessionManager.execute_command_with_retry."""

    command: str
    success: bool
    value: Any = None
    error: Optional[str] = None
    attempts: int = 0
    circuit_open: bool = False
