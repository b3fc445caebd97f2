"""Resilient remote session management."""

from .circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from .credentials import CachedCredentialProvider, CredentialProvider
from .errors import (
    AuthorizationFault,
    CircuitOpenFault,
    CredentialError,
    RemoteFault,
    RemoteValidationFault,
    SessionExpiredFault,
    SessionUnavailableError,
    TransientRemoteFault,
)
from .manager import ResilientSessionManager
from .models import CommandResult, ConnectionHealth, SessionState
from .retry import FaultClass, RetryPolicy, classify_fault
from .transport import Boto3Transport, RemoteSession, RemoteTransport

__all__ = [
    "AuthorizationFault",
    "Boto3Transport",
    "CachedCredentialProvider",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenFault",
    "CircuitState",
    "CommandResult",
    "ConnectionHealth",
    "CredentialError",
    "CredentialProvider",
    "FaultClass",
    "RemoteFault",
    "RemoteSession",
    "RemoteTransport",
    "RemoteValidationFault",
    "ResilientSessionManager",
    "RetryPolicy",
    "SessionExpiredFault",
    "SessionState",
    "SessionUnavailableError",
    "TransientRemoteFault",
    "classify_fault",
]
