"""Fault taxonomy for remote management API calls.

Classes:
    RemoteFault: Base class for every fault raised by the session layer
    TransientRemoteFault: Timeout or throttling fault that exhausted its retries
    CircuitOpenFault: Call refused because the circuit breaker is open
    AuthorizationFault: Caller is not allowed to perform the operation
    RemoteValidationFault: Remote API rejected the request as malformed
    SessionExpiredFault: The remote session or its credential expired
    SessionUnavailableError: No live session could be established
    CredentialError: Credential provider could not supply a valid token
"""

from typing import Optional


class RemoteFault(Exception):
    """Base exception for remote API faults."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.cause = cause

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class TransientRemoteFault(RemoteFault):
    """Raised when a retryable fault persists after all attempts."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        cause: Optional[Exception] = None,
        attempts: int = 0,
    ):
        super().__init__(message, operation, cause)
        self.attempts = attempts


class CircuitOpenFault(RemoteFault):
    """Raised when the circuit breaker refuses a call without contacting the remote service."""

    def __init__(self, message: str, operation: Optional[str] = None, retry_at: Optional[float] = None):
        super().__init__(message, operation)
        self.retry_at = retry_at


class AuthorizationFault(RemoteFault):
    """Raised when the remote service denies access."""

    pass


class RemoteValidationFault(RemoteFault):
    """Raised when the remote service rejects the request parameters."""

    pass


class SessionExpiredFault(RemoteFault):
    """Raised when the remote session or its credential has expired."""

    pass


class SessionUnavailableError(RemoteFault):
    """Raised when no live session exists and reconnecting failed."""

    pass


class CredentialError(RemoteFault):
    """Raised by credential providers when no valid token can be produced."""

    pass
