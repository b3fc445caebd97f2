"""Retry policy and fault classification for remote calls.

Classes:
    FaultClass: Categories used to decide whether a fault is retried
    RetryPolicy: Exponential backoff with jitter bounded by max_attempts

Functions:
    classify_fault: Map an exception to a FaultClass
"""

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .errors import (
    AuthorizationFault,
    CircuitOpenFault,
    CredentialError,
    RemoteValidationFault,
    SessionExpiredFault,
    SessionUnavailableError,
    TransientRemoteFault,
)


class FaultClass(str, Enum):
    """Fault categories for retry and circuit-breaker decisions."""

    TRANSIENT = "transient"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    SESSION_EXPIRED = "session_expired"
    CIRCUIT_OPEN = "circuit_open"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


TRANSIENT_ERROR_CODES = {
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "InternalServerError",
    "InternalServerException",
    "InternalFailure",
    "RequestTimeout",
    "RequestTimeoutException",
    "PriorRequestNotComplete",
    "ServiceTemporarilyUnavailable",
    "SlowDown",
    "BandwidthLimitExceeded",
}

AUTHORIZATION_ERROR_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "UnauthorizedOperation",
    "UnrecognizedClientException",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
}

SESSION_EXPIRED_ERROR_CODES = {
    "ExpiredToken",
    "ExpiredTokenException",
    "RequestExpired",
}

VALIDATION_ERROR_CODES = {
    "ValidationException",
    "ValidationError",
    "InvalidParameter",
    "InvalidParameterValue",
    "InvalidParameterException",
    "ResourceNotFoundException",
    "ConflictException",
    "ServiceQuotaExceededException",
}


def classify_fault(error: BaseException) -> FaultClass:
    """Classify an exception raised by a remote call.

    Args:
        error: Exception raised by the call

    Returns:
        FaultClass for the exception
    """
    if isinstance(error, CircuitOpenFault):
        return FaultClass.CIRCUIT_OPEN
    if isinstance(error, (TransientRemoteFault, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return FaultClass.TRANSIENT
    if isinstance(error, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return FaultClass.TRANSIENT
    if isinstance(error, SessionExpiredFault):
        return FaultClass.SESSION_EXPIRED
    if isinstance(error, (AuthorizationFault, CredentialError)):
        return FaultClass.AUTHORIZATION
    if isinstance(error, RemoteValidationFault):
        return FaultClass.VALIDATION
    if isinstance(error, SessionUnavailableError):
        return FaultClass.UNAVAILABLE

    if isinstance(error, ClientError):
        error_code = error.response.get("Error", {}).get("Code", "")
        if error_code in TRANSIENT_ERROR_CODES:
            return FaultClass.TRANSIENT
        if error_code in SESSION_EXPIRED_ERROR_CODES:
            return FaultClass.SESSION_EXPIRED
        if error_code in AUTHORIZATION_ERROR_CODES:
            return FaultClass.AUTHORIZATION
        if error_code in VALIDATION_ERROR_CODES:
            return FaultClass.VALIDATION
        status_code = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        if status_code in (429, 502, 503, 504):
            return FaultClass.TRANSIENT

    return FaultClass.UNKNOWN


@dataclass
class RetryPolicy:
    """Exponential backoff with jitter.

    Only TRANSIENT faults are retried. ``max_attempts`` counts the first call.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must not be negative")

    def should_retry(self, error: BaseException, attempt: int, max_attempts: Optional[int] = None) -> bool:
        """Determine if a failed attempt should be retried.

        Args:
            error: Exception raised by the attempt
            attempt: Attempt number that failed (1-based)
            max_attempts: Override for the policy's attempt limit

        Returns:
            True if another attempt is allowed
        """
        if attempt >= (max_attempts or self.max_attempts):
            return False
        return classify_fault(error) == FaultClass.TRANSIENT

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay before the next attempt.

        Args:
            attempt: Attempt number that failed (1-based)

        Returns:
            Delay in seconds
        """
        delay = self.initial_delay * (self.backoff_multiplier ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter_factor > 0 and delay > 0:
            delay += delay * self.jitter_factor * random.random()

        return min(delay, self.max_delay) if self.max_delay > 0 else 0.0
