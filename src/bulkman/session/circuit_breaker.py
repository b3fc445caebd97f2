"""Circuit breaker guarding the remote management API.

Classes:
    CircuitState: Circuit breaker states
    CircuitBreakerConfig: Thresholds for opening and recovering the circuit
    CircuitBreaker: Sliding-window circuit breaker with a single half-open trial
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # One trial call allowed


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5
    open_duration: float = 60.0
    sampling_window: float = 60.0

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.open_duration < 0 or self.sampling_window <= 0:
            raise ValueError("open_duration must be >= 0 and sampling_window > 0")


class CircuitBreaker:
    """Circuit breaker pattern for persistent remote failures.

    Closed -> Open after ``failure_threshold`` consecutive failures inside
    ``sampling_window`` seconds. Open -> Half-Open once ``open_duration`` has
    elapsed. Half-Open admits exactly one trial call; its outcome closes or
    reopens the circuit. Only the caller that observed a call outcome records it.
    """

    def __init__(
        self,
        name: str = "remote",
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            name: Name used in log messages
            config: Thresholds for the breaker
            clock: Monotonic time source
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failures: Deque[float] = deque()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self.last_failure_time: Optional[float] = None
        self.last_success_time: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        """Current state without performing time-based transitions."""
        return self._state

    @property
    def effective_state(self) -> CircuitState:
        """State as the next call would see it, without reserving the trial slot."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._cooled_down(self._clock()):
                return CircuitState.HALF_OPEN
            return self._state

    @property
    def retry_at(self) -> Optional[float]:
        """Clock value at which an open circuit will admit a trial call."""
        if self._opened_at is None:
            return None
        return self._opened_at + self.config.open_duration

    def allow_request(self) -> bool:
        """Check if a call may be sent to the remote service.

        A True result in Half-Open reserves the single trial slot; the caller
        must report the outcome with record_success or record_failure.
        """
        with self._lock:
            now = self._clock()

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._cooled_down(now):
                    self._state = CircuitState.HALF_OPEN
                    self._trial_in_flight = True
                    logger.info(f"Circuit '{self.name}' half-open, admitting trial call")
                    return True
                return False

            # Half-open: only one trial at a time
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self):
        """Record a call that reached the remote service and succeeded."""
        with self._lock:
            self.last_success_time = self._clock()
            self._failures.clear()

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                self._opened_at = None
                self._trial_in_flight = False
                logger.info(f"Circuit '{self.name}' closed after successful trial call")

    def record_failure(self):
        """Record a call that failed with a fault counted against remote health."""
        with self._lock:
            now = self._clock()
            self.last_failure_time = now

            if self._state == CircuitState.HALF_OPEN:
                self._open(now)
                logger.warning(f"Circuit '{self.name}' reopened after failed trial call")
                return

            if self._state == CircuitState.OPEN:
                return

            self._failures.append(now)
            window_start = now - self.config.sampling_window
            while self._failures and self._failures[0] < window_start:
                self._failures.popleft()

            if len(self._failures) >= self.config.failure_threshold:
                self._open(now)
                logger.warning(
                    f"Circuit '{self.name}' opened after {self.config.failure_threshold} "
                    f"consecutive failures"
                )

    def release_trial(self):
        """Give back a reserved half-open trial whose call never reached the remote service."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False

    def reset(self):
        """Force the breaker back to Closed."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures.clear()
            self._opened_at = None
            self._trial_in_flight = False

    def _cooled_down(self, now: float) -> bool:
        return self._opened_at is not None and now - self._opened_at >= self.config.open_duration

    def _open(self, now: float):
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._trial_in_flight = False
        self._failures.clear()

    def get_state_info(self) -> Dict[str, Any]:
        """Get current state information."""
        return {
            "name": self.name,
            "state": self._state.value,
            "recent_failures": len(self._failures),
            "failure_threshold": self.config.failure_threshold,
            "opened_at": self._opened_at,
            "retry_at": self.retry_at,
            "last_failure_time": self.last_failure_time,
            "last_success_time": self.last_success_time,
        }
