"""Resilient session manager for the remote management API.

The manager owns one authenticated session per logical context and routes every
remote call through a circuit breaker, a retry policy and a per-call timeout.

Classes:
    ResilientSessionManager: Session lifecycle, retries and circuit breaking
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from botocore.exceptions import ClientError

from .circuit_breaker import CircuitBreaker
from .credentials import CredentialProvider
from .errors import CircuitOpenFault, SessionUnavailableError, TransientRemoteFault
from .models import CommandResult, ConnectionHealth, SessionState
from .retry import FaultClass, RetryPolicy, classify_fault
from .transport import RemoteSession, RemoteTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SCOPES = ["identitystore", "sso-admin"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ResilientSessionManager:
    """Keeps a remote session alive and wraps remote calls with resilience policies."""

    def __init__(
        self,
        transport: RemoteTransport,
        credential_provider: CredentialProvider,
        retry_policy: Optional[RetryPolicy] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        call_timeout: Optional[float] = 30.0,
        default_scopes: Optional[Sequence[str]] = None,
        audit_recorder: Optional[Any] = None,
        default_actor: str = "system",
    ):
        """
        Initialize the session manager.

        Args:
            transport: Transport used to open sessions and invoke commands
            credential_provider: Provider resolving session-scoped tokens
            retry_policy: Retry policy for transient faults
            circuit_breaker: Circuit breaker shared by every remote call
            call_timeout: Timeout in seconds applied to each remote call
            default_scopes: Scopes requested when the caller does not name any
            audit_recorder: Optional AuditRecorder for connection entries
            default_actor: Actor used when the caller does not name one

        Raises:
            ValueError: If transport or credential_provider is None
        """
        if transport is None:
            raise ValueError("transport is required")
        if credential_provider is None:
            raise ValueError("credential_provider is required")

        self._transport = transport
        self._credentials = credential_provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.circuit_breaker = circuit_breaker or CircuitBreaker("remote-api")
        self.call_timeout = call_timeout
        self.default_scopes = list(default_scopes or DEFAULT_SCOPES)
        self.audit_recorder = audit_recorder
        self.default_actor = default_actor

        self._session: Optional[RemoteSession] = None
        self._session_credential: Optional[str] = None
        self._state = SessionState.DISCONNECTED
        self._connect_task: Optional["asyncio.Future[bool]"] = None

        # Last-known credential context used for reconnects
        self._last_actor: Optional[str] = None
        self._last_scopes: List[str] = list(self.default_scopes)
        self._has_context = False

        self._last_attempt: Optional[datetime] = None
        self._last_success: Optional[datetime] = None
        self._last_error: Optional[str] = None

    @property
    def session(self) -> Optional[RemoteSession]:
        """The current session handle, if any."""
        return self._session

    @property
    def session_state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == SessionState.CONNECTED and self._transport.is_alive(self._session)

    async def connect_with_credential(
        self,
        token: Optional[str],
        scopes: Optional[Sequence[str]] = None,
        actor: Optional[str] = None,
    ) -> bool:
        """
        Connect to the remote API with a caller-supplied credential token.

        Args:
            token: Credential token; empty or None is rejected
            scopes: Scopes to request (defaults to the configured scopes)
            actor: Identity the session acts for

        Returns:
            True if a live session is available afterwards, False otherwise
        """
        requested_scopes = list(scopes or self.default_scopes)
        actor = actor or self._last_actor or self.default_actor
        audit_id = self._open_connect_audit(actor, requested_scopes)

        if not token or not token.strip():
            logger.warning(f"Refusing to connect for {actor}: credential token is empty")
            self._last_error = "Credential token is empty"
            self._close_connect_audit(audit_id, False, self._last_error)
            return False

        connected = await self._connect(token, requested_scopes, actor)
        self._close_connect_audit(audit_id, connected, None if connected else self._last_error)
        return connected

    async def disconnect(self):
        """Close the current session and forget the credential context."""
        session = self._session
        self._session = None
        self._session_credential = None
        self._state = SessionState.DISCONNECTED
        self._has_context = False
        if session is not None:
            await self._close_quietly(session)

    def get_connection_health(self) -> ConnectionHealth:
        """Return the current connection health without connecting."""
        credential_valid = False
        if self._last_actor:
            try:
                credential_valid = self._credentials.has_valid_token(self._last_actor)
            except Exception as e:
                logger.debug(f"Credential check failed for {self._last_actor}: {e}")

        try:
            is_connected = self.is_connected
        except Exception as e:
            logger.debug(f"Session liveness check failed: {e}")
            is_connected = False

        return ConnectionHealth(
            is_connected=is_connected,
            session_state=self._state,
            circuit_state=self.circuit_breaker.effective_state,
            last_attempt=self._last_attempt,
            last_success=self._last_success,
            credential_valid=credential_valid,
            actor=self._last_actor,
            last_error=self._last_error,
        )

    async def execute_with_auto_connect(
        self, operation: Callable[[], Awaitable[T]], default: Optional[T] = None
    ) -> Optional[T]:
        """
        Run an operation, reconnecting once first if no live session exists.

        Args:
            operation: Zero-argument coroutine function to run
            default: Value returned when the session cannot be restored

        Returns:
            The operation result, or ``default`` when the session is unavailable.
            Callers must read ``default`` as "unavailable", not as an empty answer.
        """
        if not self.is_connected:
            if not await self._reconnect():
                logger.warning("Remote session unavailable, skipping operation")
                return default
        return await operation()

    async def execute_with_resilience(
        self,
        action: Callable[[], Awaitable[T]],
        operation_name: str = "remote_call",
        max_attempts: Optional[int] = None,
    ) -> T:
        """
        Run a remote action with session guarantee, circuit breaking, retry and timeout.

        Args:
            action: Zero-argument coroutine function performing one remote call
            operation_name: Name used in log messages and faults
            max_attempts: Override for the retry policy's attempt limit

        Returns:
            The action result

        Raises:
            SessionUnavailableError: If no session could be established
            CircuitOpenFault: If the circuit breaker refused the call
            TransientRemoteFault: If transient faults persisted past the retry limit
            Exception: Non-retryable faults raised by the action
        """
        return await self._execute(action, operation_name, max_attempts or self.retry_policy.max_attempts)

    async def execute_command_with_retry(
        self,
        name: str,
        params: Optional[Dict[str, Any]] = None,
        max_retries: Optional[int] = None,
    ) -> CommandResult:
        """
        Run a named transport command and report the outcome as a CommandResult.

        Args:
            name: Command name understood by the transport
            params: Command parameters
            max_retries: Total attempts allowed, including the first one

        Returns:
            CommandResult; failures are reported, never raised
        """
        params = params or {}
        attempts = 0

        async def invoke() -> Any:
            nonlocal attempts
            attempts += 1
            return await self._transport.invoke(self._session, name, params)

        try:
            value = await self._execute(invoke, name, max_retries or self.retry_policy.max_attempts)
        except CircuitOpenFault as e:
            return CommandResult(command=name, success=False, error=str(e), attempts=attempts, circuit_open=True)
        except Exception as e:
            logger.error(f"Command {name} failed after {attempts} attempt(s): {e}")
            return CommandResult(command=name, success=False, error=str(e), attempts=attempts)

        return CommandResult(command=name, success=True, value=value, attempts=attempts)

    async def _execute(
        self, action: Callable[[], Awaitable[T]], operation_name: str, max_attempts: int
    ) -> T:
        if not self.is_connected and not await self._reconnect():
            raise SessionUnavailableError("No remote session available", operation=operation_name)

        attempt = 0
        while True:
            attempt += 1

            if not self.circuit_breaker.allow_request():
                logger.warning(
                    f"Circuit open, refusing {operation_name} without contacting the remote service"
                )
                raise CircuitOpenFault(
                    "Circuit breaker is open",
                    operation=operation_name,
                    retry_at=self.circuit_breaker.retry_at,
                )

            self._last_attempt = _now()
            try:
                if self.call_timeout:
                    result = await asyncio.wait_for(action(), timeout=self.call_timeout)
                else:
                    result = await action()
            except asyncio.CancelledError:
                self.circuit_breaker.release_trial()
                raise
            except Exception as e:
                self._record_outcome(e)
                self._last_error = str(e) or type(e).__name__
                fault = classify_fault(e)
                can_retry = self.retry_policy.should_retry(e, attempt, max_attempts)

                if fault == FaultClass.SESSION_EXPIRED and attempt < max_attempts:
                    logger.info(f"Session expired during {operation_name}, reconnecting")
                    await self._drop_session()
                    if await self._reconnect():
                        continue
                    raise SessionUnavailableError(
                        "Session expired and reconnect failed", operation=operation_name, cause=e
                    ) from e

                if can_retry:
                    delay = self.retry_policy.calculate_delay(attempt)
                    logger.warning(
                        f"Transient fault in {operation_name} (attempt {attempt}/{max_attempts}), "
                        f"retrying in {delay:.2f}s: {self._last_error}"
                    )
                    await asyncio.sleep(delay)
                    continue

                if fault == FaultClass.TRANSIENT:
                    logger.error(f"{operation_name} failed after {attempt} attempt(s): {self._last_error}")
                    if isinstance(e, TransientRemoteFault):
                        raise
                    raise TransientRemoteFault(
                        f"Retries exhausted: {self._last_error}",
                        operation=operation_name,
                        cause=e,
                        attempts=attempt,
                    ) from e

                logger.warning(f"{operation_name} failed with {fault.value} fault: {self._last_error}")
                raise

            self._record_outcome(None)
            self._last_success = _now()
            return result

    def _record_outcome(self, error: Optional[BaseException]):
        """Report a call outcome to the circuit breaker."""
        if error is None:
            self.circuit_breaker.record_success()
            return

        fault = classify_fault(error)
        if fault == FaultClass.TRANSIENT:
            self.circuit_breaker.record_failure()
        elif isinstance(error, ClientError) or fault in (
            FaultClass.AUTHORIZATION,
            FaultClass.VALIDATION,
            FaultClass.SESSION_EXPIRED,
        ):
            # The remote service answered
            self.circuit_breaker.record_success()
        else:
            # Item-level faults say nothing about remote health
            self.circuit_breaker.release_trial()

    async def _reconnect(self) -> bool:
        if not self._has_context:
            return False
        logger.info(f"Reconnecting remote session for {self._last_actor}")
        return await self._connect(None, self._last_scopes, self._last_actor or self.default_actor)

    async def _connect(self, token: Optional[str], scopes: List[str], actor: str) -> bool:
        pending = self._connect_task
        if pending is not None and not pending.done():
            # Join the in-flight connect instead of opening a second session
            await asyncio.shield(pending)
            if self.is_connected and self._last_actor == actor and set(scopes) <= set(self._last_scopes):
                return True

        self._connect_task = asyncio.ensure_future(self._open(token, scopes, actor))
        return await asyncio.shield(self._connect_task)

    async def _open(self, token: Optional[str], scopes: List[str], actor: str) -> bool:
        self._last_attempt = _now()
        self._last_actor = actor
        self._last_scopes = list(scopes)
        self._has_context = True

        try:
            credential = await self._credentials.get_valid_token(actor, hint=token)
        except Exception as e:
            logger.warning(f"Could not resolve credential for {actor}: {e}")
            self._last_error = str(e)
            self._state = SessionState.FAILED
            return False

        if not credential:
            logger.warning(f"Credential provider returned an empty token for {actor}")
            self._last_error = "Credential provider returned an empty token"
            self._state = SessionState.FAILED
            return False

        current = self._session
        if (
            self._transport.is_alive(current)
            and self._session_credential == credential
            and set(scopes) <= set(current.scopes)
        ):
            self._state = SessionState.CONNECTED
            return True

        if not self.circuit_breaker.allow_request():
            logger.warning("Circuit open, not opening a new remote session")
            self._last_error = "Circuit breaker is open"
            self._state = SessionState.FAILED
            return False

        self._state = SessionState.CONNECTING
        try:
            open_call = self._transport.open_session(credential, scopes)
            if self.call_timeout:
                session = await asyncio.wait_for(open_call, timeout=self.call_timeout)
            else:
                session = await open_call
        except asyncio.CancelledError:
            self.circuit_breaker.release_trial()
            self._state = SessionState.FAILED
            raise
        except Exception as e:
            self._record_outcome(e)
            logger.error(f"Failed to open remote session for {actor}: {e}")
            self._last_error = str(e) or type(e).__name__
            self._state = SessionState.FAILED
            return False

        self._record_outcome(None)
        self._session = session
        self._session_credential = credential
        self._state = SessionState.CONNECTED
        self._last_success = _now()
        self._last_error = None

        if current is not None and current is not session:
            await self._close_quietly(current)

        logger.info(f"Remote session ready for {actor} (scopes: {', '.join(scopes)})")
        return True

    async def _drop_session(self):
        session = self._session
        self._session = None
        self._session_credential = None
        self._state = SessionState.DISCONNECTED
        if session is not None:
            await self._close_quietly(session)

    async def _close_quietly(self, session: RemoteSession):
        try:
            await self._transport.close_session(session)
        except Exception as e:
            logger.debug(f"Ignoring error while closing session: {e}")

    def _open_connect_audit(self, actor: str, scopes: List[str]) -> Optional[str]:
        if self.audit_recorder is None:
            return None
        return self.audit_recorder.open(
            "remote_connect",
            "remote_session",
            target_name=", ".join(scopes),
            details=f"Requested scopes: {', '.join(scopes)}",
            actor=actor,
        )

    def _close_connect_audit(self, entry_id: Optional[str], connected: bool, error: Optional[str]):
        if entry_id is None:
            return
        if connected:
            self.audit_recorder.complete(entry_id, details="Remote session established")
        else:
            self.audit_recorder.fail(entry_id, error or "Connection failed")
