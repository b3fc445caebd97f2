"""Transports that carry commands to the remote management API.

Classes:
    RemoteSession: Handle for an open remote session
    RemoteTransport: Interface used by ResilientSessionManager
    Boto3Transport: Transport backed by boto3 clients
"""

import asyncio
import functools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import boto3

logger = logging.getLogger(__name__)


@dataclass
class RemoteSession:
    """An open session to the remote API."""

    session_id: str
    scopes: List[str]
    opened_at: float
    backend: Any = None
    identity: Dict[str, Any] = field(default_factory=dict)
    clients: Dict[str, Any] = field(default_factory=dict)
    closed: bool = False


class RemoteTransport(ABC):
    """Interface for remote session transports."""

    @abstractmethod
    async def open_session(self, credential: str, scopes: List[str]) -> RemoteSession:
        """
        Open a new authenticated session.

        Args:
            credential: Session-scoped token resolved by the credential provider
            scopes: Scopes (services) the session must be able to reach

        Returns:
            RemoteSession handle
        """
        pass

    @abstractmethod
    async def invoke(self, session: RemoteSession, command: str, params: Dict[str, Any]) -> Any:
        """
        Run one command on an open session.

        Args:
            session: Session returned by open_session
            command: Command name
            params: Command parameters

        Returns:
            Raw command result
        """
        pass

    @abstractmethod
    async def close_session(self, session: RemoteSession) -> None:
        """Close a session. Must not raise for an already closed session."""
        pass

    def is_alive(self, session: Optional[RemoteSession]) -> bool:
        """Check whether a session handle can still be used."""
        return session is not None and not session.closed


class Boto3Transport(RemoteTransport):
    """Transport that maps commands onto boto3 client operations.

    Commands are written as ``"<service>:<operation>"`` (for example
    ``"identitystore:create_user"``); a bare operation name runs on the first
    scope. When ``role_arn`` is set, the credential token is exchanged for
    temporary credentials with ``AssumeRoleWithWebIdentity``; otherwise calls
    are signed with the profile credentials and the token only identifies the
    caller context.
    """

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        role_arn: Optional[str] = None,
        role_session_name: str = "bulkman",
        validate_identity: bool = True,
    ):
        """
        Initialize the transport.

        Args:
            profile: AWS profile name to use
            region: AWS region to use
            role_arn: Role to assume with the credential token as web identity
            role_session_name: Session name used when assuming the role
            validate_identity: Whether to call STS GetCallerIdentity on open
        """
        self.profile = profile
        self.region = region
        self.role_arn = role_arn
        self.role_session_name = role_session_name
        self.validate_identity = validate_identity
        self._session_counter = 0

    def _create_base_session(self) -> boto3.Session:
        session_kwargs = {}
        if self.profile:
            session_kwargs["profile_name"] = self.profile
        if self.region:
            session_kwargs["region_name"] = self.region
        return boto3.Session(**session_kwargs)

    def _build_session(self, credential: str) -> Tuple[boto3.Session, Dict[str, Any]]:
        base_session = self._create_base_session()

        if self.role_arn:
            sts_client = base_session.client("sts")
            response = sts_client.assume_role_with_web_identity(
                RoleArn=self.role_arn,
                RoleSessionName=self.role_session_name,
                WebIdentityToken=credential,
            )
            creds = response["Credentials"]
            session = boto3.Session(
                aws_access_key_id=creds["AccessKeyId"],
                aws_secret_access_key=creds["SecretAccessKey"],
                aws_session_token=creds["SessionToken"],
                region_name=base_session.region_name,
            )
        else:
            session = base_session

        identity: Dict[str, Any] = {}
        if self.validate_identity:
            # Lightweight call that fails if credentials are invalid or expired
            identity = session.client("sts").get_caller_identity()
            identity.pop("ResponseMetadata", None)

        return session, identity

    async def open_session(self, credential: str, scopes: List[str]) -> RemoteSession:
        loop = asyncio.get_running_loop()
        session, identity = await loop.run_in_executor(
            None, functools.partial(self._build_session, credential)
        )

        clients = {scope: session.client(scope) for scope in scopes}

        self._session_counter += 1
        remote_session = RemoteSession(
            session_id=f"boto3-{self._session_counter}",
            scopes=list(scopes),
            opened_at=time.time(),
            backend=session,
            identity=identity,
            clients=clients,
        )
        logger.info(
            f"Opened remote session {remote_session.session_id} "
            f"(account: {identity.get('Account', 'unknown')}, scopes: {', '.join(scopes)})"
        )
        return remote_session

    async def invoke(self, session: RemoteSession, command: str, params: Dict[str, Any]) -> Any:
        if session.closed:
            raise RuntimeError(f"Session {session.session_id} is closed")

        if ":" in command:
            service, operation = command.split(":", 1)
        elif session.scopes:
            service, operation = session.scopes[0], command
        else:
            raise ValueError(f"Command '{command}' does not name a service")

        client = session.clients.get(service)
        if client is None:
            client = session.backend.client(service)
            session.clients[service] = client

        method = getattr(client, operation)
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(None, functools.partial(method, **params))

        if isinstance(response, dict):
            response.pop("ResponseMetadata", None)
        return response

    async def close_session(self, session: RemoteSession) -> None:
        if session.closed:
            return
        session.closed = True
        session.clients.clear()
        logger.info(f"Closed remote session {session.session_id}")
