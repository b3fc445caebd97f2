"""Credential providers for the remote session.

Classes:
    CredentialProvider: Interface consumed by ResilientSessionManager
    CachedToken: A token and its expiry
    CachedCredentialProvider: In-memory per-actor token cache with optional refresh
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from .errors import CredentialError

logger = logging.getLogger(__name__)

# (actor, hint) -> (token, lifetime in seconds)
TokenRefresher = Callable[[str, Optional[str]], Awaitable[Tuple[str, float]]]


class CredentialProvider(ABC):
    """Interface for credential/token providers."""

    @abstractmethod
    async def get_valid_token(self, actor: str, hint: Optional[str] = None) -> str:
        """
        Resolve a valid session-scoped token for an actor.

        Args:
            actor: Identity the session acts on behalf of
            hint: Caller-supplied token that may be exchanged or cached

        Returns:
            A non-empty token

        Raises:
            CredentialError: If no valid token can be produced
        """
        pass

    @abstractmethod
    def has_valid_token(self, actor: str) -> bool:
        """
        Check whether a cached token for the actor is still valid.

        Args:
            actor: Identity to check

        Returns:
            True if a non-expired token is cached
        """
        pass


@dataclass
class CachedToken:
    """A cached token with its absolute expiry time."""

    token: str
    expires_at: float

    def is_valid(self, now: float, skew: float = 0.0) -> bool:
        return bool(self.token) and now + skew < self.expires_at


class CachedCredentialProvider(CredentialProvider):
    """Keeps one token per actor in memory and refreshes it on demand.

    When a refresher is configured it is called for missing or expiring
    tokens. Without one, a hint token is cached for ``default_lifetime``
    seconds and returned.
    """

    def __init__(
        self,
        refresher: Optional[TokenRefresher] = None,
        default_lifetime: float = 3600.0,
        refresh_skew: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the provider.

        Args:
            refresher: Async callable producing (token, lifetime) for an actor
            default_lifetime: Lifetime given to hint tokens, in seconds
            refresh_skew: Tokens expiring within this many seconds are refreshed
            clock: Time source
        """
        self._refresher = refresher
        self.default_lifetime = default_lifetime
        self.refresh_skew = refresh_skew
        self._clock = clock
        self._tokens: Dict[str, CachedToken] = {}
        self._lock = threading.Lock()

    async def get_valid_token(self, actor: str, hint: Optional[str] = None) -> str:
        with self._lock:
            cached = self._tokens.get(actor)
        if cached and cached.is_valid(self._clock(), self.refresh_skew):
            if not hint or hint == cached.token or self._refresher is not None:
                return cached.token

        if self._refresher is not None:
            try:
                token, lifetime = await self._refresher(actor, hint)
            except CredentialError:
                raise
            except Exception as e:
                logger.warning(f"Token refresh failed for {actor}: {e}")
                raise CredentialError("Token refresh failed", operation="get_valid_token", cause=e)
            if not token:
                raise CredentialError("Token refresh returned an empty token", operation="get_valid_token")
            self.store_token(actor, token, lifetime)
            return token

        if hint:
            self.store_token(actor, hint, self.default_lifetime)
            return hint

        if cached and cached.is_valid(self._clock()):
            return cached.token

        raise CredentialError(f"No valid token available for {actor}", operation="get_valid_token")

    def has_valid_token(self, actor: str) -> bool:
        with self._lock:
            cached = self._tokens.get(actor)
        return cached is not None and cached.is_valid(self._clock())

    def store_token(self, actor: str, token: str, lifetime: float):
        """Cache a token for an actor.

        Args:
            actor: Identity the token belongs to
            token: Token value
            lifetime: Seconds until the token expires
        """
        with self._lock:
            self._tokens[actor] = CachedToken(token=token, expires_at=self._clock() + lifetime)
        logger.debug(f"Stored token for {actor} (expires in {lifetime:.0f}s)")

    def clear(self, actor: Optional[str] = None):
        """Drop cached tokens for one actor, or for everyone."""
        with self._lock:
            if actor is None:
                self._tokens.clear()
            else:
                self._tokens.pop(actor, None)
