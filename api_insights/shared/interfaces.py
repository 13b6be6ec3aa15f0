"""
Core interfaces for the API Insights client.

This module defines the abstract interfaces that token storage backends and
HTTP transports must implement, so the refresh coordinator and request
pipeline can be wired to real or in-memory collaborators.
"""

from abc import ABC, abstractmethod
from typing import Optional, TYPE_CHECKING

from .models import TokenKind, TokenSet

if TYPE_CHECKING:
    from api_insights.client.transport import APIRequest, APIResponse


class ITokenStorage(ABC):
    """Interface for durable credential storage."""

    @abstractmethod
    def snapshot(self) -> TokenSet:
        """Return the current credential set as one consistent value."""
        pass

    @abstractmethod
    def get(self, kind: TokenKind) -> Optional[str]:
        """Get a single credential."""
        pass

    @abstractmethod
    def set_pair(self, access: str, refresh: str) -> None:
        """Store an access/refresh pair, dropping any challenge token."""
        pass

    @abstractmethod
    def set_challenge(self, token: str) -> None:
        """Store a challenge token, dropping any access/refresh pair."""
        pass

    @abstractmethod
    def clear_challenge(self) -> None:
        """Remove the challenge token only."""
        pass

    @abstractmethod
    def clear_all(self) -> None:
        """Remove every stored credential."""
        pass

    @abstractmethod
    def is_authenticated(self) -> bool:
        """True iff an access token is present."""
        pass


class ITransport(ABC):
    """Interface for executing a single HTTP exchange."""

    @abstractmethod
    async def send(self, request: 'APIRequest') -> 'APIResponse':
        """Execute the request and return the raw response."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        pass
