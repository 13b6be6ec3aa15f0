"""
Core data models for the API Insights client.

This module defines the credential, session and payload structures shared
between the request pipeline, the token storage and the session manager.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any
from enum import Enum


class TokenKind(Enum):
    """The three opaque credential slots held by token storage."""
    ACCESS = "access"
    REFRESH = "refresh"
    CHALLENGE = "challenge"


class SessionState(Enum):
    """Authentication state of the current process."""
    ANONYMOUS = "anonymous"
    CHALLENGED = "challenged"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class TokenSet:
    """
    Immutable snapshot of all stored credentials.

    Token storage swaps whole snapshots, so readers never observe a new
    access token next to a stale refresh token.
    """
    access: Optional[str] = None
    refresh: Optional[str] = None
    challenge: Optional[str] = None

    def get(self, kind: TokenKind) -> Optional[str]:
        return getattr(self, kind.value)

    def is_empty(self) -> bool:
        return not (self.access or self.refresh or self.challenge)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            'access': self.access,
            'refresh': self.refresh,
            'challenge': self.challenge
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TokenSet':
        if not isinstance(data, dict):
            raise ValueError("Stored credentials must be an object")
        return cls(
            access=data.get('access') or None,
            refresh=data.get('refresh') or None,
            challenge=data.get('challenge') or None
        )

    def __repr__(self) -> str:
        # Never render credential values
        present = [kind.value for kind in TokenKind if self.get(kind)]
        return f"TokenSet(present={present})"


@dataclass
class TokenPair:
    """Access/refresh pair returned by login, two-factor and refresh endpoints."""
    access: str
    refresh: Optional[str] = None

    def __post_init__(self):
        if not self.access or not isinstance(self.access, str):
            raise ValueError("Access token cannot be empty")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TokenPair':
        return cls(access=data.get('access'), refresh=data.get('refresh') or None)

    def __repr__(self) -> str:
        return f"TokenPair(refresh_rotated={self.refresh is not None})"


@dataclass
class User:
    """Profile of the authenticated user."""
    id: int
    email: str
    first_name: str = ""
    last_name: str = ""
    company_name: str = ""
    is_email_verified: bool = False
    is_two_factor_enabled: bool = False
    display_name: Optional[str] = None
    timezone: Optional[str] = None
    locale: Optional[str] = None
    default_landing_page: Optional[str] = None
    avatar_url: Optional[str] = None
    date_joined: Optional[str] = None

    @property
    def full_name(self) -> str:
        if self.display_name:
            return self.display_name
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        if not isinstance(data, dict) or 'id' not in data or 'email' not in data:
            raise ValueError("Profile payload must contain 'id' and 'email'")
        return cls(
            id=data['id'],
            email=data['email'],
            first_name=data.get('first_name') or "",
            last_name=data.get('last_name') or "",
            company_name=data.get('company_name') or "",
            is_email_verified=bool(data.get('is_email_verified', False)),
            is_two_factor_enabled=bool(data.get('is_two_factor_enabled', False)),
            display_name=data.get('display_name'),
            timezone=data.get('timezone'),
            locale=data.get('locale'),
            default_landing_page=data.get('default_landing_page'),
            avatar_url=data.get('avatar_url'),
            date_joined=data.get('date_joined')
        )


@dataclass
class Pagination:
    """Pagination block of a paginated envelope."""
    count: int = 0
    total_pages: int = 0
    current_page: int = 1
    page_size: int = 0
    next: Optional[str] = None
    previous: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Pagination':
        return cls(
            count=data.get('count', 0),
            total_pages=data.get('total_pages', 0),
            current_page=data.get('current_page', 1),
            page_size=data.get('page_size', 0),
            next=data.get('next'),
            previous=data.get('previous')
        )


@dataclass
class PaginatedResult:
    """Typed view of the normalized ``{results, pagination}`` shape."""
    results: List[Any] = field(default_factory=list)
    pagination: Pagination = field(default_factory=Pagination)

    @property
    def has_next(self) -> bool:
        return self.pagination.next is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaginatedResult':
        return cls(
            results=list(data.get('results') or []),
            pagination=Pagination.from_dict(data.get('pagination') or {})
        )


@dataclass
class LoginResult:
    """Outcome of a login or two-factor verification attempt."""
    success: bool
    two_factor_required: bool = False
    challenge_token: Optional[str] = None
    user: Optional[User] = None
