"""
Shared fixtures for the API Insights client tests.

The fake transport answers from per-route handlers; a handler may await an
``asyncio.Event`` so tests control exactly when a response is released.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from api_insights.client.api_client import InsightsAPIClient
from api_insights.client.auth.token_storage import MemoryTokenStorage
from api_insights.client.transport import APIRequest, APIResponse
from api_insights.shared.interfaces import ITransport
from api_insights.shared.models import TokenSet

REFRESH_PATH = '/api/v1/auth/token/refresh/'
PROFILE_PATH = '/api/v1/auth/profile/'

Handler = Callable[[APIRequest], Any]


@dataclass
class SentRequest:
    """What the fake transport saw, captured at send time."""
    method: str
    path: str
    authorization: Optional[str]
    json: Any


class FakeTransport(ITransport):
    """In-memory transport with per-route handlers."""

    def __init__(self):
        self.sent: List[SentRequest] = []
        self.closed = False
        self._routes: Dict[Tuple[str, str], Handler] = {}

    def route(self, method: str, path: str, handler: Handler) -> None:
        """
        Register a handler returning ``(status, body)``, directly or as an awaitable.
        """
        self._routes[(method, path)] = handler

    def respond(self, method: str, path: str, status: int, body: Any = None) -> None:
        self.route(method, path, lambda request: (status, body))

    def calls_to(self, path: str) -> List[SentRequest]:
        return [request for request in self.sent if request.path == path]

    async def send(self, request: APIRequest) -> APIResponse:
        self.sent.append(SentRequest(
            method=request.method,
            path=request.path,
            authorization=request.headers.get('Authorization'),
            json=request.json
        ))
        handler = self._routes.get((request.method, request.path))
        if handler is None:
            return APIResponse(status=404, body={'detail': 'Not found'}, request=request)

        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        status, body = result
        return APIResponse(status=status, body=body, request=request)

    async def close(self) -> None:
        self.closed = True


def bearer_only(token: str, body: Any = None) -> Handler:
    """Handler accepting exactly ``Bearer <token>``, 401 otherwise."""
    def handler(request: APIRequest):
        if request.headers.get('Authorization') == f'Bearer {token}':
            return 200, {'success': True, 'data': body if body is not None else {'path': request.path}}
        return 401, {'success': False, 'error': {'code': 'token_not_valid', 'message': 'Token is expired'}}
    return handler


def gated(event: asyncio.Event, status: int, body: Any) -> Handler:
    """Handler that answers only once ``event`` is set."""
    async def handler(request: APIRequest):
        await event.wait()
        return status, body
    return handler


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0)
    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def fake_transport():
    """Create a fresh fake transport."""
    return FakeTransport()


@pytest.fixture
def token_storage():
    """Create in-memory storage holding an expired access token and a refresh token."""
    return MemoryTokenStorage(TokenSet(access='T1', refresh='R1'))


@pytest.fixture
def api_client(fake_transport, token_storage):
    """Create an API client wired to the fake transport."""
    return InsightsAPIClient('http://testserver', token_storage, transport=fake_transport)


@pytest.fixture
def helpers():
    """Expose handler factories to test modules."""
    return SimpleNamespace(bearer_only=bearer_only, gated=gated, wait_until=wait_until)


@pytest.fixture
def restore_logging():
    """Put root and audit logger configuration back after a test."""
    root = logging.getLogger()
    audit = logging.getLogger('api_insights.audit')
    saved = (root.handlers[:], root.level, audit.handlers[:], audit.level, audit.propagate)
    yield
    for handler in root.handlers + audit.handlers:
        handler.close()
    root.handlers[:] = saved[0]
    root.setLevel(saved[1])
    audit.handlers[:] = saved[2]
    audit.setLevel(saved[3])
    audit.propagate = saved[4]
