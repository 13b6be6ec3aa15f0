"""
HTTP transport for the API Insights client.

This module executes single HTTP exchanges with aiohttp. It knows nothing
about credentials or envelopes: it sends exactly the headers it is given and
returns the decoded body together with the status code.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from urllib.parse import urljoin

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

from api_insights.shared.exceptions import ErrorCode, TransportError
from api_insights.shared.interfaces import ITransport

logger = logging.getLogger(__name__)


@dataclass
class APIRequest:
    """A request travelling through the pipeline."""
    method: str
    path: str
    json: Optional[Any] = None
    params: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    # Set once the request has been replayed after a 401
    retried: bool = False
    # Access token attached by the outbound stage, if any
    sent_token: Optional[str] = field(default=None, repr=False)


@dataclass
class APIResponse:
    """Raw response as returned by a transport."""
    status: int
    body: Any
    request: APIRequest
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class AiohttpTransport(ITransport):
    """
    Transport backed by a shared aiohttp ClientSession.
    """

    def __init__(self, server_url: str, timeout: float = 30.0, user_agent: str = "APIInsightsClient/1.0"):
        self.server_url = server_url.rstrip('/') + '/'
        self.timeout = ClientTimeout(total=timeout)
        self.user_agent = user_agent
        self._session: Optional[ClientSession] = None

        logger.info(f"HTTP transport initialized for server: {self.server_url}")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=10,
                keepalive_timeout=30,
                enable_cleanup_closed=True
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers={
                    'User-Agent': self.user_agent,
                    'Content-Type': 'application/json'
                }
            )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def build_url(self, path: str) -> str:
        return urljoin(self.server_url, path.lstrip('/'))

    async def send(self, request: APIRequest) -> APIResponse:
        """
        Execute one HTTP exchange.

        Args:
            request: Request to send, headers included

        Returns:
            Response with decoded body

        Raises:
            TransportError: On connection failures and timeouts
        """
        await self._ensure_session()
        url = self.build_url(request.path)

        logger.debug(f"{request.method} {url}")
        try:
            async with self._session.request(
                method=request.method,
                url=url,
                json=request.json,
                params=request.params,
                headers=request.headers
            ) as response:
                body = await self._read_body(response)
                return APIResponse(
                    status=response.status,
                    body=body,
                    request=request,
                    headers=dict(response.headers)
                )

        except asyncio.TimeoutError as e:
            logger.warning(f"Request timed out: {request.method} {url}")
            raise TransportError(
                f"Request to {request.path} timed out",
                error_code=ErrorCode.NETWORK_TIMEOUT,
                context={'method': request.method, 'path': request.path},
                cause=e
            ) from e
        except (ClientError, OSError) as e:
            logger.warning(f"Network error on {request.method} {url}: {e}")
            raise TransportError(
                f"Network request to {request.path} failed: {e}",
                error_code=ErrorCode.NETWORK_CONNECTION_FAILED,
                context={'method': request.method, 'path': request.path},
                cause=e
            ) from e

    async def _read_body(self, response: aiohttp.ClientResponse) -> Any:
        """Decode a JSON body, falling back to text; empty bodies become None."""
        text = await response.text()
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
