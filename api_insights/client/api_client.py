"""
Authenticated HTTP API client for the API Insights backend.

Every network call funnels through ``InsightsAPIClient.request``: the
current access token is attached outbound, success envelopes are unwrapped
inbound, and expired tokens are recovered through the shared refresh
coordinator before the original call is replayed once.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Dict, Any, Callable

from api_insights.client.auth.refresh_coordinator import RefreshCoordinator
from api_insights.client.envelope import extract_error, normalize_envelope
from api_insights.client.transport import APIRequest, APIResponse, AiohttpTransport
from api_insights.shared.exceptions import AuthExpiredError, AuthFatalError, DomainError, ErrorCode
from api_insights.shared.interfaces import ITokenStorage, ITransport
from api_insights.shared.models import TokenKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthPaths:
    """Backend paths used by the authentication flow."""
    login: str = '/api/v1/auth/login/'
    refresh: str = '/api/v1/auth/token/refresh/'
    logout: str = '/api/v1/auth/logout/'
    profile: str = '/api/v1/auth/profile/'
    two_factor: str = '/api/v1/auth/2fa/challenge/'
    register: str = '/api/v1/auth/register/'
    password_reset: str = '/api/v1/auth/password-reset/'
    password_reset_confirm: str = '/api/v1/auth/password-reset/confirm/'
    verify_email: str = '/api/v1/auth/verify-email/'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuthPaths':
        known = {key: value for key, value in data.items() if key in cls.__dataclass_fields__ and value}
        return replace(cls(), **known)


class InsightsAPIClient:
    """
    HTTP API client shared by every feature of the application.

    Provides bearer token attachment, envelope normalization and
    transparent access token refresh.
    """

    def __init__(
        self,
        server_url: str,
        token_storage: ITokenStorage,
        transport: Optional[ITransport] = None,
        timeout: float = 30.0,
        auth_paths: Optional[AuthPaths] = None,
        on_session_invalid: Optional[Callable[[AuthFatalError], None]] = None
    ):
        self.server_url = server_url.rstrip('/')
        self.token_storage = token_storage
        self.transport = transport or AiohttpTransport(server_url, timeout=timeout)
        self.auth_paths = auth_paths or AuthPaths()

        self._coordinator = RefreshCoordinator(
            token_storage=token_storage,
            transport=self.transport,
            refresh_path=self.auth_paths.refresh,
            on_session_invalid=on_session_invalid
        )

        logger.info(f"API client initialized for server: {self.server_url}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self.transport.close()

    @property
    def coordinator(self) -> RefreshCoordinator:
        return self._coordinator

    def add_session_invalid_callback(self, callback: Callable[[AuthFatalError], None]) -> None:
        self._coordinator.add_session_invalid_callback(callback)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request('GET', path, params=params)

    async def post(self, path: str, json: Optional[Any] = None) -> Any:
        return await self.request('POST', path, json=json)

    async def put(self, path: str, json: Optional[Any] = None) -> Any:
        return await self.request('PUT', path, json=json)

    async def patch(self, path: str, json: Optional[Any] = None) -> Any:
        return await self.request('PATCH', path, json=json)

    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request('DELETE', path, params=params)

    async def request(
        self,
        method: str,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Make an HTTP request through the authenticated pipeline.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            path: API endpoint path
            json: Request body data
            params: Query parameters

        Returns:
            Normalized response payload

        Raises:
            TransportError: On network failure
            AuthFatalError: When the session cannot be recovered
            DomainError: On any other error status
        """
        request = APIRequest(method=method.upper(), path=path, json=json, params=params)
        self._attach_credentials(request, self.token_storage.get(TokenKind.ACCESS))

        response = await self.transport.send(request)
        try:
            return self._handle_response(response)
        except AuthExpiredError as expired:
            request.retried = True
            logger.debug(f"{expired.message} for {request.method} {request.path}, refreshing")
            token = await self._coordinator.obtain_access_token(stale_token=request.sent_token)

        self._attach_credentials(request, token)
        response = await self.transport.send(request)
        return self._handle_response(response)

    def _attach_credentials(self, request: APIRequest, token: Optional[str]) -> None:
        """Outbound stage: set or drop the bearer credential."""
        request.sent_token = token
        if token:
            request.headers['Authorization'] = f'Bearer {token}'
        else:
            request.headers.pop('Authorization', None)

    def is_refresh_eligible(self, request: APIRequest) -> bool:
        """
        A 401 may trigger a refresh only once per request, and never for the
        refresh or login endpoints themselves.
        """
        if request.retried:
            return False
        return not (
            self.auth_paths.refresh in request.path
            or self.auth_paths.login in request.path
        )

    def _handle_response(self, response: APIResponse) -> Any:
        """
        Inbound stage: unwrap success envelopes, classify errors.

        Refresh-eligible 401s raise AuthExpiredError, which ``request``
        recovers from and never lets escape.
        """
        if response.ok:
            return normalize_envelope(response.body)

        info = extract_error(response.body)
        request = response.request

        if response.status == 401 and self.is_refresh_eligible(request):
            raise AuthExpiredError(context={'method': request.method, 'path': request.path})

        if response.status == 401:
            raise AuthFatalError(
                info['message'] or "Authentication failed",
                error_code=ErrorCode.AUTH_UNAUTHORIZED,
                status=401,
                code=info['code'],
                details=info['details'],
                request_id=info['request_id'],
                context={'method': request.method, 'path': request.path}
            )

        logger.debug(f"{request.method} {request.path} failed with status {response.status}")
        raise DomainError(
            info['message'] or f"Request failed with status {response.status}",
            status=response.status,
            code=info['code'],
            details=info['details'],
            request_id=info['request_id'],
            context={'method': request.method, 'path': request.path}
        )
