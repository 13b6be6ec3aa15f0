"""
Single-flight access token refresh for the API Insights client.

When a burst of in-flight requests all discover an expired access token,
exactly one refresh call is issued. Every other caller is parked on a
future and resumed, in arrival order, once that call settles.
"""

import asyncio
import logging
from typing import Optional, Callable, List

from api_insights.client.envelope import extract_error, normalize_envelope
from api_insights.client.transport import APIRequest
from api_insights.shared.exceptions import (
    AuthFatalError, ErrorCode, InsightsClientError, TransportError
)
from api_insights.shared.interfaces import ITokenStorage, ITransport
from api_insights.shared.logging_config import AuditLogger
from api_insights.shared.models import TokenKind, TokenPair

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_PATH = '/api/v1/auth/token/refresh/'

SessionInvalidCallback = Callable[[AuthFatalError], None]


class RefreshCoordinator:
    """
    Serializes token refresh attempts.

    The coordinator is either idle or refreshing. The first eligible 401
    seen while idle starts a refresh; 401s arriving while a refresh is in
    flight enqueue a pending caller instead. All pending callers are settled
    before the coordinator becomes idle again. Nothing outside this class
    touches the refreshing flag or the queue.
    """

    def __init__(
        self,
        token_storage: ITokenStorage,
        transport: ITransport,
        refresh_path: str = DEFAULT_REFRESH_PATH,
        on_session_invalid: Optional[SessionInvalidCallback] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.token_storage = token_storage
        self.transport = transport
        self.refresh_path = refresh_path
        self._audit = audit_logger or AuditLogger()

        self._refreshing = False
        self._queue: List[asyncio.Future] = []
        self._refresh_count = 0

        self._session_invalid_callbacks: List[SessionInvalidCallback] = []
        if on_session_invalid:
            self._session_invalid_callbacks.append(on_session_invalid)

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def refresh_count(self) -> int:
        """Number of refresh calls issued to the server so far."""
        return self._refresh_count

    def add_session_invalid_callback(self, callback: SessionInvalidCallback) -> None:
        """
        Add callback invoked when the session becomes unrecoverable.

        Args:
            callback: Function called with the AuthFatalError that ended the session
        """
        self._session_invalid_callbacks.append(callback)

    async def obtain_access_token(self, stale_token: Optional[str] = None) -> str:
        """
        Get an access token that replaces ``stale_token``.

        Args:
            stale_token: The access token the rejected request was sent with

        Returns:
            A fresh access token

        Raises:
            AuthFatalError: If no refresh token is stored or the refresh fails
            TransportError: If the refresh this caller waited on was interrupted
        """
        if self._refreshing:
            future = asyncio.get_running_loop().create_future()
            self._queue.append(future)
            logger.debug(f"Refresh in progress, caller queued (position {len(self._queue)})")
            return await future

        current = self.token_storage.get(TokenKind.ACCESS)
        if current and current != stale_token:
            # Another refresh finished after this request was sent
            logger.debug("Access token already replaced, skipping refresh")
            return current

        self._refreshing = True
        try:
            try:
                pair = await self._request_new_tokens()
            except asyncio.CancelledError:
                self._abandon_queue()
                raise
            except AuthFatalError as error:
                self._fail(error)
                raise
            self._resolve_queue(pair.access)
            return pair.access
        finally:
            self._refreshing = False

    async def _request_new_tokens(self) -> TokenPair:
        refresh_token = self.token_storage.get(TokenKind.REFRESH)
        if not refresh_token:
            logger.warning("Access token rejected and no refresh token is stored")
            raise AuthFatalError(
                "Session expired: no refresh token available",
                error_code=ErrorCode.AUTH_NO_REFRESH_TOKEN,
                status=401
            )

        self._refresh_count += 1
        logger.info("Refreshing access token")
        request = APIRequest(method='POST', path=self.refresh_path, json={'refresh': refresh_token})

        try:
            response = await self.transport.send(request)
        except InsightsClientError as e:
            raise AuthFatalError(
                f"Token refresh failed: {e.message}",
                error_code=ErrorCode.AUTH_REFRESH_FAILED,
                cause=e
            ) from e
        except Exception as e:
            raise AuthFatalError(
                f"Token refresh failed: {e}",
                error_code=ErrorCode.AUTH_REFRESH_FAILED,
                cause=e
            ) from e

        if not response.ok:
            info = extract_error(response.body)
            raise AuthFatalError(
                f"Token refresh rejected ({response.status}): {info['message'] or 'Unauthorized'}",
                error_code=ErrorCode.AUTH_REFRESH_FAILED,
                status=response.status,
                code=info['code'],
                details=info['details'],
                request_id=info['request_id']
            )

        payload = normalize_envelope(response.body)
        try:
            if not isinstance(payload, dict):
                raise ValueError("Refresh response is not an object")
            pair = TokenPair.from_dict(payload)
        except ValueError as e:
            raise AuthFatalError(
                f"Malformed token refresh response: {e}",
                error_code=ErrorCode.AUTH_REFRESH_FAILED,
                status=response.status,
                cause=e
            ) from e

        try:
            # Keep the current refresh token unless the server rotated it
            self.token_storage.set_pair(pair.access, pair.refresh or refresh_token)
        except InsightsClientError as e:
            raise AuthFatalError(
                f"Could not store refreshed tokens: {e.message}",
                error_code=ErrorCode.AUTH_REFRESH_FAILED,
                cause=e
            ) from e

        return pair

    def _drain(self) -> List[asyncio.Future]:
        queued, self._queue = self._queue, []
        return queued

    def _resolve_queue(self, access_token: str) -> None:
        queued = self._drain()
        for future in queued:
            if not future.done():
                future.set_result(access_token)

        logger.info(f"Access token refreshed, resuming {len(queued)} queued request(s)")
        self._audit.log_token_refresh(True, queued_callers=len(queued))

    def _fail(self, error: AuthFatalError) -> None:
        queued = self._drain()
        for future in queued:
            if not future.done():
                future.set_exception(error)

        try:
            self.token_storage.clear_all()
        except InsightsClientError as e:
            logger.error(f"Failed to clear credentials after refresh failure: {e}")

        logger.warning(f"Token refresh failed, rejected {len(queued)} queued request(s): {error.message}")
        self._audit.log_token_refresh(False, queued_callers=len(queued), failure_reason=error.message)
        self._notify_session_invalid(error)

    def _abandon_queue(self) -> None:
        queued = self._drain()
        if not queued:
            return

        error = TransportError(
            "Token refresh was interrupted",
            error_code=ErrorCode.NETWORK_INTERRUPTED
        )
        for future in queued:
            if not future.done():
                future.set_exception(error)
        logger.warning(f"Token refresh interrupted, rejected {len(queued)} queued request(s)")

    def _notify_session_invalid(self, error: AuthFatalError) -> None:
        """Notify callbacks that the session is no longer usable."""
        for callback in self._session_invalid_callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Error in session invalid callback: {e}")
