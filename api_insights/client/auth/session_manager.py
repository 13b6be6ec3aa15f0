"""
Session Manager for the API Insights client.

This module holds the process-wide authentication state: the current user,
the login / two-factor / logout flow, and the reaction to the refresh
coordinator declaring the session unrecoverable.
"""

import logging
from typing import Optional, Dict, Any, Callable, List

from api_insights.client.api_client import InsightsAPIClient
from api_insights.client.auth.auth_api import AuthAPI
from api_insights.shared.exceptions import (
    AuthFatalError, ErrorCode, InsightsClientError, ValidationError, handle_exception
)
from api_insights.shared.interfaces import ITokenStorage
from api_insights.shared.logging_config import AuditLogger
from api_insights.shared.models import LoginResult, SessionState, TokenKind, TokenPair, User

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Manages the authenticated session on top of the shared API client.

    The session is derived state: a user is present iff an access token is
    stored and the last profile fetch succeeded.
    """

    def __init__(
        self,
        api_client: InsightsAPIClient,
        token_storage: Optional[ITokenStorage] = None,
        auth_api: Optional[AuthAPI] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.api_client = api_client
        self.token_storage = token_storage or api_client.token_storage
        self.auth_api = auth_api or AuthAPI(api_client)
        self._audit = audit_logger or AuditLogger()

        self._user: Optional[User] = None
        self._state = SessionState.ANONYMOUS
        self._is_loading = True

        self._auth_callbacks: List[Callable[[bool], None]] = []

        api_client.add_session_invalid_callback(self._on_session_invalid)

        logger.info("Session manager initialized")

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    def add_auth_callback(self, callback: Callable[[bool], None]) -> None:
        """
        Add callback for authentication state changes.

        Args:
            callback: Function called with authentication status (bool)
        """
        self._auth_callbacks.append(callback)

    def _notify_auth_change(self, is_authenticated: bool) -> None:
        """Notify callbacks of authentication state change."""
        for callback in self._auth_callbacks:
            try:
                callback(is_authenticated)
            except Exception as e:
                logger.error(f"Error in auth callback: {e}")

    def _set_user(self, user: Optional[User]) -> None:
        was_authenticated = self.is_authenticated
        self._user = user

        if user is not None:
            self._state = SessionState.AUTHENTICATED
        elif self.token_storage.get(TokenKind.CHALLENGE):
            self._state = SessionState.CHALLENGED
        else:
            self._state = SessionState.ANONYMOUS

        if was_authenticated != self.is_authenticated:
            self._notify_auth_change(self.is_authenticated)

    def _on_session_invalid(self, error: AuthFatalError) -> None:
        email = self._user.email if self._user else None
        self._set_user(None)
        self._audit.log_session_event("invalidated", user=email, reason=error.message)

    async def initialize(self) -> Optional[User]:
        """Restore the session from stored credentials."""
        return await self.refresh_user()

    async def refresh_user(self) -> Optional[User]:
        """
        Re-fetch the current user's profile without touching tokens.

        A failed fetch drops the session and clears stored credentials.

        Returns:
            The current user, or None when unauthenticated
        """
        if not self.token_storage.is_authenticated():
            self._set_user(None)
            self._is_loading = False
            return None

        try:
            profile = await self.auth_api.get_profile()
            user = User.from_dict(profile)
        except (InsightsClientError, ValueError) as e:
            logger.warning(f"Failed to load user profile: {e}")
            self._audit.log_error(handle_exception(e, {'operation': 'refresh_user'}))
            self.token_storage.clear_all()
            self._set_user(None)
            return None
        finally:
            self._is_loading = False

        self._set_user(user)
        return user

    def _extract_token_pair(self, data: Any) -> TokenPair:
        tokens = data.get('tokens') if isinstance(data, dict) else None
        if not isinstance(tokens, dict) or not tokens.get('refresh'):
            raise InsightsClientError(
                "Authentication response did not contain a token pair",
                error_code=ErrorCode.API_MALFORMED_RESPONSE
            )
        try:
            return TokenPair.from_dict(tokens)
        except ValueError as e:
            raise InsightsClientError(
                f"Authentication response contained an invalid token pair: {e}",
                error_code=ErrorCode.API_MALFORMED_RESPONSE,
                cause=e
            ) from e

    async def _start_session(self, pair: TokenPair) -> Optional[User]:
        self.token_storage.set_pair(pair.access, pair.refresh)
        return await self.refresh_user()

    async def login(self, email: str, password: str) -> LoginResult:
        """
        Log in with email and password.

        Args:
            email: Account email
            password: Account password

        Returns:
            LoginResult; ``two_factor_required`` is set when a second factor
            must be verified with ``verify_two_factor``
        """
        logger.info(f"Logging in as {email}")
        try:
            data = await self.auth_api.login(email, password)

            if isinstance(data, dict) and data.get('two_factor_required'):
                challenge_token = data.get('challenge_token')
                if not challenge_token:
                    raise InsightsClientError(
                        "Two-factor login response did not contain a challenge token",
                        error_code=ErrorCode.API_MALFORMED_RESPONSE
                    )
                self.token_storage.set_challenge(challenge_token)
                self._set_user(None)
                self._audit.log_authentication(email, two_factor_required=True)
                return LoginResult(success=True, two_factor_required=True, challenge_token=challenge_token)

            pair = self._extract_token_pair(data)
        except InsightsClientError as e:
            self._audit.log_authentication(email, success=False, failure_reason=e.message)
            raise

        user = await self._start_session(pair)
        self._audit.log_authentication(email, success=user is not None)
        return LoginResult(success=user is not None, user=user)

    async def verify_two_factor(self, code: str) -> LoginResult:
        """
        Complete a challenged login with a second-factor code.

        Args:
            code: TOTP or recovery code

        Returns:
            LoginResult for the now authenticated session
        """
        challenge_token = self.token_storage.get(TokenKind.CHALLENGE)
        if not challenge_token:
            raise ValidationError(
                "No two-factor challenge in progress",
                field_name="challenge_token",
                error_code=ErrorCode.AUTH_CHALLENGE_MISSING
            )

        data = await self.auth_api.two_factor_challenge(code, challenge_token)
        pair = self._extract_token_pair(data)

        user = await self._start_session(pair)
        self._audit.log_session_event("two_factor_verified", user=user.email if user else None)
        return LoginResult(success=user is not None, user=user)

    def abandon_challenge(self) -> None:
        """Drop a pending two-factor challenge and return to anonymous."""
        self.token_storage.clear_challenge()
        self._set_user(None)
        logger.info("Two-factor challenge abandoned")

    async def logout(self) -> None:
        """
        Log out. Server-side revocation is best effort; local credentials
        are always cleared.
        """
        email = self._user.email if self._user else None
        refresh_token = self.token_storage.get(TokenKind.REFRESH)

        try:
            if refresh_token:
                await self.auth_api.logout(refresh_token)
        except InsightsClientError as e:
            logger.warning(f"Server-side logout failed, clearing local session anyway: {e}")
        finally:
            self.token_storage.clear_all()
            self._set_user(None)

        self._audit.log_session_event("logged_out", user=email)

    async def register(
        self,
        email: str,
        password: str,
        password_confirm: str,
        **profile: Optional[str]
    ) -> Optional[User]:
        """
        Create an account and start a session with the returned tokens.

        Args:
            email: Account email
            password: Account password
            password_confirm: Password confirmation
            **profile: Optional first_name, last_name, company_name

        Returns:
            The newly registered user
        """
        data = await self.auth_api.register(email, password, password_confirm, **profile)
        pair = self._extract_token_pair(data)
        user = await self._start_session(pair)
        self._audit.log_session_event("registered", user=email)
        return user

    async def request_password_reset(self, email: str) -> Optional[str]:
        return self._message_of(await self.auth_api.request_password_reset(email))

    async def confirm_password_reset(self, token: str, new_password: str) -> Optional[str]:
        return self._message_of(await self.auth_api.confirm_password_reset(token, new_password))

    async def verify_email(self, token: str) -> Optional[str]:
        return self._message_of(await self.auth_api.verify_email(token))

    @staticmethod
    def _message_of(result: Any) -> Optional[str]:
        if isinstance(result, dict):
            return result.get('message')
        return result if isinstance(result, str) else None

    def get_status(self) -> Dict[str, Any]:
        """Summary of the session for display."""
        return {
            'state': self._state.value,
            'authenticated': self.is_authenticated,
            'user': self._user.email if self._user else None,
            'refreshing': self.api_client.coordinator.is_refreshing
        }
