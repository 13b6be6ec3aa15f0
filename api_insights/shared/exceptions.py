"""
Exception hierarchy for the API Insights client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions so that every failure leaving the request pipeline
falls into one of a small number of well-known categories.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the API Insights client."""

    # Authentication Errors (1000-1099)
    AUTH_TOKEN_EXPIRED = "AUTH_1001"
    AUTH_REFRESH_FAILED = "AUTH_1002"
    AUTH_NO_REFRESH_TOKEN = "AUTH_1003"
    AUTH_UNAUTHORIZED = "AUTH_1004"
    AUTH_CHALLENGE_MISSING = "AUTH_1005"

    # Network and Communication Errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"
    NETWORK_INTERRUPTED = "NETWORK_2003"

    # API Errors (3000-3099)
    API_BAD_REQUEST = "API_3001"
    API_FORBIDDEN = "API_3002"
    API_NOT_FOUND = "API_3003"
    API_CONFLICT = "API_3004"
    API_RATE_LIMITED = "API_3005"
    API_SERVER_ERROR = "API_3006"
    API_UNEXPECTED_STATUS = "API_3007"
    API_MALFORMED_RESPONSE = "API_3008"

    # Credential Storage Errors (4000-4099)
    STORAGE_WRITE_FAILED = "STORAGE_4001"
    STORAGE_READ_FAILED = "STORAGE_4002"

    # Validation Errors (5000-5099)
    VALIDATION_INVALID_INPUT = "VALIDATION_5001"
    VALIDATION_MISSING_REQUIRED_FIELD = "VALIDATION_5002"

    # Configuration Errors (8000-8099)
    CONFIG_FILE_NOT_FOUND = "CONFIG_8001"
    CONFIG_INVALID_VALUE = "CONFIG_8002"

    # Internal Errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    RECONNECT = "reconnect"
    REFRESH_TOKEN = "refresh_token"
    REAUTHENTICATE = "reauthenticate"
    USER_INTERVENTION = "user_intervention"
    CONTACT_ADMIN = "contact_admin"
    IGNORE = "ignore"


class InsightsClientError(Exception):
    """
    Base exception class for all API Insights client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class TransportError(InsightsClientError):
    """Network, DNS and timeout failures. Never retried by the pipeline."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY, RecoveryAction.RECONNECT],
            **kwargs
        )


class AuthExpiredError(InsightsClientError):
    """
    A refresh-eligible 401.

    Recovered transparently by the refresh coordinator; callers only see it
    when they inspect the cause chain of a later failure.
    """

    def __init__(self, message: str = "Access token expired", **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.AUTH_TOKEN_EXPIRED,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.REFRESH_TOKEN],
            **kwargs
        )


class AuthFatalError(InsightsClientError):
    """
    Unrecoverable authentication failure.

    Raised when no refresh token is stored, when the refresh call itself
    fails, or when a 401 is not eligible for refresh (already retried, or
    the login/refresh endpoints themselves).
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.AUTH_UNAUTHORIZED,
        status: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.REAUTHENTICATE],
            **kwargs
        )
        self.status = status
        self.code = code
        self.details = details or {}
        self.request_id = request_id


class DomainError(InsightsClientError):
    """Any non-401 error response. Surfaced as-is and never retried."""

    STATUS_CODE_MAPPING = {
        400: ErrorCode.API_BAD_REQUEST,
        403: ErrorCode.API_FORBIDDEN,
        404: ErrorCode.API_NOT_FOUND,
        409: ErrorCode.API_CONFLICT,
        429: ErrorCode.API_RATE_LIMITED,
    }

    def __init__(
        self,
        message: str,
        status: int,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
        **kwargs
    ):
        if 'error_code' not in kwargs:
            if status >= 500:
                kwargs['error_code'] = ErrorCode.API_SERVER_ERROR
            else:
                kwargs['error_code'] = self.STATUS_CODE_MAPPING.get(
                    status, ErrorCode.API_UNEXPECTED_STATUS
                )
        context = kwargs.pop('context', {})
        context['status'] = status
        if request_id:
            context['request_id'] = request_id

        super().__init__(
            message=message,
            severity=ErrorSeverity.HIGH if status >= 500 else ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )
        self.status = status
        self.code = code
        self.details = details or {}
        self.request_id = request_id


class TokenStorageError(InsightsClientError):
    """Credential storage failures."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


class ValidationError(InsightsClientError):
    """Input validation related errors."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if field_name:
            context['field_name'] = field_name

        error_code = kwargs.pop('error_code', ErrorCode.VALIDATION_INVALID_INPUT)
        severity = kwargs.pop('severity', ErrorSeverity.LOW)
        recovery_actions = kwargs.pop('recovery_actions', [RecoveryAction.USER_INTERVENTION])

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            recovery_actions=recovery_actions,
            context=context,
            **kwargs
        )


class ConfigurationError(InsightsClientError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> InsightsClientError:
    """
    Convert a generic exception to a structured InsightsClientError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured InsightsClientError
    """
    if isinstance(exception, InsightsClientError):
        return exception

    if isinstance(exception, TimeoutError):
        return TransportError(
            str(exception) or "Request timed out",
            error_code=ErrorCode.NETWORK_TIMEOUT,
            context=context,
            cause=exception
        )
    if isinstance(exception, (ConnectionError, OSError)):
        return TransportError(
            str(exception),
            error_code=ErrorCode.NETWORK_CONNECTION_FAILED,
            context=context,
            cause=exception
        )
    if isinstance(exception, ValueError):
        return ValidationError(str(exception), context=context, cause=exception)

    return InsightsClientError(
        message=str(exception),
        error_code=default_error_code,
        context=context,
        cause=exception
    )
