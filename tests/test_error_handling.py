"""
Tests for the structured error hierarchy and logging configuration.
"""

import json
import logging

import pytest

from api_insights.shared.exceptions import (
    AuthFatalError, DomainError, ErrorCode, ErrorSeverity, InsightsClientError,
    RecoveryAction, TransportError, ValidationError, handle_exception
)
from api_insights.shared.logging_config import (
    AuditLogger, DetailedFormatter, LogFormat, LogLevel, StructuredFormatter,
    log_structured_error, setup_logging
)


class TestExceptions:
    """Test the exception hierarchy."""

    @pytest.mark.parametrize("status,code", [
        (400, ErrorCode.API_BAD_REQUEST),
        (403, ErrorCode.API_FORBIDDEN),
        (404, ErrorCode.API_NOT_FOUND),
        (409, ErrorCode.API_CONFLICT),
        (429, ErrorCode.API_RATE_LIMITED),
        (418, ErrorCode.API_UNEXPECTED_STATUS),
        (502, ErrorCode.API_SERVER_ERROR),
    ])
    def test_domain_error_codes_follow_status(self, status, code):
        error = DomainError("failed", status=status)

        assert error.error_code == code
        assert error.context['status'] == status

    def test_domain_error_severity(self):
        assert DomainError("x", status=500).severity == ErrorSeverity.HIGH
        assert DomainError("x", status=400).severity == ErrorSeverity.MEDIUM

    def test_to_dict(self):
        """Test serialization includes code, context and cause."""
        cause = ConnectionResetError("reset by peer")
        error = TransportError("Network request failed", context={'path': '/x'}, cause=cause)

        data = error.to_dict()['error']

        assert data['code'] == ErrorCode.NETWORK_CONNECTION_FAILED.value
        assert data['context']['path'] == '/x'
        assert data['cause'] == {'type': 'ConnectionResetError', 'message': 'reset by peer'}
        assert RecoveryAction.RETRY.value in data['recovery_actions']

    def test_auth_fatal_requires_reauthentication(self):
        error = AuthFatalError("Session expired", status=401, code='token_not_valid')

        assert error.recovery_actions == [RecoveryAction.REAUTHENTICATE]
        assert error.details == {}

    @pytest.mark.parametrize("exception,expected_type,code", [
        (TimeoutError("slow"), TransportError, ErrorCode.NETWORK_TIMEOUT),
        (ConnectionRefusedError("refused"), TransportError, ErrorCode.NETWORK_CONNECTION_FAILED),
        (ValueError("bad"), ValidationError, ErrorCode.VALIDATION_INVALID_INPUT),
        (RuntimeError("odd"), InsightsClientError, ErrorCode.INTERNAL_UNEXPECTED_ERROR),
    ])
    def test_handle_exception_mapping(self, exception, expected_type, code):
        error = handle_exception(exception, {'operation': 'test'})

        assert type(error) is expected_type
        assert error.error_code == code
        assert error.cause is exception
        assert error.context['operation'] == 'test'

    def test_handle_exception_passes_structured_errors_through(self):
        error = ValidationError("bad field", field_name='email')

        assert handle_exception(error) is error


class TestLogging:
    """Test formatters, audit logging and setup."""

    def _record(self, **extra):
        record = logging.LogRecord('api_insights.test', logging.ERROR, __file__, 10, 'Something failed', None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_structured_formatter_includes_error(self):
        error = DomainError("Not found", status=404, request_id='req-9')
        record = self._record(error_info=error, endpoint='/x')

        entry = json.loads(StructuredFormatter().format(record))

        assert entry['message'] == 'Something failed'
        assert entry['error']['code'] == ErrorCode.API_NOT_FOUND.value
        assert entry['error']['context']['request_id'] == 'req-9'
        assert entry['extra'] == {'endpoint': '/x'}

    def test_detailed_formatter_appends_error_code(self):
        record = self._record(error_info=TransportError("down"))

        formatted = DetailedFormatter().format(record)

        assert 'Error Code: NETWORK_2001' in formatted

    def test_audit_logger_records_events(self, caplog):
        audit = AuditLogger()

        with caplog.at_level(logging.INFO, logger='api_insights.audit'):
            audit.log_authentication('ada@example.com', success=False, failure_reason='bad password')
            audit.log_token_refresh(True, queued_callers=3)

        first, second = caplog.records
        assert first.audit_info['event_type'] == 'authentication'
        assert first.audit_info['result'] == 'failure'
        assert first.audit_info['context'] == {'failure_reason': 'bad password'}
        assert second.audit_info['context'] == {'queued_callers': 3}

    def test_credentials_never_logged(self, caplog):
        """Test audit events carry no token values."""
        audit = AuditLogger()

        with caplog.at_level(logging.INFO, logger='api_insights.audit'):
            audit.log_authentication('ada@example.com', two_factor_required=True)

        assert caplog.records[0].audit_info['result'] == 'challenged'
        assert 'challenge_token' not in caplog.text

    def test_log_structured_error(self, caplog):
        logger = logging.getLogger('api_insights.test')
        error = AuthFatalError("Session expired")

        with caplog.at_level(logging.ERROR, logger='api_insights.test'):
            log_structured_error(logger, error, operation='refresh')

        assert caplog.records[0].error_info is error
        assert caplog.records[0].operation == 'refresh'

    def test_setup_logging_with_file(self, tmp_path, restore_logging):
        """Test file logging writes JSON lines and the audit stream can be split out."""
        log_file = tmp_path / 'logs' / 'client.log'
        audit_file = tmp_path / 'logs' / 'audit.log'

        loggers = setup_logging(
            log_level=LogLevel.INFO,
            log_format=LogFormat.JSON,
            log_file=str(log_file),
            enable_console=False,
            audit_file=str(audit_file)
        )
        logging.getLogger('api_insights.client.api_client').info("hello")
        AuditLogger().log_session_event('logged_out', user='ada@example.com')
        for handler in loggers['root'].handlers + loggers['audit'].handlers:
            handler.flush()

        assert json.loads(log_file.read_text().splitlines()[0])['message'] == 'hello'
        audit_entry = json.loads(audit_file.read_text().splitlines()[0])
        assert audit_entry['audit']['event_type'] == 'session'
        assert 'logged_out' not in log_file.read_text()
