"""
Unit tests for RefreshCoordinator.

Tests the idle/refreshing state machine directly: the stale token shortcut,
queue settlement on success, failure and cancellation, and session invalid
notification.
"""

import asyncio
from unittest.mock import Mock

import pytest

from api_insights.client.auth.refresh_coordinator import RefreshCoordinator
from api_insights.client.auth.token_storage import MemoryTokenStorage
from api_insights.shared.exceptions import (
    AuthFatalError, ErrorCode, TokenStorageError, TransportError
)
from api_insights.shared.models import TokenSet

REFRESH_PATH = '/api/v1/auth/token/refresh/'


class WriteFailingStorage(MemoryTokenStorage):
    """Memory storage whose non-empty writes fail."""

    def _persist(self, tokens: TokenSet) -> None:
        if not tokens.is_empty():
            raise TokenStorageError("disk full")


class TestRefreshCoordinator:
    """Test RefreshCoordinator behavior."""

    @pytest.fixture
    def audit_logger(self):
        """Create mock audit logger."""
        return Mock()

    @pytest.fixture
    def coordinator(self, token_storage, fake_transport, audit_logger):
        """Create coordinator over the shared fixtures."""
        return RefreshCoordinator(token_storage, fake_transport, REFRESH_PATH, audit_logger=audit_logger)

    @pytest.mark.asyncio
    async def test_refresh_stores_new_pair(self, coordinator, fake_transport, token_storage, audit_logger):
        """Test a successful refresh stores and returns the new access token."""
        fake_transport.respond('POST', REFRESH_PATH, 200, {'access': 'T2', 'refresh': 'R2'})

        token = await coordinator.obtain_access_token(stale_token='T1')

        assert token == 'T2'
        assert token_storage.snapshot() == TokenSet(access='T2', refresh='R2')
        assert coordinator.refresh_count == 1
        audit_logger.log_token_refresh.assert_called_once_with(True, queued_callers=0)

    @pytest.mark.asyncio
    async def test_enveloped_refresh_response_is_accepted(self, coordinator, fake_transport):
        """Test a refresh response wrapped in a success envelope is unwrapped."""
        fake_transport.respond('POST', REFRESH_PATH, 200, {'success': True, 'data': {'access': 'T3'}})

        assert await coordinator.obtain_access_token(stale_token='T1') == 'T3'

    @pytest.mark.asyncio
    async def test_stale_token_shortcut_skips_refresh(self, coordinator, fake_transport, token_storage):
        """Test a late 401 for an already replaced token reuses the current token."""
        token_storage.set_pair('T2', 'R2')

        token = await coordinator.obtain_access_token(stale_token='T1')

        assert token == 'T2'
        assert fake_transport.sent == []
        assert coordinator.refresh_count == 0

    @pytest.mark.asyncio
    async def test_queued_callers_resolve_in_arrival_order(self, coordinator, fake_transport, helpers):
        """Test queued callers are resolved first in first out."""
        release = asyncio.Event()
        fake_transport.route('POST', REFRESH_PATH, helpers.gated(release, 200, {'access': 'T2'}))
        order = []

        async def caller(name):
            token = await coordinator.obtain_access_token(stale_token='T1')
            order.append(name)
            return token

        leader = asyncio.ensure_future(caller('leader'))
        await helpers.wait_until(lambda: coordinator.is_refreshing)
        waiters = [asyncio.ensure_future(caller(f'w{i}')) for i in range(3)]
        await helpers.wait_until(lambda: coordinator.pending_count == 3)

        release.set()
        tokens = await asyncio.gather(leader, *waiters)

        assert tokens == ['T2'] * 4
        assert order[1:] == ['w0', 'w1', 'w2']
        assert len(fake_transport.calls_to(REFRESH_PATH)) == 1

    @pytest.mark.asyncio
    async def test_malformed_refresh_response_is_fatal(self, coordinator, fake_transport, token_storage):
        """Test a refresh response without an access token ends the session."""
        fake_transport.respond('POST', REFRESH_PATH, 200, {'unexpected': True})

        with pytest.raises(AuthFatalError) as exc_info:
            await coordinator.obtain_access_token(stale_token='T1')

        assert exc_info.value.error_code == ErrorCode.AUTH_REFRESH_FAILED
        assert token_storage.snapshot().is_empty()

    @pytest.mark.asyncio
    async def test_transport_failure_during_refresh_is_fatal(self, coordinator, fake_transport, token_storage):
        """Test a network failure of the refresh call is treated as a refresh failure."""
        def fail(request):
            raise TransportError("connection reset")
        fake_transport.route('POST', REFRESH_PATH, fail)

        with pytest.raises(AuthFatalError) as exc_info:
            await coordinator.obtain_access_token(stale_token='T1')

        assert isinstance(exc_info.value.cause, TransportError)
        assert token_storage.snapshot().is_empty()

    @pytest.mark.asyncio
    async def test_storage_failure_during_refresh_is_fatal(self, fake_transport, audit_logger):
        """Test failing to persist refreshed tokens ends the session."""
        storage = WriteFailingStorage(TokenSet(access='T1', refresh='R1'))
        coordinator = RefreshCoordinator(storage, fake_transport, REFRESH_PATH, audit_logger=audit_logger)
        fake_transport.respond('POST', REFRESH_PATH, 200, {'access': 'T2'})

        with pytest.raises(AuthFatalError):
            await coordinator.obtain_access_token(stale_token='T1')

        assert storage.snapshot().is_empty()

    @pytest.mark.asyncio
    async def test_session_invalid_callbacks_are_isolated(self, coordinator, fake_transport):
        """Test a raising callback does not prevent later callbacks."""
        fake_transport.respond('POST', REFRESH_PATH, 401, {'detail': 'Token is invalid'})
        broken = Mock(side_effect=RuntimeError("boom"))
        healthy = Mock()
        coordinator.add_session_invalid_callback(broken)
        coordinator.add_session_invalid_callback(healthy)

        with pytest.raises(AuthFatalError) as exc_info:
            await coordinator.obtain_access_token(stale_token='T1')

        broken.assert_called_once_with(exc_info.value)
        healthy.assert_called_once_with(exc_info.value)

    @pytest.mark.asyncio
    async def test_failure_is_audited(self, coordinator, fake_transport, audit_logger):
        """Test refresh failures are written to the audit log."""
        fake_transport.respond('POST', REFRESH_PATH, 401, {'detail': 'Token is invalid'})

        with pytest.raises(AuthFatalError):
            await coordinator.obtain_access_token(stale_token='T1')

        audit_logger.log_token_refresh.assert_called_once()
        args, kwargs = audit_logger.log_token_refresh.call_args
        assert args == (False,)
        assert 'Token is invalid' in kwargs['failure_reason']

    @pytest.mark.asyncio
    async def test_cancelled_leader_rejects_queue_with_transport_error(self, coordinator, fake_transport, token_storage, helpers):
        """Test cancelling the refreshing caller settles every queued caller."""
        release = asyncio.Event()
        fake_transport.route('POST', REFRESH_PATH, helpers.gated(release, 200, {'access': 'T2'}))

        leader = asyncio.ensure_future(coordinator.obtain_access_token(stale_token='T1'))
        await helpers.wait_until(lambda: coordinator.is_refreshing)
        waiter = asyncio.ensure_future(coordinator.obtain_access_token(stale_token='T1'))
        await helpers.wait_until(lambda: coordinator.pending_count == 1)

        leader.cancel()

        with pytest.raises(asyncio.CancelledError):
            await leader
        with pytest.raises(TransportError) as exc_info:
            await waiter

        assert exc_info.value.error_code == ErrorCode.NETWORK_INTERRUPTED
        assert not coordinator.is_refreshing
        assert coordinator.pending_count == 0
        # Cancellation is not a session failure
        assert token_storage.snapshot() == TokenSet(access='T1', refresh='R1')

    @pytest.mark.asyncio
    async def test_next_burst_after_failure_starts_fresh(self, coordinator, fake_transport, token_storage):
        """Test the coordinator returns to idle and can refresh again."""
        fake_transport.respond('POST', REFRESH_PATH, 401, {'detail': 'Token is invalid'})
        with pytest.raises(AuthFatalError):
            await coordinator.obtain_access_token(stale_token='T1')

        token_storage.set_pair('T5', 'R5')
        fake_transport.respond('POST', REFRESH_PATH, 200, {'access': 'T6'})

        assert await coordinator.obtain_access_token(stale_token='T5') == 'T6'
        assert token_storage.get_refresh_token() == 'R5'
