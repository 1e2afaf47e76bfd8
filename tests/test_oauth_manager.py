"""Tests for the Google consent flow and per-user integration state"""

import asyncio
from urllib.parse import parse_qs, urlparse

import pytest

from aeo_dashboard.integrations.google_workspace.auth_window import RelayWindowOpener
from aeo_dashboard.integrations.google_workspace.errors import (
    ErrorKind,
    GoogleAuthorizationError,
    GoogleNotConfiguredError,
    GoogleTokenExpiredError,
)
from aeo_dashboard.integrations.google_workspace.grant_store import DelegatedAccessGrant, MemoryGrantStore
from aeo_dashboard.integrations.google_workspace.oauth_manager import (
    NOT_CONFIGURED_MESSAGE,
    NOT_SIGNED_IN_MESSAGE,
    IntegrationStatus,
)

from .conftest import FakeClock, FakeWindowOpener, StubAuthManager

REDIRECT = 'http://localhost:8000/'


def _manager(opener=None, client_id='test-client.apps.googleusercontent.com', **kwargs):
    kwargs.setdefault('poll_interval', 0.01)
    return StubAuthManager(
        grant_store=kwargs.pop('grant_store', MemoryGrantStore()),
        window_opener=opener or RelayWindowOpener(),
        client_id=client_id,
        redirect_uri=REDIRECT,
        app_origin='http://localhost:8000',
        **kwargs,
    )


def _redirect(state, **params):
    fragment = '&'.join(f"{k}={v}" for k, v in {'state': state, **params}.items())
    return f"{REDIRECT}#{fragment}"


def _grant(expires_at, token='stored-token'):
    return DelegatedAccessGrant(
        access_token=token, expires_at=expires_at, scopes='s', connected_at='2024-01-01T00:00:00+00:00',
    )


# =============================================================================
# Consent flow
# =============================================================================

def test_relayed_redirect_connects_and_saves_grant():
    async def run():
        opener = RelayWindowOpener()
        store = MemoryGrantStore()
        manager = _manager(opener, grant_store=store, clock=FakeClock(1_000))

        pending = await manager.start_connect('u1')
        query = parse_qs(urlparse(pending.authorization_url).query)
        assert query['state'] == [pending.state]
        assert query['response_type'] == ['token']
        assert manager.get_state('u1').connecting

        assert opener.deliver(_redirect(pending.state, access_token='abc', expires_in='3600', scope='x'))
        state = await pending.wait()

        assert state.status is IntegrationStatus.CONNECTED
        assert not state.connecting
        assert opener.open_count == 0
        assert manager.session_storage == {}
        saved = await store.load_grant('u1')
        assert saved.access_token == 'abc'
        assert saved.expires_at == 1_000 + 3600 * 1000
        assert saved.account_email == 'owner@example.com'
        assert await manager.get_access_token('u1') == 'abc'

    asyncio.run(run())


def test_state_mismatch_is_rejected():
    async def run():
        opener = FakeWindowOpener()
        store = MemoryGrantStore()
        manager = _manager(opener, grant_store=store)

        pending = await manager.start_connect('u1')
        opener.windows[0].url = _redirect('forged', access_token='evil')
        state = await pending.wait()

        assert state.status is IntegrationStatus.ERROR
        assert state.error == "OAuth state mismatch: possible CSRF attack"
        assert await store.load_grant('u1') is None
        assert opener.windows[0].closed

    asyncio.run(run())


def test_google_error_in_fragment():
    async def run():
        opener = FakeWindowOpener()
        manager = _manager(opener)
        pending = await manager.start_connect('u1')
        opener.windows[0].url = _redirect(pending.state, error='access_denied')
        return await pending.wait()

    assert asyncio.run(run()).error == "Google OAuth error: access_denied"


def test_missing_access_token():
    async def run():
        opener = FakeWindowOpener()
        manager = _manager(opener)
        pending = await manager.start_connect('u1')
        opener.windows[0].url = _redirect(pending.state)
        return await pending.wait()

    assert asyncio.run(run()).error == "No access token returned"


def test_closed_popup():
    async def run():
        opener = RelayWindowOpener()
        manager = _manager(opener)
        pending = await manager.start_connect('u1')
        assert opener.close(pending.state)
        return await pending.wait(), manager

    state, manager = asyncio.run(run())
    assert state.error == "OAuth popup was closed"
    assert manager.session_storage == {}


def test_timeout_closes_window():
    async def run():
        opener = FakeWindowOpener()
        manager = _manager(opener, timeout=0.05)
        pending = await manager.start_connect('u1')
        return await pending.wait(), opener.windows[0], manager

    state, window, manager = asyncio.run(run())
    assert state.status is IntegrationStatus.ERROR
    assert state.error == "OAuth timed out"
    assert window.closed
    assert manager.session_storage == {}


def test_blocked_popup():
    async def run():
        manager = _manager(FakeWindowOpener(blocked=True))
        with pytest.raises(GoogleAuthorizationError):
            await manager.start_connect('u1')
        return manager

    manager = asyncio.run(run())
    state = manager.get_state('u1')
    assert state.status is IntegrationStatus.ERROR
    assert state.error == "Popup blocked. Please allow popups for this site."
    assert manager.session_storage == {}


def test_configuration_errors_leave_state_untouched():
    async def run():
        unconfigured = _manager(client_id='')
        with pytest.raises(GoogleNotConfiguredError) as no_client:
            await unconfigured.start_connect('u1')
        with pytest.raises(GoogleNotConfiguredError) as no_user:
            await _manager().start_connect(None)
        return unconfigured, no_client.value, no_user.value

    manager, no_client, no_user = asyncio.run(run())
    assert str(no_client) == NOT_CONFIGURED_MESSAGE
    assert str(no_user) == NOT_SIGNED_IN_MESSAGE
    assert no_client.kind is ErrorKind.CONFIGURATION
    assert manager.get_state('u1').status is IntegrationStatus.IDLE


def test_placeholder_client_id_is_not_configured():
    assert not _manager(client_id='YOUR_CLIENT_ID').is_configured


def test_second_flow_for_same_user_is_refused():
    async def run():
        manager = _manager(FakeWindowOpener())
        first = await manager.start_connect('u1')
        with pytest.raises(GoogleAuthorizationError):
            await manager.start_connect('u1')
        other = await manager.start_connect('u2')
        first.cancel()
        other.cancel()
        return await first.wait()

    state = asyncio.run(run())
    assert state.status is IntegrationStatus.ERROR
    assert not state.connecting


def test_disconnect_cancels_flow_and_clears_grant():
    async def run():
        store = MemoryGrantStore()
        await store.save_grant('u1', _grant(expires_at=10**15))
        opener = FakeWindowOpener()
        manager = _manager(opener, grant_store=store)

        pending = await manager.start_connect('u1')
        state = await manager.disconnect('u1')
        final = await pending.wait()
        await asyncio.sleep(0.01)
        return state, final, await store.load_grant('u1'), opener.windows[0]

    state, final, grant, window = asyncio.run(run())
    assert state.status is IntegrationStatus.DISCONNECTED
    assert final.status is IntegrationStatus.DISCONNECTED
    assert final.error is None
    assert grant is None
    assert window.closed


# =============================================================================
# Stored grants
# =============================================================================

def test_load_decides_status_from_stored_grant():
    async def run():
        clock = FakeClock(5_000)
        store = MemoryGrantStore()
        manager = _manager(grant_store=store, clock=clock)

        assert (await manager.load('nobody')).status is IntegrationStatus.DISCONNECTED

        await store.save_grant('old', _grant(expires_at=4_000))
        expired = await manager.load('old')
        assert expired.status is IntegrationStatus.EXPIRED
        assert expired.grant is not None

        await store.save_grant('fresh', _grant(expires_at=60_000))
        assert (await manager.load('fresh')).status is IntegrationStatus.CONNECTED

        manager.token_valid = False
        assert (await manager.load('fresh')).status is IntegrationStatus.EXPIRED

    asyncio.run(run())


def test_get_access_token_errors():
    async def run():
        clock = FakeClock(5_000)
        store = MemoryGrantStore()
        await store.save_grant('u1', _grant(expires_at=6_000))
        manager = _manager(grant_store=store, clock=clock)

        assert await manager.get_access_token('u1') == 'stored-token'

        clock.advance(2_000)
        with pytest.raises(GoogleTokenExpiredError):
            await manager.get_access_token('u1')
        assert manager.get_state('u1').status is IntegrationStatus.EXPIRED

        with pytest.raises(GoogleAuthorizationError):
            await manager.get_access_token('stranger')

    asyncio.run(run())


def test_mark_expired_keeps_grant_details():
    async def run():
        store = MemoryGrantStore()
        await store.save_grant('u1', _grant(expires_at=10**15))
        manager = _manager(grant_store=store)
        await manager.load('u1')
        return manager.mark_expired('u1').to_dict()

    state = asyncio.run(run())
    assert state['status'] == 'expired'
    assert state['connected'] is False
    assert 'access_token' not in state['grant']
