# aeo_dashboard/integrations/google_workspace/oauth_manager.py
"""
Google Delegated Access Manager
Implicit-grant OAuth flow, grant persistence, and expiry tracking per user.

This module handles:
1. The consent round-trip (anti-CSRF state, window polling, fragment parsing)
2. Persisting the resulting grant through a GrantStore
3. Verifying stored grants against Google's tokeninfo endpoint
4. Tracking each user's integration state:

    idle -> loading -> connected | expired | disconnected | error

Only one consent window may be in flight per user; a second start is refused
so two flows never race for the same session-storage state token.
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, MutableMapping, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import aiohttp

from config.settings import settings

from .auth_window import AuthorizationWindow, AuthorizationWindowOpener
from .errors import GoogleAuthorizationError, GoogleNotConfiguredError, GoogleTokenExpiredError
from .grant_store import DelegatedAccessGrant, GrantStore

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKENINFO_URL = "https://www.googleapis.com/oauth2/v1/tokeninfo"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

OAUTH_SCOPES = [
    'https://www.googleapis.com/auth/webmasters.readonly',
    'https://www.googleapis.com/auth/analytics.readonly',
]

STATE_STORAGE_KEY = 'google-oauth-state'
POLL_INTERVAL_SECONDS = 0.5
AUTHORIZATION_TIMEOUT_SECONDS = 5 * 60
DEFAULT_EXPIRES_IN = 3600

VERIFY_TIMEOUT = aiohttp.ClientTimeout(total=10)

NOT_SIGNED_IN_MESSAGE = "You must be signed in to connect Google"
NOT_CONFIGURED_MESSAGE = "Google OAuth Client ID not configured. Add GOOGLE_CLIENT_ID to your environment."


def _now_ms() -> int:
    return int(time.time() * 1000)


class IntegrationStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    CONNECTED = "connected"
    EXPIRED = "expired"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class IntegrationState:
    status: IntegrationStatus = IntegrationStatus.IDLE
    grant: Optional[DelegatedAccessGrant] = None
    error: Optional[str] = None
    connecting: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'connected': self.status is IntegrationStatus.CONNECTED,
            'connecting': self.connecting,
            'error': self.error,
            'grant': self.grant.to_public_dict() if self.grant else None,
        }


@dataclass(frozen=True)
class TokenGrantResponse:
    access_token: str
    expires_at: int
    scopes: str


class PendingAuthorization:
    """A consent flow that has been started and may still be running."""

    def __init__(
        self,
        user_id: str,
        authorization_url: str,
        state: str,
        task: 'asyncio.Task[IntegrationState]',
        state_getter: Callable[[str], 'IntegrationState'],
    ):
        self.user_id = user_id
        self.authorization_url = authorization_url
        self.state = state
        self.task = task
        self._state_getter = state_getter

    @property
    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> IntegrationState:
        """Final integration state once the flow settles (success, error or cancel)."""
        try:
            return await asyncio.shield(self.task)
        except asyncio.CancelledError:
            if self.task.cancelled():
                return self._state_getter(self.user_id)
            raise

    def cancel(self) -> None:
        self.task.cancel()


class GoogleAuthManager:
    """
    Per-user Google OAuth state machine.

    Collaborators are injected: where grants live (GrantStore), how consent
    windows open (AuthorizationWindowOpener), and where the anti-CSRF state
    is kept between start and redirect (``session_storage``).
    """

    def __init__(
        self,
        grant_store: GrantStore,
        window_opener: AuthorizationWindowOpener,
        client_id: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        app_origin: Optional[str] = None,
        session_storage: Optional[MutableMapping[str, str]] = None,
        scopes: Optional[List[str]] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        timeout: float = AUTHORIZATION_TIMEOUT_SECONDS,
        clock: Callable[[], int] = _now_ms,
        session: Optional[aiohttp.ClientSession] = None,
        tokeninfo_url: str = TOKENINFO_URL,
        userinfo_url: str = USERINFO_URL,
    ):
        self.grant_store = grant_store
        self.window_opener = window_opener
        self.client_id = (settings.google_client_id if client_id is None else client_id).strip()
        self.redirect_uri = redirect_uri or settings.google_redirect_uri
        self.app_origin = (app_origin or settings.app_origin).rstrip('/')
        self.session_storage: MutableMapping[str, str] = session_storage if session_storage is not None else {}
        self.scopes = scopes or list(OAUTH_SCOPES)
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.clock = clock
        self.session = session
        self.tokeninfo_url = tokeninfo_url
        self.userinfo_url = userinfo_url

        self._states: Dict[str, IntegrationState] = {}
        self._pending: Dict[str, PendingAuthorization] = {}

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id) and not self.client_id.startswith('YOUR_')

    # =========================================================================
    # State
    # =========================================================================

    def get_state(self, user_id: Optional[str]) -> IntegrationState:
        if not user_id:
            return IntegrationState()
        return self._states.get(user_id, IntegrationState())

    def _update(self, user_id: str, **changes) -> IntegrationState:
        state = replace(self.get_state(user_id), **changes)
        self._states[user_id] = state
        return state

    async def load(self, user_id: Optional[str]) -> IntegrationState:
        """
        Restore a persisted grant for ``user_id`` and decide its status.

        Expired grants are kept on the state so their scopes and email stay
        visible; a grant that fails live verification is treated as expired.
        """
        if not user_id:
            return IntegrationState()

        self._update(user_id, status=IntegrationStatus.LOADING, error=None)

        try:
            grant = await self.grant_store.load_grant(user_id)
        except Exception as e:
            logger.error(f"❌ Failed to load Google grant for {user_id}: {e}")
            return self._update(user_id, status=IntegrationStatus.DISCONNECTED, grant=None)

        if grant is None:
            return self._update(user_id, status=IntegrationStatus.DISCONNECTED, grant=None)

        if grant.is_expired(self.clock()):
            logger.info(f"⏰ Stored Google grant for {user_id} has expired")
            return self._update(user_id, status=IntegrationStatus.EXPIRED, grant=grant)

        if await self.verify_access_token(grant.access_token):
            return self._update(user_id, status=IntegrationStatus.CONNECTED, grant=grant)

        logger.info(f"⏰ Stored Google grant for {user_id} failed verification")
        return self._update(user_id, status=IntegrationStatus.EXPIRED, grant=grant)

    def mark_expired(self, user_id: str) -> IntegrationState:
        """A downstream call returned 401 for this user's token."""
        logger.warning(f"🔒 Google token for {user_id} rejected, marking expired")
        return self._update(user_id, status=IntegrationStatus.EXPIRED)

    async def get_access_token(self, user_id: str) -> str:
        """
        Bearer token for API calls.

        Raises:
            GoogleTokenExpiredError: grant expired or rejected
            GoogleAuthorizationError: user has not connected Google
        """
        state = self.get_state(user_id)
        if state.status is IntegrationStatus.IDLE:
            state = await self.load(user_id)

        if state.status is IntegrationStatus.EXPIRED:
            raise GoogleTokenExpiredError()
        if state.status is not IntegrationStatus.CONNECTED or state.grant is None:
            raise GoogleAuthorizationError("Google account is not connected")
        if state.grant.is_expired(self.clock()):
            self.mark_expired(user_id)
            raise GoogleTokenExpiredError()
        return state.grant.access_token

    # =========================================================================
    # Google endpoints
    # =========================================================================

    async def _get(self, url: str, **kwargs) -> Optional[Dict[str, Any]]:
        """GET returning JSON on 200, None on any other status."""
        async def _fetch(session: aiohttp.ClientSession) -> Optional[Dict[str, Any]]:
            async with session.get(url, timeout=VERIFY_TIMEOUT, **kwargs) as response:
                if response.status != 200:
                    return None
                return await response.json(content_type=None)

        if self.session is not None:
            return await _fetch(self.session)
        async with aiohttp.ClientSession() as session:
            return await _fetch(session)

    async def verify_access_token(self, access_token: str) -> bool:
        """True only when tokeninfo accepts the token with time remaining."""
        if not access_token:
            return False
        try:
            data = await self._get(self.tokeninfo_url, params={'access_token': access_token})
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"⚠️ Token verification failed: {e}")
            return False
        if not isinstance(data, dict):
            return False
        try:
            return float(data.get('expires_in', 0)) > 0
        except (TypeError, ValueError):
            return False

    async def get_user_email(self, access_token: str) -> Optional[str]:
        """Email of the connected account; None when it cannot be read."""
        try:
            data = await self._get(self.userinfo_url, headers={'Authorization': f'Bearer {access_token}'})
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"⚠️ Could not read Google account email: {e}")
            return None
        return data.get('email') if isinstance(data, dict) else None

    # =========================================================================
    # Consent flow
    # =========================================================================

    def _state_key(self, user_id: str) -> str:
        return f"{STATE_STORAGE_KEY}:{user_id}"

    def build_authorization_url(self, state: str) -> str:
        params = {
            'client_id': self.client_id,
            'redirect_uri': self.redirect_uri,
            'response_type': 'token',
            'scope': ' '.join(self.scopes),
            'state': state,
            'access_type': 'online',
            'prompt': 'consent',
            'include_granted_scopes': 'true',
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def is_connecting(self, user_id: str) -> bool:
        pending = self._pending.get(user_id)
        return pending is not None and not pending.done

    async def start_connect(self, user_id: Optional[str]) -> PendingAuthorization:
        """
        Open a consent window and start waiting for its redirect.

        Raises:
            GoogleNotConfiguredError: no signed-in user or no client id (state untouched)
            GoogleAuthorizationError: a flow is already running, or the window was blocked
        """
        if not user_id:
            raise GoogleNotConfiguredError(NOT_SIGNED_IN_MESSAGE)
        if not self.is_configured:
            raise GoogleNotConfiguredError(NOT_CONFIGURED_MESSAGE)
        if self.is_connecting(user_id):
            raise GoogleAuthorizationError("A Google authorization is already in progress")

        state = secrets.token_urlsafe(32)
        self.session_storage[self._state_key(user_id)] = state
        authorization_url = self.build_authorization_url(state)

        window = self.window_opener.open(authorization_url)
        if window is None:
            self.session_storage.pop(self._state_key(user_id), None)
            message = "Popup blocked. Please allow popups for this site."
            self._update(user_id, status=IntegrationStatus.ERROR, error=message, connecting=False)
            raise GoogleAuthorizationError(message)

        self._update(user_id, connecting=True, error=None)
        task = asyncio.create_task(self._complete_connect(user_id, window))
        pending = PendingAuthorization(user_id, authorization_url, state, task, self.get_state)
        self._pending[user_id] = pending
        task.add_done_callback(lambda t: self._on_connect_done(user_id, window, t))
        logger.info(f"🔐 Google authorization started for {user_id}")
        return pending

    async def connect(self, user_id: Optional[str]) -> IntegrationState:
        """
        Run the whole consent flow and return the resulting state.

        Configuration errors propagate; authorization failures are recorded
        on the returned state.
        """
        try:
            pending = await self.start_connect(user_id)
        except GoogleAuthorizationError:
            return self.get_state(user_id)
        return await pending.wait()

    async def reconnect(self, user_id: Optional[str]) -> IntegrationState:
        return await self.connect(user_id)

    def cancel_connect(self, user_id: str) -> bool:
        pending = self._pending.get(user_id)
        if pending is None or pending.done:
            return False
        pending.cancel()
        return True

    async def disconnect(self, user_id: Optional[str]) -> IntegrationState:
        """Remove the stored grant and forget any error."""
        if not user_id:
            return IntegrationState()
        self.cancel_connect(user_id)
        await self.grant_store.clear_grant(user_id)
        logger.info(f"🔌 Google disconnected for {user_id}")
        return self._update(user_id, status=IntegrationStatus.DISCONNECTED, grant=None, error=None, connecting=False)

    async def _complete_connect(self, user_id: str, window: AuthorizationWindow) -> IntegrationState:
        try:
            response = await self.wait_for_redirect(user_id, window)
            email = await self.get_user_email(response.access_token)
            grant = DelegatedAccessGrant(
                access_token=response.access_token,
                expires_at=response.expires_at,
                scopes=response.scopes,
                connected_at=datetime.now(timezone.utc).isoformat(),
                account_email=email,
            )
            await self.grant_store.save_grant(user_id, grant)
            logger.info(f"✅ Google connected for {user_id}" + (f" ({email})" if email else ""))
            return self._update(user_id, status=IntegrationStatus.CONNECTED, grant=grant, error=None, connecting=False)

        except GoogleAuthorizationError as e:
            logger.warning(f"⚠️ Google authorization failed for {user_id}: {e}")
            return self._update(user_id, status=IntegrationStatus.ERROR, error=str(e), connecting=False)
        except Exception as e:
            logger.error(f"❌ Google connect failed for {user_id}: {e}", exc_info=True)
            return self._update(user_id, status=IntegrationStatus.ERROR, error=str(e), connecting=False)

    def _on_connect_done(self, user_id: str, window: AuthorizationWindow, task: asyncio.Task) -> None:
        if self._pending.get(user_id) is not None and self._pending[user_id].task is task:
            del self._pending[user_id]
        if task.cancelled():
            # May be cancelled before the poll loop ever ran
            if not window.closed:
                window.close()
            self.session_storage.pop(self._state_key(user_id), None)
            if self.get_state(user_id).connecting:
                self._update(user_id, status=IntegrationStatus.ERROR, error="OAuth authorization cancelled", connecting=False)

    async def wait_for_redirect(self, user_id: str, window: AuthorizationWindow) -> TokenGrantResponse:
        """
        Poll ``window`` until it closes, returns to our origin, or times out.

        The window is always closed and the stored state discarded when this
        returns or raises.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        try:
            while True:
                if window.closed:
                    raise GoogleAuthorizationError("OAuth popup was closed")

                url = window.current_url()
                if url and (url.startswith(self.redirect_uri) or url.startswith(self.app_origin)):
                    window.close()
                    return self.parse_redirect(user_id, url)

                if loop.time() >= deadline:
                    raise GoogleAuthorizationError("OAuth timed out")

                await asyncio.sleep(self.poll_interval)
        finally:
            if not window.closed:
                window.close()
            self.session_storage.pop(self._state_key(user_id), None)

    def parse_redirect(self, user_id: str, redirect_url: str) -> TokenGrantResponse:
        """Validate the redirect fragment against the stored anti-CSRF state."""
        params = parse_qs(urlparse(redirect_url).fragment)

        def param(name: str) -> Optional[str]:
            values = params.get(name)
            return values[0] if values else None

        error = param('error')
        if error:
            raise GoogleAuthorizationError(f"Google OAuth error: {error}")

        saved_state = self.session_storage.pop(self._state_key(user_id), None)
        returned_state = param('state')
        if not saved_state or not returned_state or not secrets.compare_digest(returned_state, saved_state):
            raise GoogleAuthorizationError("OAuth state mismatch: possible CSRF attack")

        access_token = param('access_token')
        if not access_token:
            raise GoogleAuthorizationError("No access token returned")

        try:
            expires_in = int(param('expires_in') or DEFAULT_EXPIRES_IN)
        except ValueError:
            expires_in = DEFAULT_EXPIRES_IN

        return TokenGrantResponse(
            access_token=access_token,
            expires_at=self.clock() + expires_in * 1000,
            scopes=param('scope') or ' '.join(self.scopes),
        )
