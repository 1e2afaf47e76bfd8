# aeo_dashboard/integrations/google_workspace/auth_window.py
"""
Authorization window capability used by the OAuth manager.

The manager only needs to open a consent window, poll whether it closed or
landed back on our origin, and close it. In a browser that is a popup; in
this service the browser hosts the popup and relays what it sees:

    GET  /google/auth/start   -> authorization_url (browser opens the popup)
    POST /google/auth/relay   -> redirect URL with the token fragment
    POST /google/auth/cancel  -> popup was closed by the user

RelayWindowOpener turns those relayed events into AuthorizationWindow state
the manager's poll loop can observe.
"""

import logging
from typing import Dict, Optional, Protocol
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)


class AuthorizationWindow(Protocol):
    @property
    def closed(self) -> bool: ...

    def current_url(self) -> Optional[str]:
        """Current location, or None while it is on another origin."""
        ...

    def close(self) -> None: ...


class AuthorizationWindowOpener(Protocol):
    def open(self, url: str) -> Optional[AuthorizationWindow]:
        """Open ``url``; None means the window was blocked."""
        ...


def _query_param(url: str, name: str) -> Optional[str]:
    values = parse_qs(urlparse(url).query).get(name)
    return values[0] if values else None


def _fragment_param(url: str, name: str) -> Optional[str]:
    values = parse_qs(urlparse(url).fragment).get(name)
    return values[0] if values else None


class RelayWindow:
    """Popup hosted by the browser, observed through relayed events."""

    def __init__(self, opener: 'RelayWindowOpener', state: str, authorization_url: str):
        self._opener = opener
        self.state = state
        self.authorization_url = authorization_url
        self._url: Optional[str] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def current_url(self) -> Optional[str]:
        return self._url

    def navigate(self, url: str) -> None:
        self._url = url

    def mark_closed(self) -> None:
        self._closed = True
        self._opener.forget(self.state)

    def close(self) -> None:
        self.mark_closed()


class RelayWindowOpener:
    """
    Tracks open relay windows by the ``state`` in their authorization URL.

    Relayed redirects are routed by the ``state`` in their fragment. A
    redirect whose state matches no open window cannot be routed and is
    rejected here.
    """

    def __init__(self):
        self._windows: Dict[str, RelayWindow] = {}

    def open(self, url: str) -> Optional[RelayWindow]:
        state = _query_param(url, 'state')
        if not state:
            return None
        window = RelayWindow(self, state, url)
        self._windows[state] = window
        return window

    def forget(self, state: str) -> None:
        self._windows.pop(state, None)

    def deliver(self, redirect_url: str) -> bool:
        """Hand a redirect URL to the window that is waiting for it."""
        state = _fragment_param(redirect_url, 'state')
        window = self._windows.get(state) if state else None
        if window is None or window.closed:
            logger.warning("⚠️ OAuth redirect relayed for an unknown or finished authorization")
            return False
        window.navigate(redirect_url)
        return True

    def close(self, state: str) -> bool:
        """Report that the user closed the popup for ``state``."""
        window = self._windows.get(state)
        if window is None:
            return False
        window.mark_closed()
        return True

    @property
    def open_count(self) -> int:
        return len(self._windows)
