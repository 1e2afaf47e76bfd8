# aeo_dashboard/integrations/google_workspace/errors.py
"""
Error taxonomy for the Google integration.

Every error carries a ``kind`` so callers can branch exhaustively on the
category instead of matching message text:

    try:
        report = await loader.load(user_id, site_url, "28d")
    except GoogleIntegrationError as e:
        if e.kind is ErrorKind.TOKEN_EXPIRED:
            ...  # prompt reconnect
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    AUTHORIZATION = "authorization"
    TOKEN_EXPIRED = "token_expired"
    REMOTE = "remote"


class GoogleIntegrationError(Exception):
    """Base class for Google integration errors"""
    kind: ErrorKind = ErrorKind.REMOTE


class GoogleNotConfiguredError(GoogleIntegrationError):
    """No usable OAuth client id, or no signed-in user to own the grant"""
    kind = ErrorKind.CONFIGURATION


class GoogleAuthorizationError(GoogleIntegrationError):
    """The consent round-trip failed (closed, blocked, mismatched, timed out)"""
    kind = ErrorKind.AUTHORIZATION


class GoogleTokenExpiredError(GoogleIntegrationError):
    """Google answered 401: the grant must be renewed by the user"""
    kind = ErrorKind.TOKEN_EXPIRED

    def __init__(self, message: str = "Google token expired. Reconnect in Settings."):
        super().__init__(message)


class GoogleApiError(GoogleIntegrationError):
    """Non-2xx response (other than 401) or transport failure (status 0)"""
    kind = ErrorKind.REMOTE

    def __init__(self, message: str, status: int = 0, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body


__all__ = [
    'ErrorKind',
    'GoogleIntegrationError',
    'GoogleNotConfiguredError',
    'GoogleAuthorizationError',
    'GoogleTokenExpiredError',
    'GoogleApiError',
]
