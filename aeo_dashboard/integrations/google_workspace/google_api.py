# aeo_dashboard/integrations/google_workspace/google_api.py
"""
Authenticated REST calls to Google APIs.

Both clients (Search Console, Analytics) go through google_api_request so
that status handling is identical everywhere:
- 2xx  -> parsed JSON body
- 401  -> GoogleTokenExpiredError
- else -> GoogleApiError carrying status and body
No retries happen here; callers decide.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from .errors import GoogleApiError, GoogleTokenExpiredError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30)


async def _send(
    session: aiohttp.ClientSession,
    method: str,
    url: str,
    token: str,
    body: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    headers = {'Authorization': f'Bearer {token}'}
    if body is not None:
        headers['Content-Type'] = 'application/json'

    async with session.request(method, url, headers=headers, json=body, timeout=REQUEST_TIMEOUT) as response:
        if response.status == 401:
            logger.warning(f"🔒 Google API returned 401 for {url}")
            raise GoogleTokenExpiredError()

        if response.status < 200 or response.status >= 300:
            error_text = await response.text()
            logger.error(f"❌ Google API error {response.status}: {error_text[:500]}")
            raise GoogleApiError(f"Google API error {response.status}: {error_text[:500]}", status=response.status, body=error_text)

        if response.status == 204:
            return {}
        return await response.json(content_type=None) or {}


async def google_api_request(
    method: str,
    url: str,
    token: str,
    body: Optional[Dict[str, Any]] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> Dict[str, Any]:
    """
    Issue one authenticated call.

    Args:
        method: HTTP method
        url: Full endpoint URL
        token: Bearer access token
        body: JSON body for POST requests
        session: Shared session; a short-lived one is opened when omitted
    """
    try:
        if session is not None:
            return await _send(session, method, url, token, body)
        async with aiohttp.ClientSession() as own_session:
            return await _send(own_session, method, url, token, body)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.error(f"❌ Google API request failed ({method} {url}): {e}")
        raise GoogleApiError(f"Google API request failed: {e or type(e).__name__}", status=0) from e


async def google_api_get(token: str, url: str, session: Optional[aiohttp.ClientSession] = None) -> Dict[str, Any]:
    return await google_api_request('GET', url, token, session=session)


async def google_api_post(
    token: str,
    url: str,
    body: Dict[str, Any],
    session: Optional[aiohttp.ClientSession] = None,
) -> Dict[str, Any]:
    return await google_api_request('POST', url, token, body=body, session=session)
