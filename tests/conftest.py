"""
Pytest configuration for the AEO Dashboard data core

Fakes for the remote collaborators (Google clients, token provider, consent
windows) so tests never touch the network unless they start a local server.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from aeo_dashboard.core.kv_store import MemoryKeyValueStore, StorageQuotaExceededError
from aeo_dashboard.integrations.google_workspace.errors import GoogleTokenExpiredError
from aeo_dashboard.integrations.google_workspace.models import Report, Subject
from aeo_dashboard.integrations.google_workspace.oauth_manager import GoogleAuthManager


class FakeClock:
    """Millisecond clock moved by hand."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class ItemLimitedStore(MemoryKeyValueStore):
    """Durable tier that refuses new keys once ``max_items`` are stored."""

    def __init__(self, max_items: int):
        super().__init__()
        self.max_items = max_items

    async def set_item(self, key: str, value: str) -> None:
        if key not in self._items and len(self._items) >= self.max_items:
            raise StorageQuotaExceededError(f"{self.max_items} items stored")
        await super().set_item(key, value)


class FullStore(MemoryKeyValueStore):
    """Durable tier that never accepts a write."""

    async def set_item(self, key: str, value: str) -> None:
        raise StorageQuotaExceededError("full")


class FakeTokenProvider:
    def __init__(self, token: str = 'token-1', expired: bool = False):
        self.token = token
        self.expired = expired
        self.marked: List[str] = []

    async def get_access_token(self, user_id: str) -> str:
        if self.expired:
            raise GoogleTokenExpiredError()
        return self.token

    def mark_expired(self, user_id: str) -> None:
        self.marked.append(user_id)


class FakeSearchConsoleClient:
    """Counts searchAnalytics calls per dimension; rows carry the call number."""

    def __init__(self, rows: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.rows = rows or {}
        self.calls: List[Dict[str, Any]] = []
        self.gates: Dict[str, asyncio.Event] = {}
        self.error: Optional[Exception] = None

    def count(self, dimension: str) -> int:
        return sum(1 for c in self.calls if c['dimension'] == dimension)

    async def query_search_analytics(self, token, site_url, start_date, end_date, dimensions=None, row_limit=1000, **kwargs):
        dimension = (dimensions or ['query'])[0]
        self.calls.append({
            'token': token, 'site_url': site_url, 'start_date': start_date,
            'end_date': end_date, 'dimension': dimension, 'row_limit': row_limit,
        })
        gate = self.gates.get(start_date)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error

        call_number = self.count(dimension)
        rows = self.rows.get(dimension)
        if rows is None:
            rows = [{'keys': [f"{dimension}-{call_number}"], 'clicks': 1.0, 'impressions': 10.0, 'ctr': 0.1, 'position': 2.0}]
        return Report(rows=[dict(r) for r in rows], totals={}, row_count=len(rows))

    async def list_accessible_subjects(self, token):
        self.calls.append({'dimension': 'sites'})
        return [Subject(id='https://example.com/', display_name='example.com', permission='siteOwner')]


class FakeAnalyticsClient:
    def __init__(self):
        self.calls: List[str] = []

    async def get_ai_traffic_report(self, token, property_id, start_date, end_date):
        self.calls.append('traffic')
        return {'all_rows': [], 'ai_rows': [], 'total_ai_sessions': 3.0, 'total_sessions': 12.0, 'ai_session_share': 0.25}

    async def get_ai_landing_pages(self, token, property_id, start_date, end_date):
        self.calls.append('pages')
        return [{'page': '/guide', 'sessions': 3.0, 'users': 2.0, 'page_views': 4.0, 'sources': {'chatgpt': 3.0}}]

    async def get_ai_traffic_trend(self, token, property_id, start_date, end_date):
        self.calls.append('trend')
        return [{'date': '20240101', 'ai_sessions': 3.0, 'total_sessions': 12.0, 'sources': {}, 'date_formatted': '2024-01-01'}]

    async def list_accessible_subjects(self, token):
        self.calls.append('properties')
        return [Subject(id='123', display_name='Main site', permission='PROPERTY_TYPE_ORDINARY', account='Acme')]


class FakeWindow:
    def __init__(self):
        self.closed = False
        self.url: Optional[str] = None
        self.close_calls = 0

    def current_url(self) -> Optional[str]:
        return self.url

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class FakeWindowOpener:
    def __init__(self, blocked: bool = False):
        self.blocked = blocked
        self.windows: List[FakeWindow] = []
        self.urls: List[str] = []

    def open(self, url: str) -> Optional[FakeWindow]:
        self.urls.append(url)
        if self.blocked:
            return None
        window = FakeWindow()
        self.windows.append(window)
        return window


class StubAuthManager(GoogleAuthManager):
    """Auth manager whose Google endpoint calls are answered locally."""

    token_valid = True
    account_email = 'owner@example.com'

    async def verify_access_token(self, access_token: str) -> bool:
        return bool(access_token) and self.token_valid

    async def get_user_email(self, access_token: str) -> Optional[str]:
        return self.account_email


@pytest.fixture
def clock():
    return FakeClock()
