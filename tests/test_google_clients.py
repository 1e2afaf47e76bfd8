"""Tests for the Google REST helpers, Search Console and GA4 clients"""

import asyncio
import json

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from aeo_dashboard.integrations.google_workspace.analytics_client import (
    AnalyticsClient,
    classify_referral_source,
    format_report_date,
    get_property_id,
)
from aeo_dashboard.integrations.google_workspace.errors import (
    ErrorKind,
    GoogleApiError,
    GoogleTokenExpiredError,
)
from aeo_dashboard.integrations.google_workspace.google_api import google_api_get, google_api_post
from aeo_dashboard.integrations.google_workspace.models import Report, to_number
from aeo_dashboard.integrations.google_workspace.search_console_client import (
    SearchConsoleClient,
    format_site_url,
)


async def _serve(handler, fn):
    """Run ``fn(server)`` against a local server answering every path with ``handler``."""
    app = web.Application()
    app.router.add_route('*', '/{tail:.*}', handler)
    server = TestServer(app)
    await server.start_server()
    try:
        return await fn(server)
    finally:
        await server.close()


# =============================================================================
# google_api
# =============================================================================

def test_successful_call_sends_bearer_token():
    seen = {}

    async def handler(request):
        seen['auth'] = request.headers.get('Authorization')
        seen['body'] = await request.json()
        return web.json_response({'ok': True})

    async def run(server):
        return await google_api_post('tok-1', str(server.make_url('/x')), {'a': 1})

    assert asyncio.run(_serve(handler, run)) == {'ok': True}
    assert seen == {'auth': 'Bearer tok-1', 'body': {'a': 1}}


def test_401_raises_token_expired():
    async def handler(request):
        return web.json_response({'error': 'unauthorized'}, status=401)

    async def run(server):
        await google_api_get('stale', str(server.make_url('/x')))

    with pytest.raises(GoogleTokenExpiredError) as exc_info:
        asyncio.run(_serve(handler, run))
    assert exc_info.value.kind is ErrorKind.TOKEN_EXPIRED


def test_other_failures_raise_api_error_with_status():
    async def handler(request):
        return web.Response(status=403, text='quota exceeded')

    async def run(server):
        await google_api_get('tok', str(server.make_url('/x')))

    with pytest.raises(GoogleApiError) as exc_info:
        asyncio.run(_serve(handler, run))
    assert exc_info.value.status == 403
    assert exc_info.value.body == 'quota exceeded'
    assert exc_info.value.kind is ErrorKind.REMOTE


def test_transport_failure_has_status_zero():
    async def handler(request):
        return web.json_response({})

    async def run(server):
        url = str(server.make_url('/x'))
        await server.close()
        await google_api_get('tok', url)

    with pytest.raises(GoogleApiError) as exc_info:
        asyncio.run(_serve(handler, run))
    assert exc_info.value.status == 0


# =============================================================================
# Search Console
# =============================================================================

def test_format_site_url():
    assert format_site_url('sc-domain:example.com') == 'example.com (domain)'
    assert format_site_url('https://example.com/') == 'example.com'
    assert format_site_url('https://example.com/blog/') == 'example.com/blog/'


def test_query_search_analytics_normalizes_rows():
    seen = {}

    async def handler(request):
        seen['path'] = request.raw_path
        seen['body'] = await request.json()
        return web.json_response({'rows': [
            {'keys': ['what is aeo'], 'clicks': 4, 'impressions': '40', 'ctr': 0.1, 'position': None},
            {'keys': ['aeo tools'], 'clicks': 6, 'impressions': 60, 'ctr': 0.1, 'position': 3},
        ]})

    async def run(server):
        async with aiohttp.ClientSession() as session:
            client = SearchConsoleClient(session=session, api_base=str(server.make_url('/v3')))
            return await client.query_search_analytics(
                'tok', 'https://example.com/', '2024-01-01', '2024-01-28', dimensions=['query'], row_limit=1000,
            )

    report = asyncio.run(_serve(handler, run))

    assert 'https%3A%2F%2Fexample.com%2F/searchAnalytics/query' in seen['path']
    assert seen['body']['startDate'] == '2024-01-01'
    assert seen['body']['dimensions'] == ['query']
    assert seen['body']['rowLimit'] == 1000
    assert report.rows[0] == {'keys': ['what is aeo'], 'clicks': 4.0, 'impressions': 40.0, 'ctr': 0.1, 'position': 0.0}
    assert report.totals['clicks'] == 10.0
    assert report.totals['ctr'] == 0.1
    assert report.row_count == 2


def test_list_properties_labels_sites():
    async def handler(request):
        return web.json_response({'siteEntry': [
            {'siteUrl': 'sc-domain:example.com', 'permissionLevel': 'siteOwner'},
            {'siteUrl': 'https://blog.example.com/', 'permissionLevel': 'siteFullUser'},
        ]})

    async def run(server):
        client = SearchConsoleClient(api_base=str(server.make_url('/v3')))
        return await client.list_accessible_subjects('tok')

    subjects = asyncio.run(_serve(handler, run))
    assert [s.display_name for s in subjects] == ['example.com (domain)', 'blog.example.com']
    assert subjects[0].permission == 'siteOwner'


# =============================================================================
# Analytics
# =============================================================================

def test_helpers():
    assert get_property_id('properties/123') == '123'
    assert format_report_date('20240115') == '2024-01-15'
    assert classify_referral_source('chatgpt.com').id == 'chatgpt'
    assert classify_referral_source('www.Perplexity.ai').id == 'perplexity'
    assert classify_referral_source('google') is None
    assert classify_referral_source(None) is None
    assert to_number('nan') == 0.0
    assert to_number('2.5') == 2.5


def test_run_report_flattens_rows():
    seen = {}

    async def handler(request):
        seen['path'] = request.path
        seen['body'] = await request.json()
        return web.json_response({
            'dimensionHeaders': [{'name': 'sessionSource'}],
            'metricHeaders': [{'name': 'sessions'}, {'name': 'bounceRate'}],
            'rows': [
                {'dimensionValues': [{'value': 'chatgpt.com'}], 'metricValues': [{'value': '12'}, {'value': '0.4'}]},
                {'dimensionValues': [{'value': 'google'}], 'metricValues': [{'value': '30'}, {'value': 'bad'}]},
            ],
            'totals': [{'metricValues': [{'value': '42'}, {'value': '0.5'}]}],
            'rowCount': 2,
        })

    async def run(server):
        client = AnalyticsClient(data_base=str(server.make_url('/v3')))
        return await client.run_report('tok', 'properties/123', '2024-01-01', '2024-01-28',
                                       dimensions=['sessionSource'], metrics=['sessions', 'bounceRate'])

    report = asyncio.run(_serve(handler, run))

    assert seen['path'].endswith('/properties/123:runReport')
    assert seen['body']['dimensions'] == [{'name': 'sessionSource'}]
    assert seen['body']['dateRanges'] == [{'startDate': '2024-01-01', 'endDate': '2024-01-28'}]
    assert report.rows == [
        {'sessionSource': 'chatgpt.com', 'sessions': 12.0, 'bounceRate': 0.4},
        {'sessionSource': 'google', 'sessions': 30.0, 'bounceRate': 0.0},
    ]
    assert report.totals == {'sessions': 42.0, 'bounceRate': 0.5}
    assert report.row_count == 2


def test_run_report_requires_property():
    with pytest.raises(ValueError):
        asyncio.run(AnalyticsClient().run_report('tok', '', '2024-01-01', '2024-01-28'))


class CannedAnalyticsClient(AnalyticsClient):
    def __init__(self, rows):
        super().__init__()
        self.rows = rows

    async def run_report(self, token, property_id, start_date, end_date, **kwargs):
        return Report(rows=[dict(r) for r in self.rows], totals={}, row_count=len(self.rows))


def test_ai_traffic_report_share():
    client = CannedAnalyticsClient([
        {'sessionSource': 'chatgpt.com', 'sessions': 10.0},
        {'sessionSource': 'perplexity.ai', 'sessions': 5.0},
        {'sessionSource': 'google', 'sessions': 85.0},
    ])
    report = asyncio.run(client.get_ai_traffic_report('tok', '123', '2024-01-01', '2024-01-28'))

    assert report['total_ai_sessions'] == 15.0
    assert report['total_sessions'] == 100.0
    assert report['ai_session_share'] == 0.15
    assert [r['ai_source']['id'] for r in report['ai_rows']] == ['chatgpt', 'perplexity']
    assert report['all_rows'][2]['is_ai_source'] is False


def test_ai_traffic_report_with_no_sessions():
    report = asyncio.run(CannedAnalyticsClient([]).get_ai_traffic_report('tok', '123', 'a', 'b'))
    assert report['ai_session_share'] == 0


def test_ai_landing_pages_group_by_page():
    client = CannedAnalyticsClient([
        {'sessionSource': 'chatgpt.com', 'landingPagePlusQueryString': '/guide', 'sessions': 4.0, 'totalUsers': 3.0, 'screenPageViews': 6.0},
        {'sessionSource': 'claude.ai', 'landingPagePlusQueryString': '/guide', 'sessions': 2.0, 'totalUsers': 2.0, 'screenPageViews': 2.0},
        {'sessionSource': 'claude.ai', 'landingPagePlusQueryString': '/pricing', 'sessions': 1.0, 'totalUsers': 1.0, 'screenPageViews': 1.0},
        {'sessionSource': 'google', 'landingPagePlusQueryString': '/pricing', 'sessions': 50.0, 'totalUsers': 40.0, 'screenPageViews': 70.0},
    ])
    pages = asyncio.run(client.get_ai_landing_pages('tok', '123', 'a', 'b'))

    assert [p['page'] for p in pages] == ['/guide', '/pricing']
    assert pages[0]['sessions'] == 6.0
    assert pages[0]['sources'] == {'chatgpt': 4.0, 'claude': 2.0}
    assert pages[1]['sessions'] == 1.0


def test_ai_traffic_trend_is_sorted_by_day():
    client = CannedAnalyticsClient([
        {'date': '20240102', 'sessionSource': 'chatgpt.com', 'sessions': 2.0},
        {'date': '20240101', 'sessionSource': 'google', 'sessions': 8.0},
        {'date': '20240101', 'sessionSource': 'gemini.google.com', 'sessions': 1.0},
    ])
    trend = asyncio.run(client.get_ai_traffic_trend('tok', '123', 'a', 'b'))

    assert [d['date_formatted'] for d in trend] == ['2024-01-01', '2024-01-02']
    assert trend[0]['ai_sessions'] == 1.0
    assert trend[0]['total_sessions'] == 9.0
    assert trend[0]['sources'] == {'gemini': 1.0}


class AccountsClient(AnalyticsClient):
    async def list_accounts(self, token):
        return [{'name': 'accounts/1', 'display_name': 'Acme'}, {'name': 'accounts/2', 'display_name': 'Locked'}]

    async def list_properties(self, token, account_name=None):
        if account_name == 'accounts/2':
            raise GoogleApiError("forbidden", status=403)
        return [{'name': 'properties/9', 'display_name': 'Acme Web', 'property_type': 'PROPERTY_TYPE_ORDINARY'}]


def test_list_all_properties_skips_failing_accounts():
    subjects = asyncio.run(AccountsClient().list_accessible_subjects('tok'))
    assert len(subjects) == 1
    assert subjects[0].id == '9'
    assert subjects[0].account == 'Acme'
    assert json.loads(json.dumps(subjects[0].to_dict()))['display_name'] == 'Acme Web'
