# aeo_dashboard/integrations/google_workspace/analytics_client.py
"""
Google Analytics 4 Client - Admin API (accounts, properties) and Data API (runReport)

Key capability: detecting AI-referred sessions by matching the GA4
``sessionSource`` against known AI assistant hostnames.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union
from urllib.parse import quote

import aiohttp

from .errors import GoogleApiError
from .google_api import google_api_get, google_api_post
from .models import Report, Subject, to_number

logger = logging.getLogger(__name__)

GA_ADMIN_BASE = "https://analyticsadmin.googleapis.com/v1beta"
GA_DATA_BASE = "https://analyticsdata.googleapis.com/v1beta"

TRAFFIC_METRICS = ['sessions', 'totalUsers', 'screenPageViews', 'averageSessionDuration', 'bounceRate']
LANDING_PAGE_METRICS = ['sessions', 'totalUsers', 'screenPageViews', 'averageSessionDuration']
ORDER_BY_SESSIONS = [{'metric': {'metricName': 'sessions'}, 'desc': True}]


# =============================================================================
# AI referral sources
# =============================================================================

@dataclass(frozen=True)
class AiReferralSource:
    id: str
    patterns: Sequence[str]
    label: str
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'label': self.label, 'color': self.color}


AI_REFERRAL_SOURCES = [
    AiReferralSource('chatgpt', ('chat.openai.com', 'chatgpt.com'), 'ChatGPT', '#10B981'),
    AiReferralSource('perplexity', ('perplexity.ai',), 'Perplexity', '#3B82F6'),
    AiReferralSource('gemini', ('gemini.google.com', 'bard.google.com'), 'Gemini', '#8B5CF6'),
    AiReferralSource('claude', ('claude.ai',), 'Claude', '#F59E0B'),
    AiReferralSource('copilot', ('copilot.microsoft.com', 'bing.com/chat'), 'Copilot', '#EC4899'),
    AiReferralSource('you', ('you.com',), 'You.com', '#06B6D4'),
    AiReferralSource('phind', ('phind.com',), 'Phind', '#84CC16'),
    AiReferralSource('kagi', ('kagi.com',), 'Kagi', '#EF4444'),
    AiReferralSource('poe', ('poe.com',), 'Poe', '#F97316'),
    AiReferralSource('huggingchat', ('huggingface.co/chat',), 'HuggingChat', '#A855F7'),
]


def classify_referral_source(source: Optional[str]) -> Optional[AiReferralSource]:
    """Registry entry whose hostname appears in ``source``, else None."""
    if not source:
        return None
    lowered = source.lower()
    for ai in AI_REFERRAL_SOURCES:
        if any(pattern in lowered for pattern in ai.patterns):
            return ai
    return None


def get_property_id(property_name: Optional[str]) -> str:
    """'properties/123456789' -> '123456789'"""
    if not property_name:
        return ''
    return property_name.replace('properties/', '')


def format_report_date(value: str) -> str:
    """GA4 'date' dimension '20240115' -> '2024-01-15'"""
    return re.sub(r'^(\d{4})(\d{2})(\d{2})$', r'\1-\2-\3', value)


def _named(items: Sequence[Union[str, Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [{'name': item} if isinstance(item, str) else item for item in items]


class AnalyticsClient:
    """GA4 client using direct REST API calls"""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        admin_base: str = GA_ADMIN_BASE,
        data_base: str = GA_DATA_BASE,
    ):
        self.session = session
        self.admin_base = admin_base.rstrip('/')
        self.data_base = data_base.rstrip('/')

    # =========================================================================
    # Admin API
    # =========================================================================

    async def list_accounts(self, token: str) -> List[Dict[str, Any]]:
        data = await google_api_get(token, f"{self.admin_base}/accounts", session=self.session)
        return [
            {'name': a.get('name'), 'display_name': a.get('displayName')}
            for a in data.get('accounts') or []
        ]

    async def list_properties(self, token: str, account_name: Optional[str] = None) -> List[Dict[str, Any]]:
        url = f"{self.admin_base}/properties"
        if account_name:
            url += f"?filter={quote(f'parent:{account_name}', safe=':/')}"
        data = await google_api_get(token, url, session=self.session)
        return [
            {
                'name': p.get('name'),
                'display_name': p.get('displayName'),
                'property_type': p.get('propertyType'),
                'parent': p.get('parent'),
                'time_zone': p.get('timeZone'),
                'currency_code': p.get('currencyCode'),
            }
            for p in data.get('properties') or []
        ]

    async def list_all_properties(self, token: str) -> List[Dict[str, Any]]:
        """
        Properties across every account.

        Accounts that fail with a remote error (usually missing permissions)
        are skipped; an expired token still propagates.
        """
        all_properties = []
        for account in await self.list_accounts(token):
            try:
                properties = await self.list_properties(token, account['name'])
            except GoogleApiError as e:
                logger.warning(f"⚠️ Skipping GA4 account {account['name']}: {e}")
                continue
            for prop in properties:
                all_properties.append({
                    **prop,
                    'account_name': account['display_name'],
                    'account_id': account['name'],
                })
        return all_properties

    async def list_accessible_subjects(self, token: str) -> List[Subject]:
        return [
            Subject(
                id=get_property_id(p['name']),
                display_name=p.get('display_name') or p['name'],
                permission=p.get('property_type'),
                account=p.get('account_name'),
            )
            for p in await self.list_all_properties(token)
        ]

    # =========================================================================
    # Data API
    # =========================================================================

    async def run_report(
        self,
        token: str,
        property_id: str,
        start_date: str,
        end_date: str,
        dimensions: Sequence[Union[str, Dict[str, Any]]] = (),
        metrics: Sequence[Union[str, Dict[str, Any]]] = (),
        limit: int = 1000,
        order_bys: Optional[List[Dict[str, Any]]] = None,
        dimension_filter: Optional[Dict[str, Any]] = None,
    ) -> Report:
        """
        Run a GA4 report and flatten rows into dicts keyed by header name.

        Dimension values stay strings; metric values are floats (invalid -> 0).
        """
        if not property_id:
            raise ValueError("No property ID")

        body: Dict[str, Any] = {
            'dateRanges': [{'startDate': start_date, 'endDate': end_date}],
            'dimensions': _named(dimensions),
            'metrics': _named(metrics),
            'limit': limit,
        }
        if order_bys:
            body['orderBys'] = order_bys
        if dimension_filter:
            body['dimensionFilter'] = dimension_filter

        url = f"{self.data_base}/properties/{get_property_id(property_id)}:runReport"
        data = await google_api_post(token, url, body, session=self.session)

        dim_headers = [h.get('name') for h in data.get('dimensionHeaders') or []]
        metric_headers = [h.get('name') for h in data.get('metricHeaders') or []]

        rows = []
        for raw in data.get('rows') or []:
            row: Dict[str, Any] = {}
            for name, value in zip(dim_headers, raw.get('dimensionValues') or []):
                row[name] = value.get('value', '')
            for name, value in zip(metric_headers, raw.get('metricValues') or []):
                row[name] = to_number(value.get('value'))
            rows.append(row)

        totals: Dict[str, float] = {}
        totals_rows = data.get('totals') or []
        if totals_rows:
            for name, value in zip(metric_headers, totals_rows[0].get('metricValues') or []):
                totals[name] = to_number(value.get('value'))

        return Report(rows=rows, totals=totals, row_count=int(to_number(data.get('rowCount'))) or len(rows))

    async def fetch_metrics(
        self,
        token: str,
        subject_id: str,
        start_date: str,
        end_date: str,
        dimensions: Sequence[Union[str, Dict[str, Any]]] = (),
        measures: Sequence[Union[str, Dict[str, Any]]] = (),
        limit: int = 1000,
        ordering: Optional[List[Dict[str, Any]]] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> Report:
        """Generic report entry point shared with the Search Console client."""
        return await self.run_report(
            token, subject_id, start_date, end_date,
            dimensions=dimensions, metrics=measures, limit=limit,
            order_bys=ordering, dimension_filter=filters,
        )

    # =========================================================================
    # AI traffic reports
    # =========================================================================

    async def get_ai_traffic_report(self, token: str, property_id: str, start_date: str, end_date: str) -> Dict[str, Any]:
        """Sessions by source, with the AI-attributed subset and its share."""
        report = await self.run_report(
            token, property_id, start_date, end_date,
            dimensions=['sessionSource'],
            metrics=TRAFFIC_METRICS,
            limit=500,
            order_bys=ORDER_BY_SESSIONS,
        )

        all_rows = []
        for row in report.rows:
            ai = classify_referral_source(row.get('sessionSource'))
            all_rows.append({
                **row,
                'is_ai_source': ai is not None,
                'ai_source': ai.to_dict() if ai else None,
            })

        ai_rows = [r for r in all_rows if r['is_ai_source']]
        total_ai_sessions = sum(r.get('sessions', 0) for r in ai_rows)
        total_sessions = sum(r.get('sessions', 0) for r in all_rows)

        return {
            'all_rows': all_rows,
            'ai_rows': ai_rows,
            'total_ai_sessions': total_ai_sessions,
            'total_sessions': total_sessions,
            'ai_session_share': total_ai_sessions / total_sessions if total_sessions > 0 else 0,
        }

    async def get_ai_landing_pages(self, token: str, property_id: str, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """AI-referred sessions grouped by landing page, busiest first."""
        report = await self.run_report(
            token, property_id, start_date, end_date,
            dimensions=['sessionSource', 'landingPagePlusQueryString'],
            metrics=LANDING_PAGE_METRICS,
            limit=1000,
            order_bys=ORDER_BY_SESSIONS,
        )

        pages: Dict[str, Dict[str, Any]] = {}
        for row in report.rows:
            ai = classify_referral_source(row.get('sessionSource'))
            if ai is None:
                continue
            page = row.get('landingPagePlusQueryString') or '(not set)'
            entry = pages.setdefault(page, {'page': page, 'sessions': 0, 'users': 0, 'page_views': 0, 'sources': {}})
            sessions = row.get('sessions', 0)
            entry['sessions'] += sessions
            entry['users'] += row.get('totalUsers', 0)
            entry['page_views'] += row.get('screenPageViews', 0)
            entry['sources'][ai.id] = entry['sources'].get(ai.id, 0) + sessions

        return sorted(pages.values(), key=lambda p: p['sessions'], reverse=True)

    async def get_ai_traffic_trend(self, token: str, property_id: str, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """Daily AI vs total sessions, oldest day first."""
        report = await self.run_report(
            token, property_id, start_date, end_date,
            dimensions=['date', 'sessionSource'],
            metrics=['sessions'],
            limit=10000,
        )

        days: Dict[str, Dict[str, Any]] = {}
        for row in report.rows:
            day = row.get('date', '')
            entry = days.setdefault(day, {'date': day, 'ai_sessions': 0, 'total_sessions': 0, 'sources': {}})
            sessions = row.get('sessions', 0)
            entry['total_sessions'] += sessions
            ai = classify_referral_source(row.get('sessionSource'))
            if ai:
                entry['ai_sessions'] += sessions
                entry['sources'][ai.id] = entry['sources'].get(ai.id, 0) + sessions

        return [
            {**entry, 'date_formatted': format_report_date(entry['date'])}
            for entry in sorted(days.values(), key=lambda d: d['date'])
        ]


# Global instance
analytics_client = AnalyticsClient()
