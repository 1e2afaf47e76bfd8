# aeo_dashboard/integrations/google_workspace/search_console_client.py
"""
Search Console Client - Direct REST API Implementation

Lists the sites a token can read and runs searchAnalytics queries.
Rows come back with numeric fields coerced so downstream math never sees
strings or None.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlparse

import aiohttp

from .google_api import google_api_get, google_api_post
from .models import Report, Subject, to_number

logger = logging.getLogger(__name__)

SEARCH_CONSOLE_API_BASE = "https://www.googleapis.com/webmasters/v3"

METRIC_FIELDS = ('clicks', 'impressions', 'ctr', 'position')


def format_site_url(site_url: str) -> str:
    """Readable site label: 'sc-domain:x' -> 'x (domain)', URLs -> host + path."""
    if site_url.startswith('sc-domain:'):
        return f"{site_url[len('sc-domain:'):]} (domain)"
    parsed = urlparse(site_url)
    if not parsed.netloc:
        return site_url
    path = parsed.path if parsed.path != '/' else ''
    return f"{parsed.netloc}{path}"


def normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    normalized = {'keys': [str(k) for k in (row.get('keys') or [])]}
    for metric in METRIC_FIELDS:
        normalized[metric] = to_number(row.get(metric))
    return normalized


def summarize_rows(rows: List[Dict[str, Any]]) -> Dict[str, float]:
    """Totals across rows: summed clicks/impressions, derived ctr, mean position."""
    clicks = sum(r['clicks'] for r in rows)
    impressions = sum(r['impressions'] for r in rows)
    return {
        'clicks': clicks,
        'impressions': impressions,
        'ctr': clicks / impressions if impressions else 0.0,
        'position': sum(r['position'] for r in rows) / len(rows) if rows else 0.0,
    }


class SearchConsoleClient:
    """Google Search Console client using direct REST API calls"""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, api_base: str = SEARCH_CONSOLE_API_BASE):
        self.session = session
        self.api_base = api_base.rstrip('/')

    async def list_properties(self, token: str) -> List[Subject]:
        """Sites visible to the token, in API order."""
        data = await google_api_get(token, f"{self.api_base}/sites", session=self.session)
        sites = [
            Subject(
                id=entry.get('siteUrl', ''),
                display_name=format_site_url(entry.get('siteUrl', '')),
                permission=entry.get('permissionLevel'),
            )
            for entry in data.get('siteEntry') or []
        ]
        logger.info(f"🔍 Search Console returned {len(sites)} sites")
        return sites

    async def query_search_analytics(
        self,
        token: str,
        site_url: str,
        start_date: str,
        end_date: str,
        dimensions: Optional[List[str]] = None,
        row_limit: int = 1000,
        start_row: int = 0,
        dimension_filter_groups: Optional[List[Dict[str, Any]]] = None,
        search_type: str = 'web',
    ) -> Report:
        """
        Run a searchAnalytics query.

        Args:
            site_url: Property URL exactly as listed ('https://x/' or 'sc-domain:x')
            dimensions: Grouping dimensions, default ['query']
            row_limit: Maximum rows (API cap 25000)
        """
        body: Dict[str, Any] = {
            'startDate': start_date,
            'endDate': end_date,
            'dimensions': dimensions or ['query'],
            'rowLimit': row_limit,
            'startRow': start_row,
            'type': search_type,
        }
        if dimension_filter_groups:
            body['dimensionFilterGroups'] = dimension_filter_groups

        url = f"{self.api_base}/sites/{quote(site_url, safe='')}/searchAnalytics/query"
        data = await google_api_post(token, url, body, session=self.session)

        rows = [normalize_row(row) for row in data.get('rows') or []]
        return Report(rows=rows, totals=summarize_rows(rows), row_count=len(rows))

    async def fetch_metrics(
        self,
        token: str,
        subject_id: str,
        start_date: str,
        end_date: str,
        dimensions: Optional[List[str]] = None,
        limit: int = 1000,
        filters: Optional[List[Dict[str, Any]]] = None,
    ) -> Report:
        """Generic report entry point shared with the Analytics client."""
        return await self.query_search_analytics(
            token, subject_id, start_date, end_date,
            dimensions=dimensions, row_limit=limit, dimension_filter_groups=filters,
        )

    async def list_accessible_subjects(self, token: str) -> List[Subject]:
        return await self.list_properties(token)


# Global instance
search_console_client = SearchConsoleClient()
