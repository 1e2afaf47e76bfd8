# aeo_dashboard/integrations/google_workspace/data_service.py
"""
Cached report loading for the dashboard views.

Each load resolves its reports concurrently, and every cache key is checked
on its own:
- fresh -> served from cache
- stale -> served from cache, refreshed in a background task
- miss  -> fetched, cached, served

Loads are numbered per (user, subject). A load that finishes after a newer
load for the same subject started returns None and commits nothing, so a
slow response for an old date range never overwrites the newer view.

Reports are cached per site, not per user. Before a cached report is served,
the site must appear in the requesting user's own property listing; a miss is
fetched with the user's token, so Google checks access itself.

A 401 from Google marks the user's integration expired and is re-raised as
GoogleTokenExpiredError for the caller to prompt a reconnect.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set

from ...core.cache_store import TTL, CacheStore
from .analytics_client import AnalyticsClient, analytics_client
from .date_ranges import DEFAULT_PRESET, DateRange, get_date_range
from .errors import GoogleAuthorizationError, GoogleTokenExpiredError
from .query_classifier import classify_rows
from .search_console_client import SearchConsoleClient, search_console_client

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[Any]]
HitCheck = Callable[[], Awaitable[None]]

LISTING_TYPES = ('gscProperties', 'ga4Properties')


class TokenProvider(Protocol):
    async def get_access_token(self, user_id: str) -> str: ...

    def mark_expired(self, user_id: str) -> Any: ...


@dataclass(frozen=True)
class ReportSpec:
    cache_type: str
    fetch: Fetcher  # access token -> JSON-serializable report


@dataclass
class SearchConsoleView:
    site_url: str
    date_range: DateRange
    preset: Optional[str]
    query_data: Dict[str, Any] = field(default_factory=dict)
    page_data: Dict[str, Any] = field(default_factory=dict)
    date_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'site_url': self.site_url,
            'date_range': {'start_date': self.date_range.start_date, 'end_date': self.date_range.end_date, 'preset': self.preset},
            'query_data': self.query_data,
            'page_data': self.page_data,
            'date_data': self.date_data,
        }


@dataclass
class AiImpactView:
    property_id: str
    date_range: DateRange
    preset: Optional[str]
    traffic: Dict[str, Any] = field(default_factory=dict)
    landing_pages: List[Dict[str, Any]] = field(default_factory=list)
    trend: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'property_id': self.property_id,
            'date_range': {'start_date': self.date_range.start_date, 'end_date': self.date_range.end_date, 'preset': self.preset},
            'traffic': self.traffic,
            'landing_pages': self.landing_pages,
            'trend': self.trend,
        }


class CacheResolver:
    """Stale-while-revalidate resolution of single cache keys."""

    def __init__(self, cache: CacheStore, auth: TokenProvider):
        self.cache = cache
        self.auth = auth
        self._refreshing: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()

    async def _resolve(
        self,
        user_id: str,
        key: str,
        ttl_ms: int,
        fetch: Fetcher,
        token: str,
        on_refreshed: Optional[Callable[[], Awaitable[None]]] = None,
        before_hit: Optional[HitCheck] = None,
    ) -> Any:
        result = await self.cache.get(key, ttl_ms)
        if result.is_miss:
            data = await fetch(token)
            await self.cache.set(key, data)
            return data
        if before_hit is not None:
            await before_hit()
        if result.is_stale:
            self._spawn_refresh(user_id, key, fetch, token, on_refreshed)
        return result.data

    def _spawn_refresh(
        self,
        user_id: str,
        key: str,
        fetch: Fetcher,
        token: str,
        on_refreshed: Optional[Callable[[], Awaitable[None]]],
    ) -> None:
        if key in self._refreshing:
            return
        task = asyncio.create_task(self._refresh(user_id, key, fetch, token, on_refreshed))
        self._refreshing[key] = task
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if self._refreshing.get(key) is t:
                del self._refreshing[key]

        task.add_done_callback(_done)

    async def _refresh(
        self,
        user_id: str,
        key: str,
        fetch: Fetcher,
        token: str,
        on_refreshed: Optional[Callable[[], Awaitable[None]]],
    ) -> None:
        try:
            data = await fetch(token)
            await self.cache.set(key, data)
            logger.debug(f"🔄 Refreshed stale cache entry {key}")
            if on_refreshed is not None:
                await on_refreshed()
        except GoogleTokenExpiredError:
            self.auth.mark_expired(user_id)
        except Exception as e:
            logger.warning(f"⚠️ Background refresh failed for {key}: {e}", exc_info=True)

    async def wait_for_refreshes(self) -> None:
        """Wait for every background refresh started so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


class CachedReportLoader(CacheResolver, ABC):
    """
    Concurrent multi-report loads guarded by a per-subject generation counter.

    Subclasses name their reports (``report_specs``), combine them
    (``build_view``) and say which ``PropertyDirectory`` listing holds the
    subjects a user may read (``listing``).
    """

    listing: str = ''

    def __init__(self, cache: CacheStore, auth: TokenProvider, directory: Optional['PropertyDirectory'] = None):
        super().__init__(cache, auth)
        self.directory = directory
        self._generations: Dict[str, int] = {}
        self._views: Dict[str, Any] = {}

    @staticmethod
    def _scope(user_id: str, subject_id: str) -> str:
        return f"{user_id}|{subject_id}"

    def _next_generation(self, scope: str) -> int:
        generation = self._generations.get(scope, 0) + 1
        self._generations[scope] = generation
        return generation

    def _is_current(self, scope: str, generation: int) -> bool:
        return self._generations.get(scope) == generation

    def get_view(self, user_id: str, subject_id: str) -> Optional[Any]:
        """Last committed view for this user and subject."""
        return self._views.get(self._scope(user_id, subject_id))

    def forget_user(self, user_id: str) -> None:
        """Drop the committed views and load counters of one user."""
        prefix = self._scope(user_id, '')
        for scope in [s for s in self._views if s.startswith(prefix)]:
            del self._views[scope]
        for scope in [s for s in self._generations if s.startswith(prefix)]:
            del self._generations[scope]

    @abstractmethod
    def report_specs(self, subject_id: str, date_range: DateRange) -> Dict[str, ReportSpec]:
        ...

    @abstractmethod
    def build_view(self, subject_id: str, date_range: DateRange, preset: Optional[str], reports: Dict[str, Any]) -> Any:
        ...

    async def verify_access(self, user_id: str, subject_id: str) -> None:
        """Raise GoogleAuthorizationError unless the user's Google account lists ``subject_id``."""
        if self.directory is None:
            return
        subjects = await getattr(self.directory, self.listing)(user_id)
        if subject_id not in {s.get('id') for s in subjects}:
            logger.warning(f"🚫 {subject_id} is not in the property listing of user {user_id}")
            raise GoogleAuthorizationError(f"{subject_id} is not accessible with this Google account")

    def _access_check(self, user_id: str, subject_id: str) -> HitCheck:
        """One listing lookup per load, shared by every cache hit it serves."""
        check: Optional[asyncio.Future] = None

        async def before_hit() -> None:
            nonlocal check
            if check is None:
                check = asyncio.ensure_future(self.verify_access(user_id, subject_id))
            await asyncio.shield(check)

        return before_hit

    def report_keys(self, subject_id: str, date_range: DateRange) -> Dict[str, str]:
        return {
            name: self.cache.cache_key(spec.cache_type, subject_id, date_range.start_date, date_range.end_date)
            for name, spec in self.report_specs(subject_id, date_range).items()
        }

    async def load(
        self,
        user_id: str,
        subject_id: str,
        preset: Optional[str] = DEFAULT_PRESET,
        date_range: Optional[DateRange] = None,
    ) -> Optional[Any]:
        """
        Resolve every report for ``subject_id`` and commit the combined view.

        Args:
            preset: Relative range ('7d', '28d', '3m', ...), ignored when date_range is given
            date_range: Explicit inclusive ISO date range

        Returns:
            The view, or None when a newer load for the same subject superseded this one
        """
        scope = self._scope(user_id, subject_id)
        generation = self._next_generation(scope)
        if date_range is None:
            date_range = get_date_range(preset)
        else:
            preset = None

        specs = self.report_specs(subject_id, date_range)
        keys = self.report_keys(subject_id, date_range)

        async def on_refreshed() -> None:
            await self._rebuild(scope, generation, subject_id, date_range, preset, keys)

        before_hit = self._access_check(user_id, subject_id)

        try:
            token = await self.auth.get_access_token(user_id)
            values = await asyncio.gather(*(
                self._resolve(
                    user_id, keys[name], TTL.get(spec.cache_type, TTL['default']),
                    spec.fetch, token, on_refreshed, before_hit,
                )
                for name, spec in specs.items()
            ))
        except GoogleTokenExpiredError:
            self.auth.mark_expired(user_id)
            if not self._is_current(scope, generation):
                return None
            raise
        except Exception as e:
            if not self._is_current(scope, generation):
                logger.debug(f"Superseded load for {subject_id} failed: {e}")
                return None
            raise

        if not self._is_current(scope, generation):
            logger.debug(f"⏭️ Dropping superseded load for {subject_id}")
            return None

        view = self.build_view(subject_id, date_range, preset, dict(zip(specs, values)))
        self._views[scope] = view
        return view

    async def _rebuild(
        self,
        scope: str,
        generation: int,
        subject_id: str,
        date_range: DateRange,
        preset: Optional[str],
        keys: Dict[str, str],
    ) -> None:
        """Recommit the view from cache after a background refresh."""
        if not self._is_current(scope, generation):
            return
        reports = {}
        for name, key in keys.items():
            result = await self.cache.get(key)
            if result.is_miss:
                return
            reports[name] = result.data
        if self._is_current(scope, generation):
            self._views[scope] = self.build_view(subject_id, date_range, preset, reports)


class SearchConsoleDataLoader(CachedReportLoader):
    """Query, page and date breakdowns for one Search Console site."""

    listing = 'search_console_properties'

    def __init__(
        self,
        cache: CacheStore,
        auth: TokenProvider,
        client: Optional[SearchConsoleClient] = None,
        directory: Optional['PropertyDirectory'] = None,
    ):
        super().__init__(cache, auth, directory)
        self.client = client or search_console_client

    def report_specs(self, subject_id: str, date_range: DateRange) -> Dict[str, ReportSpec]:
        def breakdown(dimension: str, row_limit: int) -> Fetcher:
            async def fetch(token: str) -> Dict[str, Any]:
                report = await self.client.query_search_analytics(
                    token, subject_id, date_range.start_date, date_range.end_date,
                    dimensions=[dimension], row_limit=row_limit,
                )
                return report.to_dict()
            return fetch

        return {
            'query': ReportSpec('gscQueries', breakdown('query', 1000)),
            'page': ReportSpec('gscPages', breakdown('page', 500)),
            'date': ReportSpec('gscDates', breakdown('date', 500)),
        }

    def build_view(self, subject_id: str, date_range: DateRange, preset: Optional[str], reports: Dict[str, Any]) -> SearchConsoleView:
        query_rows = reports['query'].get('rows') or []
        classified = classify_rows(query_rows)
        aeo_rows = [r for r in classified if r['is_aeo_query']]

        total_clicks = sum(r.get('clicks', 0) for r in query_rows)
        total_impressions = sum(r.get('impressions', 0) for r in query_rows)
        aeo_clicks = sum(r.get('clicks', 0) for r in aeo_rows)

        query_data = {
            'rows': classified,
            'aeo_rows': aeo_rows,
            'total_clicks': total_clicks,
            'total_impressions': total_impressions,
            'avg_ctr': total_clicks / total_impressions if total_impressions > 0 else 0,
            'avg_position': sum(r.get('position', 0) for r in query_rows) / len(query_rows) if query_rows else 0,
            'aeo_click_share': aeo_clicks / total_clicks if total_clicks > 0 else 0,
            'aeo_query_count': len(aeo_rows),
            'total_query_count': len(classified),
        }

        page_rows = [
            {**r, 'page': (r.get('keys') or [''])[0]}
            for r in reports['page'].get('rows') or []
        ]

        date_rows = sorted(
            (
                {
                    'date': (r.get('keys') or [''])[0],
                    'clicks': r.get('clicks', 0),
                    'impressions': r.get('impressions', 0),
                    'ctr': r.get('ctr', 0),
                    'position': r.get('position', 0),
                }
                for r in reports['date'].get('rows') or []
            ),
            key=lambda r: r['date'],
        )

        return SearchConsoleView(
            site_url=subject_id,
            date_range=date_range,
            preset=preset,
            query_data=query_data,
            page_data={'rows': page_rows},
            date_data={'rows': date_rows},
        )


class AiImpactDataLoader(CachedReportLoader):
    """AI-referred traffic, landing pages and daily trend for one GA4 property."""

    listing = 'analytics_properties'

    def __init__(
        self,
        cache: CacheStore,
        auth: TokenProvider,
        client: Optional[AnalyticsClient] = None,
        directory: Optional['PropertyDirectory'] = None,
    ):
        super().__init__(cache, auth, directory)
        self.client = client or analytics_client

    def report_specs(self, subject_id: str, date_range: DateRange) -> Dict[str, ReportSpec]:
        start, end = date_range.start_date, date_range.end_date

        async def traffic(token: str) -> Dict[str, Any]:
            return await self.client.get_ai_traffic_report(token, subject_id, start, end)

        async def pages(token: str) -> List[Dict[str, Any]]:
            return await self.client.get_ai_landing_pages(token, subject_id, start, end)

        async def trend(token: str) -> List[Dict[str, Any]]:
            return await self.client.get_ai_traffic_trend(token, subject_id, start, end)

        return {
            'traffic': ReportSpec('ga4Traffic', traffic),
            'pages': ReportSpec('ga4Pages', pages),
            'trend': ReportSpec('ga4Trend', trend),
        }

    def build_view(self, subject_id: str, date_range: DateRange, preset: Optional[str], reports: Dict[str, Any]) -> AiImpactView:
        return AiImpactView(
            property_id=subject_id,
            date_range=date_range,
            preset=preset,
            traffic=reports['traffic'],
            landing_pages=reports['pages'],
            trend=reports['trend'],
        )


class PropertyDirectory(CacheResolver):
    """Cached property listings per user (Search Console sites, GA4 properties)."""

    def __init__(
        self,
        cache: CacheStore,
        auth: TokenProvider,
        search_console: Optional[SearchConsoleClient] = None,
        analytics: Optional[AnalyticsClient] = None,
    ):
        super().__init__(cache, auth)
        self.search_console = search_console or search_console_client
        self.analytics = analytics or analytics_client

    async def _listing(self, user_id: str, cache_type: str, fetch: Fetcher) -> List[Dict[str, Any]]:
        try:
            token = await self.auth.get_access_token(user_id)
            return await self._resolve(user_id, self.cache.cache_key(cache_type, user_id), TTL[cache_type], fetch, token)
        except GoogleTokenExpiredError:
            self.auth.mark_expired(user_id)
            raise

    async def search_console_properties(self, user_id: str) -> List[Dict[str, Any]]:
        async def fetch(token: str) -> List[Dict[str, Any]]:
            return [s.to_dict() for s in await self.search_console.list_accessible_subjects(token)]
        return await self._listing(user_id, 'gscProperties', fetch)

    async def analytics_properties(self, user_id: str) -> List[Dict[str, Any]]:
        async def fetch(token: str) -> List[Dict[str, Any]]:
            return [s.to_dict() for s in await self.analytics.list_accessible_subjects(token)]
        return await self._listing(user_id, 'ga4Properties', fetch)

    async def clear_user(self, user_id: str) -> None:
        """Forget the cached listings of one user (on disconnect)."""
        for cache_type in LISTING_TYPES:
            await self.cache.clear(self.cache.cache_key(cache_type, user_id))
