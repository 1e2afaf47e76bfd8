# aeo_dashboard/integrations/google_workspace/services.py
"""
Wiring for the Google integration.

One GoogleServices instance is built at startup and shared by the router;
tests build their own with in-memory stores.
"""

from dataclasses import dataclass
from typing import Optional

import aiohttp
from fastapi import Request

from config.settings import settings

from ...core.cache_store import CacheStore
from ...core.kv_store import KeyValueStore, MemoryKeyValueStore
from .analytics_client import AnalyticsClient
from .auth_window import RelayWindowOpener
from .data_service import AiImpactDataLoader, PropertyDirectory, SearchConsoleDataLoader
from .grant_store import GrantStore, MemoryGrantStore
from .oauth_manager import GoogleAuthManager
from .search_console_client import SearchConsoleClient


@dataclass
class GoogleServices:
    auth_manager: GoogleAuthManager
    window_opener: RelayWindowOpener
    cache: CacheStore
    search_console: SearchConsoleDataLoader
    ai_impact: AiImpactDataLoader
    directory: PropertyDirectory


def build_google_services(
    grant_store: Optional[GrantStore] = None,
    durable_cache: Optional[KeyValueStore] = None,
    session: Optional[aiohttp.ClientSession] = None,
    auth_manager: Optional[GoogleAuthManager] = None,
    search_console_client: Optional[SearchConsoleClient] = None,
    analytics_client: Optional[AnalyticsClient] = None,
) -> GoogleServices:
    """Assemble the integration; anything not passed in uses in-memory defaults."""
    window_opener = RelayWindowOpener()
    if auth_manager is None:
        auth_manager = GoogleAuthManager(
            grant_store=grant_store or MemoryGrantStore(),
            window_opener=window_opener,
            session=session,
        )
    else:
        window_opener = auth_manager.window_opener

    cache = CacheStore(
        durable_cache if durable_cache is not None else MemoryKeyValueStore(),
        prefix=settings.cache_prefix,
        max_entries=settings.cache_max_entries,
    )
    search_console_client = search_console_client or SearchConsoleClient(session=session)
    analytics_client = analytics_client or AnalyticsClient(session=session)

    directory = PropertyDirectory(cache, auth_manager, search_console_client, analytics_client)

    return GoogleServices(
        auth_manager=auth_manager,
        window_opener=window_opener,
        cache=cache,
        search_console=SearchConsoleDataLoader(cache, auth_manager, search_console_client, directory),
        ai_impact=AiImpactDataLoader(cache, auth_manager, analytics_client, directory),
        directory=directory,
    )


def get_google_services(request: Request) -> GoogleServices:
    """FastAPI dependency: the services attached to the running app."""
    return request.app.state.google_services
