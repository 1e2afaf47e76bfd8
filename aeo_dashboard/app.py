#===============================================================================
# AEO DASHBOARD - DATA SERVICE APPLICATION (aeo_dashboard/app.py)
# Google Search Console / GA4 data with two-tier caching, OAuth connection
# management and outbound project webhooks.
#
# - Google integration: consent flow, cached reports, property listings
# - Webhooks: subscription CRUD, test deliveries, fire-and-forget dispatch
# - Health endpoint
#===============================================================================

#-- Section 1: Core Imports
import logging
import os
from typing import Optional

import aiohttp
from fastapi import FastAPI

from config.settings import settings

from .core.database import db_manager
from .core.health import get_health_status
from .core.kv_store import PostgresKeyValueStore
from .core.safe_logger import init_safe_logging

#-- Section 2: Integration Module Imports
from .integrations.google_workspace import router as google_workspace_router
from .integrations.google_workspace import check_module_health as google_workspace_module_health
from .integrations.google_workspace import get_integration_info as google_workspace_integration_info
from .integrations.google_workspace.grant_store import PostgresGrantStore
from .integrations.google_workspace.services import GoogleServices, build_google_services
from .integrations.webhooks import router as webhooks_router
from .integrations.webhooks.project_store import PostgresProjectStore
from .integrations.webhooks.services import WebhookServices, build_webhook_services

logger = logging.getLogger(__name__)


#-- Section 3: Application Factory
def create_app(
    google_services: Optional[GoogleServices] = None,
    webhook_services: Optional[WebhookServices] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Services passed in are used as-is (tests); otherwise they are built on
    startup, backed by Postgres when DATABASE_URL is set and by memory otherwise.
    """
    app = FastAPI(
        title="AEO Dashboard Data Service",
        description="Search Console and GA4 reporting with cached data and project webhooks",
        version="1.0.0"
    )
    app.state.google_services = google_services
    app.state.webhook_services = webhook_services
    app.state.http_session = None

    #-- Section 4: Application Lifecycle Events
    @app.on_event("startup")
    async def startup_event():
        """Initialize logging, stores and integration services."""
        init_safe_logging(level=settings.log_level, use_structured=settings.structured_logging)
        logger.info("🚀 Starting AEO Dashboard data service...")

        if app.state.google_services is not None and app.state.webhook_services is not None:
            return

        session = aiohttp.ClientSession()
        app.state.http_session = session

        grant_store = durable_cache = project_store = None
        if settings.database_url:
            await db_manager.connect()
            grant_store = PostgresGrantStore(db_manager)
            durable_cache = PostgresKeyValueStore(db_manager)
            project_store = PostgresProjectStore(db_manager)
            for store in (grant_store, durable_cache, project_store):
                await store.ensure_schema()
            logger.info("✅ Database connected, Postgres stores ready")
        else:
            logger.warning("⚠️ DATABASE_URL not set - grants, cache and projects are kept in memory")

        if app.state.google_services is None:
            app.state.google_services = build_google_services(
                grant_store=grant_store,
                durable_cache=durable_cache,
                session=session,
            )
        if app.state.webhook_services is None:
            app.state.webhook_services = build_webhook_services(project_store=project_store, session=session)

        if not settings.is_google_configured:
            logger.warning("⚠️ GOOGLE_CLIENT_ID not configured - Google connect is disabled")
        logger.info("✅ Integrations initialized")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Let in-flight work settle, then release connections."""
        if app.state.webhook_services is not None:
            await app.state.webhook_services.dispatcher.wait_idle()
        if app.state.google_services is not None:
            await app.state.google_services.search_console.wait_for_refreshes()
            await app.state.google_services.ai_impact.wait_for_refreshes()
            await app.state.google_services.directory.wait_for_refreshes()

        if app.state.http_session is not None:
            await app.state.http_session.close()
            app.state.http_session = None
        if settings.database_url:
            await db_manager.disconnect()
        logger.info("👋 AEO Dashboard data service stopped")

    #-- Section 5: Health Endpoints
    @app.get("/health")
    async def health_check():
        """System health: database, Google configuration, encryption."""
        health = await get_health_status()
        health["integrations"] = {"google_workspace": google_workspace_module_health()}
        return health

    @app.get("/integrations")
    async def list_integrations():
        return {"google_workspace": google_workspace_integration_info()}

    #-- Section 6: Routers
    app.include_router(google_workspace_router)
    app.include_router(webhooks_router)

    return app


app = create_app()


#-- Section 7: Development Server
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))

    print("🚀 Starting AEO Dashboard Development Server...")
    print(f"   Server: http://localhost:{port}")
    print(f"   API Docs: http://localhost:{port}/docs")
    print(f"   Health: http://localhost:{port}/health")
    print()

    uvicorn.run(
        "aeo_dashboard.app:app",
        host="0.0.0.0",
        port=port,
        reload=settings.debug
    )
