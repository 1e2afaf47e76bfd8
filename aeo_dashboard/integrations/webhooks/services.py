# aeo_dashboard/integrations/webhooks/services.py
"""Wiring for webhook delivery and subscription management."""

from dataclasses import dataclass
from typing import Optional

import aiohttp
from fastapi import Request

from .dispatcher import WebhookDispatcher
from .project_store import MemoryProjectStore, ProjectStore
from .subscriptions import WebhookManager


@dataclass
class WebhookServices:
    project_store: ProjectStore
    dispatcher: WebhookDispatcher
    manager: WebhookManager


def build_webhook_services(
    project_store: Optional[ProjectStore] = None,
    session: Optional[aiohttp.ClientSession] = None,
    timeout: Optional[float] = None,
) -> WebhookServices:
    project_store = project_store if project_store is not None else MemoryProjectStore()
    dispatcher = WebhookDispatcher(project_store, timeout=timeout, session=session)
    return WebhookServices(
        project_store=project_store,
        dispatcher=dispatcher,
        manager=WebhookManager(project_store, dispatcher),
    )


def get_webhook_services(request: Request) -> WebhookServices:
    """FastAPI dependency: the services attached to the running app."""
    return request.app.state.webhook_services
