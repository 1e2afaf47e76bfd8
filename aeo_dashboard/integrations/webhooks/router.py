# aeo_dashboard/integrations/webhooks/router.py
"""
Webhook Router
Subscription CRUD, test deliveries and event dispatch for projects

Endpoints:
- GET    /webhooks/events                          event groups for the picker
- POST   /webhooks/test                            test an unsaved URL
- GET    /webhooks/{project_id}                    list subscriptions
- POST   /webhooks/{project_id}                    add a subscription
- PATCH  /webhooks/{project_id}/{webhook_id}       edit a subscription
- DELETE /webhooks/{project_id}/{webhook_id}       remove a subscription
- POST   /webhooks/{project_id}/{webhook_id}/toggle
- POST   /webhooks/{project_id}/{webhook_id}/test
- POST   /webhooks/{project_id}/dispatch           fire an event (returns immediately)
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from .events import WEBHOOK_EVENT_GROUPS
from .services import WebhookServices, get_webhook_services
from .subscriptions import ProjectNotFoundError, WebhookNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

# ==================== REQUEST MODELS ====================

class WebhookCreateRequest(BaseModel):
    url: str
    name: Optional[str] = None
    events: Optional[List[str]] = None
    format: Optional[str] = None

class WebhookUpdateRequest(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    events: Optional[List[str]] = None
    enabled: Optional[bool] = None
    format: Optional[str] = None

class TestUrlRequest(BaseModel):
    url: str
    format: Optional[str] = 'json'

class DispatchRequest(BaseModel):
    event_type: str
    data: Dict[str, Any] = {}
    author: Optional[Dict[str, Any]] = None

# ==================== HELPERS ====================

def _not_found(error: LookupError) -> HTTPException:
    if isinstance(error, ProjectNotFoundError):
        return HTTPException(status_code=404, detail=f"Project {error.args[0]} not found")
    return HTTPException(status_code=404, detail=f"Webhook {error.args[0]} not found")

# ==================== STATIC ENDPOINTS ====================

@router.get("/events")
async def list_event_groups():
    return {key: group.to_dict() for key, group in WEBHOOK_EVENT_GROUPS.items()}


@router.post("/test")
async def test_url(request: TestUrlRequest, services: WebhookServices = Depends(get_webhook_services)):
    """Send the sample event to a URL that has not been saved yet."""
    result = await services.dispatcher.test_delivery(request.url, request.format)
    return result.to_dict()

# ==================== SUBSCRIPTION ENDPOINTS ====================

@router.get("/{project_id}")
async def list_webhooks(project_id: str, services: WebhookServices = Depends(get_webhook_services)):
    try:
        subscriptions = await services.manager.list_webhooks(project_id)
    except (ProjectNotFoundError, WebhookNotFoundError) as e:
        raise _not_found(e)
    return [s.to_dict() for s in subscriptions]


@router.post("/{project_id}", status_code=201)
async def add_webhook(
    project_id: str,
    request: WebhookCreateRequest,
    services: WebhookServices = Depends(get_webhook_services),
):
    try:
        subscription = await services.manager.add_webhook(
            project_id, request.url, name=request.name, events=request.events, format=request.format,
        )
    except (ProjectNotFoundError, WebhookNotFoundError) as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return subscription.to_dict()


@router.post("/{project_id}/dispatch", status_code=202)
async def dispatch_event(
    project_id: str,
    request: DispatchRequest,
    services: WebhookServices = Depends(get_webhook_services),
):
    """Queue deliveries for an event; delivery outcomes land on each subscription."""
    task = await services.dispatcher.dispatch_for_project(
        project_id, request.event_type, request.data, author=request.author,
    )
    return {"dispatched": task is not None}


@router.patch("/{project_id}/{webhook_id}")
async def update_webhook(
    project_id: str,
    webhook_id: str,
    request: WebhookUpdateRequest,
    services: WebhookServices = Depends(get_webhook_services),
):
    updates = request.model_dump(exclude_none=True)
    try:
        subscription = await services.manager.update_webhook(project_id, webhook_id, updates)
    except (ProjectNotFoundError, WebhookNotFoundError) as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return subscription.to_dict()


@router.delete("/{project_id}/{webhook_id}")
async def remove_webhook(project_id: str, webhook_id: str, services: WebhookServices = Depends(get_webhook_services)):
    try:
        await services.manager.remove_webhook(project_id, webhook_id)
    except (ProjectNotFoundError, WebhookNotFoundError) as e:
        raise _not_found(e)
    return {"success": True}


@router.post("/{project_id}/{webhook_id}/toggle")
async def toggle_webhook(project_id: str, webhook_id: str, services: WebhookServices = Depends(get_webhook_services)):
    try:
        subscription = await services.manager.toggle_webhook(project_id, webhook_id)
    except (ProjectNotFoundError, WebhookNotFoundError) as e:
        raise _not_found(e)
    return subscription.to_dict()


@router.post("/{project_id}/{webhook_id}/test")
async def test_webhook(project_id: str, webhook_id: str, services: WebhookServices = Depends(get_webhook_services)):
    """Send the sample event and record the outcome on the subscription."""
    try:
        result = await services.manager.test_webhook(project_id, webhook_id)
    except (ProjectNotFoundError, WebhookNotFoundError) as e:
        raise _not_found(e)
    logger.info(f"🧪 Test webhook {webhook_id}: {'ok' if result.success else result.error}")
    return result.to_dict()
