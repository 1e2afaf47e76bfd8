# aeo_dashboard/integrations/google_workspace/router.py
"""
Google Integration Router
FastAPI endpoints for the dashboard's Google connection and report data

Endpoints:
- Connection state, consent start/relay/cancel, disconnect
- Search Console properties and cached AEO report
- GA4 properties and cached AI impact report
- Cache stats and invalidation

Error mapping:
- token expired      -> 401 {"reconnect": true}
- not configured     -> 503 with setup instructions
- authorization      -> 400
- Google API failure -> 502
"""

import logging
from typing import Any, Dict, List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from .date_ranges import DEFAULT_PRESET, DateRange
from .errors import ErrorKind, GoogleApiError, GoogleIntegrationError
from .oauth_manager import IntegrationStatus
from .services import GoogleServices, get_google_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/google", tags=["google_workspace"])

SETUP_INSTRUCTIONS = (
    "Create an OAuth 2.0 Web client in Google Cloud Console, add this app's origin "
    "as an authorized redirect URI, and set GOOGLE_CLIENT_ID."
)

# ==================== REQUEST/RESPONSE MODELS ====================

class UserRequest(BaseModel):
    user_id: Optional[str] = None

class AuthStartResponse(BaseModel):
    success: bool
    authorization_url: str
    state: str

class RelayRequest(BaseModel):
    redirect_url: str

class CancelRequest(BaseModel):
    state: str

class CacheClearRequest(BaseModel):
    subject_id: Optional[str] = None

# ==================== HELPERS ====================

def _raise_http(error: GoogleIntegrationError) -> NoReturn:
    if error.kind is ErrorKind.TOKEN_EXPIRED:
        raise HTTPException(status_code=401, detail={"error": str(error), "reconnect": True})
    if error.kind is ErrorKind.CONFIGURATION:
        raise HTTPException(status_code=503, detail={"error": str(error), "setup": SETUP_INSTRUCTIONS})
    if error.kind is ErrorKind.AUTHORIZATION:
        raise HTTPException(status_code=400, detail={"error": str(error)})

    status = error.status if isinstance(error, GoogleApiError) else 0
    raise HTTPException(status_code=502, detail={"error": str(error), "status": status, "retry": True})


def _explicit_range(start_date: Optional[str], end_date: Optional[str]) -> Optional[DateRange]:
    if start_date and end_date:
        return DateRange(start_date=start_date, end_date=end_date)
    if start_date or end_date:
        raise HTTPException(status_code=422, detail="start_date and end_date must be given together")
    return None

# ==================== CONNECTION ENDPOINTS ====================

@router.get("/status")
async def get_connection_status(
    user_id: Optional[str] = Query(None),
    refresh: bool = Query(False),
    services: GoogleServices = Depends(get_google_services),
):
    """Current integration state; loads the stored grant on first request."""
    manager = services.auth_manager
    state = manager.get_state(user_id)
    if user_id and (refresh or state.status is IntegrationStatus.IDLE):
        state = await manager.load(user_id)
    return {"configured": manager.is_configured, **state.to_dict()}


@router.post("/auth/start", response_model=AuthStartResponse)
async def start_authorization(request: UserRequest, services: GoogleServices = Depends(get_google_services)):
    """Begin consent: the browser opens ``authorization_url`` in a popup."""
    try:
        pending = await services.auth_manager.start_connect(request.user_id)
    except GoogleIntegrationError as e:
        _raise_http(e)
    return AuthStartResponse(success=True, authorization_url=pending.authorization_url, state=pending.state)


@router.post("/auth/relay")
async def relay_redirect(request: RelayRequest, services: GoogleServices = Depends(get_google_services)):
    """The popup landed back on our origin; hand its URL to the waiting flow."""
    if not services.window_opener.deliver(request.redirect_url):
        raise HTTPException(status_code=404, detail="No authorization is waiting for this redirect")
    return {"success": True}


@router.post("/auth/cancel")
async def cancel_authorization(request: CancelRequest, services: GoogleServices = Depends(get_google_services)):
    """The user closed the popup."""
    return {"success": services.window_opener.close(request.state)}


@router.post("/disconnect")
async def disconnect(request: UserRequest, services: GoogleServices = Depends(get_google_services)):
    """Remove the stored grant, the cached property listings and the committed views of this user."""
    if not request.user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    state = await services.auth_manager.disconnect(request.user_id)
    await services.directory.clear_user(request.user_id)
    services.search_console.forget_user(request.user_id)
    services.ai_impact.forget_user(request.user_id)
    return state.to_dict()

# ==================== SEARCH CONSOLE ENDPOINTS ====================

@router.get("/search-console/properties")
async def list_search_console_properties(
    user_id: str = Query(...),
    services: GoogleServices = Depends(get_google_services),
) -> List[Dict[str, Any]]:
    try:
        return await services.directory.search_console_properties(user_id)
    except GoogleIntegrationError as e:
        _raise_http(e)


@router.get("/search-console/report")
async def get_search_console_report(
    user_id: str = Query(...),
    site_url: str = Query(...),
    preset: str = Query(DEFAULT_PRESET),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    services: GoogleServices = Depends(get_google_services),
):
    """Query/page/date breakdowns with AEO query classification."""
    try:
        view = await services.search_console.load(user_id, site_url, preset, _explicit_range(start_date, end_date))
    except GoogleIntegrationError as e:
        _raise_http(e)
    if view is None:
        raise HTTPException(status_code=409, detail="Superseded by a newer request")
    return view.to_dict()

# ==================== ANALYTICS ENDPOINTS ====================

@router.get("/analytics/properties")
async def list_analytics_properties(
    user_id: str = Query(...),
    services: GoogleServices = Depends(get_google_services),
) -> List[Dict[str, Any]]:
    try:
        return await services.directory.analytics_properties(user_id)
    except GoogleIntegrationError as e:
        _raise_http(e)


@router.get("/analytics/ai-impact")
async def get_ai_impact_report(
    user_id: str = Query(...),
    property_id: str = Query(...),
    preset: str = Query(DEFAULT_PRESET),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    services: GoogleServices = Depends(get_google_services),
):
    """AI-referred sessions, landing pages and trend for a GA4 property."""
    try:
        view = await services.ai_impact.load(user_id, property_id, preset, _explicit_range(start_date, end_date))
    except GoogleIntegrationError as e:
        _raise_http(e)
    if view is None:
        raise HTTPException(status_code=409, detail="Superseded by a newer request")
    return view.to_dict()

# ==================== CACHE ENDPOINTS ====================

@router.get("/cache/stats")
async def get_cache_stats(services: GoogleServices = Depends(get_google_services)):
    return (await services.cache.stats()).to_dict()


@router.post("/cache/clear")
async def clear_cache(request: CacheClearRequest, services: GoogleServices = Depends(get_google_services)):
    """Clear one subject's entries, or the whole namespace when no subject is given."""
    if request.subject_id:
        await services.cache.clear_by_subject(request.subject_id)
    else:
        await services.cache.clear_all()
    logger.info(f"🧹 Cache cleared ({request.subject_id or 'all'})")
    return {"success": True}
