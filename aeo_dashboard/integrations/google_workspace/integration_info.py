# aeo_dashboard/integrations/google_workspace/integration_info.py
"""
Google Integration Info & Health Checks
Module metadata and configuration validation for the /health endpoint.
"""

import logging
from typing import Any, Dict

from config.settings import settings

from ...core.crypto import get_encryption_info
from . import MODULE_NAME, OAUTH_SCOPES, __version__

logger = logging.getLogger(__name__)


def get_integration_info() -> Dict[str, Any]:
    """Module metadata, scopes and endpoint groups"""
    return {
        "name": MODULE_NAME,
        "version": __version__,
        "description": "Search Console and GA4 data for answer-engine optimization",
        "oauth_scopes": OAUTH_SCOPES,
        "endpoints": {
            "authentication": "/google/auth/*",
            "search_console": "/google/search-console/*",
            "analytics": "/google/analytics/*",
            "cache": "/google/cache/*",
            "status": "/google/status"
        },
    }


def check_module_health() -> Dict[str, Any]:
    """
    Configuration health for the Google integration.

    Returns:
        Dict with healthy flag, configured/missing variables and warnings
    """
    health_status: Dict[str, Any] = {
        "healthy": True,
        "configured_vars": [],
        "missing_vars": [],
        "warnings": [],
    }

    if settings.is_google_configured:
        health_status["configured_vars"].append("GOOGLE_CLIENT_ID")
    else:
        health_status["missing_vars"].append("GOOGLE_CLIENT_ID")
        health_status["healthy"] = False

    if settings.database_url:
        health_status["configured_vars"].append("DATABASE_URL")
    else:
        health_status["warnings"].append("DATABASE_URL not set - grants and cache are kept in memory")

    encryption = get_encryption_info()
    if not encryption["secure_setup"]:
        health_status["warnings"].append("ENCRYPTION_KEY not set - stored tokens use a temporary key")

    if not health_status["healthy"]:
        logger.warning(f"⚠️ Google integration not configured: missing {', '.join(health_status['missing_vars'])}")

    return health_status
