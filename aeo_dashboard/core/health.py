# aeo_dashboard/core/health.py
"""
Health check module for the AEO Dashboard data core.
Database connectivity, Google client configuration, and encryption status.
"""

import time
from typing import Any, Dict, Optional

from config.settings import settings

from .crypto import get_encryption_info
from .database import DatabaseManager, db_manager

__all__ = [
    'check_database',
    'check_google_configuration',
    'get_health_status',
]


async def check_database(db: Optional[DatabaseManager] = None) -> Dict[str, Any]:
    """Check database connectivity and response time."""
    if not settings.database_url and db is None:
        return {"status": "not_configured"}

    start_time = time.time()
    result = await (db or db_manager).health_check()
    result["response_time_ms"] = round((time.time() - start_time) * 1000, 2)
    return result


def check_google_configuration() -> Dict[str, Any]:
    return {
        "status": "healthy" if settings.is_google_configured else "not_configured",
        "redirect_uri": settings.google_redirect_uri,
    }


async def get_health_status(db: Optional[DatabaseManager] = None) -> Dict[str, Any]:
    """Get complete system health status."""
    start_time = time.time()

    db_status = await check_database(db)
    google_status = check_google_configuration()

    # An unconfigured database means memory-only stores, which is a valid mode
    overall_status = "unhealthy" if db_status["status"] == "unhealthy" else "healthy"

    return {
        "status": overall_status,
        "timestamp": time.time(),
        "total_check_time_ms": round((time.time() - start_time) * 1000, 2),
        "services": {
            "database": db_status,
            "google_oauth": google_status,
            "encryption": get_encryption_info(),
        }
    }
