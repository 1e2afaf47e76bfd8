# aeo_dashboard/integrations/google_workspace/__init__.py
"""
Google Integration for the AEO Dashboard

This module provides:
- OAuth: implicit-grant consent flow with per-user connection state
- Search Console: site listing and search analytics with AEO query tagging
- Analytics (GA4): property listing and AI-referred traffic reports
- Cached loaders: stale-while-revalidate over the two-tier cache store
"""

# Module metadata
__version__ = "1.0.0"
__description__ = "Search Console and GA4 data for answer-engine optimization"

MODULE_NAME = 'google_workspace'

from .oauth_manager import OAUTH_SCOPES

# Import router and info AFTER constants are defined
# This prevents circular import errors
from .router import router
from .integration_info import get_integration_info, check_module_health

__all__ = [
    'router',
    'get_integration_info',
    'check_module_health',
    'OAUTH_SCOPES',
    'MODULE_NAME',
]
