# aeo_dashboard/integrations/webhooks/__init__.py
"""
Webhooks for the AEO Dashboard

Project events (checklist ticks, score alerts, content generation, ...) are
delivered to subscriber URLs as generic JSON, Slack blocks or Discord embeds.
"""

__version__ = "1.0.0"

MODULE_NAME = 'webhooks'

from .router import router
from .dispatcher import WebhookDispatcher, event_matches_webhook

__all__ = [
    'router',
    'WebhookDispatcher',
    'event_matches_webhook',
    'MODULE_NAME',
]
