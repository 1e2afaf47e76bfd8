# aeo_dashboard/integrations/webhooks/subscriptions.py
"""
Webhook subscriptions stored on the project record under ``webhooks``.

Every mutation reads the latest project snapshot, edits the whole list and
writes it back in one update_project() call (last write wins).
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, TYPE_CHECKING
from urllib.parse import urlparse

from .formatter import PayloadFormat
from .project_store import ProjectStore

if TYPE_CHECKING:
    from .dispatcher import DeliveryResult, WebhookDispatcher

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_NAME = 'Untitled Webhook'
WILDCARD = '*'


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProjectNotFoundError(LookupError):
    pass


class WebhookNotFoundError(LookupError):
    pass


def validate_webhook_url(url: str) -> str:
    """Stripped URL; raises ValueError unless it is absolute http(s)."""
    url = (url or '').strip()
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValueError(f"Webhook URL must be an absolute http(s) URL: {url!r}")
    return url


@dataclass(frozen=True)
class WebhookSubscription:
    id: str
    url: str
    name: str = DEFAULT_WEBHOOK_NAME
    events: List[str] = field(default_factory=lambda: [WILDCARD])
    enabled: bool = True
    format: str = PayloadFormat.JSON.value
    last_triggered: Optional[str] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def create(
        cls,
        url: str,
        name: Optional[str] = None,
        events: Optional[Iterable[str]] = None,
        format: Optional[str] = None,
    ) -> 'WebhookSubscription':
        return cls(
            id=str(uuid.uuid4()),
            url=validate_webhook_url(url),
            name=name or DEFAULT_WEBHOOK_NAME,
            events=list(events) if events is not None else [WILDCARD],
            format=PayloadFormat.parse(format).value,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'WebhookSubscription':
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        events = values.get('events') or []
        values['events'] = [events] if isinstance(events, str) else list(events)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def with_delivery(self, success: bool, error: Optional[str], at: str) -> 'WebhookSubscription':
        return replace(
            self,
            last_triggered=at,
            last_status='success' if success else 'error',
            last_error=error,
        )


def load_subscriptions(project: Optional[Mapping[str, Any]]) -> List[WebhookSubscription]:
    """Subscriptions on a project document; malformed entries are skipped."""
    subscriptions = []
    for raw in (project or {}).get('webhooks') or []:
        if not isinstance(raw, Mapping):
            logger.warning(f"⚠️ Skipping webhook entry that is not an object: {raw!r}")
            continue
        try:
            subscriptions.append(WebhookSubscription.from_dict(raw))
        except (TypeError, ValueError) as e:
            logger.warning(f"⚠️ Skipping malformed webhook entry: {e}")
    return subscriptions


def dump_subscriptions(subscriptions: Iterable[WebhookSubscription]) -> List[Dict[str, Any]]:
    return [s.to_dict() for s in subscriptions]


class WebhookManager:
    """CRUD and test deliveries for one project's webhooks."""

    UPDATABLE_FIELDS = frozenset({'name', 'url', 'events', 'enabled', 'format'})

    def __init__(self, project_store: ProjectStore, dispatcher: 'WebhookDispatcher'):
        self.project_store = project_store
        self.dispatcher = dispatcher

    async def _load(self, project_id: str) -> List[WebhookSubscription]:
        project = await self.project_store.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return load_subscriptions(project)

    async def _save(self, project_id: str, subscriptions: List[WebhookSubscription]) -> None:
        await self.project_store.update_project(project_id, {'webhooks': dump_subscriptions(subscriptions)})

    @staticmethod
    def _find(subscriptions: List[WebhookSubscription], webhook_id: str) -> WebhookSubscription:
        for subscription in subscriptions:
            if subscription.id == webhook_id:
                return subscription
        raise WebhookNotFoundError(webhook_id)

    async def list_webhooks(self, project_id: str) -> List[WebhookSubscription]:
        return await self._load(project_id)

    async def add_webhook(
        self,
        project_id: str,
        url: str,
        name: Optional[str] = None,
        events: Optional[Iterable[str]] = None,
        format: Optional[str] = None,
    ) -> WebhookSubscription:
        subscriptions = await self._load(project_id)
        subscription = WebhookSubscription.create(url, name=name, events=events, format=format)
        await self._save(project_id, subscriptions + [subscription])
        logger.info(f"🪝 Webhook {subscription.id} added to project {project_id}")
        return subscription

    async def update_webhook(self, project_id: str, webhook_id: str, updates: Mapping[str, Any]) -> WebhookSubscription:
        """Apply name/url/events/enabled/format changes; other keys are ignored."""
        subscriptions = await self._load(project_id)
        current = self._find(subscriptions, webhook_id)

        changes = {k: v for k, v in updates.items() if k in self.UPDATABLE_FIELDS}
        if 'url' in changes:
            changes['url'] = validate_webhook_url(changes['url'])
        if 'format' in changes:
            changes['format'] = PayloadFormat.parse(changes['format']).value
        if 'events' in changes:
            changes['events'] = list(changes['events'] or [])

        updated = replace(current, **changes)
        await self._save(project_id, [updated if s.id == webhook_id else s for s in subscriptions])
        return updated

    async def remove_webhook(self, project_id: str, webhook_id: str) -> None:
        subscriptions = await self._load(project_id)
        self._find(subscriptions, webhook_id)
        await self._save(project_id, [s for s in subscriptions if s.id != webhook_id])
        logger.info(f"🗑️ Webhook {webhook_id} removed from project {project_id}")

    async def toggle_webhook(self, project_id: str, webhook_id: str) -> WebhookSubscription:
        subscriptions = await self._load(project_id)
        current = self._find(subscriptions, webhook_id)
        return await self.update_webhook(project_id, webhook_id, {'enabled': not current.enabled})

    async def test_webhook(self, project_id: str, webhook_id: str) -> 'DeliveryResult':
        """Send the canned test event and record the outcome on the subscription."""
        subscription = self._find(await self._load(project_id), webhook_id)
        result = await self.dispatcher.test_delivery(subscription.url, subscription.format)

        # Re-read so edits made during the delivery are kept
        latest = await self._load(project_id)
        now = utc_now_iso()
        await self._save(project_id, [
            s.with_delivery(result.success, result.error, now) if s.id == webhook_id else s
            for s in latest
        ])
        return result
