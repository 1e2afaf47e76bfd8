# aeo_dashboard/integrations/webhooks/dispatcher.py
"""
Outbound webhook delivery.

dispatch() returns immediately: deliveries run in a detached task, every
matching subscription gets its own POST with an independent timeout, and
once all of them settle the statuses are written back in a single
update_project() call. Nothing raised inside that task reaches the caller.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Set, Union

import aiohttp

from config.settings import settings

from ...core.safe_logger import log_summary
from .events import TYPE_TO_GROUPS
from .formatter import format_payload
from .project_store import ProjectStore
from .subscriptions import WILDCARD, WebhookSubscription, dump_subscriptions, load_subscriptions

logger = logging.getLogger(__name__)

TEST_EVENT_TYPE = 'check'
TEST_PROJECT = {'name': 'Test Project', 'url': 'https://example.com'}
TEST_EVENT_DATA = {'taskText': 'This is a test webhook from AEO Dashboard', 'score': 85}


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    status: int
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'success': self.success, 'status': self.status, 'error': self.error}


def event_matches_webhook(subscription: Union[WebhookSubscription, Mapping[str, Any]], event_type: str) -> bool:
    """
    True when the subscription wants this event.

    An empty event list matches nothing. ``*`` matches everything, including
    unknown types. Any other token matches the event type itself or a group
    that contains it.
    """
    events = subscription.events if isinstance(subscription, WebhookSubscription) else subscription.get('events')
    if not events:
        return False
    if WILDCARD in events:
        return True
    groups = TYPE_TO_GROUPS.get(event_type, [])
    return any(token == event_type or token in groups for token in events)


def resolve_author(user: Any) -> str:
    """Display name, else email, else 'Unknown'. Plain strings pass through."""
    if isinstance(user, str):
        return user or 'Unknown'
    if isinstance(user, Mapping):
        return user.get('displayName') or user.get('display_name') or user.get('email') or 'Unknown'
    return 'Unknown'


class WebhookDispatcher:
    """Fans project events out to subscriber endpoints."""

    def __init__(
        self,
        project_store: ProjectStore,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.project_store = project_store
        self.timeout = timeout if timeout is not None else settings.webhook_timeout_seconds
        self.session = session
        self._tasks: Set[asyncio.Task] = set()

    # ==================== DELIVERY ====================

    async def send_webhook(self, url: str, payload: Dict[str, Any]) -> DeliveryResult:
        """POST one payload. Never raises; failures come back as a DeliveryResult."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            if self.session is not None:
                return await self._post(self.session, url, payload, timeout)
            async with aiohttp.ClientSession() as session:
                return await self._post(session, url, payload, timeout)
        except asyncio.TimeoutError:
            return DeliveryResult(False, 0, f"Timeout ({self.timeout:g}s)")
        except aiohttp.ClientError as e:
            return DeliveryResult(False, 0, str(e) or e.__class__.__name__)
        except Exception as e:
            logger.warning(f"⚠️ Webhook delivery to {url} failed: {e}")
            return DeliveryResult(False, 0, str(e) or e.__class__.__name__)

    @staticmethod
    async def _post(session: aiohttp.ClientSession, url: str, payload: Dict[str, Any],
                    timeout: aiohttp.ClientTimeout) -> DeliveryResult:
        async with session.post(url, json=payload, timeout=timeout) as response:
            ok = 200 <= response.status < 300
            return DeliveryResult(ok, response.status, None if ok else f"HTTP {response.status}")

    async def test_delivery(self, url: str, fmt: Any = 'json') -> DeliveryResult:
        """Send a canned 'check' event for a synthetic project."""
        payload = format_payload(fmt, TEST_EVENT_TYPE, TEST_EVENT_DATA, TEST_PROJECT)
        return await self.send_webhook(url, payload)

    # ==================== DISPATCH ====================

    def dispatch(
        self,
        project: Optional[Mapping[str, Any]],
        event_type: str,
        data: Optional[Mapping[str, Any]] = None,
        author: Any = None,
    ) -> Optional[asyncio.Task]:
        """
        Notify every enabled subscription matching ``event_type``.

        Returns the background task, or None when there is nothing to send.
        Must be called from a running event loop.
        """
        if not project or not project.get('id'):
            return None

        matching = [
            s for s in load_subscriptions(project)
            if s.enabled and event_matches_webhook(s, event_type)
        ]
        if not matching:
            return None

        event_data = dict(data or {})
        if author is not None:
            event_data['author'] = resolve_author(author)

        task = asyncio.create_task(self._deliver_all(dict(project), matching, event_type, event_data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def dispatch_for_project(
        self,
        project_id: str,
        event_type: str,
        data: Optional[Mapping[str, Any]] = None,
        author: Any = None,
    ) -> Optional[asyncio.Task]:
        """dispatch() using the stored project; None if the project is unknown."""
        project = await self.project_store.get_project(project_id)
        if project is None:
            return None
        return self.dispatch(project, event_type, data, author=author)

    async def _deliver_all(
        self,
        project: Dict[str, Any],
        matching: List[WebhookSubscription],
        event_type: str,
        data: Dict[str, Any],
    ) -> None:
        try:
            results = await asyncio.gather(
                *(self._deliver_one(s, event_type, data, project) for s in matching),
                return_exceptions=True,
            )

            outcomes: Dict[str, DeliveryResult] = {}
            for subscription, result in zip(matching, results):
                if isinstance(result, BaseException):
                    logger.warning(f"⚠️ Webhook {subscription.id} delivery crashed: {result}")
                    continue
                outcomes[subscription.id] = result

            await self._record_outcomes(project, outcomes)

            failed = sum(1 for r in outcomes.values() if not r.success)
            log_summary("Webhook dispatch", {
                'project': project['id'],
                'event': event_type,
                'attempted': len(outcomes),
                'failed': failed,
            }, logger_name=__name__)
        except Exception as e:
            logger.error(f"❌ Webhook dispatch for project {project.get('id')} failed: {e}")

    async def _deliver_one(
        self,
        subscription: WebhookSubscription,
        event_type: str,
        data: Dict[str, Any],
        project: Dict[str, Any],
    ) -> DeliveryResult:
        payload = format_payload(subscription.format, event_type, data, project)
        return await self.send_webhook(subscription.url, payload)

    async def _record_outcomes(self, project: Dict[str, Any], outcomes: Dict[str, DeliveryResult]) -> None:
        """One write for the whole cycle; subscriptions without an outcome are left as they are."""
        if not outcomes:
            return

        latest = await self.project_store.get_project(project['id'])
        subscriptions = load_subscriptions(latest if latest is not None else project)

        now = datetime.now(timezone.utc).isoformat()
        updated = [
            s.with_delivery(outcomes[s.id].success, outcomes[s.id].error, now) if s.id in outcomes else s
            for s in subscriptions
        ]
        try:
            await self.project_store.update_project(project['id'], {'webhooks': dump_subscriptions(updated)})
        except Exception as e:
            logger.warning(f"⚠️ Failed to update webhook status after dispatch: {e}")

    async def wait_idle(self) -> None:
        """Wait for in-flight dispatches (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
