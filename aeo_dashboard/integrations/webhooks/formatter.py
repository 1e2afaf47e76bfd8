# aeo_dashboard/integrations/webhooks/formatter.py
"""Webhook payload rendering for generic JSON, Slack blocks and Discord embeds."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .events import event_color, human_readable_event

SOURCE_NAME = 'AEO Dashboard'


class PayloadFormat(str, Enum):
    JSON = 'json'
    SLACK = 'slack'
    DISCORD = 'discord'

    @classmethod
    def parse(cls, value: Any) -> 'PayloadFormat':
        """Unknown or missing formats fall back to JSON."""
        try:
            return cls(value)
        except ValueError:
            return cls.JSON


def format_payload(
    fmt: Any,
    event_type: str,
    data: Optional[Mapping[str, Any]],
    project: Optional[Mapping[str, Any]],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Render one event for a subscriber.

    Args:
        fmt: 'json', 'slack' or 'discord' (anything else renders as json)
        data: Event data; ``author`` is shown when present
        project: Mapping with ``name`` and ``url``
    """
    data = dict(data or {})
    project = project or {}
    now = now or datetime.now(timezone.utc)

    readable = human_readable_event(event_type, data)
    project_name = project.get('name') or 'Unknown Project'
    project_url = project.get('url') or ''
    timestamp = now.isoformat()
    author = data.get('author') or ''

    payload_format = PayloadFormat.parse(fmt)

    if payload_format is PayloadFormat.SLACK:
        author_line = f"\n_by {author}_" if author else ''
        return {
            'text': f"[{project_name}] {readable}",
            'blocks': [
                {
                    'type': 'section',
                    'text': {
                        'type': 'mrkdwn',
                        'text': f"*{readable}*\nProject: <{project_url}|{project_name}>{author_line}",
                    },
                },
                {
                    'type': 'context',
                    'elements': [
                        {'type': 'mrkdwn', 'text': f"_{SOURCE_NAME} · {now.strftime('%Y-%m-%d %H:%M UTC')}_"},
                    ],
                },
            ],
        }

    if payload_format is PayloadFormat.DISCORD:
        embed: Dict[str, Any] = {
            'title': readable,
            'color': event_color(event_type),
            'timestamp': timestamp,
            'footer': {'text': f"{SOURCE_NAME} · {project_name}"},
        }
        if author:
            embed['description'] = f"By: {author}"
        if project_url:
            embed['url'] = project_url
        return {
            'content': f"**{project_name}** - {readable}",
            'embeds': [embed],
        }

    return {
        'event': event_type,
        'message': readable,
        'project': {'name': project_name, 'url': project_url},
        'data': data,
        'timestamp': timestamp,
        'source': SOURCE_NAME,
    }
