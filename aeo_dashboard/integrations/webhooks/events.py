# aeo_dashboard/integrations/webhooks/events.py
"""
Project event registry for webhook subscriptions.

Subscribers pick coarse groups ("checklist", "alerts", ...) instead of
listing every event type. human_readable_event() renders the one-line
message used by every payload format and never fails on missing data.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class EventGroup:
    label: str
    icon: str
    types: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {'label': self.label, 'icon': self.icon, 'types': list(self.types)}


WEBHOOK_EVENT_GROUPS: Dict[str, EventGroup] = {
    'checklist': EventGroup('Checklist', 'CheckSquare', ('check', 'uncheck')),
    'phase': EventGroup('Phase Completion', 'Trophy', ('phase_complete',)),
    'analysis': EventGroup('Site Analysis', 'Search', ('analyze', 'analyzePageUrl', 'analyzePageBatch', 'generateFix', 'generatePageFix')),
    'monitoring': EventGroup('Monitoring', 'Activity', ('monitor',)),
    'competitors': EventGroup('Competitors', 'Users', ('competitor_monitor', 'citation_share_check', 'competitor_add', 'competitor_remove')),
    'content': EventGroup('Content', 'FileText', ('contentWrite', 'schemaGenerate', 'briefGenerate', 'calendarPublish')),
    'team': EventGroup('Team', 'UserPlus', ('member_add', 'role_change', 'member_remove', 'task_assign', 'task_unassign', 'comment')),
    'alerts': EventGroup('Score Alerts', 'AlertTriangle', ('score_drop', 'score_improve')),
    'export': EventGroup('Export', 'Download', ('export',)),
}

# event type -> group keys containing it
TYPE_TO_GROUPS: Dict[str, List[str]] = {}
for _group_key, _group in WEBHOOK_EVENT_GROUPS.items():
    for _event_type in _group.types:
        TYPE_TO_GROUPS.setdefault(_event_type, []).append(_group_key)


def groups_for_event(event_type: str) -> List[str]:
    return list(TYPE_TO_GROUPS.get(event_type, []))


# =============================================================================
# Human-readable messages
# =============================================================================

def _field(data: Mapping[str, Any], key: str, default: Any) -> Any:
    """Value of ``key`` unless missing, None or empty."""
    value = data.get(key)
    if value is None or value == '':
        return default
    return value


_MESSAGES: Dict[str, Callable[[Mapping[str, Any]], str]] = {
    'check': lambda d: f"Task completed: {_field(d, 'taskText', 'unknown task')}",
    'uncheck': lambda d: f"Task unchecked: {_field(d, 'taskText', 'unknown task')}",
    'note': lambda d: f"Note added to: {_field(d, 'taskText', 'a task')}",
    'task_assign': lambda d: f"Task assigned to {_field(d, 'assigneeName', 'a team member')}: {_field(d, 'taskText', '')}",
    'task_unassign': lambda d: f"Task unassigned from {_field(d, 'assigneeName', 'a team member')}: {_field(d, 'taskText', '')}",
    'comment': lambda d: f"Comment added on: {_field(d, 'taskText', 'a task')}",
    'analyze': lambda d: f"Site analyzed: score {_field(d, 'score', '?')}%",
    'analyzePageUrl': lambda d: f"Page analyzed: {_field(d, 'url', 'unknown')} - score {_field(d, 'score', '?')}",
    'analyzePageBatch': lambda d: f"Batch analysis: {_field(d, 'batchCount', '?')} pages analyzed",
    'generateFix': lambda d: f"Fix generated for: {_field(d, 'taskText', 'an issue')}",
    'generatePageFix': lambda d: f"Page fix generated for: {_field(d, 'pageUrl', 'a page')}",
    'monitor': lambda d: f"Monitoring check complete: {_field(d, 'queriesCited', 0)}/{_field(d, 'queriesChecked', 0)} queries cited",
    'competitor_add': lambda d: f"Competitor added: {_field(d, 'url', '')}",
    'competitor_remove': lambda d: f"Competitor removed: {_field(d, 'url', '')}",
    'competitor_monitor': lambda d: (
        f"Competitor monitoring: {_field(d, 'competitorsChecked', 0)} competitors checked, "
        f"{_field(d, 'alertsGenerated', 0)} alerts"
    ),
    'citation_share_check': lambda d: (
        f"Citation share check: {_field(d, 'queriesChecked', 0)} queries, "
        f"{_field(d, 'totalMentions', 0)} total mentions"
    ),
    'contentWrite': lambda d: f"Content generated: {_field(d, 'type', 'article')} - \"{_field(d, 'topic', 'untitled')}\"",
    'schemaGenerate': lambda d: f"Schema generated: {_field(d, 'type', 'JSON-LD')}",
    'briefGenerate': lambda d: f"Content brief generated: \"{_field(d, 'title', 'untitled')}\"",
    'calendarPublish': lambda d: f"Content published: {_field(d, 'entryCount', 1)} item(s)",
    'calendarAdd': lambda d: f"Calendar entry added: \"{_field(d, 'title', 'untitled')}\"",
    'calendarRemove': lambda d: f"Calendar entry removed: \"{_field(d, 'title', 'untitled')}\"",
    'member_add': lambda d: f"Team member invited: {_field(d, 'memberName', 'someone')}",
    'role_change': lambda d: f"Role changed: {_field(d, 'memberEmail', 'someone')} -> {_field(d, 'newRole', '?')}",
    'member_remove': lambda d: f"Team member removed: {_field(d, 'memberEmail', 'someone')}",
    'export': lambda d: f"Project exported: {_field(d, 'filename', 'report')}",
    'phase_complete': lambda d: (
        f"Phase {_field(d, 'phase', '?')} completed: {_field(d, 'phaseTitle', '')}! "
        f"({_field(d, 'totalTasks', '?')} tasks)"
    ),
    'score_drop': lambda d: (
        f"Score dropped by {_field(d, 'delta', '?')} points "
        f"({_field(d, 'previousScore', '?')}% -> {_field(d, 'currentScore', '?')}%)"
    ),
    'score_improve': lambda d: (
        f"Score improved by {_field(d, 'delta', '?')} points "
        f"({_field(d, 'previousScore', '?')}% -> {_field(d, 'currentScore', '?')}%)"
    ),
}


def human_readable_event(event_type: str, data: Optional[Mapping[str, Any]] = None) -> str:
    """One-line description of an event; unknown types render as 'Event: {type}'."""
    template = _MESSAGES.get(event_type)
    if template is None:
        return f"Event: {event_type}"
    return template(data if isinstance(data, Mapping) else {})


# Discord embed colors
EVENT_COLORS: Dict[str, int] = {
    'check': 0x10B981, 'uncheck': 0xF59E0B, 'phase_complete': 0x10B981,
    'analyze': 0x0EA5E9, 'analyzePageUrl': 0x0EA5E9, 'analyzePageBatch': 0x0EA5E9,
    'monitor': 0x7B2FBE, 'score_drop': 0xEF4444, 'score_improve': 0x10B981,
    'competitor_monitor': 0x8B5CF6, 'citation_share_check': 0x8B5CF6,
    'contentWrite': 0xF59E0B, 'schemaGenerate': 0x14B8A6, 'briefGenerate': 0xF59E0B,
    'member_add': 0x6366F1, 'role_change': 0x6366F1, 'member_remove': 0xEF4444,
    'task_assign': 0x6366F1, 'export': 0xFF6B35,
}
DEFAULT_EVENT_COLOR = 0x6B7280


def event_color(event_type: str) -> int:
    return EVENT_COLORS.get(event_type, DEFAULT_EVENT_COLOR)
