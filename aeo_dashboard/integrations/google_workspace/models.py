# aeo_dashboard/integrations/google_workspace/models.py
"""Value types shared by the Search Console and Analytics clients."""

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


def to_number(value: Any) -> float:
    """Coerce an API value to float; missing or invalid values become 0."""
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


@dataclass(frozen=True)
class Subject:
    """A property the user can report on (GSC site or GA4 property)."""
    id: str
    display_name: str
    permission: Optional[str] = None
    account: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Report:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    totals: Dict[str, float] = field(default_factory=dict)
    row_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {'rows': self.rows, 'totals': self.totals, 'row_count': self.row_count}
