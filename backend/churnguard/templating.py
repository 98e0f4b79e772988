"""
templating.py
=============
Plain `{variable}` substitution for email subjects and bodies.

Only the names in `snapshot_variables` are replaced; any other
`{placeholder}` is left exactly as written. No HTML escaping happens here.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional

PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

KNOWN_VARIABLES = (
    "customer_email",
    "engagement_score",
    "active_days",
    "total_events",
    "most_used_feature",
    "last_seen",
    "period_start",
    "period_end",
)


def format_date(value: Optional[datetime]) -> str:
    """US short date, e.g. 3/7/2025."""
    if value is None:
        return ""
    return f"{value.month}/{value.day}/{value.year}"


def _count(value) -> str:
    return str(value) if value is not None else "0"


def snapshot_variables(snapshot) -> Dict[str, str]:
    last_seen = getattr(snapshot, "last_seen", None)
    return {
        "customer_email": getattr(snapshot, "customer_email", None) or "",
        "engagement_score": _count(getattr(snapshot, "engagement_score", None)),
        "active_days": _count(getattr(snapshot, "active_days", None)),
        "total_events": _count(getattr(snapshot, "total_events", None)),
        "most_used_feature": getattr(snapshot, "most_used_feature", None) or "N/A",
        "last_seen": format_date(last_seen) if last_seen else "Never",
        "period_start": format_date(getattr(snapshot, "period_start", None)),
        "period_end": format_date(getattr(snapshot, "period_end", None)),
    }


def render(text: Optional[str], snapshot) -> str:
    if not text:
        return ""
    values = snapshot_variables(snapshot)

    def _sub(match: re.Match) -> str:
        return values.get(match.group(1), match.group(0))

    return PLACEHOLDER.sub(_sub, text)


def extract_variables(*texts: Optional[str]) -> List[str]:
    """Sorted unique placeholder names across the given texts (known or not)."""
    found = set()
    for text in texts:
        if text:
            found.update(PLACEHOLDER.findall(text))
    return sorted(found)


def unknown_variables(names: Iterable[str]) -> List[str]:
    return sorted(n for n in set(names) if n not in KNOWN_VARIABLES)
