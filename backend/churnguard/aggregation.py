"""
aggregation.py
==============
Turn raw analytics events into per-customer usage snapshots.

Engagement score (0-100):
- 40 pts for consistency: active_days / days_back
- 40 pts for volume:      min(total_events, 100) / 100
- 20 pts for recency:     seen in the last 7 days

The sync replaces every snapshot of the user that overlaps the synced
period; snapshots are never merged.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from .log import get_logger
from .repository import TriggerRepository

logger = get_logger(__name__)

RECENT_WINDOW = timedelta(days=7)


def clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    """Clamp a numeric value to [lo, hi]."""
    return max(lo, min(hi, float(x)))


def parse_timestamp(raw) -> Optional[datetime]:
    """ISO-8601 (with or without Z/offset) -> naive UTC datetime, None if unparsable."""
    if isinstance(raw, datetime):
        ts = raw
    elif isinstance(raw, str) and raw:
        try:
            ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def event_email(event: dict) -> Optional[str]:
    """Customer identity of an event: person email, event email, then distinct_id."""
    person = (event.get("person") or {}).get("properties") or {}
    props = event.get("properties") or {}
    for candidate in (person.get("email"), props.get("email"), event.get("distinct_id")):
        if isinstance(candidate, str) and "@" in candidate:
            return candidate
    return None


def engagement_score(active_days: int, total_events: int, last_seen: Optional[datetime], days_back: int, now: datetime) -> int:
    consistency = active_days / max(1, days_back) * 40
    volume = min(total_events, 100) / 100 * 40
    recency = 20 if last_seen is not None and last_seen > now - RECENT_WINDOW else 0
    # round half up
    return int(clamp(math.floor(consistency + volume + recency + 0.5)))


def churn_risk(score: int) -> str:
    if score < 30:
        return "high"
    if score < 60:
        return "medium"
    return "low"


def build_snapshot(
    customer_email: str,
    events: Iterable[dict],
    period_start: datetime,
    period_end: datetime,
    days_back: int,
    now: datetime,
) -> dict:
    """Snapshot record for one customer. Events outside the period are ignored."""
    feature_usage: Counter = Counter()
    daily_activity: Counter = Counter()
    last_seen: Optional[datetime] = None
    total = 0

    for event in events:
        ts = parse_timestamp(event.get("timestamp"))
        if ts is None or ts < period_start or ts > period_end:
            continue
        total += 1
        feature_usage[event.get("event") or "unknown"] += 1
        daily_activity[ts.date().isoformat()] += 1
        if last_seen is None or ts > last_seen:
            last_seen = ts

    most_used, best = "Unknown", 0
    for feature, count in feature_usage.items():
        if count > best:
            most_used, best = feature, count

    score = engagement_score(len(daily_activity), total, last_seen, days_back, now)
    return {
        "customer_email": customer_email,
        "period_start": period_start,
        "period_end": period_end,
        "total_events": total,
        "active_days": len(daily_activity),
        "engagement_score": score,
        "last_seen": last_seen,
        "most_used_feature": most_used,
        "analytics_data": {
            "feature_usage": dict(feature_usage),
            "daily_activity": dict(daily_activity),
            "churn_risk": churn_risk(score),
            "sync_timestamp": now.isoformat(),
        },
    }


def aggregate_events(
    events: Iterable[dict],
    period_start: datetime,
    period_end: datetime,
    days_back: int,
    now: datetime,
) -> List[dict]:
    """Group events by customer email and build one snapshot record each."""
    by_customer: Dict[str, List[dict]] = {}
    for event in events:
        email = event_email(event)
        if email is None:
            continue
        by_customer.setdefault(email, []).append(event)

    records = [
        build_snapshot(email, customer_events, period_start, period_end, days_back, now)
        for email, customer_events in by_customer.items()
    ]
    return [r for r in records if r["total_events"] > 0]


def summarize(records: List[dict], period_start: datetime, period_end: datetime, days_back: int) -> dict:
    scores = [r["engagement_score"] for r in records]
    return {
        "success": True,
        "records_processed": len(records),
        "period": {
            "start": period_start.isoformat(),
            "end": period_end.isoformat(),
            "days": days_back,
        },
        "engagement_distribution": {
            "high": sum(1 for s in scores if s >= 70),
            "medium": sum(1 for s in scores if 40 <= s < 70),
            "low": sum(1 for s in scores if s < 40),
        },
        "churn_risk": {
            "high": sum(1 for s in scores if s < 30),
            "medium": sum(1 for s in scores if 30 <= s < 60),
            "low": sum(1 for s in scores if s >= 60),
        },
    }


def sync_user_analytics(
    repository: TriggerRepository,
    client,
    user_id: str,
    days_back: int = 30,
    now: Optional[datetime] = None,
    log=None,
) -> dict:
    """Fetch the user's events, rebuild their snapshots for the period, return a summary."""
    log = (log or logger).bind(user_id=user_id, days_back=days_back)
    now = now or datetime.utcnow()
    period_start, period_end = now - timedelta(days=days_back), now

    events = list(client.fetch_events(period_start, period_end))
    log.info("analytics_events_fetched", events=len(events))

    records = aggregate_events(events, period_start, period_end, days_back, now)
    repository.replace_snapshots(user_id, period_start, period_end, records)
    log.info("analytics_snapshots_replaced", records=len(records))

    return summarize(records, period_start, period_end, days_back)
