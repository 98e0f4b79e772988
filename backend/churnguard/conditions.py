"""
conditions.py
=============
Single-condition evaluation against a usage snapshot.

`evaluate(condition, snapshot)` never raises for bad configuration: an
unknown condition type or operator evaluates to False and is logged as a
warning, so a malformed rule can only fail to fire.
"""

from __future__ import annotations

import math
import operator as op
from datetime import datetime
from typing import Callable, Dict, Optional

from .log import get_logger
from .models import ConditionType, Operator

logger = get_logger(__name__)

# "never seen" reads as maximally inactive
NEVER_SEEN_DAYS = 999

_COMPARATORS: Dict[Operator, Callable[[float, float], bool]] = {
    Operator.gt: op.gt,
    Operator.gte: op.ge,
    Operator.lt: op.lt,
    Operator.lte: op.le,
    Operator.eq: op.eq,
    Operator.ne: op.ne,
}


def days_since(last_seen: Optional[datetime], now: datetime) -> int:
    """Whole days (floored) between `last_seen` and `now`; NEVER_SEEN_DAYS when absent."""
    if last_seen is None:
        return NEVER_SEEN_DAYS
    return math.floor((now - last_seen).total_seconds() / 86400)


def resolve_metric(
    condition_type: ConditionType,
    snapshot,
    now: Optional[datetime] = None,
) -> Optional[float]:
    """
    Pull the value a condition compares from the snapshot.

    Missing counters default to 0. Returns None for ConditionType.unknown.
    """
    if condition_type is ConditionType.engagement_score:
        return getattr(snapshot, "engagement_score", None) or 0
    if condition_type is ConditionType.active_days:
        return getattr(snapshot, "active_days", None) or 0
    if condition_type is ConditionType.total_events:
        return getattr(snapshot, "total_events", None) or 0
    if condition_type is ConditionType.days_since_last_seen:
        return days_since(getattr(snapshot, "last_seen", None), now or datetime.utcnow())
    return None


def evaluate(condition, snapshot, now: Optional[datetime] = None, log=None) -> bool:
    """Evaluate one TriggerCondition against one UsageAnalytics snapshot."""
    log = log or logger
    condition_type = ConditionType.parse(condition.condition_type)
    operator = Operator.parse(condition.operator)

    if condition_type is ConditionType.unknown:
        log.warning("unknown_condition_type", condition_type=condition.condition_type)
        return False
    if operator is Operator.unknown:
        log.warning("unknown_operator", operator=condition.operator)
        return False

    actual = resolve_metric(condition_type, snapshot, now)
    threshold = condition.threshold_value
    if threshold is None:
        log.warning("missing_threshold", condition_type=condition_type.value)
        return False

    result = _COMPARATORS[operator](actual, threshold)
    log.debug(
        "condition_evaluated",
        condition_type=condition_type.value,
        actual=actual,
        operator=operator.value,
        threshold=threshold,
        result=result,
    )
    return result
