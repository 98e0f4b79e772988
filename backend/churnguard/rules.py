"""
rules.py
========
Combine a trigger's ordered conditions into one boolean per customer.

Conditions are folded strictly left to right with no precedence:
`A AND B OR C` is `(A AND B) OR C`. Each condition's `logical_operator`
joins its own result onto everything accumulated before it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from .conditions import evaluate
from .log import get_logger
from .models import LogicalOperator

logger = get_logger(__name__)


def ordered(conditions: Sequence) -> list:
    """Stable sort by order_index (missing index sorts as 0)."""
    return sorted(conditions, key=lambda c: c.order_index or 0)


def evaluate_all(conditions: Sequence, snapshot, now: Optional[datetime] = None, log=None) -> bool:
    log = log or logger
    if not conditions:
        log.warning("no_conditions_to_evaluate", customer_email=getattr(snapshot, "customer_email", None))
        return False

    now = now or datetime.utcnow()
    first, *rest = ordered(conditions)
    result = evaluate(first, snapshot, now=now, log=log)

    for condition in rest:
        condition_result = evaluate(condition, snapshot, now=now, log=log)
        if LogicalOperator.parse(condition.logical_operator) is LogicalOperator.OR:
            result = result or condition_result
        else:
            result = result and condition_result

    log.debug(
        "conditions_evaluated",
        customer_email=getattr(snapshot, "customer_email", None),
        count=len(conditions),
        result=result,
    )
    return result
