"""
schedule.py
===========
Frequency-based due check for the periodic batch.

Schedule state is not stored: `last_execution_time` is the newest
`executed_at` in the execution log. A trigger that matched nobody on its
last run has no new row, so it stays due on every tick.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from .log import get_logger
from .models import FrequencyType

logger = get_logger(__name__)

PERIODS = {
    FrequencyType.hourly: timedelta(hours=1),
    FrequencyType.daily: timedelta(hours=24),
    FrequencyType.weekly: timedelta(hours=24 * 7),
}


def parse_frequency(raw) -> Optional[FrequencyType]:
    if isinstance(raw, FrequencyType):
        return raw
    try:
        return FrequencyType(raw)
    except ValueError:
        return None


def is_due(trigger, last_execution_time: Optional[datetime], now: datetime, log=None) -> bool:
    """
    realtime -> never (fired by churn events, not the batch)
    hourly/daily/weekly -> never run, or elapsed >= period (exact, not calendar boundaries)
    custom -> always; the cron text is trusted to match the caller's cadence
    """
    log = log or logger
    frequency = parse_frequency(trigger.frequency_type)

    if frequency is None:
        log.warning("unknown_frequency_type", trigger_id=trigger.id, frequency_type=trigger.frequency_type)
        return False
    if frequency is FrequencyType.realtime:
        return False
    if frequency is FrequencyType.custom:
        return True
    if last_execution_time is None:
        return True
    return (now - last_execution_time) >= PERIODS[frequency]
