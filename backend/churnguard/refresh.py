"""
refresh.py
==========
Single-customer refresh driven by churn events (payment webhooks).

refresh_customer(churn_event_id):
  churn event -> owner's PostHog integration -> that customer's events ->
  one snapshot (replacing overlapping ones for the customer) -> event marked
  processed -> owner's active realtime triggers delivered for that customer.

process_churn_queue() runs refresh_customer over the oldest unprocessed
churn events, isolating each one.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from .aggregation import build_snapshot, event_email
from .errors import ChurnEventNotFound, ChurnGuardError
from .log import get_logger
from .models import FrequencyType, IntegrationType
from .processor import ProcessResult, TriggerProcessor
from .repository import TriggerRepository
from .templating import format_date

logger = get_logger(__name__)

REFRESH_DAYS = 30
QUEUE_BATCH_SIZE = 10


def posthog_config(integration) -> tuple:
    config = integration.additional_config or {}
    return integration.api_key, config.get("project_id")


def refresh_customer(
    repository: TriggerRepository,
    processor: TriggerProcessor,
    client_factory: Callable[[str, str], object],
    churn_event_id: int,
    now: Optional[datetime] = None,
    log=None,
) -> dict:
    log = (log or logger).bind(churn_event_id=churn_event_id)
    now = now or datetime.utcnow()

    event = repository.get_churn_event(churn_event_id)
    if event is None:
        raise ChurnEventNotFound(churn_event_id)

    integration = repository.get_integration(event.user_id, IntegrationType.posthog)
    if integration is None:
        log.info("no_posthog_integration", user_id=event.user_id)
        return {"success": False, "message": "No PostHog integration configured"}

    api_key, project_id = posthog_config(integration)
    client = client_factory(api_key, project_id)

    period_start, period_end = now - timedelta(days=REFRESH_DAYS), now
    customer_events = [
        e for e in client.fetch_events(period_start, period_end)
        if event_email(e) == event.customer_email
    ]
    record = build_snapshot(event.customer_email, customer_events, period_start, period_end, REFRESH_DAYS, now)
    record["analytics_data"]["churn_event_type"] = event.event_type
    [snapshot] = repository.replace_snapshots(
        event.user_id, period_start, period_end, [record], customer_email=event.customer_email
    )
    repository.mark_churn_event_processed(event, now)
    log.info("customer_refreshed", customer_email=event.customer_email, events=len(customer_events))

    notifications = ProcessResult()
    for trigger in repository.list_active_triggers(user_id=event.user_id, frequency=FrequencyType.realtime):
        try:
            notifications = notifications + processor.deliver(trigger, [snapshot], now=now)
        except Exception as e:
            log.error("realtime_trigger_failed", trigger_id=trigger.id, error=str(e), exc_info=True)

    last_seen = snapshot.last_seen
    return {
        "success": True,
        "analytics": {
            "customer_email": snapshot.customer_email,
            "event_type": event.event_type,
            "total_events": snapshot.total_events,
            "active_days": snapshot.active_days,
            "most_used_feature": snapshot.most_used_feature,
            "last_seen": format_date(last_seen) if last_seen else "Never",
            "engagement_score": snapshot.engagement_score,
            "days_since_last_activity": (now - last_seen).days if last_seen else None,
        },
        "notifications": {
            "attempted": notifications.attempted,
            "sent": notifications.sent,
            "failed": notifications.failed,
        },
    }


def process_churn_queue(
    repository: TriggerRepository,
    processor: TriggerProcessor,
    client_factory: Callable[[str, str], object],
    limit: int = QUEUE_BATCH_SIZE,
    now: Optional[datetime] = None,
    log=None,
) -> dict:
    log = log or logger
    events = repository.pending_churn_events(limit=limit)
    if not events:
        return {"message": "No unprocessed churn events found", "processed": 0}

    processed = []
    for event in events:
        event_id, customer_email = event.id, event.customer_email
        try:
            outcome = refresh_customer(repository, processor, client_factory, event_id, now=now, log=log)
        except Exception as e:
            repository.db.rollback()
            error = e.message if isinstance(e, ChurnGuardError) else (str(e) or e.__class__.__name__)
            log.error("churn_event_failed", churn_event_id=event_id, error=error, exc_info=True)
            processed.append({
                "event_id": event_id,
                "customer_email": customer_email,
                "status": "error",
                "error": error,
            })
            continue
        processed.append({
            "event_id": event_id,
            "customer_email": customer_email,
            "status": "processed" if outcome.get("success") else "skipped",
        })

    return {
        "message": f"Processed {len(processed)} churn events",
        "processed": len(processed),
        "events": processed,
    }
