"""
routers/jobs.py
===============
Job endpoints called by the external scheduler and by webhook ingestion.

Exposes:
- POST /api/process-triggers     periodic batch over all active triggers
- POST /api/sync-analytics       rebuild one user's snapshots from PostHog
- POST /api/analyze-churn        single-customer refresh for a churn event
- POST /api/process-churn-queue  refresh the oldest unprocessed churn events

The process-triggers response body is consumed by the scheduler as-is:
200 {success, message, processed, total, duration_ms} or 500 {success, error, timestamp}.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..aggregation import sync_user_analytics
from ..batch import BatchRunner
from ..db import SessionLocal, get_db
from ..errors import ChurnEventNotFound, ChurnGuardError
from ..log import get_logger
from ..mailer import ResendEmailSender
from ..models import IntegrationType
from ..posthog import PostHogClient
from ..processor import TriggerProcessor
from ..refresh import posthog_config, process_churn_queue, refresh_customer
from ..repository import TriggerRepository
from .. import schemas

router = APIRouter(prefix="/api", tags=["jobs"])
logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Dependencies (overridden in tests)
# -----------------------------------------------------------------------------
def get_email_sender():
    return ResendEmailSender()


def get_posthog_factory():
    return PostHogClient


def get_session_factory():
    return SessionLocal


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


@router.post("/process-triggers")
def process_triggers(
    sender=Depends(get_email_sender),
    session_factory=Depends(get_session_factory),
):
    try:
        result = BatchRunner(session_factory, sender).run()
    except Exception as e:
        logger.exception("trigger_batch_failed")
        return _error(500, str(e), timestamp=datetime.utcnow().isoformat() + "Z")
    return result.to_response()


@router.post("/sync-analytics")
def sync_analytics(
    payload: schemas.SyncRequest,
    db: Session = Depends(get_db),
    posthog_factory=Depends(get_posthog_factory),
):
    repository = TriggerRepository(db)
    integration = repository.get_integration(payload.user_id, IntegrationType.posthog)
    if integration is None:
        return _error(500, "PostHog integration not found or inactive")
    try:
        client = posthog_factory(*posthog_config(integration))
        return sync_user_analytics(repository, client, payload.user_id, days_back=payload.days_back)
    except ChurnGuardError as e:
        logger.error("analytics_sync_failed", user_id=payload.user_id, error=e.message)
        return _error(500, e.message)


@router.post("/analyze-churn")
def analyze_churn(
    payload: schemas.AnalyzeChurnRequest,
    db: Session = Depends(get_db),
    sender=Depends(get_email_sender),
    posthog_factory=Depends(get_posthog_factory),
):
    repository = TriggerRepository(db)
    processor = TriggerProcessor(repository, sender)
    try:
        return refresh_customer(repository, processor, posthog_factory, payload.churnEventId)
    except ChurnEventNotFound as e:
        return JSONResponse(status_code=404, content={"error": e.message})
    except ChurnGuardError as e:
        logger.error("churn_analysis_failed", churn_event_id=payload.churnEventId, error=e.message)
        return JSONResponse(status_code=500, content={"error": e.message})


@router.post("/process-churn-queue")
def churn_queue(
    db: Session = Depends(get_db),
    sender=Depends(get_email_sender),
    posthog_factory=Depends(get_posthog_factory),
):
    repository = TriggerRepository(db)
    processor = TriggerProcessor(repository, sender)
    return process_churn_queue(repository, processor, posthog_factory)
