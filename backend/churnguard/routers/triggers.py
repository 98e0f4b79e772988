"""
routers/triggers.py
===================
Endpoints for the records the dashboard produces and reads back.

Exposes:
- POST  /api/templates
- GET   /api/templates/{template_id}/preview
- POST  /api/triggers
- GET   /api/triggers
- PATCH /api/triggers/{trigger_id}/active
- GET   /api/triggers/{trigger_id}/executions
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, selectinload

from ..db import get_db
from .. import models, schemas
from ..repository import TriggerRepository
from ..templating import extract_variables, render, unknown_variables

router = APIRouter(prefix="/api", tags=["triggers"])


@router.post("/templates", response_model=schemas.TemplateOut, status_code=201)
def create_template(payload: schemas.TemplateCreate, db: Session = Depends(get_db)):
    """Save a template; `variables` is derived from the placeholders found in it."""
    tpl = models.EmailTemplate(
        user_id=payload.user_id,
        name=payload.name,
        subject=payload.subject,
        body_html=payload.body_html,
        body_text=payload.body_text,
        variables=extract_variables(payload.subject, payload.body_html, payload.body_text),
    )
    db.add(tpl)
    db.commit()
    db.refresh(tpl)
    return tpl


@router.get("/templates/{template_id}/preview")
def preview_template(template_id: int, customer_email: str = Query(...), db: Session = Depends(get_db)) -> dict:
    """
    Render a template against a customer's latest snapshot.

    The rendered HTML is not escaped; the caller sanitizes before displaying it.
    """
    tpl = db.get(models.EmailTemplate, template_id)
    if not tpl:
        raise HTTPException(status_code=404, detail="Template not found")

    snapshots = TriggerRepository(db).list_snapshots(tpl.user_id)
    snapshot = next((s for s in snapshots if s.customer_email == customer_email), None)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No usage analytics for this customer")

    return {
        "subject": render(tpl.subject, snapshot),
        "html": render(tpl.body_html, snapshot),
        "text": render(tpl.body_text, snapshot),
        "unknown_variables": unknown_variables(extract_variables(tpl.subject, tpl.body_html, tpl.body_text)),
    }


@router.post("/triggers", response_model=schemas.TriggerOut, status_code=201)
def create_trigger(payload: schemas.TriggerCreate, db: Session = Depends(get_db)):
    """
    Create a trigger with its conditions.

    Validation rules:
    - the template must exist and belong to the same user
    - custom frequency requires frequency_value (cron-like text, stored as-is)
    - conditions without order_index are ordered by their position in the list
    """
    tpl = db.get(models.EmailTemplate, payload.email_template_id)
    if not tpl:
        raise HTTPException(status_code=404, detail="Email template not found")
    if tpl.user_id != payload.user_id:
        raise HTTPException(status_code=422, detail="Email template belongs to another user")

    if payload.frequency_type == schemas.FrequencyType.custom and not (payload.frequency_value or "").strip():
        raise HTTPException(status_code=422, detail="frequency_value is required for frequency_type=custom")

    trigger = models.Trigger(
        user_id=payload.user_id,
        name=payload.name,
        description=payload.description,
        email_template_id=tpl.id,
        frequency_type=payload.frequency_type.value,
        frequency_value=payload.frequency_value,
        is_active=payload.is_active,
    )
    for position, c in enumerate(payload.conditions):
        trigger.conditions.append(models.TriggerCondition(
            condition_type=c.condition_type,
            operator="=" if c.operator == "==" else c.operator,
            threshold_value=c.threshold_value,
            threshold_unit=c.threshold_unit,
            logical_operator=c.logical_operator,
            order_index=c.order_index if c.order_index is not None else position,
        ))
    db.add(trigger)
    db.commit()
    db.refresh(trigger)
    return trigger


@router.get("/triggers", response_model=List[schemas.TriggerOut])
def list_triggers(
    user_id: str = Query(...),
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
):
    q = (
        db.query(models.Trigger)
        .options(selectinload(models.Trigger.conditions))
        .filter(models.Trigger.user_id == user_id)
    )
    if active is not None:
        q = q.filter(models.Trigger.is_active.is_(active))
    return q.order_by(models.Trigger.id).all()


@router.patch("/triggers/{trigger_id}/active", response_model=schemas.TriggerOut)
def set_trigger_active(trigger_id: int, payload: schemas.TriggerActiveUpdate, db: Session = Depends(get_db)):
    trigger = db.get(models.Trigger, trigger_id)
    if not trigger:
        raise HTTPException(status_code=404, detail="Trigger not found")
    trigger.is_active = payload.is_active
    db.commit()
    db.refresh(trigger)
    return trigger


@router.get("/triggers/{trigger_id}/executions", response_model=List[schemas.ExecutionOut])
def list_executions(
    trigger_id: int,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Execution log rows, newest first: one per matched customer, sent or failed."""
    if not db.get(models.Trigger, trigger_id):
        raise HTTPException(status_code=404, detail="Trigger not found")
    return TriggerRepository(db).list_executions(trigger_id, limit=limit, offset=offset)
