"""
repository.py
=============
Store adapter between the trigger engine and the database.

The engine only sees this interface:
- list_active_triggers()           -> triggers with conditions + template loaded
- list_snapshots(user_id)          -> latest snapshot per customer
- last_executed_at(trigger_id)     -> newest execution timestamp or None
- append_execution(...)            -> one log row, committed immediately
- claim(...) / release(...)        -> per-trigger lease via conditional UPDATE

plus the churn-event, integration and snapshot-replace helpers used by the
sync and refresh paths.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .errors import SnapshotLoadError, TriggerLoadError
from .models import (
    ChurnEvent,
    FrequencyType,
    IntegrationType,
    Trigger,
    TriggerExecution,
    UsageAnalytics,
    UserIntegration,
)


class TriggerRepository:
    def __init__(self, db: Session):
        self.db = db

    # ---------- triggers ----------

    def list_active_triggers(self, user_id: Optional[str] = None, frequency: Optional[FrequencyType] = None) -> List[Trigger]:
        q = (
            self.db.query(Trigger)
            .options(selectinload(Trigger.conditions), selectinload(Trigger.template))
            .filter(Trigger.is_active.is_(True))
        )
        if user_id is not None:
            q = q.filter(Trigger.user_id == user_id)
        if frequency is not None:
            q = q.filter(Trigger.frequency_type == frequency.value)
        try:
            return q.order_by(Trigger.id).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TriggerLoadError(f"Could not load active triggers: {e}") from e

    def get_trigger(self, trigger_id: int) -> Optional[Trigger]:
        return (
            self.db.query(Trigger)
            .options(selectinload(Trigger.conditions), selectinload(Trigger.template))
            .filter(Trigger.id == trigger_id)
            .one_or_none()
        )

    # ---------- leases ----------

    def claim(self, trigger_id: int, token: str, now: datetime, ttl_seconds: float) -> bool:
        """
        Take the trigger's lease if nobody holds an unexpired one.

        A single conditional UPDATE, so two workers racing for the same
        trigger cannot both see rowcount == 1.
        """
        stmt = (
            update(Trigger)
            .where(
                Trigger.id == trigger_id,
                or_(Trigger.lease_expires_at.is_(None), Trigger.lease_expires_at < now),
            )
            .values(lease_token=token, lease_expires_at=now + timedelta(seconds=ttl_seconds))
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount == 1

    def release(self, trigger_id: int, token: str) -> None:
        stmt = (
            update(Trigger)
            .where(Trigger.id == trigger_id, Trigger.lease_token == token)
            .values(lease_token=None, lease_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)
        self.db.commit()

    # ---------- snapshots ----------

    def list_snapshots(self, user_id: str) -> List[UsageAnalytics]:
        """Newest snapshot (by period_end) for each of the user's customers."""
        try:
            rows = (
                self.db.query(UsageAnalytics)
                .filter(UsageAnalytics.user_id == user_id)
                .order_by(UsageAnalytics.customer_email, UsageAnalytics.period_end.desc(), UsageAnalytics.id.desc())
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise SnapshotLoadError(user_id, f"Could not load usage analytics for user {user_id}: {e}") from e

        latest: Dict[str, UsageAnalytics] = {}
        for row in rows:
            latest.setdefault(row.customer_email, row)
        return list(latest.values())

    def replace_snapshots(
        self,
        user_id: str,
        period_start: datetime,
        period_end: datetime,
        records: Iterable[dict],
        customer_email: Optional[str] = None,
    ) -> List[UsageAnalytics]:
        """
        Delete every snapshot of the user overlapping [period_start, period_end]
        (optionally only for one customer), then insert `records`. One transaction.
        """
        try:
            q = self.db.query(UsageAnalytics).filter(
                UsageAnalytics.user_id == user_id,
                and_(UsageAnalytics.period_start <= period_end, UsageAnalytics.period_end >= period_start),
            )
            if customer_email is not None:
                q = q.filter(UsageAnalytics.customer_email == customer_email)
            q.delete(synchronize_session=False)

            rows = [UsageAnalytics(user_id=user_id, **r) for r in records]
            self.db.add_all(rows)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        for row in rows:
            self.db.refresh(row)
        return rows

    # ---------- execution log ----------

    def last_executed_at(self, trigger_id: int) -> Optional[datetime]:
        return (
            self.db.query(func.max(TriggerExecution.executed_at))
            .filter(TriggerExecution.trigger_id == trigger_id)
            .scalar()
        )

    def append_execution(
        self,
        trigger_id: int,
        customer_email: str,
        email_sent: bool,
        error_message: Optional[str],
        execution_data: Optional[dict],
        executed_at: Optional[datetime] = None,
    ) -> TriggerExecution:
        row = TriggerExecution(
            trigger_id=trigger_id,
            customer_email=customer_email,
            email_sent=email_sent,
            error_message=error_message,
            execution_data=execution_data,
            executed_at=executed_at or datetime.utcnow(),
        )
        try:
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return row

    def list_executions(self, trigger_id: int, limit: int = 50, offset: int = 0) -> List[TriggerExecution]:
        return (
            self.db.query(TriggerExecution)
            .filter(TriggerExecution.trigger_id == trigger_id)
            .order_by(TriggerExecution.executed_at.desc(), TriggerExecution.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    # ---------- churn events / integrations ----------

    def get_churn_event(self, churn_event_id: int) -> Optional[ChurnEvent]:
        return self.db.get(ChurnEvent, churn_event_id)

    def pending_churn_events(self, limit: int = 10) -> List[ChurnEvent]:
        return (
            self.db.query(ChurnEvent)
            .filter(ChurnEvent.processed_at.is_(None))
            .order_by(ChurnEvent.created_at.asc(), ChurnEvent.id.asc())
            .limit(limit)
            .all()
        )

    def mark_churn_event_processed(self, event: ChurnEvent, when: datetime) -> None:
        event.processed_at = when
        self.db.commit()

    def get_integration(self, user_id: str, service: IntegrationType) -> Optional[UserIntegration]:
        return (
            self.db.query(UserIntegration)
            .filter(
                UserIntegration.user_id == user_id,
                UserIntegration.service_type == service.value,
                UserIntegration.is_active.is_(True),
            )
            .first()
        )
