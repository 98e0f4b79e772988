"""
models.py
=========
ORM models and enums for the ChurnGuard trigger engine.

- FrequencyType:    realtime | hourly | daily | weekly | custom
- ConditionType:    engagement_score | active_days | total_events | days_since_last_seen | unknown
- Operator:         > | >= | < | <= | = | != | unknown
- LogicalOperator:  AND | OR
- EmailTemplate:    subject/body text with {placeholders}
- Trigger:          condition list + template + frequency, owned by a user
- TriggerCondition: one threshold comparison, folded left-to-right by order_index
- UsageAnalytics:   per-customer analytics snapshot for a period
- TriggerExecution: append-only log of match+send attempts (also schedule state)
- ChurnEvent:       payment-webhook output that asks for a single-customer refresh
- UserIntegration:  per-user credentials for PostHog/Stripe/Resend
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .db import Base


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class FrequencyType(str, PyEnum):
    realtime = "realtime"
    hourly = "hourly"
    daily = "daily"
    weekly = "weekly"
    custom = "custom"


class ConditionType(str, PyEnum):
    """Metrics a condition can compare. Raw strings outside this set parse to `unknown`."""
    engagement_score = "engagement_score"
    active_days = "active_days"
    total_events = "total_events"
    days_since_last_seen = "days_since_last_seen"
    unknown = "unknown"

    @classmethod
    def parse(cls, raw) -> "ConditionType":
        if isinstance(raw, cls):
            return raw
        try:
            member = cls(str(raw))
        except ValueError:
            return cls.unknown
        return member


class Operator(str, PyEnum):
    gt = ">"
    gte = ">="
    lt = "<"
    lte = "<="
    eq = "="
    ne = "!="
    unknown = "unknown"

    @classmethod
    def parse(cls, raw) -> "Operator":
        if isinstance(raw, cls):
            return raw
        if raw == "==":
            return cls.eq
        try:
            member = cls(str(raw))
        except ValueError:
            return cls.unknown
        return member


class LogicalOperator(str, PyEnum):
    AND = "AND"
    OR = "OR"

    @classmethod
    def parse(cls, raw) -> "LogicalOperator":
        """Only an explicit OR folds as OR; anything else (including null) is AND."""
        if raw == cls.OR or raw == "OR":
            return cls.OR
        return cls.AND


class IntegrationType(str, PyEnum):
    posthog = "posthog"
    stripe = "stripe"
    resend = "resend"


# -----------------------------------------------------------------------------
# EmailTemplate
# -----------------------------------------------------------------------------
class EmailTemplate(Base):
    """
    Subject/body text containing `{variable}` placeholders.

    `variables` is derived when the template is saved and may drift from the
    actual placeholders; the renderer never relies on it.
    """
    __tablename__ = "email_templates"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    body_html = Column(Text, nullable=False)
    body_text = Column(Text, nullable=True)
    variables = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# -----------------------------------------------------------------------------
# Trigger + conditions
# -----------------------------------------------------------------------------
class Trigger(Base):
    """
    A user-defined rule: conditions + template + frequency.

    Notes:
    - There is no stored "last run"; the latest TriggerExecution row is the schedule state.
    - `lease_token`/`lease_expires_at` let one batch worker claim the trigger at a time.
    """
    __tablename__ = "triggers"
    __table_args__ = (
        Index("ix_triggers_active", "is_active"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    frequency_type = Column(String, nullable=False, default=FrequencyType.daily.value)
    frequency_value = Column(String, nullable=True)  # cron-like text, custom only
    is_active = Column(Boolean, default=True, nullable=False)
    email_template_id = Column(Integer, ForeignKey("email_templates.id", ondelete="SET NULL"), nullable=True)
    lease_token = Column(String, nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    template = relationship("EmailTemplate")
    conditions = relationship(
        "TriggerCondition",
        back_populates="trigger",
        order_by="TriggerCondition.order_index",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    executions = relationship(
        "TriggerExecution",
        back_populates="trigger",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class TriggerCondition(Base):
    """
    One threshold comparison.

    `logical_operator` says how this condition's result joins the accumulated
    result of everything before it; it is ignored on the first condition.
    `condition_type`/`operator` are stored raw so unknown values fail closed.
    """
    __tablename__ = "trigger_conditions"

    id = Column(Integer, primary_key=True)
    trigger_id = Column(Integer, ForeignKey("triggers.id", ondelete="CASCADE"), nullable=False, index=True)
    condition_type = Column(String, nullable=False)
    operator = Column(String, nullable=False)
    threshold_value = Column(Float, nullable=False)
    threshold_unit = Column(String, nullable=True)  # display only
    logical_operator = Column(String, nullable=False, default=LogicalOperator.AND.value)
    order_index = Column(Integer, nullable=False, default=0)

    trigger = relationship("Trigger", back_populates="conditions")


# -----------------------------------------------------------------------------
# UsageAnalytics (snapshot)
# -----------------------------------------------------------------------------
class UsageAnalytics(Base):
    """
    Pre-aggregated behaviour of one customer over [period_start, period_end].

    Written wholesale by the sync job (delete-and-replace per period), never merged.
    """
    __tablename__ = "usage_analytics"
    __table_args__ = (
        Index("ix_usage_user_email", "user_id", "customer_email"),
        Index("ix_usage_user_period", "user_id", "period_start", "period_end"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False)
    customer_email = Column(String, nullable=False)
    engagement_score = Column(Integer, nullable=False, default=0)  # 0..100
    active_days = Column(Integer, nullable=False, default=0)
    total_events = Column(Integer, nullable=False, default=0)
    last_seen = Column(DateTime, nullable=True)
    most_used_feature = Column(String, nullable=True)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    analytics_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# -----------------------------------------------------------------------------
# TriggerExecution (append-only log)
# -----------------------------------------------------------------------------
class TriggerExecution(Base):
    """One row per matched (trigger, customer) attempt. Non-matches are never logged."""
    __tablename__ = "trigger_executions"
    __table_args__ = (
        Index("ix_executions_trigger_ts", "trigger_id", "executed_at"),
    )

    id = Column(Integer, primary_key=True)
    trigger_id = Column(Integer, ForeignKey("triggers.id", ondelete="CASCADE"), nullable=False)
    customer_email = Column(String, nullable=False)
    email_sent = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    execution_data = Column(JSON, nullable=True)
    executed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    trigger = relationship("Trigger", back_populates="executions")


# -----------------------------------------------------------------------------
# ChurnEvent / UserIntegration
# -----------------------------------------------------------------------------
class ChurnEvent(Base):
    """Produced by payment-webhook ingestion; `processed_at` is set once refreshed."""
    __tablename__ = "churn_events"
    __table_args__ = (
        Index("ix_churn_events_pending", "processed_at", "created_at"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    customer_id = Column(String, nullable=True)
    customer_email = Column(String, nullable=False)
    event_type = Column(String, nullable=False)
    event_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)


class UserIntegration(Base):
    __tablename__ = "user_integrations"
    __table_args__ = (
        Index("ix_integrations_user_service", "user_id", "service_type"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False)
    service_type = Column(String, nullable=False)
    api_key = Column(String, nullable=True)
    additional_config = Column(JSON, nullable=True)  # e.g. {"project_id": "123"}
    is_active = Column(Boolean, default=True, nullable=False)
