"""
Shared fixtures for the ChurnGuard test-suite.

- Points DATABASE_URL at a throwaway SQLite file *before* the app is imported.
- Recreates all tables around every test so cases don't interfere.
- Provides fakes for the two outbound collaborators (email + PostHog) and
  small factories for templates, triggers and snapshots.

How to run
----------
pytest -q --cov=churnguard --cov-report=term-missing
"""

import os

os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["SEED_ON_START"] = "false"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import threading
import time
from datetime import datetime, timedelta

import pytest

from churnguard.db import Base, engine, SessionLocal
from churnguard.errors import EmailSendError
from churnguard.models import EmailTemplate, Trigger, TriggerCondition, UsageAnalytics

NOW = datetime(2025, 3, 10, 12, 0, 0)
USER = "user-1"


@pytest.fixture(autouse=True)
def _fresh_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    with SessionLocal() as session:
        yield session


@pytest.fixture
def clock():
    return lambda: NOW


class FakeSender:
    """Records sends; raises EmailSendError for addresses in `fail_for`, sleeps for `hang_for`."""

    def __init__(self, fail_for=(), hang_for=(), hang_seconds=2.0):
        self.fail_for = set(fail_for)
        self.hang_for = set(hang_for)
        self.hang_seconds = hang_seconds
        self.sent = []
        self._lock = threading.Lock()

    def send(self, to, subject, html, text, *, template_name="", trigger_name=""):
        if to in self.hang_for:
            time.sleep(self.hang_seconds)
        if to in self.fail_for:
            raise EmailSendError("Resend API error: rate limited", recipient=to)
        with self._lock:
            self.sent.append({
                "to": to, "subject": subject, "html": html, "text": text,
                "template_name": template_name, "trigger_name": trigger_name,
            })
            return f"email-{len(self.sent)}"


class FakePostHog:
    """Stands in for PostHogClient; remembers which credentials it was built with."""

    def __init__(self, events=(), error=None):
        self.events = list(events)
        self.error = error
        self.calls = []

    def factory(self, api_key, project_id):
        self.calls.append((api_key, project_id))
        return self

    def fetch_events(self, since, until):
        if self.error is not None:
            raise self.error
        return iter(self.events)


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def make_template(db):
    def _make(user_id=USER, name="Check-in", subject="Hi {customer_email}",
              body_html="<p>Score {engagement_score}</p>", body_text="Score {engagement_score}"):
        tpl = EmailTemplate(user_id=user_id, name=name, subject=subject,
                            body_html=body_html, body_text=body_text, variables=[])
        db.add(tpl)
        db.commit()
        db.refresh(tpl)
        return tpl
    return _make


@pytest.fixture
def make_trigger(db, make_template):
    """
    conditions: list of (condition_type, operator, threshold[, logical_operator]) tuples.
    template=False creates the trigger without a template.
    """
    def _make(conditions=(("engagement_score", "<", 30),), frequency_type="daily",
              user_id=USER, name="Low engagement", template=None, is_active=True):
        if template is None:
            template = make_template(user_id=user_id)
        trigger = Trigger(
            user_id=user_id, name=name, frequency_type=frequency_type, is_active=is_active,
            email_template_id=template.id if template else None,
        )
        for i, spec in enumerate(conditions):
            ctype, op, threshold = spec[:3]
            logical = spec[3] if len(spec) > 3 else "AND"
            trigger.conditions.append(TriggerCondition(
                condition_type=ctype, operator=op, threshold_value=threshold,
                logical_operator=logical, order_index=i,
            ))
        db.add(trigger)
        db.commit()
        db.refresh(trigger)
        return trigger
    return _make


@pytest.fixture
def make_snapshot(db):
    def _make(customer_email, user_id=USER, engagement_score=50, active_days=10, total_events=40,
              last_seen=NOW - timedelta(days=1), period_end=NOW, most_used_feature="dashboard_view"):
        snap = UsageAnalytics(
            user_id=user_id, customer_email=customer_email, engagement_score=engagement_score,
            active_days=active_days, total_events=total_events, last_seen=last_seen,
            most_used_feature=most_used_feature,
            period_start=period_end - timedelta(days=30), period_end=period_end,
        )
        db.add(snap)
        db.commit()
        db.refresh(snap)
        return snap
    return _make
