from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from churnguard.main import app
from churnguard import models
from churnguard.errors import TriggerLoadError
from churnguard.repository import TriggerRepository
from churnguard.routers import jobs
from conftest import NOW, USER, FakePostHog, FakeSender

client = TestClient(app)


@pytest.fixture
def fake_sender():
    sender = FakeSender()
    app.dependency_overrides[jobs.get_email_sender] = lambda: sender
    yield sender
    app.dependency_overrides.clear()


@pytest.fixture
def fake_posthog():
    posthog = FakePostHog()
    app.dependency_overrides[jobs.get_posthog_factory] = lambda: posthog.factory
    yield posthog
    app.dependency_overrides.clear()


def _template(user_id=USER):
    r = client.post("/api/templates", json={
        "user_id": user_id,
        "name": "Check-in",
        "subject": "Hi {customer_email}",
        "body_html": "<p>Your score is {engagement_score}, {customer_name}</p>",
    })
    assert r.status_code == 201
    return r.json()


# ---------- templates ----------

def test_create_template_derives_variables():
    tpl = _template()
    assert tpl["variables"] == ["customer_email", "customer_name", "engagement_score"]


def test_preview_template(make_snapshot):
    tpl = _template()
    make_snapshot("ana@example.com", engagement_score=20)

    r = client.get(f"/api/templates/{tpl['id']}/preview", params={"customer_email": "ana@example.com"})
    assert r.status_code == 200
    body = r.json()
    assert body["subject"] == "Hi ana@example.com"
    assert body["html"] == "<p>Your score is 20, {customer_name}</p>"
    assert body["text"] == ""
    assert body["unknown_variables"] == ["customer_name"]


def test_preview_404s():
    tpl = _template()
    assert client.get("/api/templates/999/preview", params={"customer_email": "a@example.com"}).status_code == 404
    r = client.get(f"/api/templates/{tpl['id']}/preview", params={"customer_email": "nobody@example.com"})
    assert r.status_code == 404


# ---------- triggers ----------

def test_create_and_list_trigger():
    tpl = _template()
    r = client.post("/api/triggers", json={
        "user_id": USER,
        "name": "Low engagement",
        "email_template_id": tpl["id"],
        "frequency_type": "daily",
        "conditions": [
            {"condition_type": "engagement_score", "operator": "<", "threshold_value": 30},
            {"condition_type": "days_since_last_seen", "operator": "==", "threshold_value": 14,
             "logical_operator": "OR"},
        ],
    })
    assert r.status_code == 201
    trigger = r.json()
    assert [c["order_index"] for c in trigger["conditions"]] == [0, 1]
    assert trigger["conditions"][1]["operator"] == "="

    arr = client.get("/api/triggers", params={"user_id": USER}).json()
    assert [t["name"] for t in arr] == ["Low engagement"]
    assert client.get("/api/triggers", params={"user_id": "someone-else"}).json() == []


def test_create_trigger_validation():
    tpl = _template()
    base = {"user_id": USER, "name": "t", "email_template_id": tpl["id"], "conditions": []}

    assert client.post("/api/triggers", json={**base, "email_template_id": 999}).status_code == 404
    assert client.post("/api/triggers", json={**base, "user_id": "user-2"}).status_code == 422
    assert client.post("/api/triggers", json={**base, "frequency_type": "custom"}).status_code == 422
    assert client.post("/api/triggers", json={**base, "frequency_type": "monthly"}).status_code == 422
    bad_op = {**base, "conditions": [{"condition_type": "engagement_score", "operator": "~", "threshold_value": 1}]}
    assert client.post("/api/triggers", json=bad_op).status_code == 422

    custom = {**base, "frequency_type": "custom", "frequency_value": "0 9 * * 1"}
    assert client.post("/api/triggers", json=custom).status_code == 201


def test_toggle_active(make_trigger):
    trigger = make_trigger()
    r = client.patch(f"/api/triggers/{trigger.id}/active", json={"is_active": False})
    assert r.status_code == 200 and r.json()["is_active"] is False
    assert client.get("/api/triggers", params={"user_id": USER, "active": True}).json() == []
    assert client.patch("/api/triggers/999/active", json={"is_active": True}).status_code == 404


def test_list_executions_newest_first(db, make_trigger):
    trigger = make_trigger()
    for i in range(3):
        db.add(models.TriggerExecution(trigger_id=trigger.id, customer_email=f"c{i}@example.com",
                                       email_sent=True, execution_data={}, executed_at=NOW - timedelta(hours=3 - i)))
    db.commit()

    r = client.get(f"/api/triggers/{trigger.id}/executions", params={"limit": 2})
    assert r.status_code == 200
    assert [e["customer_email"] for e in r.json()] == ["c2@example.com", "c1@example.com"]
    assert client.get("/api/triggers/999/executions").status_code == 404


# ---------- jobs ----------

def test_process_triggers_empty(fake_sender):
    r = client.post("/api/process-triggers")
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "No active triggers to process", "processed": 0}


def test_process_triggers_sends(fake_sender, make_trigger, make_snapshot):
    make_trigger()
    make_snapshot("ana@example.com", engagement_score=10)

    r = client.post("/api/process-triggers")
    assert r.status_code == 200
    body = r.json()
    assert set(body) == {"success", "message", "processed", "total", "duration_ms"}
    assert body["message"] == "Processed 1 triggers"
    assert [m["to"] for m in fake_sender.sent] == ["ana@example.com"]


def test_process_triggers_failure_is_500(fake_sender, monkeypatch):
    def boom(self, user_id=None, frequency=None):
        raise TriggerLoadError("Could not load active triggers: connection refused")

    monkeypatch.setattr(TriggerRepository, "list_active_triggers", boom)
    r = client.post("/api/process-triggers")
    assert r.status_code == 500
    body = r.json()
    assert body["success"] is False
    assert "connection refused" in body["error"]
    assert body["timestamp"].endswith("Z")


def test_sync_analytics_requires_integration(fake_posthog):
    r = client.post("/api/sync-analytics", json={"user_id": USER})
    assert r.status_code == 500
    assert r.json()["error"] == "PostHog integration not found or inactive"


def test_sync_analytics(db, fake_posthog):
    db.add(models.UserIntegration(user_id=USER, service_type="posthog", api_key="phx_key",
                                  additional_config={"project_id": "42"}))
    db.commit()
    fake_posthog.events = [
        {"event": "login", "timestamp": "2099-01-01T00:00:00Z", "person": {"properties": {"email": "a@example.com"}}},
    ]

    r = client.post("/api/sync-analytics", json={"user_id": USER, "days_back": 7})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["period"]["days"] == 7
    assert fake_posthog.calls == [("phx_key", "42")]


def test_sync_analytics_rejects_bad_days_back(fake_posthog):
    assert client.post("/api/sync-analytics", json={"user_id": USER, "days_back": 0}).status_code == 422


def test_analyze_churn_unknown_event(fake_sender, fake_posthog):
    r = client.post("/api/analyze-churn", json={"churnEventId": 12345})
    assert r.status_code == 404
    assert r.json() == {"error": "Churn event not found"}


def test_churn_queue_empty(fake_sender, fake_posthog):
    r = client.post("/api/process-churn-queue")
    assert r.status_code == 200
    assert r.json() == {"message": "No unprocessed churn events found", "processed": 0}
