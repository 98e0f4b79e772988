from datetime import datetime, timedelta
from random import random, randint, choice, uniform

from faker import Faker
from sqlalchemy.orm import Session

from .aggregation import churn_risk, engagement_score
from .models import EmailTemplate, Trigger, TriggerCondition, UsageAnalytics, FrequencyType
from .templating import extract_variables

fake = Faker()

DEMO_USER = "demo-user"
FEATURES = ["dashboard_view", "report_export", "invite_sent", "api_key_created", "integration_added", "search"]

TEMPLATES = [
    {
        "name": "Low engagement check-in",
        "subject": "We miss you, {customer_email}",
        "body_html": (
            "<p>Hi there,</p><p>Your engagement score dropped to <b>{engagement_score}</b> "
            "and we last saw you on {last_seen}.</p><p>Your favourite feature was {most_used_feature}.</p>"
        ),
        "body_text": "Your engagement score dropped to {engagement_score}. Last seen: {last_seen}.",
    },
    {
        "name": "Payment problem follow-up",
        "subject": "Anything we can help with?",
        "body_html": "<p>You were active on {active_days} days between {period_start} and {period_end}.</p>",
        "body_text": None,
    },
]


def _unique_email(taken: set) -> str:
    """Generate a customer email that isn't already in the demo set."""
    for _ in range(50):
        email = fake.email()
        if email not in taken:
            return email
    # fallback – extremely unlikely to need
    return f"{randint(1000, 9999)}.{fake.email()}"


def _persona_params(persona: str):
    """
    power:    daily usage, lots of events
    steady:   moderate usage
    fading:   was active, not recently
    churning: barely there
    """
    return {
        "power":    dict(p_active=0.85, events_per_day=(3, 9), last_seen_days=(0, 2)),
        "steady":   dict(p_active=0.5,  events_per_day=(1, 5), last_seen_days=(0, 6)),
        "fading":   dict(p_active=0.2,  events_per_day=(1, 3), last_seen_days=(8, 20)),
        "churning": dict(p_active=0.05, events_per_day=(0, 2), last_seen_days=(20, 30)),
    }[persona]


def _snapshot(email: str, persona: str, now: datetime, days_back: int = 30) -> UsageAnalytics:
    P = _persona_params(persona)
    active_days = sum(1 for _ in range(days_back) if random() < P["p_active"])
    total_events = sum(randint(*P["events_per_day"]) for _ in range(active_days))
    last_seen = None
    if total_events:
        last_seen = now - timedelta(days=randint(*P["last_seen_days"]), hours=uniform(0, 23))
    score = engagement_score(active_days, total_events, last_seen, days_back, now)
    return UsageAnalytics(
        user_id=DEMO_USER,
        customer_email=email,
        engagement_score=score,
        active_days=active_days,
        total_events=total_events,
        last_seen=last_seen,
        most_used_feature=choice(FEATURES) if total_events else "Unknown",
        period_start=now - timedelta(days=days_back),
        period_end=now,
        analytics_data={"churn_risk": churn_risk(score), "persona": persona, "seeded": True},
    )


def seed_if_needed(db: Session):
    # If you want a full reset, drop the DB volume or delete rows before calling this.
    if db.query(Trigger).filter(Trigger.user_id == DEMO_USER).count() > 0:
        return

    now = datetime.utcnow()
    templates = []
    for t in TEMPLATES:
        tpl = EmailTemplate(
            user_id=DEMO_USER,
            variables=extract_variables(t["subject"], t["body_html"], t["body_text"]),
            **t,
        )
        db.add(tpl)
        templates.append(tpl)
    db.flush()  # get template ids without full commit

    low_engagement = Trigger(
        user_id=DEMO_USER, name="Low engagement", frequency_type=FrequencyType.daily.value,
        email_template_id=templates[0].id,
        description="Engagement under 30, or not seen for two weeks",
    )
    low_engagement.conditions = [
        TriggerCondition(condition_type="engagement_score", operator="<", threshold_value=30, order_index=0),
        TriggerCondition(condition_type="days_since_last_seen", operator=">", threshold_value=14,
                         threshold_unit="days", logical_operator="OR", order_index=1),
    ]
    fading_power_user = Trigger(
        user_id=DEMO_USER, name="Fading power user", frequency_type=FrequencyType.weekly.value,
        email_template_id=templates[0].id,
    )
    fading_power_user.conditions = [
        TriggerCondition(condition_type="total_events", operator=">=", threshold_value=50, order_index=0),
        TriggerCondition(condition_type="days_since_last_seen", operator=">=", threshold_value=7,
                         threshold_unit="days", logical_operator="AND", order_index=1),
    ]
    payment_failed = Trigger(
        user_id=DEMO_USER, name="Payment failed", frequency_type=FrequencyType.realtime.value,
        email_template_id=templates[1].id,
    )
    payment_failed.conditions = [
        TriggerCondition(condition_type="active_days", operator=">=", threshold_value=0, order_index=0),
    ]
    db.add_all([low_engagement, fading_power_user, payment_failed])

    taken: set = set()
    for _ in range(40):
        email = _unique_email(taken)
        taken.add(email)
        db.add(_snapshot(email, choice(["power", "steady", "fading", "churning"]), now))

    db.commit()
