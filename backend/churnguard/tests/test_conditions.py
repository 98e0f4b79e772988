"""
Unit tests for single-condition evaluation in `churnguard.conditions`.

Scope
-----
Pure checks, no database: objects are transient ORM instances.
- metric resolution (defaults to 0, days_since_last_seen sentinel)
- every operator, exact equality, `==` alias
- fail-closed on unknown condition types / operators
"""

from datetime import datetime, timedelta

import pytest

from churnguard.conditions import NEVER_SEEN_DAYS, days_since, evaluate
from churnguard.models import TriggerCondition, UsageAnalytics

NOW = datetime(2025, 3, 10, 12, 0, 0)


def _cond(ctype, op, threshold):
    return TriggerCondition(condition_type=ctype, operator=op, threshold_value=threshold)


def _snap(**kw):
    base = dict(customer_email="a@example.com", engagement_score=20, active_days=3,
                total_events=12, last_seen=NOW - timedelta(days=5))
    base.update(kw)
    return UsageAnalytics(**base)


@pytest.mark.parametrize("op,threshold,expected", [
    (">", 19, True), (">", 20, False),
    (">=", 20, True), (">=", 21, False),
    ("<", 21, True), ("<", 20, False),
    ("<=", 20, True), ("<=", 19, False),
    ("=", 20, True), ("==", 20, True), ("=", 20.5, False),
    ("!=", 21, True), ("!=", 20, False),
])
def test_operators_on_engagement_score(op, threshold, expected):
    assert evaluate(_cond("engagement_score", op, threshold), _snap()) is expected


def test_missing_counters_default_to_zero():
    snap = _snap(engagement_score=None, active_days=None, total_events=None)
    assert evaluate(_cond("engagement_score", "=", 0), snap)
    assert evaluate(_cond("active_days", "=", 0), snap)
    assert evaluate(_cond("total_events", "=", 0), snap)


def test_days_since_last_seen_floors_whole_days():
    snap = _snap(last_seen=NOW - timedelta(days=6, hours=23))
    assert evaluate(_cond("days_since_last_seen", "=", 6), snap, now=NOW)
    assert not evaluate(_cond("days_since_last_seen", ">=", 7), snap, now=NOW)


def test_never_seen_reads_as_maximally_inactive():
    snap = _snap(last_seen=None)
    assert days_since(None, NOW) == NEVER_SEEN_DAYS >= 999
    assert evaluate(_cond("days_since_last_seen", ">", 30), snap, now=NOW)
    assert not evaluate(_cond("days_since_last_seen", "<", 30), snap, now=NOW)


@pytest.mark.parametrize("snap", [
    _snap(),
    _snap(engagement_score=None, active_days=None, total_events=None, last_seen=None),
])
def test_unknown_condition_type_is_false_and_never_raises(snap):
    assert evaluate(_cond("nps_score", ">", -1), snap) is False
    assert evaluate(_cond(None, ">", -1), snap) is False


def test_unknown_operator_is_false():
    assert evaluate(_cond("engagement_score", "~", 20), _snap()) is False
    assert evaluate(_cond("engagement_score", "between", 0), _snap()) is False


def test_missing_threshold_is_false():
    assert evaluate(_cond("engagement_score", ">", None), _snap()) is False
