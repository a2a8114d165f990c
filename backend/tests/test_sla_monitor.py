"""Tests for SLA violation detection.

Uses an in-memory SQLite session so the partial unique index on open
(inquiry_id, kind) pairs is enforced for real.
"""
import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest

from conftest import T0, make_inquiry, make_policy
from app.core.exceptions import InquiryNotFound
from app.models.notification import NotificationTrigger
from app.models.sla import Severity
from app.services import sla_monitor
from app.services.escalation import TieredAssignmentStrategy


def _violations(db, inquiry_id, kind=None):
    items, _ = sla_monitor.list_violations(db, inquiry_id=inquiry_id, kind=kind)
    return items


# ─── Severity ─────────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "delay, target, expected",
    [
        (-1.0, 1.0, Severity.minor),
        (0.0, 1.0, Severity.minor),
        (0.49, 1.0, Severity.minor),
        (0.5, 1.0, Severity.major),
        (1.99, 1.0, Severity.major),
        (2.0, 1.0, Severity.critical),
        (50.0, 1.0, Severity.critical),
        (1.0, 0.0, Severity.critical),
    ],
)
def test_classify_severity_boundaries(delay, target, expected):
    assert sla_monitor.classify_severity(delay, target) == expected


def test_classify_severity_monotonic_in_delay():
    order = [Severity.minor, Severity.major, Severity.critical]
    ranks = [order.index(sla_monitor.classify_severity(d / 10, 4.0)) for d in range(0, 200)]
    assert ranks == sorted(ranks)


# ─── Detection ────────────────────────────────────────────────────────────────

def test_response_breach_detected_then_refreshed(db):
    """Urgent inquiry, 1h response target: minor at +1h05m, major by +2h, one row throughout."""
    make_policy(db, response=1.0, resolution=24.0, escalation=4.0)
    inquiry = make_inquiry(db)
    events = []

    result = sla_monitor.run_sweep(db, now=T0 + timedelta(hours=1, minutes=5), emit=events.append)

    assert result.checked == 1
    assert result.created == 1
    [violation] = _violations(db, inquiry.id)
    assert violation.kind == "response_time"
    assert violation.delay_hours == pytest.approx(5 / 60, abs=1e-3)
    assert violation.severity == "minor"
    assert len(events) == 1
    assert events[0].trigger == NotificationTrigger.sla_violation
    assert events[0].payload["severity"] == "minor"

    result = sla_monitor.run_sweep(db, now=T0 + timedelta(hours=2), emit=events.append)

    assert result.created == 0
    assert result.refreshed == 1
    [violation] = _violations(db, inquiry.id)
    assert violation.delay_hours == pytest.approx(1.0, abs=1e-3)
    assert violation.severity == "major"
    assert len(events) == 1  # refresh does not re-announce


def test_sweep_is_idempotent(db):
    make_policy(db)
    inquiry = make_inquiry(db)
    now = T0 + timedelta(hours=3)

    first = sla_monitor.run_sweep(db, now=now, emit=lambda e: None)
    second = sla_monitor.run_sweep(db, now=now, emit=lambda e: None)

    assert first.created == 1
    assert second.created == 0
    assert len(_violations(db, inquiry.id)) == 1


def test_no_violation_before_target(db):
    make_policy(db, response=1.0)
    inquiry = make_inquiry(db)

    result = sla_monitor.run_sweep(db, now=T0 + timedelta(minutes=59), emit=lambda e: None)

    assert result.created == 0
    assert _violations(db, inquiry.id) == []


def test_inquiry_without_policy_not_monitored(db):
    make_policy(db, priority="urgent")
    inquiry = make_inquiry(db, priority="low")

    result = sla_monitor.run_sweep(db, now=T0 + timedelta(days=10), emit=lambda e: None)

    assert result.checked == 1
    assert result.created == 0
    assert _violations(db, inquiry.id) == []


def test_first_response_closes_response_violation(db):
    make_policy(db)
    inquiry = make_inquiry(db)
    sla_monitor.run_sweep(db, now=T0 + timedelta(hours=1, minutes=15), emit=lambda e: None)

    inquiry.first_response_at = T0 + timedelta(hours=1, minutes=30)
    db.commit()
    result = sla_monitor.run_sweep(db, now=T0 + timedelta(hours=2), emit=lambda e: None)

    assert result.closed == 1
    [violation] = _violations(db, inquiry.id)
    assert violation.resolved is True
    assert violation.resolved_by is None
    assert violation.delay_hours == pytest.approx(0.5, abs=1e-3)


def test_closure_reclassifies_severity_from_final_delay(db):
    """Refreshed to critical at +5h, then closed by a response logged at +1h10m: minor."""
    make_policy(db, response=1.0)
    inquiry = make_inquiry(db)
    sla_monitor.run_sweep(db, now=T0 + timedelta(hours=1, minutes=5), emit=lambda e: None)
    sla_monitor.run_sweep(db, now=T0 + timedelta(hours=5), emit=lambda e: None)
    [violation] = _violations(db, inquiry.id, kind="response_time")
    assert violation.severity == "critical"

    inquiry.first_response_at = T0 + timedelta(hours=1, minutes=10)
    db.commit()
    sla_monitor.run_sweep(db, now=T0 + timedelta(hours=5, minutes=5), emit=lambda e: None)

    [violation] = _violations(db, inquiry.id, kind="response_time")
    assert violation.resolved is True
    assert violation.delay_hours == pytest.approx(10 / 60, abs=1e-3)
    assert violation.severity == "minor"


def test_resolution_breach_after_response(db):
    make_policy(db, response=1.0, resolution=8.0, escalation=100.0)
    inquiry = make_inquiry(db, first_response_at=T0 + timedelta(minutes=10))

    sla_monitor.run_sweep(db, now=T0 + timedelta(hours=9), emit=lambda e: None)

    [violation] = _violations(db, inquiry.id)
    assert violation.kind == "resolution_time"
    assert violation.severity == "minor"


def test_escalation_breach_auto_escalates(db):
    make_policy(db, response=100.0, resolution=200.0, escalation=4.0)
    lead = uuid.uuid4()
    inquiry = make_inquiry(db, assigned_to=uuid.uuid4())
    events = []

    result = sla_monitor.run_sweep(
        db,
        now=T0 + timedelta(hours=5),
        emit=events.append,
        strategy=TieredAssignmentStrategy([lead]),
    )

    assert result.created == 1
    assert result.escalated == 1
    assert inquiry.assigned_to == lead
    [violation] = _violations(db, inquiry.id, kind="escalation_time")
    assert violation.resolved is True
    assert violation.escalation_id is not None
    assert [e.trigger for e in events] == [NotificationTrigger.sla_violation, NotificationTrigger.escalation]


def test_escalation_breach_without_target_stays_open(db):
    make_policy(db, response=100.0, resolution=200.0, escalation=4.0)
    inquiry = make_inquiry(db)

    result = sla_monitor.run_sweep(
        db, now=T0 + timedelta(hours=5), emit=lambda e: None, strategy=TieredAssignmentStrategy([]),
    )

    assert result.escalated == 0
    [violation] = _violations(db, inquiry.id, kind="escalation_time")
    assert violation.resolved is False
    assert violation.escalation_id is None


def test_closed_inquiry_resolution_violation_closed(db):
    make_policy(db, response=100.0, resolution=2.0, escalation=100.0)
    inquiry = make_inquiry(db)
    sla_monitor.check_inquiry(db, inquiry.id, now=T0 + timedelta(hours=3), emit=lambda e: None)

    inquiry.status = "resolved"
    inquiry.resolved_at = T0 + timedelta(hours=4)
    db.commit()
    closed = sla_monitor.close_satisfied_violations(db, inquiry, now=T0 + timedelta(hours=5))
    db.commit()

    assert len(closed) == 1
    assert closed[0].actual_at == inquiry.resolved_at
    assert closed[0].delay_hours == pytest.approx(2.0, abs=1e-3)


def test_sweep_isolates_failing_inquiry(db):
    policy = make_policy(db)
    make_inquiry(db, created_at=T0)
    healthy = make_inquiry(db, created_at=T0 + timedelta(minutes=1))

    with patch("app.services.sla_policy.resolve", side_effect=[RuntimeError("connection reset"), policy]):
        result = sla_monitor.run_sweep(db, now=T0 + timedelta(hours=3), emit=lambda e: None)

    assert result.checked == 2
    assert result.errors == 1
    assert len(_violations(db, healthy.id)) == 1


def test_check_inquiry_unknown_raises(db):
    with pytest.raises(InquiryNotFound):
        sla_monitor.check_inquiry(db, uuid.uuid4(), emit=lambda e: None)


# ─── Manual resolution & stats ────────────────────────────────────────────────

def test_resolve_violation_is_idempotent(db):
    make_policy(db)
    inquiry = make_inquiry(db)
    sla_monitor.run_sweep(db, now=T0 + timedelta(hours=2), emit=lambda e: None)
    [violation] = _violations(db, inquiry.id)
    actor = uuid.uuid4()

    resolved = sla_monitor.resolve_violation(db, violation.id, actor, "Customer called back")
    first_resolved_at = resolved.resolved_at
    again = sla_monitor.resolve_violation(db, violation.id, uuid.uuid4(), "again")

    assert again.resolved is True
    assert again.resolved_by == actor
    assert again.resolved_at == first_resolved_at
    assert again.resolution_comment == "Customer called back"


def test_violation_stats(db):
    make_policy(db)
    first = make_inquiry(db)
    make_inquiry(db, created_at=T0 + timedelta(minutes=5))
    sla_monitor.run_sweep(db, now=T0 + timedelta(hours=2), emit=lambda e: None)
    [violation] = _violations(db, first.id)
    sla_monitor.resolve_violation(db, violation.id, uuid.uuid4())

    stats = sla_monitor.get_violation_stats(db)

    assert stats.total == 2
    assert stats.resolved == 1
    assert stats.unresolved == 1
    assert stats.by_kind["response_time"] == 2
    assert stats.by_kind["escalation_time"] == 0
