"""Tests for notification rule evaluation, templating and rule validation."""
import uuid
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from conftest import ADMIN_ID, make_rule
from app.core.exceptions import RuleEvaluationError, RuleNotFound
from app.models.notification import NotificationTrigger
from app.schemas.events import DomainEvent
from app.schemas.notification import NotificationRuleCreate, NotificationRuleUpdate, conditions_adapter
from app.services import rule_engine
from app.services.templating import lookup, render_template, validate_template

OPS_HOOK_ACTIONS = [{"channel": "webhook", "recipients": ["ops-hook"], "template": "{{kind}} breached by {{delay_hours}}h"}]


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _violation_event(severity: str, kind: str = "response_time", delay: float = 1.0) -> DomainEvent:
    return DomainEvent(
        trigger=NotificationTrigger.sla_violation,
        inquiry_id=uuid.uuid4(),
        payload={
            "inquiry": {"title": "Refund not received", "priority": "urgent", "assigned_to": "agent-7"},
            "violation": {"kind": kind, "severity": severity, "delay_hours": delay, "target_hours": 1.0},
            "kind": kind,
            "severity": severity,
            "delay_hours": delay,
        },
    )


def _condition(field, operator, value):
    [parsed] = conditions_adapter.validate_python([{"field": field, "operator": operator, "value": value}])
    return parsed


# ─── Templating ───────────────────────────────────────────────────────────────

def test_render_nested_and_missing_placeholders():
    payload = {"inquiry": {"title": "Broken checkout", "id": 42}}

    assert render_template("{{ inquiry.title }} (#{{inquiry.id}})", payload) == "Broken checkout (#42)"
    assert render_template("Owner: {{inquiry.owner}}", payload) == "Owner: "


@pytest.mark.parametrize("template", ["{{inquiry.title", "inquiry.title}}", "{{ }}", "{{1abc}}"])
def test_malformed_template_rejected(template):
    with pytest.raises(RuleEvaluationError):
        validate_template(template)


def test_lookup_stops_at_non_dict():
    assert lookup({"a": {"b": "x"}}, "a.b") == "x"
    assert lookup({"a": "x"}, "a.b") is None


# ─── Conditions ───────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "operator, value, expected",
    [
        ("equals", "critical", True),
        ("equals", "major", False),
        ("contains", "CRIT", True),
        ("in", ["major", "critical"], True),
        ("not_in", ["major", "critical"], False),
        ("not_in", ["minor"], True),
    ],
)
def test_string_operators(operator, value, expected):
    assert rule_engine.condition_matches(_condition("severity", operator, value), {"severity": "critical"}) is expected


def test_numeric_operators():
    payload = {"delay_hours": 2.5, "count": "3"}

    assert rule_engine.condition_matches(_condition("delay_hours", "greater_than", 2), payload) is True
    assert rule_engine.condition_matches(_condition("delay_hours", "less_than", 2), payload) is False
    assert rule_engine.condition_matches(_condition("count", "greater_than", 1), payload) is True
    assert rule_engine.condition_matches(_condition("missing", "less_than", 100), payload) is False


def test_unknown_operator_rejected_at_validation():
    with pytest.raises(ValidationError):
        conditions_adapter.validate_python([{"field": "severity", "operator": "matches", "value": "x"}])


# ─── Evaluation ───────────────────────────────────────────────────────────────

def test_critical_only_webhook_rule(db):
    """A critical-only webhook rule stays silent for a major breach and fires for a critical one."""
    make_rule(
        db,
        NotificationTrigger.sla_violation.value,
        [{"field": "severity", "operator": "equals", "value": "critical"}],
        OPS_HOOK_ACTIONS,
        name="ops on critical",
    )

    assert rule_engine.evaluate(db, _violation_event("major")) == []

    [instruction] = rule_engine.evaluate(db, _violation_event("critical", delay=2.5))
    assert instruction.channel.value == "webhook"
    assert instruction.recipients == ["ops-hook"]
    assert instruction.content == "response_time breached by 2.5h"
    assert instruction.metadata["rule_name"] == "ops on critical"


def test_conditions_are_conjunctive(db):
    make_rule(
        db,
        NotificationTrigger.sla_violation.value,
        [
            {"field": "severity", "operator": "equals", "value": "critical"},
            {"field": "inquiry.priority", "operator": "equals", "value": "low"},
        ],
        OPS_HOOK_ACTIONS,
    )

    assert rule_engine.evaluate(db, _violation_event("critical")) == []


def test_rule_for_other_trigger_ignored(db):
    make_rule(db, NotificationTrigger.escalation.value, [], OPS_HOOK_ACTIONS)

    assert rule_engine.evaluate(db, _violation_event("critical")) == []


def test_malformed_stored_rule_skipped(db):
    make_rule(db, NotificationTrigger.sla_violation.value, [{"field": "severity", "operator": "regex"}], OPS_HOOK_ACTIONS)
    make_rule(
        db,
        NotificationTrigger.sla_violation.value,
        [],
        [{"channel": "email", "recipients": ["oncall@example.com"]}],
        name="fallback",
    )

    instructions = rule_engine.evaluate(db, _violation_event("critical"))

    assert [i.recipients for i in instructions] == [["oncall@example.com"]]
    assert instructions[0].subject == "SLA violation alert - Refund not received"


def test_unexpected_rule_error_does_not_stop_other_rules(db):
    make_rule(db, NotificationTrigger.sla_violation.value, [], OPS_HOOK_ACTIONS, name="broken")
    make_rule(
        db,
        NotificationTrigger.sla_violation.value,
        [],
        [{"channel": "email", "recipients": ["oncall@example.com"]}],
        name="fallback",
    )
    real_evaluate_rule = rule_engine.evaluate_rule

    def flaky(rule, event):
        if rule.name == "broken":
            raise KeyError("actions")
        return real_evaluate_rule(rule, event)

    with patch("app.services.rule_engine.evaluate_rule", side_effect=flaky):
        instructions = rule_engine.evaluate(db, _violation_event("critical"))

    assert [i.recipients for i in instructions] == [["oncall@example.com"]]


def test_recipient_placeholders_and_empty_recipients(db):
    make_rule(
        db,
        NotificationTrigger.sla_violation.value,
        [],
        [
            {"channel": "realtime", "recipients": ["{{inquiry.assigned_to}}", "{{inquiry.watcher}}"]},
            {"channel": "email", "recipients": ["{{inquiry.watcher}}"]},
        ],
    )

    [instruction] = rule_engine.evaluate(db, _violation_event("minor"))

    assert instruction.channel.value == "realtime"
    assert instruction.recipients == ["agent-7"]


def test_delay_carried_into_instruction(db):
    make_rule(
        db,
        NotificationTrigger.sla_violation.value,
        [],
        [{"channel": "slack", "recipients": ["https://hooks.slack.com/x"], "delay_minutes": 30}],
    )

    [instruction] = rule_engine.evaluate(db, _violation_event("major"))

    assert instruction.delay_minutes == 30


# ─── Administration ───────────────────────────────────────────────────────────

def test_rule_create_rejects_malformed_template():
    with pytest.raises(ValidationError):
        NotificationRuleCreate(
            name="bad",
            trigger="sla_violation",
            actions=[{"channel": "email", "recipients": ["a@example.com"], "template": "Hi {{inquiry.title"}],
        )


def test_rule_create_requires_action():
    with pytest.raises(ValidationError):
        NotificationRuleCreate(name="no actions", trigger="sla_violation", actions=[])


def test_create_update_delete_rule(db):
    rule = rule_engine.create_rule(
        db,
        ADMIN_ID,
        NotificationRuleCreate(
            name="Critical to ops",
            trigger="sla_violation",
            conditions=[{"field": "severity", "operator": "equals", "value": "critical"}],
            actions=[{"channel": "webhook", "recipients": ["ops-hook"]}],
        ),
    )
    assert rule.actions == [{"channel": "webhook", "recipients": ["ops-hook"]}]

    updated = rule_engine.update_rule(db, rule.id, ADMIN_ID, NotificationRuleUpdate(is_active=False))
    assert updated.is_active is False
    assert rule_engine.evaluate(db, _violation_event("critical")) == []

    [instruction] = rule_engine.dry_run_rule(db, rule.id, _violation_event("critical"))
    assert instruction.recipients == ["ops-hook"]

    rule_engine.delete_rule(db, rule.id, ADMIN_ID)
    with pytest.raises(RuleNotFound):
        rule_engine.get_rule(db, rule.id)
