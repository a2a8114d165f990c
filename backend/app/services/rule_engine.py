"""Notification rule evaluation and administration.

A rule fires for an event when its trigger matches and every condition holds
(an empty condition list always holds). Each action of a firing rule becomes
one DispatchInstruction with rendered subject, body and recipients.

Conditions and actions are validated as tagged unions when a rule is saved.
Stored JSON is parsed again at evaluation time; a rule whose stored data no
longer parses, or whose templates are malformed, is logged and skipped
without affecting the other rules.
"""
import logging
import uuid
from typing import Any

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.exceptions import RuleEvaluationError, RuleNotFound
from app.models.notification import NotificationRule
from app.schemas.events import DomainEvent
from app.schemas.notification import (
    ContainsCondition,
    DispatchInstruction,
    EqualsCondition,
    GreaterThanCondition,
    InCondition,
    LessThanCondition,
    NotificationRuleCreate,
    NotificationRuleUpdate,
    NotInCondition,
    actions_adapter,
    conditions_adapter,
)
from app.services import audit as audit_svc
from app.services.notification_templates import base_context, default_template
from app.services.templating import lookup, render_template

logger = logging.getLogger(__name__)


# ─── Condition matching ───

def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _same(actual: Any, expected: Any) -> bool:
    if actual == expected:
        return True
    return actual is not None and expected is not None and str(actual) == str(expected)


def condition_matches(condition, payload: dict) -> bool:
    """Evaluate one parsed condition against the event payload."""
    actual = lookup(payload, condition.field)

    if isinstance(condition, EqualsCondition):
        return _same(actual, condition.value)
    if isinstance(condition, ContainsCondition):
        return actual is not None and condition.value.lower() in str(actual).lower()
    if isinstance(condition, GreaterThanCondition):
        number = _as_number(actual)
        return number is not None and number > condition.value
    if isinstance(condition, LessThanCondition):
        number = _as_number(actual)
        return number is not None and number < condition.value
    if isinstance(condition, InCondition):
        return any(_same(actual, option) for option in condition.value)
    if isinstance(condition, NotInCondition):
        return not any(_same(actual, option) for option in condition.value)
    raise RuleEvaluationError(f"Unsupported condition operator: {getattr(condition, 'operator', None)!r}")


# ─── Evaluation ───

def _context(event: DomainEvent) -> dict:
    context = base_context()
    context.update(event.payload)
    context.setdefault("trigger", event.trigger.value)
    if event.inquiry_id is not None:
        context.setdefault("inquiry_id", str(event.inquiry_id))
    return context


def evaluate_rule(rule: NotificationRule, event: DomainEvent) -> list[DispatchInstruction]:
    """Instructions for a single rule, or [] when it does not fire.

    Raises:
        RuleEvaluationError: stored conditions/actions or templates are malformed.
    """
    try:
        conditions = conditions_adapter.validate_python(rule.conditions or [])
        actions = actions_adapter.validate_python(rule.actions or [])
    except ValidationError as exc:
        raise RuleEvaluationError(
            f"Rule {rule.id} has malformed conditions or actions",
            {"errors": exc.errors(include_url=False)},
        ) from exc

    context = _context(event)
    if not all(condition_matches(c, context) for c in conditions):
        return []

    default_subject, default_body = default_template(event.trigger.value)
    instructions: list[DispatchInstruction] = []
    for action in actions:
        recipients = [render_template(r, context).strip() for r in action.recipients]
        recipients = [r for r in recipients if r]
        if not recipients:
            logger.info("Rule %s: %s action resolved to no recipients; skipped", rule.id, action.channel)
            continue
        instructions.append(
            DispatchInstruction(
                rule_id=rule.id,
                channel=action.channel,
                recipients=recipients,
                subject=render_template(action.subject or default_subject, context),
                content=render_template(action.template or default_body, context),
                delay_minutes=action.delay_minutes,
                triggered_by=event.triggered_by,
                metadata={
                    "trigger": event.trigger.value,
                    "inquiry_id": str(event.inquiry_id) if event.inquiry_id else None,
                    "rule_name": rule.name,
                },
            )
        )
    return instructions


def evaluate(db: Session, event: DomainEvent) -> list[DispatchInstruction]:
    """Instructions from every active rule for the event's trigger, oldest rule first."""
    rules = db.execute(
        select(NotificationRule)
        .where(
            NotificationRule.trigger == event.trigger.value,
            NotificationRule.is_active.is_(True),
        )
        .order_by(NotificationRule.created_at, NotificationRule.id)
    ).scalars().all()

    instructions: list[DispatchInstruction] = []
    for rule in rules:
        try:
            instructions.extend(evaluate_rule(rule, event))
        except RuleEvaluationError as exc:
            logger.warning("Rule %s (%s) skipped: %s", rule.id, rule.name, exc.message)
        except Exception:
            logger.exception("Rule %s (%s) skipped: unexpected evaluation error", rule.id, rule.name)
    logger.debug(
        "evaluate: trigger=%s rules=%d instructions=%d",
        event.trigger.value, len(rules), len(instructions),
    )
    return instructions


def dry_run_rule(db: Session, rule_id: uuid.UUID, event: DomainEvent) -> list[DispatchInstruction]:
    """Dry run: evaluate one rule against a sample event without dispatching.

    The trigger filter and is_active flag are ignored so drafts can be tried out.
    """
    rule = get_rule(db, rule_id)
    return evaluate_rule(rule, event)


# ─── Administration ───

def _snapshot(rule: NotificationRule) -> dict:
    return {
        "name": rule.name,
        "trigger": rule.trigger,
        "conditions": rule.conditions,
        "actions": rule.actions,
        "is_active": rule.is_active,
    }


def get_rule(db: Session, rule_id: uuid.UUID) -> NotificationRule:
    rule = db.get(NotificationRule, rule_id)
    if rule is None:
        raise RuleNotFound(rule_id)
    return rule


def list_rules(
    db: Session,
    trigger: str | None = None,
    active_only: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[NotificationRule], int]:
    stmt = select(NotificationRule)
    if trigger is not None:
        stmt = stmt.where(NotificationRule.trigger == trigger)
    if active_only:
        stmt = stmt.where(NotificationRule.is_active.is_(True))

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0
    items = db.execute(
        stmt.order_by(NotificationRule.created_at).limit(limit).offset(offset)
    ).scalars().all()
    return list(items), total


def create_rule(db: Session, actor_id: uuid.UUID, data: NotificationRuleCreate) -> NotificationRule:
    rule = NotificationRule(
        name=data.name,
        trigger=data.trigger.value,
        conditions=conditions_adapter.dump_python(data.conditions, mode="json"),
        actions=actions_adapter.dump_python(data.actions, mode="json", exclude_none=True),
        is_active=data.is_active,
        created_by=actor_id,
    )
    db.add(rule)
    db.flush()
    audit_svc.log(
        db,
        action="notification_rule.created",
        entity_type="notification_rule",
        entity_id=rule.id,
        actor_id=actor_id,
        after=_snapshot(rule),
    )
    db.commit()
    logger.info("Notification rule %s (%s) created by %s", rule.id, rule.name, actor_id)
    return rule


def update_rule(
    db: Session,
    rule_id: uuid.UUID,
    actor_id: uuid.UUID,
    changes: NotificationRuleUpdate,
) -> NotificationRule:
    rule = get_rule(db, rule_id)
    before = _snapshot(rule)

    if changes.name is not None:
        rule.name = changes.name
    if changes.trigger is not None:
        rule.trigger = changes.trigger.value
    if changes.conditions is not None:
        rule.conditions = conditions_adapter.dump_python(changes.conditions, mode="json")
    if changes.actions is not None:
        rule.actions = actions_adapter.dump_python(changes.actions, mode="json", exclude_none=True)
    if changes.is_active is not None:
        rule.is_active = changes.is_active

    audit_svc.log(
        db,
        action="notification_rule.updated",
        entity_type="notification_rule",
        entity_id=rule.id,
        actor_id=actor_id,
        before=before,
        after=_snapshot(rule),
    )
    db.commit()
    return rule


def delete_rule(db: Session, rule_id: uuid.UUID, actor_id: uuid.UUID) -> None:
    """Hard delete. Notification logs keep the dangling rule_id."""
    rule = get_rule(db, rule_id)
    audit_svc.log(
        db,
        action="notification_rule.deleted",
        entity_type="notification_rule",
        entity_id=rule.id,
        actor_id=actor_id,
        before=_snapshot(rule),
    )
    db.delete(rule)
    db.commit()
    logger.info("Notification rule %s deleted by %s", rule_id, actor_id)
