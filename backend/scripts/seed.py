"""Seed script - creates demo SLA policies, notification rules and a few open inquiries.

Idempotent: checks for existing records before inserting.
Run: docker exec inquiry-sla-engine-backend-1 python scripts/seed.py
"""
import os
import sys
import uuid
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.security import create_access_token
from app.db.session import SessionLocal, engine
from app.models.inquiry import Inquiry
from app.models.notification import NotificationRule
from app.models.sla import SlaPolicy

NOW = datetime.now(timezone.utc)
DEMO_APP_ID = uuid.UUID("6a1f3c2e-8b4d-4e7f-9a10-2c3d4e5f6a7b")
ADMIN_ID = uuid.UUID("f96955d0-752f-4e0c-b1dc-d26d8dd1460e")

# priority → (response, resolution, escalation) target hours
POLICY_TARGETS = {
    "urgent": (1, 8, 2),
    "high": (4, 24, 8),
    "medium": (8, 72, 24),
    "low": (24, 168, 72),
}


# ─── Upsert helpers ───────────────────────────────────────────────────────────

def _upsert_policy(db: Session, priority: str, targets: tuple[float, float, float]) -> SlaPolicy:
    policy = db.execute(
        select(SlaPolicy).where(
            SlaPolicy.app_id == DEMO_APP_ID,
            SlaPolicy.priority == priority,
            SlaPolicy.is_active.is_(True),
        )
    ).scalars().first()
    if policy:
        print(f"  [skip] SLA policy {priority}")
        return policy
    response, resolution, escalation = targets
    policy = SlaPolicy(
        app_id=DEMO_APP_ID, priority=priority,
        response_target_hours=response,
        resolution_target_hours=resolution,
        escalation_target_hours=escalation,
        is_active=True, created_by=ADMIN_ID,
    )
    db.add(policy)
    db.flush()
    print(f"  [new]  SLA policy {priority} ({response}h / {resolution}h / {escalation}h)")
    return policy


def _upsert_rule(db: Session, name: str, trigger: str, conditions: list, actions: list) -> NotificationRule:
    rule = db.execute(select(NotificationRule).where(NotificationRule.name == name)).scalars().first()
    if rule:
        print(f"  [skip] Rule {name}")
        return rule
    rule = NotificationRule(
        name=name, trigger=trigger, conditions=conditions, actions=actions,
        is_active=True, created_by=ADMIN_ID,
    )
    db.add(rule)
    db.flush()
    print(f"  [new]  Rule {name} ({trigger})")
    return rule


def _upsert_inquiry(db: Session, title: str, priority: str, hours_ago: float) -> Inquiry:
    inquiry = db.execute(
        select(Inquiry).where(Inquiry.app_id == DEMO_APP_ID, Inquiry.title == title)
    ).scalars().first()
    if inquiry:
        print(f"  [skip] Inquiry {title}")
        return inquiry
    created = NOW - timedelta(hours=hours_ago)
    inquiry = Inquiry(
        app_id=DEMO_APP_ID, title=title, priority=priority, status="new",
        created_at=created, updated_at=created,
    )
    db.add(inquiry)
    db.flush()
    print(f"  [new]  Inquiry {title} ({priority}, opened {hours_ago}h ago)")
    return inquiry


def seed():
    with SessionLocal() as db:
        print("\n── SLA Policies ──")
        for priority, targets in POLICY_TARGETS.items():
            _upsert_policy(db, priority, targets)
        db.commit()

        print("\n── Notification Rules ──")
        _upsert_rule(
            db, "Critical SLA breaches to ops", "sla_violation",
            [{"field": "severity", "operator": "equals", "value": "critical"}],
            [{"channel": "webhook", "recipients": ["ops-hook"]}],
        )
        _upsert_rule(
            db, "Urgent breaches to Slack", "sla_violation",
            [{"field": "inquiry.priority", "operator": "in", "value": ["urgent", "high"]}],
            [{"channel": "slack", "recipients": ["support-alerts"],
              "template": "*{{inquiry.title}}* missed its {{kind}} target by {{delay_hours}}h ({{severity}})"}],
        )
        _upsert_rule(
            db, "Tell the new assignee", "escalation", [],
            [{"channel": "realtime", "recipients": ["{{escalation.to_assignee}}"]},
             {"channel": "email", "recipients": ["support-leads@example.com"], "delay_minutes": 15}],
        )
        db.commit()

        print("\n── Inquiries ──")
        _upsert_inquiry(db, "Payment page returns 500", "urgent", hours_ago=3)
        _upsert_inquiry(db, "Cannot change billing address", "high", hours_ago=6)
        _upsert_inquiry(db, "Feature request: dark mode", "low", hours_ago=2)
        db.commit()

    engine.dispose()
    print("\n✓ Seed complete.")
    print(f"  Demo app id: {DEMO_APP_ID}")
    print(f"  Admin token: {create_access_token(str(ADMIN_ID), 'ADMIN', expires_minutes=24 * 60)}")


if __name__ == "__main__":
    seed()
