"""Shared fixtures: an in-memory SQLite database and an authenticated API client.

Services run against a real SQLAlchemy session so the unique indexes that
guard violations and escalation levels are exercised, not mocked.
"""
import os
import uuid
from datetime import datetime, timedelta, timezone

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("MAIL_ENABLED", "false")
os.environ.setdefault("REALTIME_BRIDGE_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import create_access_token
from app.db.base import Base
from app.models.inquiry import Inquiry
from app.models.notification import NotificationRule
from app.models.sla import SlaPolicy

ADMIN_ID = uuid.UUID("f96955d0-752f-4e0c-b1dc-d26d8dd1460e")
APP_ID = uuid.UUID("0b6c8e4a-1d2f-4a5b-9c7d-3e8f1a2b4c6d")
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ─── Database ─────────────────────────────────────────────────────────────────

@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


# ─── Helpers ──────────────────────────────────────────────────────────────────

def make_policy(
    db,
    app_id: uuid.UUID = APP_ID,
    priority: str = "urgent",
    response: float = 1.0,
    resolution: float = 24.0,
    escalation: float = 4.0,
) -> SlaPolicy:
    policy = SlaPolicy(
        app_id=app_id,
        priority=priority,
        response_target_hours=response,
        resolution_target_hours=resolution,
        escalation_target_hours=escalation,
        is_active=True,
    )
    db.add(policy)
    db.commit()
    return policy


def make_inquiry(
    db,
    app_id: uuid.UUID = APP_ID,
    priority: str = "urgent",
    status: str = "new",
    created_at: datetime = T0,
    assigned_to: uuid.UUID | None = None,
    first_response_at: datetime | None = None,
) -> Inquiry:
    inquiry = Inquiry(
        app_id=app_id,
        title="Cannot log in after password reset",
        priority=priority,
        status=status,
        assigned_to=assigned_to,
        first_response_at=first_response_at,
        created_at=created_at,
        updated_at=created_at,
    )
    db.add(inquiry)
    db.commit()
    return inquiry


def make_rule(db, trigger: str, conditions: list, actions: list, name: str = "rule") -> NotificationRule:
    rule = NotificationRule(
        name=name,
        trigger=trigger,
        conditions=conditions,
        actions=actions,
        is_active=True,
        created_at=T0 - timedelta(days=1),
    )
    db.add(rule)
    db.commit()
    return rule


def auth_header(role: str = "ADMIN", user_id: uuid.UUID = ADMIN_ID) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user_id), role)}"}


# ─── API ──────────────────────────────────────────────────────────────────────

@pytest.fixture
def api_db(db):
    from app.db.session import get_session
    from app.main import app

    def override_get_session():
        yield db

    app.dependency_overrides[get_session] = override_get_session
    try:
        yield db
    finally:
        app.dependency_overrides.clear()
