"""SLA policy resolution and administration.

A policy maps (app_id, priority) to target hours. Exactly one active policy
may exist per pair; an inquiry whose pair has none is not monitored.
"""
import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, PolicyConflict, PolicyNotFound
from app.models.sla import SlaPolicy
from app.schemas.sla import SlaPolicyCreate, SlaPolicyUpdate
from app.services import audit as audit_svc

logger = logging.getLogger(__name__)


def _snapshot(policy: SlaPolicy) -> dict:
    return {
        "app_id": str(policy.app_id),
        "priority": policy.priority,
        "response_target_hours": policy.response_target_hours,
        "resolution_target_hours": policy.resolution_target_hours,
        "escalation_target_hours": policy.escalation_target_hours,
        "is_active": policy.is_active,
    }


# ─── Resolution ───

def resolve(db: Session, app_id: uuid.UUID, priority: str) -> SlaPolicy | None:
    """Return the active policy for the exact (app_id, priority) pair, or None."""
    return db.execute(
        select(SlaPolicy).where(
            SlaPolicy.app_id == app_id,
            SlaPolicy.priority == priority,
            SlaPolicy.is_active.is_(True),
        )
    ).scalars().first()


def require_policy(db: Session, app_id: uuid.UUID, priority: str) -> SlaPolicy:
    policy = resolve(db, app_id, priority)
    if policy is None:
        raise PolicyNotFound(app_id, priority)
    return policy


def get_policy(db: Session, policy_id: uuid.UUID) -> SlaPolicy:
    policy = db.get(SlaPolicy, policy_id)
    if policy is None:
        raise NotFoundError("SLA policy", policy_id)
    return policy


def list_policies(
    db: Session,
    app_id: uuid.UUID | None = None,
    active_only: bool = True,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[SlaPolicy], int]:
    stmt = select(SlaPolicy)
    if app_id is not None:
        stmt = stmt.where(SlaPolicy.app_id == app_id)
    if active_only:
        stmt = stmt.where(SlaPolicy.is_active.is_(True))

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0
    items = db.execute(
        stmt.order_by(SlaPolicy.app_id, SlaPolicy.priority, SlaPolicy.created_at.desc())
        .limit(limit)
        .offset(offset)
    ).scalars().all()
    return list(items), total


# ─── Administration ───

def create_policy(db: Session, actor_id: uuid.UUID, data: SlaPolicyCreate) -> SlaPolicy:
    """Create a policy. A second active policy for the same pair raises PolicyConflict."""
    priority = data.priority.value
    if data.is_active and resolve(db, data.app_id, priority) is not None:
        raise PolicyConflict(
            f"An active SLA policy already exists for app {data.app_id} priority {priority}.",
            {"app_id": str(data.app_id), "priority": priority},
        )

    policy = SlaPolicy(
        app_id=data.app_id,
        priority=priority,
        response_target_hours=data.response_target_hours,
        resolution_target_hours=data.resolution_target_hours,
        escalation_target_hours=data.escalation_target_hours,
        is_active=data.is_active,
        created_by=actor_id,
    )
    db.add(policy)
    try:
        db.flush()
    except IntegrityError:
        # lost a race against another create for the same pair
        db.rollback()
        raise PolicyConflict(
            f"An active SLA policy already exists for app {data.app_id} priority {priority}.",
            {"app_id": str(data.app_id), "priority": priority},
        )

    audit_svc.log(
        db,
        action="sla_policy.created",
        entity_type="sla_policy",
        entity_id=policy.id,
        actor_id=actor_id,
        after=_snapshot(policy),
    )
    db.commit()
    logger.info("SLA policy %s created for app=%s priority=%s", policy.id, policy.app_id, priority)
    return policy


def update_policy(
    db: Session,
    policy_id: uuid.UUID,
    actor_id: uuid.UUID,
    changes: SlaPolicyUpdate,
) -> SlaPolicy:
    policy = get_policy(db, policy_id)
    before = _snapshot(policy)
    updates = changes.model_dump(exclude_unset=True, exclude_none=True)

    if updates.get("is_active") and not policy.is_active:
        other = resolve(db, policy.app_id, policy.priority)
        if other is not None and other.id != policy.id:
            raise PolicyConflict(
                f"Policy {other.id} is already active for app {policy.app_id} priority {policy.priority}.",
                {"active_policy_id": str(other.id)},
            )

    for field, value in updates.items():
        setattr(policy, field, value)

    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise PolicyConflict(
            f"An active SLA policy already exists for app {policy.app_id} priority {policy.priority}.",
        )

    audit_svc.log(
        db,
        action="sla_policy.updated",
        entity_type="sla_policy",
        entity_id=policy.id,
        actor_id=actor_id,
        before=before,
        after=_snapshot(policy),
    )
    db.commit()
    return policy


def deactivate_policy(db: Session, policy_id: uuid.UUID, actor_id: uuid.UUID) -> SlaPolicy:
    """Policies are never deleted; violations keep pointing at the policy in force."""
    policy = get_policy(db, policy_id)
    if not policy.is_active:
        return policy

    before = _snapshot(policy)
    policy.is_active = False
    audit_svc.log(
        db,
        action="sla_policy.deactivated",
        entity_type="sla_policy",
        entity_id=policy.id,
        actor_id=actor_id,
        before=before,
        after=_snapshot(policy),
    )
    db.commit()
    logger.info("SLA policy %s deactivated by %s", policy.id, actor_id)
    return policy
