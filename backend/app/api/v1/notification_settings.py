"""User notification settings API.

Endpoints:
  GET /notifications/settings/me           - caller's preferences
  PUT /notifications/settings/me           - replace caller's preferences
  GET /notifications/settings/{user_id}    (ADMIN) - any user's preferences
  PUT /notifications/settings/{user_id}    (ADMIN) - replace any user's preferences
"""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import Actor, get_current_actor, require_role
from app.db.session import get_session
from app.schemas.notification import (
    UserNotificationSettingOut,
    UserNotificationSettingsOut,
    UserNotificationSettingsUpdate,
)
from app.services import notification_settings

router = APIRouter()


def _out(user_id: uuid.UUID, rows) -> UserNotificationSettingsOut:
    return UserNotificationSettingsOut(
        user_id=user_id,
        settings=[UserNotificationSettingOut.model_validate(r) for r in rows],
    )


@router.get("/me", response_model=UserNotificationSettingsOut, summary="Get my notification settings")
def get_my_settings(
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(get_current_actor),
):
    return _out(actor.id, notification_settings.get_user_settings(db, actor.id))


@router.put("/me", response_model=UserNotificationSettingsOut, summary="Replace my notification settings")
def update_my_settings(
    body: UserNotificationSettingsUpdate,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(get_current_actor),
):
    rows = notification_settings.replace_user_settings(db, actor.id, body.settings, actor.id)
    return _out(actor.id, rows)


@router.get("/{user_id}", response_model=UserNotificationSettingsOut, summary="Get a user's notification settings")
def get_user_settings(
    user_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(require_role("ADMIN")),
):
    return _out(user_id, notification_settings.get_user_settings(db, user_id))


@router.put("/{user_id}", response_model=UserNotificationSettingsOut, summary="Replace a user's notification settings")
def update_user_settings(
    user_id: uuid.UUID,
    body: UserNotificationSettingsUpdate,
    db: Annotated[Session, Depends(get_session)],
    actor: Actor = Depends(require_role("ADMIN")),
):
    rows = notification_settings.replace_user_settings(db, user_id, body.settings, actor.id)
    return _out(user_id, rows)
