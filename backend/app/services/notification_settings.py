"""Per-user notification preferences.

A user may switch a (trigger, channel) pair off or redirect it to a personal
destination. Preferences apply to recipients that are user ids; literal
addresses and hook names in a rule are left as written.
"""
import logging
import uuid

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.models.notification import NotificationChannel, UserNotificationSetting
from app.schemas.notification import UserNotificationSettingIn
from app.services import audit as audit_svc

logger = logging.getLogger(__name__)


def get_user_settings(db: Session, user_id: uuid.UUID) -> list[UserNotificationSetting]:
    return list(
        db.execute(
            select(UserNotificationSetting)
            .where(UserNotificationSetting.user_id == user_id)
            .order_by(UserNotificationSetting.trigger, UserNotificationSetting.channel)
        ).scalars().all()
    )


def replace_user_settings(
    db: Session,
    user_id: uuid.UUID,
    items: list[UserNotificationSettingIn],
    actor_id: uuid.UUID | None,
) -> list[UserNotificationSetting]:
    """Swap the user's preference set for items in one transaction."""
    before = [_snapshot(s) for s in get_user_settings(db, user_id)]
    db.execute(delete(UserNotificationSetting).where(UserNotificationSetting.user_id == user_id))
    for item in items:
        db.add(
            UserNotificationSetting(
                user_id=user_id,
                trigger=item.trigger.value,
                channel=item.channel.value,
                is_enabled=item.is_enabled,
                destination=item.destination,
            )
        )
    db.flush()
    audit_svc.log(
        db,
        action="notification_settings.replaced",
        entity_type="user_notification_settings",
        entity_id=user_id,
        actor_id=actor_id,
        before={"settings": before},
        after={"settings": [item.model_dump(mode="json") for item in items]},
    )
    db.commit()
    logger.info("Notification settings for user %s replaced (%d entries)", user_id, len(items))
    return get_user_settings(db, user_id)


def _snapshot(setting: UserNotificationSetting) -> dict:
    return {
        "trigger": setting.trigger,
        "channel": setting.channel,
        "is_enabled": setting.is_enabled,
        "destination": setting.destination,
    }


def _as_user_id(recipient: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(recipient)
    except ValueError:
        return None


def apply_user_preferences(
    db: Session,
    trigger: str,
    channel: NotificationChannel,
    recipients: list[str],
) -> list[str]:
    """Filter and redirect recipients by their own settings. Order is kept; duplicates dropped."""
    user_ids = {r: uid for r in recipients if (uid := _as_user_id(r)) is not None}
    prefs: dict[uuid.UUID, UserNotificationSetting] = {}
    if user_ids:
        rows = db.execute(
            select(UserNotificationSetting).where(
                UserNotificationSetting.user_id.in_(set(user_ids.values())),
                UserNotificationSetting.trigger == trigger,
                UserNotificationSetting.channel == channel.value,
            )
        ).scalars().all()
        prefs = {row.user_id: row for row in rows}

    result: list[str] = []
    for recipient in recipients:
        setting = prefs.get(user_ids.get(recipient))
        if setting is not None:
            if not setting.is_enabled:
                logger.debug("Recipient %s opted out of %s/%s", recipient, trigger, channel.value)
                continue
            if setting.destination and channel != NotificationChannel.realtime:
                recipient = setting.destination
        if recipient not in result:
            result.append(recipient)
    return result
