from fastapi import APIRouter

from app.api.v1 import alerts, escalations, events, notification_rules, notification_settings, notifications, sla

api_router = APIRouter()

api_router.include_router(sla.router, prefix="/sla", tags=["sla"])
api_router.include_router(escalations.router, prefix="/escalations", tags=["escalations"])
api_router.include_router(notification_rules.router, prefix="/notifications/rules", tags=["notification-rules"])
api_router.include_router(
    notification_settings.router, prefix="/notifications/settings", tags=["notification-settings"],
)
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
api_router.include_router(alerts.router, prefix="/alerts", tags=["alerts"])
