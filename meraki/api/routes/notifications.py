# meraki/api/routes/notifications.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from meraki.api.deps import get_notification_center
from meraki.schemas.notification import ManualNotificationCreate, NotificationPreferences
from meraki.services.notifications import NotificationCenter

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _not_found(notification_id: str) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": f"Notification {notification_id} not found", "code": "not_found"},
        status_code=404,
    )


@router.get("")
async def list_notifications(unread: bool = False, center: NotificationCenter = Depends(get_notification_center)):
    return {
        "success": True,
        "notifications": [n.to_wire() for n in center.list(unread_only=unread)],
        "unreadCount": center.unread_count,
    }


@router.post("")
async def create_notification(payload: ManualNotificationCreate,
                              center: NotificationCenter = Depends(get_notification_center)):
    notification = await center.create_manual(payload)
    return {"success": True, "notification": notification.to_wire()}


@router.put("/read-all")
async def mark_all_read(center: NotificationCenter = Depends(get_notification_center)):
    updated = await center.mark_all_read()
    return {"success": True, "updated": updated, "unreadCount": center.unread_count}


@router.get("/preferences")
async def get_preferences(center: NotificationCenter = Depends(get_notification_center)):
    prefs = NotificationPreferences(sound_enabled=center.sound_enabled)
    return {"success": True, "preferences": prefs.to_wire()}


@router.put("/preferences")
async def update_preferences(payload: NotificationPreferences,
                             center: NotificationCenter = Depends(get_notification_center)):
    await center.set_sound_enabled(payload.sound_enabled)
    return {"success": True, "preferences": payload.to_wire()}


@router.put("/{notification_id}/read")
async def mark_read(notification_id: str, center: NotificationCenter = Depends(get_notification_center)):
    if not await center.mark_read(notification_id):
        return _not_found(notification_id)
    return {"success": True, "unreadCount": center.unread_count}


@router.delete("/{notification_id}")
async def remove_notification(notification_id: str, center: NotificationCenter = Depends(get_notification_center)):
    if not await center.remove(notification_id):
        return _not_found(notification_id)
    return {"success": True, "unreadCount": center.unread_count}
