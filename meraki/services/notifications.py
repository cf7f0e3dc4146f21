# meraki/services/notifications.py
"""
Notification center: capped, deduplicated log with read state.

The log is mirrored to the local store after every change and, when a remote
is configured, merged with the remote feed on a poll. Remote failures only
cost freshness, never availability.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional

from pydantic import ValidationError

from meraki.core.business import utcnow
from meraki.core.errors import ErrorSeverity, RemoteError, StorageError, log_error
from meraki.schemas.appointment import Appointment
from meraki.schemas.notification import (
    ManualNotificationCreate,
    Notification,
    NotificationType,
    Priority,
)
from meraki.services.local_store import NOTIFICATIONS_SLOT, SOUND_FLAG, LocalStore
from meraki.services.remote import RemoteClient

logger = logging.getLogger(__name__)

AlertListener = Callable[[Notification], Awaitable[None]]

WELCOME_ID = "welcome"


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def welcome_notification(now: datetime) -> Notification:
    return Notification(
        id=WELCOME_ID,
        type=NotificationType.SYSTEM,
        title="Bienvenido al Panel",
        message="Sistema de notificaciones activado. Las notificaciones aparecerán aquí.",
        created_at=now,
        priority=Priority.LOW,
    )


def booking_notification(appointment: Appointment, now: datetime) -> Notification:
    """Announces a freshly booked appointment to the admins."""
    return Notification(
        id=f"{NotificationType.NEW_APPOINTMENT.value}-{appointment.id}",
        type=NotificationType.NEW_APPOINTMENT,
        title="Nueva cita",
        message=(f"{appointment.client_name} reservó {appointment.service} "
                 f"para el {appointment.date.isoformat()} a las {appointment.time}"),
        created_at=now,
        priority=Priority.HIGH,
        appointment_id=appointment.id,
    )


class NotificationCenter:

    def __init__(
        self,
        store: LocalStore,
        remote: Optional[RemoteClient] = None,
        *,
        capacity: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.remote = remote
        self.capacity = capacity
        self.clock = clock
        self.sound_enabled = True

        self._items: list[Notification] = []
        self._remote_ids: set[str] = set()
        self._lock = asyncio.Lock()
        self._listeners: list[AlertListener] = []

    # -------- State --------

    async def load(self) -> None:
        try:
            raw = await self.store.read_list(NOTIFICATIONS_SLOT)
            self.sound_enabled = await self.store.read_flag(SOUND_FLAG, True)
        except StorageError as e:
            log_error(e, {"component": "notifications", "operation": "load"})
            raw = None

        items = []
        for item in raw or []:
            try:
                items.append(Notification.model_validate(item))
            except ValidationError:
                logger.warning("Skipping unreadable stored notification: %s", item)

        async with self._lock:
            self._items = items
            if not items:
                self._items = [welcome_notification(self.clock())]
                await self._persist()

    async def _persist(self) -> None:
        try:
            await self.store.write(NOTIFICATIONS_SLOT, [n.to_wire() for n in self._items])
        except StorageError as e:
            # The in-memory log stays authoritative for this process
            log_error(e, {"component": "notifications", "operation": "persist"})

    def list(self, unread_only: bool = False) -> list[Notification]:
        """Newest first."""
        items = sorted(self._items, key=lambda n: _aware(n.created_at), reverse=True)
        if unread_only:
            items = [n for n in items if not n.read]
        return [n.model_copy() for n in items]

    def get(self, notification_id: str) -> Optional[Notification]:
        return next((n for n in self._items if n.id == notification_id), None)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    def __len__(self) -> int:
        return len(self._items)

    # -------- Alerts --------

    def subscribe_alerts(self, listener: AlertListener) -> None:
        self._listeners.append(listener)

    async def _alert(self, notification: Notification) -> None:
        logger.warning("[%s] %s: %s", notification.priority.value, notification.title, notification.message)
        for listener in self._listeners:
            try:
                await listener(notification)
            except Exception as e:
                log_error(e, {"component": "notifications", "operation": "alert_listener"}, ErrorSeverity.MEDIUM)

    # -------- Mutations --------

    async def ingest(self, candidates: Iterable[Notification]) -> list[Notification]:
        """
        Add candidates whose id is not in the log yet, then keep only the
        newest ``capacity`` entries. Returns the notifications that were kept.
        """
        async with self._lock:
            known = {n.id for n in self._items}
            added = []
            for candidate in candidates:
                if candidate.id in known:
                    continue
                known.add(candidate.id)
                added.append(candidate)

            if not added:
                return []

            merged = sorted([*self._items, *added], key=lambda n: _aware(n.created_at), reverse=True)
            self._items = merged[:self.capacity]
            kept_ids = {n.id for n in self._items}
            added = [n for n in added if n.id in kept_ids]
            await self._persist()

        for notification in added:
            if notification.priority.alerts and not notification.read:
                await self._alert(notification)
        return added

    async def mark_read(self, notification_id: str) -> bool:
        async with self._lock:
            notification = self.get(notification_id)
            if notification is None:
                return False
            notification.read = True
            await self._persist()

        await self._forward_read([notification_id])
        return True

    async def mark_all_read(self) -> int:
        async with self._lock:
            unread = [n for n in self._items if not n.read]
            for notification in unread:
                notification.read = True
            if unread:
                await self._persist()
        await self._forward_read([n.id for n in unread])
        return len(unread)

    async def _forward_read(self, notification_ids: list[str]) -> None:
        """Best-effort read receipts for notifications that came from the remote."""
        if self.remote is None:
            return
        for notification_id in notification_ids:
            if notification_id not in self._remote_ids:
                continue
            try:
                await self.remote.mark_notification_read(notification_id)
            except RemoteError as e:
                log_error(e, {"component": "notifications", "operation": "mark_read"}, ErrorSeverity.LOW)

    async def remove(self, notification_id: str) -> bool:
        async with self._lock:
            before = len(self._items)
            self._items = [n for n in self._items if n.id != notification_id]
            removed = len(self._items) != before
            if removed:
                await self._persist()
        return removed

    async def remove_for_appointment(self, appointment_id: str, types: Iterable[NotificationType]) -> int:
        types = set(types)
        async with self._lock:
            before = len(self._items)
            self._items = [n for n in self._items if not (n.appointment_id == appointment_id and n.type in types)]
            removed = before - len(self._items)
            if removed:
                await self._persist()
        return removed

    async def create_manual(self, data: ManualNotificationCreate) -> Notification:
        notification = Notification(
            id=f"{NotificationType.MANUAL.value}-{uuid.uuid4().hex[:12]}",
            type=NotificationType.MANUAL,
            title=data.title,
            message=data.message,
            created_at=self.clock(),
            priority=data.priority,
            appointment_id=data.appointment_id,
        )
        await self.ingest([notification])
        return notification

    # -------- Preferences --------

    async def set_sound_enabled(self, enabled: bool) -> None:
        self.sound_enabled = enabled
        try:
            await self.store.write(SOUND_FLAG, enabled)
        except StorageError as e:
            log_error(e, {"component": "notifications", "operation": "set_sound"})

    # -------- Remote --------

    async def refresh_remote(self) -> int:
        """Pull the remote feed: ingest unknown ids and adopt remote read flags."""
        if self.remote is None:
            return 0
        try:
            remote_items = await self.remote.list_notifications()
        except RemoteError as e:
            log_error(e, {"component": "notifications", "operation": "refresh_remote"}, ErrorSeverity.LOW)
            return 0

        self._remote_ids.update(n.id for n in remote_items)

        async with self._lock:
            changed = False
            for remote_item in remote_items:
                local = self.get(remote_item.id)
                if local is not None and remote_item.read and not local.read:
                    local.read = True
                    changed = True
            if changed:
                await self._persist()

        added = await self.ingest(remote_items)
        if added:
            logger.info("Received %d new notifications from remote", len(added))
        return len(added)

    async def poll(self, interval: float = 30.0) -> None:
        logger.info("Notification poller started")
        while True:
            try:
                await self.refresh_remote()
            except Exception as e:
                log_error(e, {"component": "notifications", "operation": "poll"}, ErrorSeverity.MEDIUM)
            await asyncio.sleep(interval)
