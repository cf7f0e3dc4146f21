# meraki/services/appointments.py
"""
Appointment repository: the session's single source of truth for bookings.

Writes are local-first. Every mutation lands in the local durable store before
any network activity; remote sync goes through the outbox and its outcome
never changes the result reported to the caller. The only failure a caller
sees for a well-formed request is the local store refusing the write.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Union
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from meraki.core.business import LOCAL_TZ, appointment_start, available_slots, utcnow
from meraki.core.errors import (
    ErrorSeverity,
    InvalidTransitionError,
    RemoteError,
    StorageError,
    log_error,
)
from meraki.core.lifecycle import AppointmentStatus, ensure_transition
from meraki.schemas.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentStats,
    AppointmentUpdate,
    OperationResult,
)
from meraki.services.local_store import APPOINTMENTS_SLOT, LocalStore
from meraki.services.outbox import Outbox, OutboxOp
from meraki.services.remote import RemoteClient
from meraki.utils.timeout_protection import with_timeout

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, Optional[Appointment]], Awaitable[None]]

DATE_RANGES = ("today", "tomorrow", "week")


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def demo_appointments(now: datetime, today: date) -> list[Appointment]:
    """Two example bookings so a fresh offline install has something to show."""
    return [
        Appointment(
            id="demo-1",
            client_name="María García",
            client_email="maria@example.com",
            client_phone="12345678",
            service="Corte + Color",
            date=today,
            time="10:00",
            status=AppointmentStatus.PENDING,
            total_price=500,
            created_at=now,
            notes="Primera cita de demostración",
        ),
        Appointment(
            id="demo-2",
            client_name="Ana López",
            client_email="ana@example.com",
            client_phone="87654321",
            service="Manicura Premium",
            date=today,
            time="14:30",
            status=AppointmentStatus.CONFIRMED,
            total_price=200,
            created_at=now,
            notes="Cliente frecuente",
        ),
    ]


class AppointmentRepository:

    def __init__(
        self,
        store: LocalStore,
        remote: Optional[RemoteClient] = None,
        outbox: Optional[Outbox] = None,
        *,
        write_timeout: float = 5.0,
        seed_demo: bool = True,
        tz: ZoneInfo = LOCAL_TZ,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.remote = remote
        self.outbox = outbox
        self.write_timeout = write_timeout
        self.seed_demo = seed_demo
        self.tz = tz
        self.clock = clock

        self.is_loaded = False
        self.last_error: Optional[str] = None
        self._appointments: list[Appointment] = []
        self._lock = asyncio.Lock()
        self._listeners: list[ChangeListener] = []

        if outbox is not None:
            outbox.on_created = self._apply_server_record

    # -------- Listeners --------

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    async def _notify(self, event: str, appointment: Optional[Appointment]) -> None:
        for listener in self._listeners:
            try:
                await listener(event, appointment)
            except Exception as e:
                log_error(e, {"component": "appointments", "operation": f"listener:{event}"}, ErrorSeverity.MEDIUM)

    # -------- Reads --------

    def today(self) -> date:
        return self.clock().astimezone(self.tz).date()

    def get(self, appointment_id: str) -> Optional[Appointment]:
        return next((a for a in self._appointments if a.id == appointment_id), None)

    def list(
        self,
        *,
        status: Optional[AppointmentStatus] = None,
        search: Optional[str] = None,
        date_range: Optional[str] = None,
    ) -> list[Appointment]:
        """Snapshot of the collection, optionally filtered the way the admin panel filters."""
        items = list(self._appointments)

        if search:
            needle = search.strip().lower()
            items = [
                a for a in items
                if needle in a.client_name.lower()
                or needle in a.service.lower()
                or needle in a.client_email.lower()
            ]

        if status is not None:
            items = [a for a in items if a.status == AppointmentStatus(status)]

        if date_range:
            if date_range not in DATE_RANGES:
                raise ValueError(f"Unknown date range '{date_range}'")
            today = self.today()
            if date_range == "today":
                items = [a for a in items if a.date == today]
            elif date_range == "tomorrow":
                items = [a for a in items if a.date == today + timedelta(days=1)]
            else:
                items = [a for a in items if today <= a.date <= today + timedelta(days=7)]

        return items

    def stats(self) -> AppointmentStats:
        now = self.clock()
        today = self.today()
        upcoming = 0
        for a in self._appointments:
            if a.status != AppointmentStatus.CONFIRMED:
                continue
            try:
                delta = appointment_start(a.date, a.time, self.tz) - now
            except ValueError:
                continue
            if timedelta(0) < delta <= timedelta(hours=24):
                upcoming += 1

        return AppointmentStats(
            total=len(self._appointments),
            pending=sum(1 for a in self._appointments if a.status == AppointmentStatus.PENDING),
            confirmed=sum(1 for a in self._appointments if a.status == AppointmentStatus.CONFIRMED),
            today=sum(1 for a in self._appointments if a.date == today),
            upcoming_24h=upcoming,
        )

    def available_slots(self, day: date) -> list[str]:
        booked = [(a.date, a.time) for a in self._appointments]
        return available_slots(day, booked)

    # -------- Loading --------

    async def _read_local(self) -> Optional[list[Appointment]]:
        raw = await self.store.read_list(APPOINTMENTS_SLOT)
        if raw is None:
            return None
        items = []
        for item in raw:
            try:
                items.append(Appointment.model_validate(item))
            except ValidationError:
                logger.warning("Skipping unreadable stored appointment: %s", item)
        return items

    async def _save(self, items: list[Appointment]) -> None:
        # Store first: if the write fails the in-memory collection stays as it was
        await self.store.write(APPOINTMENTS_SLOT, [a.to_wire() for a in items])
        self._appointments = items

    def _merge_remote(self, remote_items: list[Appointment], local_items: list[Appointment]) -> list[Appointment]:
        """
        Remote list wins except where undelivered local intents say otherwise:
        pending creates are kept, pending deletes stay deleted and pending
        updates win when they are newer (last writer wins on updatedAt).
        """
        if self.outbox is None:
            return list(remote_items)

        pending: dict[str, set[OutboxOp]] = defaultdict(set)
        for entry in self.outbox.pending:
            pending[entry.appointment_id].add(entry.op)

        # Records whose create was delivered but not yet swapped in match by server id
        local_by_id = {self.outbox.id_map.get(a.id, a.id): a for a in local_items}
        merged = []
        for item in remote_items:
            ops = pending.get(item.id, set())
            if OutboxOp.DELETE in ops:
                continue
            local = local_by_id.get(item.id)
            if (OutboxOp.UPDATE in ops and local is not None
                    and _aware(local.last_modified) >= _aware(item.last_modified)):
                merged.append(local if local.id == item.id else local.model_copy(update={"id": item.id}))
            else:
                merged.append(item)

        remote_ids = {a.id for a in remote_items}
        for local in local_items:
            if local.id in remote_ids or self.outbox.id_map.get(local.id) in remote_ids:
                continue
            if OutboxOp.CREATE in pending.get(local.id, set()):
                merged.append(local)
        return merged

    async def load(self) -> list[Appointment]:
        """Initial population; same path as refresh."""
        return await self.refresh()

    async def refresh(self) -> list[Appointment]:
        """
        Re-read the collection: remote first when configured (bounded wait),
        falling back to the local store. Replaces the in-memory collection.
        """
        self.last_error = None

        if self.remote is not None:
            try:
                remote_items = await self.remote.list_appointments()
            except RemoteError as e:
                log_error(e, {"component": "appointments", "operation": "refresh"}, ErrorSeverity.LOW)
            else:
                try:
                    async with self._lock:
                        local_items = self._appointments if self.is_loaded else (await self._read_local() or [])
                        await self._save(self._merge_remote(remote_items, local_items))
                        self.is_loaded = True
                except StorageError as e:
                    log_error(e, {"component": "appointments", "operation": "refresh"})
                    self._appointments = self._merge_remote(remote_items, self._appointments)
                    self.is_loaded = True
                logger.info("Loaded %d appointments from remote", len(self._appointments))
                await self._notify("refreshed", None)
                return self.list()

        try:
            stored = await self._read_local()
        except StorageError as e:
            log_error(e, {"component": "appointments", "operation": "refresh"})
            stored = None

        async with self._lock:
            if stored is not None:
                self._appointments = stored
            elif self.remote is None and self.seed_demo:
                seeded = demo_appointments(self.clock(), self.today())
                try:
                    await self._save(seeded)
                except StorageError as e:
                    log_error(e, {"component": "appointments", "operation": "seed"})
                    self._appointments = seeded
                logger.info("Seeded demo appointments")
            else:
                self._appointments = []
                if self.remote is not None:
                    self.last_error = "Remote and local appointment data unavailable"
            self.is_loaded = True

        await self._notify("refreshed", None)
        return self.list()

    # -------- Mutations --------

    def _next_id(self, now: datetime) -> str:
        taken = {a.id for a in self._appointments}
        candidate = int(now.timestamp() * 1000)
        while str(candidate) in taken:
            candidate += 1
        return str(candidate)

    async def create(self, data: AppointmentCreate) -> OperationResult:
        try:
            async with self._lock:
                now = self.clock()
                appointment = Appointment(id=self._next_id(now), created_at=now, **data.model_dump())
                await self._save([*self._appointments, appointment])
        except StorageError as e:
            log_error(e, {"component": "appointments", "operation": "create"})
            return OperationResult(success=False, error="Could not save the appointment", error_code="storage_error")

        logger.info("Appointment %s created for %s", appointment.id, appointment.date)
        await self._notify("created", appointment)

        if self.outbox is None:
            return OperationResult(success=True, data=appointment)

        try:
            await self.outbox.enqueue(OutboxOp.CREATE, appointment.id, data.remote_payload())
        except StorageError as e:
            log_error(e, {"component": "appointments", "operation": "enqueue_create"})
            return OperationResult(success=True, data=appointment)

        # Bounded wait for the remote copy; the drain keeps going if we stop waiting
        await with_timeout(asyncio.shield(self.outbox.flush()), self.write_timeout, operation="remote create")

        server_id = self.outbox.id_map.get(appointment.id)
        final = (self.get(server_id) if server_id else None) or self.get(appointment.id) or appointment
        return OperationResult(success=True, data=final)

    async def _apply_server_record(self, local_id: str, server: Appointment) -> None:
        """Swap a locally created record for the remote's copy once the create is delivered."""
        async with self._lock:
            local = self.get(local_id)
            if local is None:
                return
            # Edited since creation: keep our fields, adopt the server id
            replacement = local.model_copy(update={"id": server.id}) if local.updated_at else server
            # A refresh during the POST may already have pulled in the server copy
            await self._save([
                replacement if a.id == local_id else a
                for a in self._appointments
                if a.id != server.id or a.id == local_id
            ])
        logger.info("Appointment %s synced as %s", local_id, server.id)
        await self._notify("synced", replacement)

    async def update(self, appointment_id: str, changes: Union[AppointmentUpdate, dict]) -> OperationResult:
        if not isinstance(changes, AppointmentUpdate):
            changes = AppointmentUpdate.model_validate(changes)
        fields = {k: v for k, v in changes.changes().items() if v is not None or k == "notes"}

        try:
            async with self._lock:
                current = self.get(appointment_id)
                if current is None:
                    return OperationResult(success=False, error=f"Appointment {appointment_id} not found",
                                           error_code="not_found")
                if "status" in fields:
                    ensure_transition(current.status, fields["status"])

                updated = current.model_copy(update={**fields, "updated_at": self.clock()})
                await self._save([updated if a.id == appointment_id else a for a in self._appointments])
        except InvalidTransitionError as e:
            return OperationResult(success=False, error=str(e), error_code="invalid_transition")
        except StorageError as e:
            log_error(e, {"component": "appointments", "operation": "update"})
            return OperationResult(success=False, error="Could not update the appointment",
                                   error_code="storage_error")

        await self._notify("updated", updated)

        if self.outbox is not None:
            payload = changes.model_dump(by_alias=True, mode="json", include=set(fields))
            payload["updatedAt"] = updated.to_wire()["updatedAt"]
            await self._sync(OutboxOp.UPDATE, appointment_id, payload)

        return OperationResult(success=True, data=updated)

    async def delete(self, appointment_id: str) -> OperationResult:
        try:
            async with self._lock:
                current = self.get(appointment_id)
                if current is None:
                    return OperationResult(success=False, error=f"Appointment {appointment_id} not found",
                                           error_code="not_found")
                await self._save([a for a in self._appointments if a.id != appointment_id])
        except StorageError as e:
            log_error(e, {"component": "appointments", "operation": "delete"})
            return OperationResult(success=False, error="Could not delete the appointment",
                                   error_code="storage_error")

        logger.info("Appointment %s deleted", appointment_id)
        await self._notify("deleted", current)

        if self.outbox is not None:
            await self._sync(OutboxOp.DELETE, appointment_id)

        return OperationResult(success=True, data=current)

    async def _sync(self, op: OutboxOp, appointment_id: str, payload: Optional[dict] = None) -> None:
        """Queue a remote write and start draining without waiting for it."""
        try:
            await self.outbox.enqueue(op, appointment_id, payload)
        except StorageError as e:
            log_error(e, {"component": "appointments", "operation": f"enqueue_{op.value}"})
            return
        self.outbox.flush()
