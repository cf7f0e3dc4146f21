# meraki/services/outbox.py
"""
Durable sync outbox.

Local mutations append an intent (create / update / delete) to a FIFO that is
persisted in the local store. A single drain pass at a time replays intents
against the remote collaborator in enqueue order:

- success                -> entry removed
- transport error / 5xx  -> head entry rescheduled with exponential backoff and
                            the pass stops, so later intents never overtake it
- 404 on delete          -> counts as delivered (already gone remotely)
- other 4xx              -> entry dropped and logged, it would never succeed
- too many attempts      -> entry dropped and logged
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from meraki.core.business import utcnow
from meraki.core.errors import ErrorSeverity, RemoteError, log_error
from meraki.schemas.appointment import Appointment, CamelModel
from meraki.services.local_store import OUTBOX_SLOT, LocalStore
from meraki.services.remote import RemoteClient

logger = logging.getLogger(__name__)

CreatedCallback = Callable[[str, Appointment], Awaitable[None]]


def _log_drain_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        log_error(error, {"component": "outbox", "operation": "drain"}, ErrorSeverity.HIGH)


class OutboxOp(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OutboxEntry(CamelModel):
    id: str
    op: OutboxOp
    appointment_id: str
    payload: dict = {}
    enqueued_at: datetime
    attempts: int = 0
    next_attempt_at: datetime
    last_error: Optional[str] = None


@dataclass
class DeliveryReport:
    delivered: list[OutboxEntry] = field(default_factory=list)
    dropped: list[OutboxEntry] = field(default_factory=list)
    deferred: Optional[OutboxEntry] = None

    def merge(self, other: "DeliveryReport") -> None:
        self.delivered.extend(other.delivered)
        self.dropped.extend(other.dropped)
        self.deferred = other.deferred


class Outbox:

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteClient,
        *,
        base_delay: float = 2.0,
        max_delay: float = 300.0,
        max_attempts: int = 8,
        idle_seconds: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.remote = remote
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.idle_seconds = idle_seconds
        self.clock = clock
        self.on_created: Optional[CreatedCallback] = None
        # local id -> server id, learned from delivered creates
        self.id_map: dict[str, str] = {}

        self._entries: list[OutboxEntry] = []
        self._in_flight: Optional[str] = None
        self._drain_lock = asyncio.Lock()
        self._persist_lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._drain_task: Optional[asyncio.Task] = None
        self._rerun = False

    # -------- State --------

    async def load(self) -> None:
        raw = await self.store.read_list(OUTBOX_SLOT) or []
        entries = []
        for item in raw:
            try:
                entries.append(OutboxEntry.model_validate(item))
            except ValidationError:
                logger.warning("Discarding unreadable outbox entry: %s", item)
        self._entries = entries
        if entries:
            logger.info("Outbox restored with %d pending intents", len(entries))

    @property
    def pending(self) -> list[OutboxEntry]:
        return list(self._entries)

    def next_due(self) -> Optional[datetime]:
        return self._entries[0].next_attempt_at if self._entries else None

    async def _persist(self) -> None:
        # Snapshot inside the lock so the last write always carries the newest state
        async with self._persist_lock:
            await self.store.write(OUTBOX_SLOT, [e.to_wire() for e in self._entries])

    # -------- Producing --------

    async def enqueue(self, op: OutboxOp, appointment_id: str, payload: Optional[dict] = None
                      ) -> Optional[OutboxEntry]:
        """
        Append an intent. Deleting a record whose create never left the box
        cancels both instead of queueing a delete. Returns None in that case.
        """
        op = OutboxOp(op)
        # A delivered create may not have been swapped in locally yet
        appointment_id = self.id_map.get(appointment_id, appointment_id)
        if op == OutboxOp.DELETE:
            unsent_create = next(
                (e for e in self._entries
                 if e.appointment_id == appointment_id and e.op == OutboxOp.CREATE and e.id != self._in_flight),
                None,
            )
            if unsent_create is not None:
                self._entries = [e for e in self._entries if e.appointment_id != appointment_id]
                await self._persist()
                logger.info("Cancelled unsent create for %s", appointment_id)
                return None

        now = self.clock()
        entry = OutboxEntry(
            id=uuid.uuid4().hex,
            op=op,
            appointment_id=appointment_id,
            payload=payload or {},
            enqueued_at=now,
            next_attempt_at=now,
        )
        self._entries.append(entry)
        await self._persist()
        self._wakeup.set()
        return entry

    # -------- Draining --------

    def _backoff(self, attempts: int) -> timedelta:
        return timedelta(seconds=min(self.max_delay, self.base_delay * (2 ** max(0, attempts - 1))))

    async def _deliver(self, entry: OutboxEntry) -> None:
        if entry.op == OutboxOp.CREATE:
            server = await self.remote.create_appointment(entry.payload)
            self.id_map[entry.appointment_id] = server.id
            if server.id != entry.appointment_id:
                self._entries = [
                    e.model_copy(update={"appointment_id": server.id})
                    if e.appointment_id == entry.appointment_id and e.id != entry.id else e
                    for e in self._entries
                ]
            if self.on_created is not None:
                # The remote already has the record; a local failure here must not trigger a resend
                try:
                    await self.on_created(entry.appointment_id, server)
                except Exception as e:
                    log_error(e, {"component": "outbox", "operation": "apply_server_record"}, ErrorSeverity.HIGH)
        elif entry.op == OutboxOp.UPDATE:
            await self.remote.update_appointment(entry.appointment_id, entry.payload)
        else:
            try:
                await self.remote.delete_appointment(entry.appointment_id)
            except RemoteError as e:
                if not e.is_not_found:
                    raise

    def _remove(self, entry_id: str) -> None:
        self._entries = [e for e in self._entries if e.id != entry_id]

    async def drain(self) -> DeliveryReport:
        """One in-order pass over due intents."""
        report = DeliveryReport()
        async with self._drain_lock:
            while self._entries:
                entry = self._entries[0]
                if entry.next_attempt_at > self.clock():
                    report.deferred = entry
                    break

                self._in_flight = entry.id
                try:
                    await self._deliver(entry)
                except RemoteError as e:
                    context = {"component": "outbox", "operation": entry.op.value,
                               "appointment_id": entry.appointment_id}
                    attempts = entry.attempts + 1
                    if not e.is_retryable or attempts >= self.max_attempts:
                        log_error(e, {**context, "attempts": attempts, "dropped": True}, ErrorSeverity.HIGH)
                        self._remove(entry.id)
                        report.dropped.append(entry)
                        await self._persist()
                        continue

                    log_error(e, context, ErrorSeverity.LOW)
                    retry = entry.model_copy(update={
                        "attempts": attempts,
                        "next_attempt_at": self.clock() + self._backoff(attempts),
                        "last_error": str(e),
                    })
                    self._entries = [retry if x.id == entry.id else x for x in self._entries]
                    await self._persist()
                    report.deferred = retry
                    break
                finally:
                    self._in_flight = None

                self._remove(entry.id)
                report.delivered.append(entry)
                await self._persist()
                logger.debug("Delivered %s for %s", entry.op.value, entry.appointment_id)
        return report

    async def _drain_until_settled(self) -> DeliveryReport:
        report = DeliveryReport()
        while self._rerun:
            self._rerun = False
            report.merge(await self.drain())
        return report

    def flush(self) -> asyncio.Task:
        """
        Make sure a drain pass runs soon and return the task doing it.
        Calls made while a pass is running fold into that pass.
        """
        self._rerun = True
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain_until_settled(), name="outbox-drain")
            self._drain_task.add_done_callback(_log_drain_failure)
        return self._drain_task

    async def run(self) -> None:
        """Background worker: drain when kicked or when the head entry is due."""
        logger.info("Outbox worker started")
        while True:
            self._wakeup.clear()
            try:
                await self.flush()
            except Exception as e:
                log_error(e, {"component": "outbox", "operation": "drain"}, ErrorSeverity.HIGH)

            delay = self.idle_seconds
            due = self.next_due()
            if due is not None:
                delay = max(0.0, min(delay, (due - self.clock()).total_seconds()))
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
