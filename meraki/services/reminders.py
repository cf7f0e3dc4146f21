# meraki/services/reminders.py
"""
Reminder scheduling.

Every (appointment, rule) pair becomes one entry in a min-heap keyed by its
wake-time. Popping due entries fires each at most once; entries that belong to
an outdated version of the appointment (moved, re-statused, deleted) are
dropped when they surface instead of being searched for and removed eagerly.
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Iterable, Optional
from zoneinfo import ZoneInfo

from meraki.core.business import LOCAL_TZ, appointment_start, utcnow
from meraki.core.errors import ErrorSeverity, log_error
from meraki.core.lifecycle import AppointmentStatus
from meraki.schemas.appointment import Appointment
from meraki.schemas.notification import Notification, NotificationType, Priority

if TYPE_CHECKING:
    from meraki.services.appointments import AppointmentRepository
    from meraki.services.notifications import NotificationCenter

logger = logging.getLogger(__name__)

Fingerprint = tuple[date, str, AppointmentStatus, datetime]


@dataclass(frozen=True)
class ReminderRule:
    type: NotificationType
    status: AppointmentStatus
    offset: timedelta
    # Fire relative to creation instead of the scheduled start
    from_created: bool = False
    # None: never expires. Otherwise relative to the scheduled start.
    expires_after: Optional[timedelta] = timedelta(0)
    priority: Priority = Priority.MEDIUM
    action: Optional[str] = None


REMINDER_RULES: tuple[ReminderRule, ...] = (
    ReminderRule(NotificationType.UPCOMING, AppointmentStatus.CONFIRMED, timedelta(hours=-24)),
    ReminderRule(NotificationType.PREPARATION, AppointmentStatus.CONFIRMED, timedelta(hours=-2),
                 priority=Priority.HIGH),
    ReminderRule(NotificationType.REMINDER, AppointmentStatus.CONFIRMED, timedelta(hours=-1),
                 priority=Priority.HIGH),
    ReminderRule(NotificationType.IMMINENT, AppointmentStatus.CONFIRMED, timedelta(minutes=-30),
                 priority=Priority.URGENT, action="prepare"),
    ReminderRule(NotificationType.STARTING, AppointmentStatus.CONFIRMED, timedelta(minutes=-1),
                 expires_after=timedelta(minutes=15), priority=Priority.URGENT, action="start"),
    ReminderRule(NotificationType.OVERDUE, AppointmentStatus.CONFIRMED, timedelta(minutes=15),
                 expires_after=None, priority=Priority.URGENT, action="contact_client"),
    ReminderRule(NotificationType.CONFIRMATION, AppointmentStatus.PENDING, timedelta(hours=24),
                 from_created=True, expires_after=None),
)

REMINDER_TYPES = frozenset(rule.type for rule in REMINDER_RULES)


@dataclass(order=True)
class ScheduledReminder:
    fire_at: datetime
    seq: int
    appointment_id: str = field(compare=False)
    rule: ReminderRule = field(compare=False)
    fingerprint: Fingerprint = field(compare=False)
    start: datetime = field(compare=False)
    expires_at: Optional[datetime] = field(compare=False, default=None)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def fingerprint(appointment: Appointment) -> Fingerprint:
    return (appointment.date, appointment.time, appointment.status, _aware(appointment.created_at))


def _compose(rule: ReminderRule, appointment: Appointment, start: datetime, now: datetime) -> tuple[str, str, Priority]:
    name = appointment.client_name
    left = start - now
    hours_left = math.ceil(left.total_seconds() / 3600)
    minutes_left = math.ceil(left.total_seconds() / 60)

    if rule.type == NotificationType.UPCOMING:
        priority = Priority.HIGH if left <= timedelta(hours=2) else Priority.MEDIUM
        return "Cita próxima", f"{name} tiene cita en {hours_left} horas", priority
    if rule.type == NotificationType.PREPARATION:
        return ("Recordatorio: Cita en 2 horas",
                f"{name} - {appointment.service} a las {appointment.time}", rule.priority)
    if rule.type == NotificationType.REMINDER:
        return "Recordatorio inmediato", f"{name} tiene cita en {minutes_left} minutos", rule.priority
    if rule.type == NotificationType.IMMINENT:
        return "¡Cita próxima!", f"{name} tiene cita en {minutes_left} minutos - {appointment.service}", rule.priority
    if rule.type == NotificationType.STARTING:
        return "¡Cita comenzando ahora!", f"{name} - {appointment.service}", rule.priority
    if rule.type == NotificationType.OVERDUE:
        late = math.floor((now - start).total_seconds() / 60)
        return (f"Cita atrasada {late} minutos",
                f"La cita de {name} comenzó hace {late} minutos", rule.priority)

    pending_hours = math.ceil((now - _aware(appointment.created_at)).total_seconds() / 3600)
    return "Confirmar cita", f"La cita de {name} lleva {pending_hours} horas sin confirmar", rule.priority


class ReminderEvaluator:
    """
    Derives reminder notifications from appointment snapshots. Pure with
    respect to the appointments: it never mutates them.
    """

    def __init__(self, tz: ZoneInfo = LOCAL_TZ, rules: Iterable[ReminderRule] = REMINDER_RULES):
        self.tz = tz
        self.rules = tuple(rules)
        self._heap: list[ScheduledReminder] = []
        self._seq = itertools.count()
        self._appointments: dict[str, Appointment] = {}
        self._fingerprints: dict[str, Fingerprint] = {}
        self._fired: dict[str, set[NotificationType]] = {}

    def __len__(self) -> int:
        return len(self._heap)

    def has_fired(self, appointment_id: str, reminder_type: NotificationType) -> bool:
        return reminder_type in self._fired.get(appointment_id, set())

    def sync(self, appointments: Iterable[Appointment]) -> set[str]:
        """
        Bring the schedule in line with the current collection.
        Returns the ids of appointments that moved to a different slot.
        """
        moved: set[str] = set()
        seen: set[str] = set()

        for appointment in appointments:
            seen.add(appointment.id)
            self._appointments[appointment.id] = appointment
            current = fingerprint(appointment)
            previous = self._fingerprints.get(appointment.id)
            if previous == current:
                continue

            if previous is not None and previous[:2] != current[:2]:
                self._fired.pop(appointment.id, None)
                moved.add(appointment.id)
            self._fingerprints[appointment.id] = current
            self._schedule(appointment, current)

        for gone in set(self._fingerprints) - seen:
            del self._fingerprints[gone]
            self._appointments.pop(gone, None)
            self._fired.pop(gone, None)

        return moved

    def _schedule(self, appointment: Appointment, current: Fingerprint) -> None:
        try:
            start = appointment_start(appointment.date, appointment.time, self.tz)
        except ValueError:
            logger.warning("Appointment %s has an unreadable time %r", appointment.id, appointment.time)
            return

        fired = self._fired.get(appointment.id, set())
        for rule in self.rules:
            if rule.status != appointment.status or rule.type in fired:
                continue
            anchor = _aware(appointment.created_at) if rule.from_created else start
            expires_at = None if rule.expires_after is None else start + rule.expires_after
            heapq.heappush(self._heap, ScheduledReminder(
                fire_at=anchor + rule.offset,
                seq=next(self._seq),
                appointment_id=appointment.id,
                rule=rule,
                fingerprint=current,
                start=start,
                expires_at=expires_at,
            ))

    def _is_stale(self, entry: ScheduledReminder) -> bool:
        return self._fingerprints.get(entry.appointment_id) != entry.fingerprint

    def due(self, now: datetime) -> list[Notification]:
        """
        Pop and build every reminder whose wake-time has passed.

        When several start-relative thresholds are crossed in one pass (a late
        confirmation, or a scheduler that was asleep) only the latest one is
        emitted; the earlier ones are marked fired without a notification.
        """
        notifications: list[Notification] = []
        latest: dict[str, int] = {}
        while self._heap and self._heap[0].fire_at <= now:
            entry = heapq.heappop(self._heap)
            if self._is_stale(entry):
                continue

            fired = self._fired.setdefault(entry.appointment_id, set())
            if entry.rule.type in fired:
                continue
            fired.add(entry.rule.type)

            if entry.expires_at is not None and now >= entry.expires_at:
                logger.debug("Skipping expired %s reminder for %s", entry.rule.type.value, entry.appointment_id)
                continue

            appointment = self._appointments[entry.appointment_id]
            title, message, priority = _compose(entry.rule, appointment, entry.start, now)
            notification = Notification(
                id=f"{entry.rule.type.value}-{appointment.id}",
                type=entry.rule.type,
                title=title,
                message=message,
                created_at=now,
                priority=priority,
                appointment_id=appointment.id,
                action=entry.rule.action,
            )
            if not entry.rule.from_created:
                # Heap order: a later entry for the same appointment is the closer threshold
                if appointment.id in latest:
                    notifications[latest[appointment.id]] = notification
                    continue
                latest[appointment.id] = len(notifications)
            notifications.append(notification)
        return notifications

    def next_wake(self) -> Optional[datetime]:
        while self._heap and self._is_stale(self._heap[0]):
            heapq.heappop(self._heap)
        return self._heap[0].fire_at if self._heap else None


class ReminderScheduler:
    """Feeds due reminders into the notification center."""

    def __init__(
        self,
        repository: "AppointmentRepository",
        center: "NotificationCenter",
        evaluator: Optional[ReminderEvaluator] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_sleep: float = 60.0,
    ):
        self.repository = repository
        self.center = center
        self.evaluator = evaluator or ReminderEvaluator(tz=repository.tz)
        self.clock = clock
        self.max_sleep = max_sleep
        self._wakeup = asyncio.Event()

    def wake(self) -> None:
        self._wakeup.set()

    async def on_appointment_change(self, event: str, appointment: Optional[Appointment]) -> None:
        self.wake()

    async def run_once(self) -> list[Notification]:
        moved = self.evaluator.sync(self.repository.list())
        for appointment_id in moved:
            # Reminders about the old slot are wrong now
            await self.center.remove_for_appointment(appointment_id, REMINDER_TYPES)

        notifications = self.evaluator.due(self.clock())
        if notifications:
            await self.center.ingest(notifications)
        return notifications

    def _sleep_seconds(self) -> float:
        delay = self.max_sleep
        wake_at = self.evaluator.next_wake()
        if wake_at is not None:
            delay = min(delay, (wake_at - self.clock()).total_seconds())
        return max(0.0, delay)

    async def run(self) -> None:
        logger.info("Reminder scheduler started")
        while True:
            self._wakeup.clear()
            try:
                await self.run_once()
            except Exception as e:
                log_error(e, {"component": "reminders", "operation": "run_once"}, ErrorSeverity.MEDIUM)
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._sleep_seconds())
            except asyncio.TimeoutError:
                pass
