# meraki/core/business.py
from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from meraki.core.config import settings

LOCAL_TZ = ZoneInfo(settings.BUSINESS_TIMEZONE)

# Half-hour grid, 09:00 .. 17:30
BASE_SLOTS: tuple[str, ...] = tuple(
    f"{hour:02d}:{minute:02d}" for hour in range(9, 18) for minute in (0, 30)
)

SERVICE_CATALOG: tuple[dict, ...] = (
    {"id": "1", "category": "Corte & Peinado", "name": "Corte de Cabello", "price": 25, "duration": 45,
     "description": "Corte personalizado según tu estilo"},
    {"id": "2", "category": "Corte & Peinado", "name": "Peinado Profesional", "price": 20, "duration": 30,
     "description": "Peinados para eventos especiales"},
    {"id": "3", "category": "Color", "name": "Tinte Completo", "price": 45, "duration": 120,
     "description": "Color uniforme y duradero"},
    {"id": "4", "category": "Color", "name": "Mechas & Balayage", "price": 65, "duration": 180,
     "description": "Técnicas modernas de iluminación"},
    {"id": "5", "category": "Manicura & Pedicura", "name": "Manicura Clásica", "price": 15, "duration": 30,
     "description": "Cuidado completo de uñas"},
    {"id": "6", "category": "Manicura & Pedicura", "name": "Pedicura Spa", "price": 25, "duration": 45,
     "description": "Relajación y cuidado de pies"},
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def find_service(service_id: str) -> Optional[dict]:
    for service in SERVICE_CATALOG:
        if service["id"] == service_id:
            return dict(service)
    return None


def parse_slot(value: str) -> time:
    """Parse an ``HH:MM`` wall-clock string."""
    try:
        return datetime.strptime(value, "%H:%M").time()
    except ValueError:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")


def appointment_start(day: date, slot: str, tz: ZoneInfo = LOCAL_TZ) -> datetime:
    """Scheduled moment of an appointment as a tz-aware datetime in the salon's zone."""
    return datetime.combine(day, parse_slot(slot), tzinfo=tz)


def available_slots(day: date, booked: Iterable[tuple[date, str]]) -> list[str]:
    """
    Base slots minus the ones whose start time is already taken on ``day``.
    Only exact start-time collisions count; service duration is ignored.
    """
    occupied = {slot for booked_day, slot in booked if booked_day == day}
    return [slot for slot in BASE_SLOTS if slot not in occupied]
