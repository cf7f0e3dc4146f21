"""Notification schemas: one taxonomy for reminders, bookings and admin messages."""
from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator

from meraki.schemas.appointment import CamelModel


class NotificationType(str, Enum):
    UPCOMING = "upcoming"
    PREPARATION = "preparation"
    REMINDER = "reminder"
    IMMINENT = "imminent"
    STARTING = "starting"
    OVERDUE = "overdue"
    CONFIRMATION = "confirmation"
    NEW_APPOINTMENT = "new_appointment"
    SYSTEM = "system"
    MANUAL = "manual"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def alerts(self) -> bool:
        return self in (Priority.HIGH, Priority.URGENT)


# Older clients and remotes still send "normal"
_PRIORITY_ALIASES = {"normal": Priority.MEDIUM.value}


class Notification(CamelModel):
    id: str
    type: NotificationType
    title: str
    message: str
    created_at: dt.datetime
    read: bool = False
    priority: Priority = Priority.MEDIUM
    appointment_id: Optional[str] = None
    action: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _legacy_priority(cls, value):
        if isinstance(value, str):
            return _PRIORITY_ALIASES.get(value.lower(), value.lower())
        return value


class ManualNotificationCreate(CamelModel):
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    priority: Priority = Priority.MEDIUM
    appointment_id: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _legacy_priority(cls, value):
        if isinstance(value, str):
            return _PRIORITY_ALIASES.get(value.lower(), value.lower())
        return value


class NotificationPreferences(CamelModel):
    sound_enabled: bool = True
