"""Appointment schemas shared by the repository, the remote client and the API."""
from __future__ import annotations

import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from meraki.core.lifecycle import AppointmentStatus

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class Appointment(CamelModel):
    """A booked salon service. Instances are immutable snapshots."""
    model_config = ConfigDict(frozen=True)

    id: str
    client_name: str
    client_email: str
    client_phone: str
    service: str
    date: dt.date
    time: str = Field(..., pattern=TIME_PATTERN)
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: Optional[str] = None
    total_price: float = Field(0, ge=0)
    created_at: dt.datetime
    reminder_sent: Optional[bool] = None
    updated_at: Optional[dt.datetime] = None

    @property
    def last_modified(self) -> dt.datetime:
        return self.updated_at or self.created_at


class AppointmentCreate(CamelModel):
    """Booking form payload; contact fields must not be blank."""
    model_config = ConfigDict(str_strip_whitespace=True)

    client_name: str = Field(..., min_length=1)
    client_email: str = Field(..., min_length=1)
    client_phone: str = Field(..., min_length=1)
    service: str = Field(..., min_length=1)
    date: dt.date
    time: str = Field(..., pattern=TIME_PATTERN)
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: Optional[str] = None
    total_price: float = Field(0, ge=0)
    reminder_sent: Optional[bool] = None

    def remote_payload(self) -> dict:
        """Body for ``POST /appointments``; the remote assigns id, status and createdAt."""
        return self.model_dump(
            by_alias=True,
            mode="json",
            include={"client_name", "client_email", "client_phone", "service",
                     "date", "time", "notes", "total_price"},
        )


class AppointmentUpdate(CamelModel):
    """Partial edit. ``id`` and ``createdAt`` are not editable."""
    model_config = ConfigDict(str_strip_whitespace=True)

    client_name: Optional[str] = Field(None, min_length=1)
    client_email: Optional[str] = Field(None, min_length=1)
    client_phone: Optional[str] = Field(None, min_length=1)
    service: Optional[str] = Field(None, min_length=1)
    date: Optional[dt.date] = None
    time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None
    total_price: Optional[float] = Field(None, ge=0)
    reminder_sent: Optional[bool] = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class OperationResult(BaseModel):
    success: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    data: Optional[Appointment] = None


class AppointmentStats(CamelModel):
    total: int
    pending: int
    confirmed: int
    today: int
    upcoming_24h: int = Field(..., alias="upcoming24h")
