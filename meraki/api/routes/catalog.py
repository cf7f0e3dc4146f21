# meraki/api/routes/catalog.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends

from meraki.api.deps import get_remote, get_repository
from meraki.core.business import SERVICE_CATALOG
from meraki.core.errors import ErrorSeverity, RemoteError, log_error
from meraki.services.appointments import AppointmentRepository
from meraki.services.remote import RemoteClient

router = APIRouter(tags=["catalog"])


@router.get("/services")
async def list_services(remote: Optional[RemoteClient] = Depends(get_remote)):
    if remote is not None:
        try:
            services = await remote.list_services()
            if services:
                return {"success": True, "services": services}
        except RemoteError as e:
            log_error(e, {"endpoint": "/services", "operation": "list_services"}, ErrorSeverity.LOW)
    return {"success": True, "services": [dict(s) for s in SERVICE_CATALOG]}


@router.get("/available-slots/{day}")
async def available_slots(
    day: date,
    repo: AppointmentRepository = Depends(get_repository),
    remote: Optional[RemoteClient] = Depends(get_remote),
):
    """Open half-hour slots for ``day`` (exact start-time collisions only)."""
    if remote is not None:
        try:
            slots = await remote.available_slots(day.isoformat())
            return {"success": True, "date": day.isoformat(), "availableSlots": slots}
        except RemoteError as e:
            log_error(e, {"endpoint": "/available-slots", "operation": "available_slots"}, ErrorSeverity.LOW)
    return {"success": True, "date": day.isoformat(), "availableSlots": repo.available_slots(day)}
