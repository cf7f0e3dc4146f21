# meraki/api/routes/appointments.py
from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from meraki.api.deps import get_repository
from meraki.core.lifecycle import AppointmentStatus
from meraki.schemas.appointment import AppointmentCreate, AppointmentUpdate, OperationResult
from meraki.services.appointments import AppointmentRepository

router = APIRouter(prefix="/appointments", tags=["appointments"])

ERROR_STATUS = {
    "not_found": 404,
    "invalid_transition": 409,
    "storage_error": 500,
}


def _failure(result: OperationResult) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": result.error, "code": result.error_code},
        status_code=ERROR_STATUS.get(result.error_code, 400),
    )


@router.get("")
async def list_appointments(
    status: Optional[AppointmentStatus] = None,
    search: Optional[str] = None,
    date_range: Optional[Literal["today", "tomorrow", "week"]] = Query(None, alias="range"),
    repo: AppointmentRepository = Depends(get_repository),
):
    items = repo.list(status=status, search=search, date_range=date_range)
    return {"success": True, "appointments": [a.to_wire() for a in items]}


@router.get("/stats")
async def appointment_stats(repo: AppointmentRepository = Depends(get_repository)):
    return {"success": True, "stats": repo.stats().to_wire()}


@router.post("/refresh")
async def refresh_appointments(repo: AppointmentRepository = Depends(get_repository)):
    items = await repo.refresh()
    body = {"success": True, "appointments": [a.to_wire() for a in items]}
    if repo.last_error:
        body["warning"] = repo.last_error
    return body


@router.post("")
async def create_appointment(payload: AppointmentCreate, repo: AppointmentRepository = Depends(get_repository)):
    result = await repo.create(payload)
    if not result.success:
        return _failure(result)
    return {"success": True, "appointment": result.data.to_wire(), "message": "Cita creada exitosamente"}


@router.put("/{appointment_id}")
async def update_appointment(
    appointment_id: str,
    payload: AppointmentUpdate,
    repo: AppointmentRepository = Depends(get_repository),
):
    result = await repo.update(appointment_id, payload)
    if not result.success:
        return _failure(result)
    return {"success": True, "appointment": result.data.to_wire(), "message": "Cita actualizada exitosamente"}


@router.delete("/{appointment_id}")
async def delete_appointment(appointment_id: str, repo: AppointmentRepository = Depends(get_repository)):
    result = await repo.delete(appointment_id)
    if not result.success:
        return _failure(result)
    return {"success": True, "message": "Cita eliminada exitosamente"}
