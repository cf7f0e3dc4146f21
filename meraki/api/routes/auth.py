# meraki/api/routes/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from meraki.api.deps import get_settings
from meraki.core.config import Settings
from meraki.core.errors import ErrorSeverity, log_error
from meraki.services.auth import ADMIN_PROFILE, LoginRequest, check_admin

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login")
async def login(payload: LoginRequest, request: Request, settings: Settings = Depends(get_settings)):
    if not check_admin(payload.username, payload.password, settings.ADMIN_USER, settings.ADMIN_PASS):
        log_error(PermissionError("Admin login failed"), {"endpoint": "/auth/login"}, ErrorSeverity.MEDIUM)
        return JSONResponse({"success": False, "error": "Credenciales incorrectas"}, status_code=401)
    return {"success": True, "token": request.app.state.api_key, "user": ADMIN_PROFILE}


@router.get("/verify")
async def verify():
    # Reaching this handler means the bearer gate accepted the token
    return {"success": True, "user": ADMIN_PROFILE}
