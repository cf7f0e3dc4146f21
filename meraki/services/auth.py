# meraki/services/auth.py
"""Bearer token gate and the single admin login."""
from __future__ import annotations

import secrets
from typing import Optional

from pydantic import BaseModel

ADMIN_PROFILE = {"id": "admin", "name": "Administrador", "role": "admin"}


class LoginRequest(BaseModel):
    username: str
    password: str


def bearer_token(authorization: Optional[str]) -> str:
    """Token part of an ``Authorization: Bearer <token>`` header, or ''."""
    if not authorization:
        return ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def token_matches(provided: str, expected: str) -> bool:
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


def check_admin(username: str, password: str, admin_user: str, admin_pass: str) -> bool:
    ok_user = secrets.compare_digest(username.encode(), admin_user.encode())
    ok_pass = secrets.compare_digest(password.encode(), admin_pass.encode())
    return ok_user and ok_pass
