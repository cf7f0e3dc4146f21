# meraki/services/remote.py
"""
Client for the optional remote collaborator: a REST-ish key-value backend that
speaks the same JSON envelopes as this service (``{success, ...}``).

Every call is bounded by its own timeout and every failure mode (transport
error, timeout, non-2xx, ``success: false``, malformed body) is raised as
``RemoteError``. Callers decide whether to swallow it.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from meraki.core.config import Settings
from meraki.core.errors import RemoteError
from meraki.schemas.appointment import Appointment
from meraki.schemas.notification import Notification

logger = logging.getLogger(__name__)


class RemoteClient:

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        read_timeout: float = 8.0,
        write_timeout: float = 5.0,
        notification_timeout: float = 5.0,
        notification_read_timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.notification_timeout = notification_timeout
        self.notification_read_timeout = notification_read_timeout
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
                      ) -> Optional["RemoteClient"]:
        """None when no usable remote credential is configured (local-only mode)."""
        if not settings.remote_enabled:
            return None
        return cls(
            settings.REMOTE_API_URL,
            settings.REMOTE_API_KEY,
            read_timeout=settings.REMOTE_READ_TIMEOUT,
            write_timeout=settings.REMOTE_WRITE_TIMEOUT,
            notification_timeout=settings.NOTIFICATION_FETCH_TIMEOUT,
            notification_read_timeout=settings.NOTIFICATION_READ_TIMEOUT,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, timeout: float, json: Any = None) -> dict:
        try:
            response = await self._client.request(method, path, json=json, timeout=timeout)
        except httpx.TimeoutException as e:
            raise RemoteError(f"{method} {path} timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            raise RemoteError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise RemoteError(f"{method} {path} returned HTTP {response.status_code}",
                              status_code=response.status_code)
        try:
            body = response.json()
        except ValueError as e:
            raise RemoteError(f"{method} {path} returned a non-JSON body",
                              status_code=response.status_code) from e
        if not isinstance(body, dict) or body.get("success") is False:
            error = body.get("error") if isinstance(body, dict) else None
            raise RemoteError(f"{method} {path} reported failure: {error or 'unknown error'}",
                              status_code=response.status_code)
        return body

    # -------- Appointments --------

    async def list_appointments(self) -> list[Appointment]:
        body = await self._request("GET", "/appointments", self.read_timeout)
        try:
            return [Appointment.model_validate(item) for item in body.get("appointments") or []]
        except ValidationError as e:
            raise RemoteError(f"Malformed appointment list: {e.error_count()} errors") from e

    async def create_appointment(self, payload: dict) -> Appointment:
        body = await self._request("POST", "/appointments", self.write_timeout, json=payload)
        return self._appointment_from(body, "create")

    async def update_appointment(self, appointment_id: str, changes: dict) -> Appointment:
        body = await self._request("PUT", f"/appointments/{appointment_id}", self.write_timeout, json=changes)
        return self._appointment_from(body, "update")

    async def delete_appointment(self, appointment_id: str) -> None:
        await self._request("DELETE", f"/appointments/{appointment_id}", self.write_timeout)

    @staticmethod
    def _appointment_from(body: dict, operation: str) -> Appointment:
        try:
            return Appointment.model_validate(body.get("appointment"))
        except ValidationError as e:
            raise RemoteError(f"Malformed appointment in {operation} response") from e

    # -------- Catalog --------

    async def list_services(self) -> list[dict]:
        body = await self._request("GET", "/services", self.read_timeout)
        return list(body.get("services") or [])

    async def available_slots(self, day: str) -> list[str]:
        body = await self._request("GET", f"/available-slots/{day}", self.read_timeout)
        return [str(slot) for slot in body.get("availableSlots") or []]

    # -------- Notifications --------

    async def list_notifications(self) -> list[Notification]:
        body = await self._request("GET", "/notifications", self.notification_timeout)
        try:
            return [Notification.model_validate(item) for item in body.get("notifications") or []]
        except ValidationError as e:
            raise RemoteError(f"Malformed notification list: {e.error_count()} errors") from e

    async def mark_notification_read(self, notification_id: str) -> None:
        await self._request("PUT", f"/notifications/{notification_id}/read", self.notification_read_timeout)

    # -------- Health --------

    async def health(self) -> dict:
        try:
            response = await self._client.get("/health", timeout=self.notification_read_timeout)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteError(f"Health check failed: {e}") from e
