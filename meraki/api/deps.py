# meraki/api/deps.py
"""Request-scoped access to the services built in the application lifespan."""
from __future__ import annotations

from fastapi import Request

from meraki.core.config import Settings
from meraki.services.appointments import AppointmentRepository
from meraki.services.notifications import NotificationCenter
from meraki.services.remote import RemoteClient


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_repository(request: Request) -> AppointmentRepository:
    return request.app.state.repository


def get_notification_center(request: Request) -> NotificationCenter:
    return request.app.state.notifications


def get_remote(request: Request) -> RemoteClient | None:
    return request.app.state.remote
