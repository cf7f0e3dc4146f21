# meraki/main.py
from __future__ import annotations

# Load .env early so Settings and os.getenv see it everywhere
from dotenv import load_dotenv
load_dotenv()

import asyncio
import secrets
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from meraki.core.business import utcnow
from meraki.core.config import Settings, settings as default_settings
from meraki.core.errors import ErrorSeverity, RemoteError, StorageError, error_aggregator, log_error
from meraki.core.logging import LoggingMiddleware, get_logger, setup_logging
from meraki.schemas.appointment import Appointment
from meraki.services.appointments import AppointmentRepository
from meraki.services.auth import bearer_token, token_matches
from meraki.services.local_store import create_local_store
from meraki.services.notifications import NotificationCenter, booking_notification
from meraki.services.outbox import Outbox
from meraki.services.reminders import ReminderEvaluator, ReminderScheduler
from meraki.services.remote import RemoteClient
from meraki.utils.timeout_protection import spawn

from meraki.api.routes.appointments import router as appointments_router
from meraki.api.routes.auth import router as auth_router
from meraki.api.routes.catalog import router as catalog_router
from meraki.api.routes.notifications import router as notifications_router

setup_logging(
    debug=default_settings.is_development,
    max_log_length=default_settings.MAX_LOG_LENGTH,
    level=default_settings.LOG_LEVEL,
)
logger = get_logger(__name__)

# Public paths (no bearer token required)
PUBLIC_EXACT = {
    "/health",
    "/auth/login",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/favicon.ico",
}


def _is_public(path: str) -> bool:
    return path in PUBLIC_EXACT or path.startswith("/docs/")


def create_app(settings: Optional[Settings] = None,
               remote_transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    settings = settings or default_settings
    error_aggregator.log_threshold = settings.ERROR_AGGREGATION_THRESHOLD

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup", env=settings.APP_ENV, remote=settings.remote_enabled)

        store = create_local_store(settings)
        try:
            await store.init()
        except StorageError as e:
            # Reads and writes will surface the same failure per request
            log_error(e, {"component": "startup", "operation": "store_init"}, ErrorSeverity.CRITICAL)

        remote = RemoteClient.from_settings(settings, transport=remote_transport)
        outbox = None
        if remote is not None:
            outbox = Outbox(
                store,
                remote,
                base_delay=settings.OUTBOX_BASE_DELAY,
                max_delay=settings.OUTBOX_MAX_DELAY,
                max_attempts=settings.OUTBOX_MAX_ATTEMPTS,
                idle_seconds=settings.OUTBOX_IDLE_SECONDS,
            )
            try:
                await outbox.load()
            except StorageError as e:
                log_error(e, {"component": "startup", "operation": "outbox_load"}, ErrorSeverity.HIGH)
        else:
            logger.info("No remote configured, running local-only")

        repository = AppointmentRepository(
            store,
            remote,
            outbox,
            write_timeout=settings.REMOTE_WRITE_TIMEOUT,
            seed_demo=settings.SEED_DEMO_DATA,
        )
        center = NotificationCenter(store, remote, capacity=settings.NOTIFICATION_CAPACITY)
        scheduler = ReminderScheduler(
            repository,
            center,
            ReminderEvaluator(tz=repository.tz),
            max_sleep=settings.REMINDER_MAX_SLEEP_SECONDS,
        )

        async def announce_booking(event: str, appointment: Optional[Appointment]) -> None:
            if event == "created" and appointment is not None:
                await center.ingest([booking_notification(appointment, utcnow())])

        repository.subscribe(announce_booking)
        repository.subscribe(scheduler.on_appointment_change)

        await center.load()
        await repository.load()

        app.state.settings = settings
        app.state.store = store
        app.state.remote = remote
        app.state.outbox = outbox
        app.state.repository = repository
        app.state.notifications = center
        app.state.reminders = scheduler

        tasks: set[asyncio.Task] = set()
        if settings.BACKGROUND_TASKS_ENABLED:
            spawn(scheduler.run(), "reminder-scheduler", tasks)
            if outbox is not None:
                spawn(outbox.run(), "outbox-worker", tasks)
            if remote is not None:
                spawn(center.poll(settings.NOTIFICATION_POLL_SECONDS), "notification-poller", tasks)
            logger.info("Background tasks started", count=len(tasks))

        try:
            yield
        finally:
            logger.info("Application shutdown - cleaning up resources")
            for task in list(tasks):
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if remote is not None:
                await remote.close()
            await store.close()

    app = FastAPI(
        title="Salon Meraki",
        description="Appointment booking and reminders for Salon Meraki",
        lifespan=lifespan,
    )
    app.state.api_key = settings.API_KEY or secrets.token_urlsafe(32)
    if not settings.API_KEY:
        logger.warning("API_KEY not set, generated a per-process token; admins get it through /auth/login")

    # -------- Health (public) --------
    @app.get("/health")
    async def health(request: Request):
        body = {
            "status": "ok",
            "timestamp": utcnow().isoformat(),
            "service": "Salon Meraki API",
            "remote": "disabled",
            "errors": error_aggregator.get_error_summary(),
        }
        outbox = getattr(request.app.state, "outbox", None)
        if outbox is not None:
            body["outboxPending"] = len(outbox.pending)
        remote = getattr(request.app.state, "remote", None)
        if remote is not None:
            try:
                await remote.health()
                body["remote"] = "ok"
            except RemoteError as e:
                log_error(e, {"endpoint": "/health"}, ErrorSeverity.LOW)
                body["remote"] = "unreachable"
        return body

    # -------- Global security gate (single place) --------
    @app.middleware("http")
    async def require_bearer(request: Request, call_next):
        path = request.url.path
        if request.method == "OPTIONS" or _is_public(path):
            return await call_next(request)

        provided = bearer_token(request.headers.get("Authorization"))
        if not token_matches(provided, request.app.state.api_key):
            log_error(PermissionError("Bearer token validation failed"),
                      {"endpoint": path, "has_token": bool(provided)},
                      ErrorSeverity.MEDIUM)
            return JSONResponse({"success": False, "error": "Invalid or missing bearer token"}, status_code=401)
        return await call_next(request)

    # Added after the gate so it wraps it and 401s get a correlation id too
    app.middleware("http")(LoggingMiddleware(
        log_requests=settings.LOG_REQUESTS,
        log_responses=settings.LOG_RESPONSES,
        slow_threshold=settings.SLOW_REQUEST_THRESHOLD,
    ))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------- Include routers --------
    app.include_router(appointments_router)
    app.include_router(catalog_router)
    app.include_router(notifications_router)
    app.include_router(auth_router)

    return app


app = create_app()
