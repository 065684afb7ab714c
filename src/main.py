"""Tumaini FastAPI application entry point.

Creates the FastAPI app, configures middleware, includes routers, and
manages the lifecycle of the case-routing services (store, provider
directory, routing, assignments, notifications, reminders, appointment
status, outbox and remote gateway).
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from config.settings import Settings, settings
from src.api.router import api_router
from src.services.clock import Clock, SystemClock
from src.services.errors import (
    ConcurrencyConflictError,
    InvalidInputError,
    NotFoundError,
    RemoteApiError,
    StoreUnavailableError,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging(cfg: Settings) -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if cfg.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[cfg.log_level.upper()],
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


def _build_lifespan(cfg: Settings, clock: Clock):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage startup and shutdown of all Tumaini services.

        On startup:
          1. Create the state store (Redis when configured, else memory)
          2. Create the provider directory and seed reference providers
          3. Create routing, assignment, notification and reminder services
          4. Create the outbox and, when configured, the remote gateway
          5. Create the orchestrator
          6. Start the reminder engine
          7. Store everything on ``app.state``

        On shutdown:
          - Stop the reminder engine (waits for an in-flight tick).
          - Close the remote gateway and the Redis connection pool.
        """
        _configure_logging(cfg)
        logger.info("app.startup", env=cfg.env, timezone=cfg.timezone)

        app.state.start_time = time.time()
        app.state.settings = cfg
        app.state.clock = clock

        # -- 1. State store -----------------------------------------------------
        from src.services.store import RedisKeyValueStore, create_state_store

        store = create_state_store(cfg.redis_url or None, namespace=cfg.store_namespace)
        app.state.store = store

        # -- 2. Provider directory ----------------------------------------------
        from src.services.provider_directory import ProviderDirectory

        directory = ProviderDirectory(store, clock=clock, timezone=cfg.timezone)
        app.state.directory = directory

        if cfg.seed_reference_providers:
            from src.data.seed import seed_provider_directory

            seeded = await seed_provider_directory(directory)
            logger.info("app.providers_seeded", count=len(seeded))

        # -- 3. Core services ---------------------------------------------------
        from src.services.appointment_status import AppointmentStatusTracker
        from src.services.assignments import AssignmentLifecycle
        from src.services.notifications import NotificationComposer, QueueNotificationSink
        from src.services.reminders import ReminderScheduler
        from src.services.routing import ProviderRoutingService, RoutingEngine, RoutingPolicy

        engine = RoutingEngine(
            RoutingPolicy(max_per_type=cfg.routing_max_per_type),
            timezone=cfg.timezone,
        )
        routing = ProviderRoutingService(directory, engine, clock)
        assignments = AssignmentLifecycle(store, directory, clock)
        composer = NotificationComposer(
            pep_window_hours=cfg.pep_window_hours, timezone=cfg.timezone
        )
        sink = QueueNotificationSink(max_pending=cfg.notification_queue_limit)
        reminders = ReminderScheduler(store, composer, sink, clock, timezone=cfg.timezone)
        status_tracker = AppointmentStatusTracker(store, composer, sink, clock)

        app.state.routing = routing
        app.state.assignments = assignments
        app.state.composer = composer
        app.state.notification_sink = sink
        app.state.reminders = reminders
        app.state.status_tracker = status_tracker
        logger.info("app.core_services_initialised")

        # -- 4. Outbox and remote gateway ---------------------------------------
        from src.services.outbox import SyncOutbox
        from src.services.remote_gateway import RemoteCaseGateway

        outbox = SyncOutbox(
            store,
            clock,
            max_attempts=cfg.outbox_max_attempts,
            base_delay_seconds=cfg.outbox_base_delay_seconds,
            max_delay_seconds=cfg.outbox_max_delay_seconds,
            multiplier=cfg.outbox_backoff_multiplier,
        )
        app.state.outbox = outbox

        gateway: RemoteCaseGateway | None = None
        if cfg.remote_api_base_url:
            gateway = RemoteCaseGateway(
                cfg.remote_api_base_url,
                timeout=cfg.remote_api_timeout_seconds,
                auth_token=cfg.remote_api_token or None,
            )
            logger.info("app.remote_gateway_initialised")
        app.state.gateway = gateway

        # -- 5. Orchestrator ----------------------------------------------------
        from src.pipeline.orchestrator import CaseRoutingOrchestrator

        app.state.orchestrator = CaseRoutingOrchestrator(
            store=store,
            directory=directory,
            routing=routing,
            assignments=assignments,
            composer=composer,
            sink=sink,
            reminders=reminders,
            status_tracker=status_tracker,
            clock=clock,
            outbox=outbox,
        )
        logger.info("app.orchestrator_initialised")

        # -- 6. Reminder engine -------------------------------------------------
        from src.services.reminder_engine import ReminderEngine

        reminder_engine = ReminderEngine(
            reminders, interval_seconds=cfg.reminder_tick_interval_seconds, clock=clock
        )
        app.state.reminder_engine = reminder_engine
        if cfg.enable_reminder_engine:
            reminder_engine.start()

        logger.info("app.startup_complete")

        yield

        # -- Shutdown -----------------------------------------------------------
        logger.info("app.shutdown_start")

        await reminder_engine.stop()
        if gateway is not None:
            await gateway.close()
        if isinstance(store.backend, RedisKeyValueStore):
            await store.backend.close()

        logger.info("app.shutdown_complete")

    return lifespan


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(InvalidInputError)
    async def _invalid_input(request: Request, exc: InvalidInputError) -> ORJSONResponse:
        return ORJSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> ORJSONResponse:
        return ORJSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ConcurrencyConflictError)
    async def _conflict(request: Request, exc: ConcurrencyConflictError) -> ORJSONResponse:
        return ORJSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(StoreUnavailableError)
    async def _store_unavailable(request: Request, exc: StoreUnavailableError) -> ORJSONResponse:
        logger.error("api.store_unavailable", path=request.url.path)
        return ORJSONResponse(
            status_code=503, content={"detail": "Storage temporarily unavailable"}
        )

    @app.exception_handler(RemoteApiError)
    async def _remote_failed(request: Request, exc: RemoteApiError) -> ORJSONResponse:
        return ORJSONResponse(status_code=502, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------


def create_app(app_settings: Settings | None = None, clock: Clock | None = None) -> FastAPI:
    """Build the application; tests pass their own settings and clock."""
    cfg = app_settings or settings

    app = FastAPI(
        title="Tumaini API",
        description=(
            "Tumaini -- GBV case routing core. Routes reported incidents to "
            "healthcare, police, rescue, counseling, legal and social-service "
            "providers, and keeps survivors and providers on track with "
            "appointment reminders."
        ),
        version="0.1.0",
        lifespan=_build_lifespan(cfg, clock or SystemClock()),
        default_response_class=ORJSONResponse,
        docs_url="/docs" if not cfg.is_production else None,
        redoc_url="/redoc" if not cfg.is_production else None,
    )

    # -- CORS middleware --------------------------------------------------------
    if cfg.is_production:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cfg.cors_origin_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PATCH", "PUT"],
            allow_headers=["Content-Type", "Authorization"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:3000", "http://localhost:8000", "http://127.0.0.1:8000"],
            allow_credentials=False,
            allow_methods=["GET", "POST", "PATCH", "PUT", "OPTIONS", "HEAD"],
            allow_headers=["Content-Type", "Accept", "Authorization"],
        )

    _register_exception_handlers(app)

    # -- Prometheus metrics -----------------------------------------------------
    # Scraped inside the cluster; hidden from the public schema in production.
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/metrics", "/api/v1/health"],
    ).instrument(app).expose(
        app,
        endpoint="/metrics",
        include_in_schema=not cfg.is_production,
    )

    app.include_router(api_router)

    @app.get("/api")
    async def api_info() -> dict:
        """API information endpoint."""
        return {
            "name": "Tumaini API",
            "version": app.version,
            "docs": "/docs",
            "health": "/api/v1/health",
            "endpoints": {
                "providers": "/api/v1/providers",
                "incidents": "/api/v1/incidents",
                "assignments": "/api/v1/assignments",
                "appointments": "/api/v1/appointments",
                "reminders": "/api/v1/reminders",
                "outbox": "/api/v1/outbox",
            },
        }

    return app


app = create_app()
