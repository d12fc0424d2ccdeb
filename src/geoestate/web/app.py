"""FastAPI application for the GeoEstate overlap engine.

Provides REST endpoints for overlap scans, resolution, parcel screening and
health checks.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from geoestate import __version__
from geoestate.core.config import Settings
from geoestate.core.types import HealthStatus
from geoestate.db.engine import DatabaseManager
from geoestate.geometry.kernel import GeometryKernel
from geoestate.governance.audit import AuditLogger
from geoestate.notifications.engine import NotificationEngine
from geoestate.notifications.service import MockNotificationService, NotificationService
from geoestate.notifications.store import NotificationStore
from geoestate.overlap.screening import ParcelScreening
from geoestate.overlap.service import OverlapService
from geoestate.parcels.store import ParcelStore
from geoestate.repositories.protocols import AuditRepository, ParcelRepository
from geoestate.repositories.sql.audit import SqlAuditRepository
from geoestate.repositories.sql.parcels import SqlParcelRepository
from geoestate.web.auth import ActorMiddleware
from geoestate.web.overlap_router import router as overlap_router
from geoestate.web.parcel_router import router as parcel_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    parcel_store: ParcelRepository | None = None,
    audit_logger: AuditRepository | None = None,
    notification_service: NotificationService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Uses the factory pattern so tests can create isolated app instances
    with their own stores.

    Args:
        settings: Application settings. Defaults to Settings().
        parcel_store: Optional pre-built parcel store. When omitted, a SQL
            repository is used if ``settings.db.database_url`` is set and an
            in-memory store otherwise.
        audit_logger: Optional pre-built audit log, chosen the same way.
        notification_service: Optional delivery service. Defaults to the
            mock service backed by an in-memory store.

    Returns:
        A configured FastAPI instance.
    """
    if settings is None:
        settings = Settings()

    logging.getLogger("geoestate").setLevel(settings.log_level.upper())

    db: DatabaseManager | None = None
    if settings.db.database_url and (parcel_store is None or audit_logger is None):
        db = DatabaseManager.from_config(settings.db)
        logger.info("Using SQL stores")
    if parcel_store is None:
        parcel_store = SqlParcelRepository(db) if db else ParcelStore()
    if audit_logger is None:
        audit_logger = SqlAuditRepository(db, settings.audit) if db else AuditLogger(config=settings.audit)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if db is not None:
            await db.close()

    app = FastAPI(
        title="GeoEstate Overlap Engine",
        description="Detects, classifies and resolves overlapping land parcels",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ActorMiddleware)

    kernel = GeometryKernel.from_config(settings.overlap)

    notification_store = NotificationStore()
    if notification_service is None:
        notification_service = MockNotificationService(store=notification_store)
    notification_engine = NotificationEngine(
        service=notification_service,
        templates_path=settings.notification.templates_path,
    )

    overlap_service = OverlapService(
        store=parcel_store,
        audit=audit_logger,
        kernel=kernel,
        config=settings.overlap,
    )
    screening = ParcelScreening(
        store=parcel_store,
        audit=audit_logger,
        kernel=kernel,
        classifier=overlap_service.classifier,
        config=settings.overlap,
        validation_config=settings.validation,
        notifications=notification_engine,
        admin_ids=settings.notification.admin_ids,
        fraud_config=settings.fraud,
    )

    # Store on app state for access in route handlers
    app.state.settings = settings
    app.state.db = db
    app.state.parcel_store = parcel_store
    app.state.audit_logger = audit_logger
    app.state.geometry_kernel = kernel
    app.state.notification_store = notification_store
    app.state.notification_service = notification_service
    app.state.notification_engine = notification_engine
    app.state.overlap_service = overlap_service
    app.state.parcel_screening = screening

    app.include_router(overlap_router)
    app.include_router(parcel_router)

    @app.get("/api/health", response_model=HealthStatus)
    async def health_check() -> HealthStatus:
        """Health check endpoint."""
        last_scan = overlap_service.last_scan
        return HealthStatus(
            service="geoestate-overlap-engine",
            healthy=True,
            details={
                "version": __version__,
                "store": "sql" if db is not None else "memory",
                "open_overlaps": len(overlap_service.records),
                "last_scan_at": last_scan.completed_at.isoformat()
                if last_scan and last_scan.completed_at
                else None,
            },
        )

    return app
