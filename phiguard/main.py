from contextlib import asynccontextmanager
from datetime import timedelta
from functools import partial
from typing import Optional

from fastapi import FastAPI

from .core.codec import field_codec
from .core.database import create_db_and_tables, create_db_engine
from .core.error_handlers import register_exception_handlers
from .core.logging import configure_logging, get_logger
from .core.settings import Settings, settings as default_settings
from .auth.rate_limit import RateLimitMiddleware
from .maintenance.tasks import MaintenanceScheduler, evict_rate_limit_buckets, purge_expired_refresh_tokens
from .services import build_services

from .auth.router import router as auth_router
from .users.router import router as users_router
from .patients.router import router as patients_router
from .clinical_records.router import router as clinical_records_router
from .audit.router import router as audit_router

logger = get_logger(__name__)


def _scheduler_for(services) -> MaintenanceScheduler:
    scheduler = MaintenanceScheduler()
    scheduler.add_job(
        "purge_refresh_tokens",
        timedelta(hours=services.settings.TOKEN_PURGE_INTERVAL_HOURS),
        partial(purge_expired_refresh_tokens, services.session_factory, services.refresh_tokens),
    )
    scheduler.add_job(
        "evict_rate_limit_buckets",
        timedelta(minutes=services.settings.RATE_LIMIT_EVICTION_INTERVAL_MINUTES),
        partial(evict_rate_limit_buckets, services.rate_limiter),
    )
    return scheduler


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON or settings.is_production)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = create_db_engine(settings.DATABASE_URL)
        # Raises ConfigurationFailure on missing or malformed secrets
        services = build_services(settings, engine)
        field_codec.bind(services.cipher)
        create_db_and_tables(engine)

        app.state.services = services
        app.state.engine = engine
        app.state.audit_writer = services.audit_writer
        app.state.rate_limiter = services.rate_limiter

        scheduler = _scheduler_for(services)
        scheduler.start()
        logger.info("application_started", project=settings.PROJECT_NAME, environment=settings.ENVIRONMENT)
        try:
            yield
        finally:
            await scheduler.stop()
            services.rate_limiter.evict_all()
            field_codec.unbind()
            engine.dispose()
            logger.info("application_stopped")

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    app.add_middleware(RateLimitMiddleware, path_prefixes=settings.RATE_LIMIT_PATH_PREFIXES)
    register_exception_handlers(app)

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(patients_router)
    app.include_router(clinical_records_router)
    app.include_router(audit_router)

    @app.get("/")
    def read_root():
        return {"message": f"Welcome to {settings.PROJECT_NAME}"}

    return app


app = create_app()
