import logging
import os
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.api.router import api_router
from app.config import settings
from app.core.errors import OfferWorkflowError, offer_workflow_error_handler
from app.core.observability import (
    global_exception_handler,
    request_logging_middleware,
    uptime_seconds,
    utc_now_iso,
)
from app.database import POOL_CONFIG, engine

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("procurement")

# Any constant works as long as every instance of this service uses the same one.
MIGRATION_LOCK_KEY = 61_052_026

openapi_url = f"{settings.api_prefix}/openapi.json" if settings.enable_docs else None

app = FastAPI(
    title=settings.app_name,
    version=settings.build_version or "0.1.0",
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    openapi_url=openapi_url,
)
# Read by the request middleware.
app.state.logger = logger

app.add_exception_handler(OfferWorkflowError, offer_workflow_error_handler)
app.add_exception_handler(Exception, global_exception_handler)
app.middleware("http")(request_logging_middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix=settings.api_prefix)


def upgrade_schema() -> None:
    """Apply pending Alembic revisions, one instance at a time on Postgres."""

    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))

    with engine.connect() as connection:
        on_postgres = connection.dialect.name == "postgresql"
        if on_postgres:
            locked = connection.execute(
                text("select pg_try_advisory_lock(:k)"), {"k": MIGRATION_LOCK_KEY}
            ).scalar()
            if not locked:
                logger.info("migrations_skipped_lock_not_acquired")
                return
        try:
            # alembic/env.py reuses this connection when present.
            alembic_cfg.attributes["connection"] = connection
            command.upgrade(alembic_cfg, "head")
            logger.info("migrations_applied")
        finally:
            if on_postgres:
                connection.execute(text("select pg_advisory_unlock(:k)"), {"k": MIGRATION_LOCK_KEY})
                connection.commit()


@app.on_event("startup")
def _startup() -> None:
    logger.info(
        "runtime_config",
        extra={
            "pid": os.getpid(),
            "environment": settings.environment,
            "db_pool": POOL_CONFIG,
            "retry_lock_ttl_seconds": settings.retry_lock_ttl_seconds,
            "default_currency": settings.default_currency,
            "payment_requests_enabled": bool(settings.payment_requests_url),
        },
    )
    if not settings.run_migrations_on_start or settings.environment.lower() == "test":
        return
    try:
        upgrade_schema()
    except Exception:
        # Keep serving; database-backed endpoints will report the failure themselves.
        logger.exception("migrations_failed")


@app.get("/", tags=["meta"])
def root():
    return {"message": settings.app_name, "docs": openapi_url}


@app.get("/healthz", tags=["meta"])
def healthz():
    return {
        "status": "ok",
        "service": settings.app_name,
        "time": utc_now_iso(),
        "uptime_seconds": round(uptime_seconds(), 2),
    }
