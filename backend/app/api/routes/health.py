from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models
from app.config import settings
from app.core.observability import uptime_seconds, utc_now_iso
from app.database import get_db

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Liveness")
def healthcheck():
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "version": settings.build_version,
        "time": utc_now_iso(),
        "uptime_seconds": round(uptime_seconds(), 2),
    }


@router.get("/ready", summary="Readiness: workflow tables reachable")
def readiness(db: Session = Depends(get_db)):  # noqa: B008
    """Query the offers table so a missing migration shows up as not ready."""
    try:
        db.execute(select(models.Offer.id).limit(1))
    except SQLAlchemyError as exc:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "database": "error", "error": type(exc).__name__},
        )
    return {
        "status": "ok",
        "database": "ok",
        "payment_requests": "configured" if settings.payment_requests_url else "disabled",
        "time": utc_now_iso(),
    }
