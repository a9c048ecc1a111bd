import logging
import os

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from app.config import settings

logger = logging.getLogger("procurement.database")

DATABASE_URL = str(settings.database_url)
DIALECT = DATABASE_URL.split(":", 1)[0].split("+", 1)[0]


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _engine_options() -> tuple[dict, dict]:
    """Build create_engine() kwargs plus a loggable summary of the pool setup."""

    if DIALECT == "sqlite":
        # TestClient and uvicorn's thread pool hand sessions across threads.
        return {"connect_args": {"check_same_thread": False}}, {"pool": "default"}

    if DIALECT != "postgresql":
        return {}, {"pool": "default"}

    options: dict = {
        "pool_pre_ping": True,
        "connect_args": {"connect_timeout": _int_env("DB_CONNECT_TIMEOUT_SECONDS", 10)},
    }
    if os.getenv("DB_USE_NULL_POOL", "").strip().lower() in {"1", "true", "yes", "on"}:
        # pgbouncer in transaction mode owns pooling.
        options["poolclass"] = NullPool
        return options, {"pool": "null"}

    pool = {
        "pool_size": _int_env("DB_POOL_SIZE", 5),
        "max_overflow": _int_env("DB_MAX_OVERFLOW", 10),
        "pool_timeout": _int_env("DB_POOL_TIMEOUT_SECONDS", 30),
        "pool_recycle": _int_env("DB_POOL_RECYCLE_SECONDS", 1800),
    }
    options.update(pool)
    return options, {"pool": "queue", **pool}


_options, POOL_CONFIG = _engine_options()

engine = create_engine(DATABASE_URL, future=True, **_options)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()

STATEMENT_TIMEOUT_MS = _int_env("DB_STATEMENT_TIMEOUT_MS", 5000)


def get_db():
    db = SessionLocal()
    try:
        if DIALECT == "postgresql" and STATEMENT_TIMEOUT_MS > 0:
            try:
                db.execute(text(f"SET statement_timeout = {STATEMENT_TIMEOUT_MS}"))
            except SQLAlchemyError as e:
                logger.warning("statement_timeout_not_applied", extra={"error": str(e)})
        yield db
    finally:
        db.close()
