from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from app import models
from app.core.clock import utc_now


@dataclass(frozen=True)
class MonthlyNumber:
    doc_type: str
    year_month: str  # YYYYMM
    seq: int
    formatted: str


def next_monthly_number(
    db: Session,
    *,
    doc_type: str,
    prefix: str,
    now: datetime | None = None,
) -> MonthlyNumber:
    """Reserve the next number of the month, e.g. ``PO_007-03.26``.

    Only flushes: the number is consumed by the caller's transaction and handed
    back if that transaction rolls back. On Postgres the counter row is locked
    so concurrent finalizations queue on it.
    """

    now = now or utc_now()
    year_month = now.strftime("%Y%m")

    stmt = select(models.DocumentMonthlySequence).where(
        models.DocumentMonthlySequence.doc_type == doc_type,
        models.DocumentMonthlySequence.year_month == year_month,
    )
    if db.get_bind().dialect.name != "sqlite":
        stmt = stmt.with_for_update()

    counter = db.execute(stmt).scalar_one_or_none()
    if counter is None:
        counter = models.DocumentMonthlySequence(doc_type=doc_type, year_month=year_month, last_seq=0)
        db.add(counter)

    counter.last_seq = (counter.last_seq or 0) + 1
    db.flush()

    return MonthlyNumber(
        doc_type=doc_type,
        year_month=year_month,
        seq=counter.last_seq,
        formatted=f"{prefix}_{counter.last_seq:03d}-{now:%m.%y}",
    )
