from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app import models
from app.core.clock import utc_now
from app.core.offer_events import display_description_for, display_title_for

logger = logging.getLogger("procurement.timeline")


def correlation_id_from_request_id(request_id: str | None) -> str:
    """Reuse X-Request-ID as correlation id when it is a UUID, else mint one."""

    if request_id:
        try:
            return str(uuid.UUID(str(request_id)))
        except ValueError:
            pass
    return str(uuid.uuid4())


def default_idempotency_key(*, lineage_id: int, attempt_number: int | None, event_type: str) -> str:
    # Each (lineage, attempt) pair belongs to exactly one offer, even across deletions.
    return f"lineage:{int(lineage_id)}:attempt:{int(attempt_number or 1)}:{event_type}"


@dataclass(frozen=True)
class EmitResult:
    event: models.OfferTimelineEvent
    created: bool


def _status_value(status: Any) -> str | None:
    if status is None:
        return None
    return str(getattr(status, "value", status))


def record_offer_event(
    *,
    db: Session,
    offer: models.Offer,
    event_type: str,
    action_by: str | None,
    notes: str | None = None,
    previous_status: Any = None,
    new_status: Any = None,
    payload: dict[str, Any] | None = None,
    correlation_id: str | None = None,
    idempotency_key: str | None = None,
    occurred_at: datetime | None = None,
) -> EmitResult:
    """Append an OfferTimelineEvent inside the caller's transaction.

    - Does not commit; the event lands or disappears together with the state
      change that produced it.
    - (event_type, idempotency_key) is unique; a repeated emission returns the
      existing row instead of inserting a duplicate.
    """

    attempt_number = int(offer.current_attempt_number or 1)
    key = idempotency_key or default_idempotency_key(
        lineage_id=offer.lineage_id, attempt_number=attempt_number, event_type=event_type
    )

    existing = (
        db.query(models.OfferTimelineEvent)
        .filter(models.OfferTimelineEvent.event_type == event_type)
        .filter(models.OfferTimelineEvent.idempotency_key == key)
        .order_by(models.OfferTimelineEvent.id.desc())
        .first()
    )
    if existing is not None:
        return EmitResult(event=existing, created=False)

    ev = models.OfferTimelineEvent(
        event_type=event_type,
        event_time=occurred_at or utc_now(),
        offer_id=int(offer.id),
        lineage_id=int(offer.lineage_id),
        request_order_id=offer.request_order_id,
        attempt_number=attempt_number,
        previous_status=_status_value(previous_status),
        new_status=_status_value(new_status),
        action_by=action_by,
        notes=notes,
        display_title=display_title_for(event_type, attempt_number),
        display_description=display_description_for(event_type),
        correlation_id=correlation_id or str(uuid.uuid4()),
        idempotency_key=key,
        payload=payload or None,
    )
    db.add(ev)
    db.flush()

    logger.info(
        "offer_event_recorded",
        extra={
            "offer_id": offer.id,
            "event_type": event_type,
            "attempt_number": attempt_number,
            "action_by": action_by,
        },
    )
    return EmitResult(event=ev, created=True)


def list_lineage_events(
    *,
    db: Session,
    lineage_id: int,
    attempt_number: int | None = None,
) -> list[models.OfferTimelineEvent]:
    """Events of one lineage in log order (event_time, then insertion order)."""

    q = db.query(models.OfferTimelineEvent).filter(
        models.OfferTimelineEvent.lineage_id == int(lineage_id)
    )
    if attempt_number is not None:
        q = q.filter(models.OfferTimelineEvent.attempt_number == int(attempt_number))
    return q.order_by(
        models.OfferTimelineEvent.event_time.asc(), models.OfferTimelineEvent.id.asc()
    ).all()
