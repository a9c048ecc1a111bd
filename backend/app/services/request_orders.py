from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from app import models
from app.core.clock import utc_now
from app.models.domain import RequestOrderStatus
from app.services.audit import audit_event

logger = logging.getLogger("procurement.request_orders")


def get_request_order(*, db: Session, request_order_id: int) -> models.RequestOrder:
    request_order = db.get(models.RequestOrder, int(request_order_id))
    if request_order is None:
        raise ValueError("request_order_not_found")
    return request_order


def create_request_order(
    *,
    db: Session,
    title: str,
    items: Iterable[tuple[int, float, Optional[str]]],
    actor: str | None,
    description: str | None = None,
    deadline: date | None = None,
) -> models.RequestOrder:
    """Draft request order; `items` are (item_type_id, quantity, comment) triples."""

    request_order = models.RequestOrder(
        title=title,
        description=description,
        deadline=deadline,
        status=RequestOrderStatus.draft,
        created_by=actor,
    )
    for item_type_id, quantity, comment in items:
        if db.get(models.ItemType, int(item_type_id)) is None:
            raise ValueError("item_type_not_found")
        request_order.items.append(
            models.RequestOrderItem(
                item_type_id=int(item_type_id), quantity=float(quantity), comment=comment
            )
        )

    try:
        db.add(request_order)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(request_order)
    logger.info("request_order_created", extra={"request_order_id": request_order.id, "actor": actor})
    return request_order


def approve_request_order(*, db: Session, request_order_id: int, actor: str | None) -> models.RequestOrder:
    request_order = get_request_order(db=db, request_order_id=request_order_id)
    if request_order.status == RequestOrderStatus.approved:
        return request_order
    if request_order.status != RequestOrderStatus.draft:
        raise ValueError("request_order_not_draft")

    try:
        request_order.status = RequestOrderStatus.approved
        request_order.approved_at = utc_now()
        request_order.approved_by = actor
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(request_order)
    logger.info("request_order_approved", extra={"request_order_id": request_order.id, "actor": actor})
    audit_event(
        "request_order.approved",
        actor,
        {"request_order_id": request_order.id},
        db=db,
        request_order_id=request_order.id,
    )
    return request_order
