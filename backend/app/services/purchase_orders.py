from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from app import models
from app.config import settings
from app.core.clock import utc_now
from app.models.domain import PurchaseOrderStatus
from app.services.document_numbering import next_monthly_number

logger = logging.getLogger("procurement.purchase_orders")


def group_items_by_merchant(
    items: Iterable[models.OfferItem],
) -> "OrderedDict[int, list[models.OfferItem]]":
    groups: "OrderedDict[int, list[models.OfferItem]]" = OrderedDict()
    for item in items:
        groups.setdefault(int(item.merchant_id), []).append(item)
    return groups


def create_purchase_order(
    *,
    db: Session,
    offer: models.Offer,
    items: list[models.OfferItem],
    actor: str | None,
) -> models.PurchaseOrder:
    """Create one PENDING purchase order for `items`. Flushes, never commits."""

    if not items:
        raise ValueError("purchase_order_requires_items")

    now = utc_now()
    number = next_monthly_number(db, doc_type="PO", prefix="PO", now=now)

    delivery_days = [int(i.estimated_delivery_days) for i in items if i.estimated_delivery_days]
    days = max(delivery_days) if delivery_days else int(settings.default_delivery_days)

    merchants = group_items_by_merchant(items)
    po = models.PurchaseOrder(
        po_number=number.formatted,
        offer_id=offer.id,
        request_order_id=offer.request_order_id,
        status=PurchaseOrderStatus.PENDING,
        currency=items[0].currency or settings.default_currency,
        total_amount=float(sum(float(i.total_price or 0.0) for i in items)),
        payment_terms=settings.default_payment_terms,
        expected_delivery_date=(now + timedelta(days=days)).date(),
        notes=f"Created from offer #{offer.id} ({len(merchants)} merchant(s))",
        created_by=actor,
    )
    for item in items:
        po.items.append(
            models.PurchaseOrderItem(
                offer_item_id=item.id,
                item_type_id=item.item_type_id,
                merchant_id=item.merchant_id,
                quantity=float(item.quantity),
                unit_price=float(item.unit_price),
                total_price=float(item.total_price or 0.0),
                currency=item.currency,
                estimated_delivery_days=item.estimated_delivery_days,
                comment=item.comment,
            )
        )
    db.add(po)
    db.flush()

    logger.info(
        "purchase_order_created",
        extra={"purchase_order_id": po.id, "po_number": po.po_number, "offer_id": offer.id},
    )
    return po


def get_purchase_order(*, db: Session, purchase_order_id: int) -> models.PurchaseOrder:
    po = db.get(models.PurchaseOrder, int(purchase_order_id))
    if po is None:
        raise ValueError("purchase_order_not_found")
    return po


def list_purchase_orders(*, db: Session, offer_id: Optional[int] = None) -> list[models.PurchaseOrder]:
    q = db.query(models.PurchaseOrder)
    if offer_id is not None:
        q = q.filter(models.PurchaseOrder.offer_id == int(offer_id))
    return q.order_by(models.PurchaseOrder.id.desc()).all()
