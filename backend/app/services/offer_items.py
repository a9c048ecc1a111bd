from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app import models
from app.config import settings
from app.core.errors import OfferItemNotEditableError, OfferItemNotFoundError
from app.services.offer_queries import get_offer
from app.services.offer_transitions import EDITABLE_STATUSES

logger = logging.getLogger("procurement.offer_items")

_EDITABLE_FIELDS = (
    "item_type_id",
    "merchant_id",
    "quantity",
    "unit_price",
    "currency",
    "estimated_delivery_days",
    "delivery_notes",
    "comment",
)


def _editable_offer(db: Session, offer_id: int) -> models.Offer:
    offer = get_offer(db=db, offer_id=offer_id)
    if offer.status not in EDITABLE_STATUSES:
        raise OfferItemNotEditableError(offer_id=offer.id, current_status=offer.status.value)
    return offer


def _find_item(offer: models.Offer, offer_item_id: int) -> models.OfferItem:
    for item in offer.offer_items:
        if item.id == int(offer_item_id):
            return item
    raise OfferItemNotFoundError(offer_id=offer.id, offer_item_id=offer_item_id)


def _check_references(db: Session, values: dict[str, Any]) -> None:
    if "item_type_id" in values and db.get(models.ItemType, int(values["item_type_id"])) is None:
        raise ValueError("item_type_not_found")
    if "merchant_id" in values and db.get(models.Merchant, int(values["merchant_id"])) is None:
        raise ValueError("merchant_not_found")


def add_offer_item(
    *,
    db: Session,
    offer_id: int,
    item_type_id: int,
    merchant_id: int,
    quantity: float,
    unit_price: float,
    actor: str | None,
    currency: str | None = None,
    estimated_delivery_days: int | None = None,
    delivery_notes: str | None = None,
    comment: str | None = None,
) -> models.OfferItem:
    offer = _editable_offer(db, offer_id)
    _check_references(db, {"item_type_id": item_type_id, "merchant_id": merchant_id})

    try:
        item = models.OfferItem(
            item_type_id=int(item_type_id),
            merchant_id=int(merchant_id),
            quantity=quantity,
            unit_price=unit_price,
            currency=(currency or settings.default_currency).upper(),
            estimated_delivery_days=estimated_delivery_days,
            delivery_notes=delivery_notes,
            comment=comment,
            created_by=actor,
        )
        offer.offer_items.append(item)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(item)
    logger.info(
        "offer_item_added",
        extra={"offer_id": offer.id, "offer_item_id": item.id, "actor": actor},
    )
    return item


def update_offer_item(
    *,
    db: Session,
    offer_id: int,
    offer_item_id: int,
    changes: dict[str, Any],
    actor: str | None,
) -> models.OfferItem:
    """Partial update; only keys present in `changes` are touched."""

    offer = _editable_offer(db, offer_id)
    item = _find_item(offer, offer_item_id)
    values = {k: v for k, v in changes.items() if k in _EDITABLE_FIELDS}
    _check_references(db, values)

    try:
        for key, value in values.items():
            if key == "currency" and value:
                value = str(value).upper()
            setattr(item, key, value)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(item)
    logger.info(
        "offer_item_updated",
        extra={"offer_id": offer.id, "offer_item_id": item.id, "fields": sorted(values), "actor": actor},
    )
    return item


def delete_offer_item(*, db: Session, offer_id: int, offer_item_id: int, actor: str | None) -> None:
    offer = _editable_offer(db, offer_id)
    item = _find_item(offer, offer_item_id)
    try:
        offer.offer_items.remove(item)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "offer_item_deleted",
        extra={"offer_id": offer.id, "offer_item_id": int(offer_item_id), "actor": actor},
    )
