"""Effective request items of an offer and their copy-on-write forks.

An offer starts out reading the request order's lines. The first edit copies
those lines into ``offer_request_items`` (one fork per item type) and sets
``Offer.request_items_forked``; from then on the forks are the only source, even
when every fork has been deleted, and the request order is never consulted again.
Every fork change appends a RequestItemModification row.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app import models
from app.core.clock import utc_now
from app.core.errors import (
    DuplicateRequestItemError,
    OfferItemNotEditableError,
    RequestItemNotFoundError,
)
from app.models.domain import ModificationAction
from app.services.offer_queries import get_offer
from app.services.offer_transitions import EDITABLE_STATUSES

logger = logging.getLogger("procurement.request_items")

SOURCE_REQUEST_ORDER = "request_order"
SOURCE_OFFER = "offer"


@dataclass(frozen=True)
class EffectiveRequestItem:
    id: int
    offer_id: int
    item_type_id: int
    item_type_name: str | None
    measuring_unit: str | None
    quantity: float
    comment: str | None
    original_request_order_item_id: int | None
    source: str


def _from_fork(fork: models.OfferRequestItem) -> EffectiveRequestItem:
    item_type = fork.item_type
    return EffectiveRequestItem(
        id=fork.id,
        offer_id=fork.offer_id,
        item_type_id=fork.item_type_id,
        item_type_name=getattr(item_type, "name", None),
        measuring_unit=getattr(item_type, "measuring_unit", None),
        quantity=float(fork.quantity),
        comment=fork.comment,
        original_request_order_item_id=fork.original_request_order_item_id,
        source=SOURCE_OFFER,
    )


def _from_request_order_item(offer_id: int, item: models.RequestOrderItem) -> EffectiveRequestItem:
    item_type = item.item_type
    return EffectiveRequestItem(
        id=item.id,
        offer_id=int(offer_id),
        item_type_id=item.item_type_id,
        item_type_name=getattr(item_type, "name", None),
        measuring_unit=getattr(item_type, "measuring_unit", None),
        quantity=float(item.quantity),
        comment=item.comment,
        original_request_order_item_id=item.id,
        source=SOURCE_REQUEST_ORDER,
    )


def effective_request_items_for(offer: models.Offer) -> list[EffectiveRequestItem]:
    if offer.request_items_forked:
        return [_from_fork(f) for f in offer.request_item_forks]
    return [_from_request_order_item(offer.id, i) for i in offer.request_order.items]


def get_effective_request_items(*, db: Session, offer_id: int) -> list[EffectiveRequestItem]:
    """Read-through query: the forks once the offer has forked, else the request order lines."""

    return effective_request_items_for(get_offer(db=db, offer_id=offer_id))


def get_modification_history(*, db: Session, offer_id: int) -> list[models.RequestItemModification]:
    get_offer(db=db, offer_id=offer_id)
    return (
        db.query(models.RequestItemModification)
        .filter(models.RequestItemModification.offer_id == int(offer_id))
        .order_by(
            models.RequestItemModification.timestamp.desc(),
            models.RequestItemModification.id.desc(),
        )
        .all()
    )


def _record_modification(
    *,
    db: Session,
    offer: models.Offer,
    action: ModificationAction,
    actor: str | None,
    notes: str,
    item_type: models.ItemType | None = None,
    old_quantity: float | None = None,
    new_quantity: float | None = None,
    old_comment: str | None = None,
    new_comment: str | None = None,
) -> models.RequestItemModification:
    mod = models.RequestItemModification(
        offer_id=offer.id,
        action=action,
        item_type_id=getattr(item_type, "id", None),
        item_type_name=getattr(item_type, "name", None),
        old_quantity=old_quantity,
        new_quantity=new_quantity,
        old_comment=old_comment,
        new_comment=new_comment,
        action_by=actor,
        timestamp=utc_now(),
        notes=notes,
    )
    db.add(mod)
    return mod


def _ensure_editable(offer: models.Offer) -> None:
    if offer.status not in EDITABLE_STATUSES:
        raise OfferItemNotEditableError(offer_id=offer.id, current_status=offer.status.value)


def fork_request_items(
    *,
    db: Session,
    offer: models.Offer,
    quantities: dict[int, float],
    actor: str | None,
    notes: str,
    comments: dict[int, str | None] | None = None,
    originals: dict[int, int | None] | None = None,
) -> list[models.OfferRequestItem]:
    """Create forks for `offer` from explicit per-item-type quantities.

    Used for offers that are born with their own request lines (retries of a
    forked offer, split and finalization remainders). Flushes, never commits.
    """

    now = utc_now()
    offer.request_items_forked = True
    forks: list[models.OfferRequestItem] = []
    for item_type_id, quantity in quantities.items():
        if quantity is None or float(quantity) <= 0:
            continue
        fork = models.OfferRequestItem(
            offer_id=offer.id,
            item_type_id=int(item_type_id),
            quantity=float(quantity),
            comment=(comments or {}).get(item_type_id),
            original_request_order_item_id=(originals or {}).get(item_type_id),
            created_by=actor,
            last_modified_at=now,
            last_modified_by=actor,
        )
        db.add(fork)
        forks.append(fork)

    db.flush()
    _record_modification(db=db, offer=offer, action=ModificationAction.ADD, actor=actor, notes=notes)
    db.flush()
    db.expire(offer, ["request_item_forks", "modifications"])
    return forks


def _initialize(db: Session, offer: models.Offer, actor: str | None) -> list[models.OfferRequestItem]:
    if offer.request_items_forked:
        return list(offer.request_item_forks)

    # Merge request order lines sharing an item type; forks are unique per type.
    merged: "OrderedDict[int, dict]" = OrderedDict()
    for item in offer.request_order.items:
        entry = merged.setdefault(
            item.item_type_id,
            {"quantity": 0.0, "comment": item.comment, "original": item.id},
        )
        entry["quantity"] += float(item.quantity)

    return fork_request_items(
        db=db,
        offer=offer,
        quantities={k: v["quantity"] for k, v in merged.items()},
        comments={k: v["comment"] for k, v in merged.items()},
        originals={k: v["original"] for k, v in merged.items()},
        actor=actor,
        notes="Initialized modified items from original request order",
    )


def initialize_modified_items(
    *, db: Session, offer_id: int, actor: str | None
) -> list[models.OfferRequestItem]:
    """Copy the request order lines into forks once. Later calls return the forks."""

    offer = get_offer(db=db, offer_id=offer_id)
    _ensure_editable(offer)
    try:
        forks = _initialize(db, offer, actor)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return forks


def _resolve_fork(
    db: Session, offer: models.Offer, request_item_id: int, actor: str | None
) -> models.OfferRequestItem:
    """Find the fork for `request_item_id`, forking first when the id is an original line.

    Before the first fork the ids are request order line ids. Lines sharing an
    item type merge into one fork, so any of them resolves to that fork.
    """

    if offer.request_items_forked:
        for fork in offer.request_item_forks:
            if fork.id == int(request_item_id):
                return fork
        raise RequestItemNotFoundError(offer_id=offer.id, request_item_id=request_item_id)

    line = next((i for i in offer.request_order.items if i.id == int(request_item_id)), None)
    if line is not None:
        for fork in _initialize(db, offer, actor):
            if fork.item_type_id == line.item_type_id:
                return fork
    raise RequestItemNotFoundError(offer_id=offer.id, request_item_id=request_item_id)


def add_request_item(
    *,
    db: Session,
    offer_id: int,
    item_type_id: int,
    quantity: float,
    comment: str | None,
    actor: str | None,
) -> models.OfferRequestItem:
    offer = get_offer(db=db, offer_id=offer_id)
    _ensure_editable(offer)
    try:
        forks = _initialize(db, offer, actor)
        if any(f.item_type_id == int(item_type_id) for f in forks):
            raise DuplicateRequestItemError(offer_id=offer.id, item_type_id=item_type_id)

        item_type = db.get(models.ItemType, int(item_type_id))
        if item_type is None:
            raise ValueError("item_type_not_found")

        fork = models.OfferRequestItem(
            offer_id=offer.id,
            item_type_id=item_type.id,
            quantity=quantity,
            comment=comment,
            created_by=actor,
            last_modified_at=utc_now(),
            last_modified_by=actor,
        )
        db.add(fork)
        _record_modification(
            db=db,
            offer=offer,
            action=ModificationAction.ADD,
            actor=actor,
            item_type=item_type,
            new_quantity=float(quantity),
            new_comment=comment,
            notes=f"Added new item: {item_type.name}",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(fork)
    logger.info(
        "request_item_added",
        extra={"offer_id": offer.id, "item_type_id": item_type_id, "actor": actor},
    )
    return fork


def update_request_item(
    *,
    db: Session,
    offer_id: int,
    request_item_id: int,
    quantity: float,
    comment: str | None,
    actor: str | None,
) -> models.OfferRequestItem:
    offer = get_offer(db=db, offer_id=offer_id)
    _ensure_editable(offer)
    try:
        fork = _resolve_fork(db, offer, request_item_id, actor)
        old_quantity = float(fork.quantity)
        old_comment = fork.comment

        fork.quantity = quantity
        fork.comment = comment
        fork.last_modified_at = utc_now()
        fork.last_modified_by = actor

        _record_modification(
            db=db,
            offer=offer,
            action=ModificationAction.EDIT,
            actor=actor,
            item_type=fork.item_type,
            old_quantity=old_quantity,
            new_quantity=float(quantity),
            old_comment=old_comment,
            new_comment=comment,
            notes=f"Updated item: {fork.item_type.name}",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(fork)
    return fork


def delete_request_item(
    *,
    db: Session,
    offer_id: int,
    request_item_id: int,
    actor: str | None,
) -> None:
    """Remove a fork together with the offer items quoting its item type."""

    offer = get_offer(db=db, offer_id=offer_id)
    _ensure_editable(offer)
    try:
        fork = _resolve_fork(db, offer, request_item_id, actor)
        item_type = fork.item_type
        quantity = float(fork.quantity)

        for offer_item in list(offer.offer_items):
            if offer_item.item_type_id == fork.item_type_id:
                offer.offer_items.remove(offer_item)
        offer.request_item_forks.remove(fork)

        _record_modification(
            db=db,
            offer=offer,
            action=ModificationAction.DELETE,
            actor=actor,
            item_type=item_type,
            old_quantity=quantity,
            old_comment=fork.comment,
            notes=f"Deleted item: {item_type.name} (quantity: {quantity})",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
