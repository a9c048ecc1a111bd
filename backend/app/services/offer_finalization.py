"""Terminal transition of an offer: FINALIZING -> COMPLETED with a purchase order.

Purchase order creation, the optional remainder offer, item finalization and
the status change commit together; a failure in any of them leaves the offer
untouched in FINALIZING. The payment request runs only after that commit and
can at worst degrade the result to ``partial_success``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models
from app.core import offer_events
from app.core.clock import utc_now
from app.core.errors import (
    FinalizationPartialFailureError,
    InvalidFinalizationSelectionError,
    InvalidStateTransition,
    PurchaseOrderContractError,
)
from app.models.domain import OfferItemFinanceStatus, OfferStatus
from app.services.audit import audit_event
from app.services.offer_queries import get_offer
from app.services.offer_retry import create_remainder_offer
from app.services.offer_transitions import (
    OFFER_ALLOWED_TRANSITIONS,
    atomic_transition_offer_status,
)
from app.services.payment_requests import (
    PaymentRequestClient,
    PaymentRequestError,
    default_payment_request_client,
)
from app.services.purchase_orders import create_purchase_order
from app.services.timeline_emitters import record_offer_event

logger = logging.getLogger("procurement.finalization")

OUTCOME_COMPLETED = "completed"
OUTCOME_DECISION_REQUIRED = "decision_required"
OUTCOME_PARTIAL_SUCCESS = "partial_success"

PurchaseOrderWriter = Callable[..., models.PurchaseOrder]


@dataclass(frozen=True)
class FinalizationResult:
    outcome: str
    offer: models.Offer
    purchase_order: Optional[models.PurchaseOrder] = None
    remainder_offer: Optional[models.Offer] = None
    unfinalized_offer_item_ids: list[int] = field(default_factory=list)
    partial_failure: Optional[FinalizationPartialFailureError] = None


def _validate_selection(offer: models.Offer, selected_ids: list[int]) -> list[models.OfferItem]:
    if not selected_ids:
        raise InvalidFinalizationSelectionError(
            offer_id=offer.id, reason="Select at least one offer item to finalize"
        )

    items_by_id = {oi.id: oi for oi in offer.offer_items}
    unknown = sorted(i for i in selected_ids if i not in items_by_id)
    if unknown:
        raise InvalidFinalizationSelectionError(
            offer_id=offer.id,
            reason="Selected items do not belong to this offer",
            offer_item_ids=unknown,
        )

    not_accepted = sorted(
        i for i in selected_ids if items_by_id[i].finance_status != OfferItemFinanceStatus.ACCEPTED
    )
    if not_accepted:
        raise InvalidFinalizationSelectionError(
            offer_id=offer.id,
            reason="Only finance-accepted items can be finalized",
            offer_item_ids=not_accepted,
        )
    return [items_by_id[i] for i in selected_ids]


def _purchase_order_id(offer_id: int, po: object) -> int:
    po_id = getattr(po, "id", None)
    if not isinstance(po_id, int) or isinstance(po_id, bool):
        raise PurchaseOrderContractError(offer_id=offer_id, received=repr(po)[:200])
    return po_id


def _remaining_quantities(items: Iterable[models.OfferItem]) -> dict[int, float]:
    out: dict[int, float] = defaultdict(float)
    for item in items:
        out[int(item.item_type_id)] += float(item.quantity)
    return dict(out)


def finalize_offer(
    *,
    db: Session,
    offer_id: int,
    selected_offer_item_ids: list[int],
    create_offer_for_remaining: Optional[bool],
    actor: str | None,
    po_writer: PurchaseOrderWriter = create_purchase_order,
    payment_requests: Optional[PaymentRequestClient] = None,
    correlation_id: str | None = None,
) -> FinalizationResult:
    offer = get_offer(db=db, offer_id=offer_id)
    allowed_from, to_status = OFFER_ALLOWED_TRANSITIONS["finalize"]
    if offer.status not in allowed_from:
        raise InvalidStateTransition(
            offer_id=offer.id, action="finalize", current_status=offer.status.value
        )

    selected_ids = list(dict.fromkeys(int(i) for i in selected_offer_item_ids or []))
    selected = _validate_selection(offer, selected_ids)
    unfinalized = [oi for oi in offer.offer_items if oi.id not in set(selected_ids)]
    unfinalized_ids = [oi.id for oi in unfinalized]

    if unfinalized and create_offer_for_remaining is None:
        return FinalizationResult(
            outcome=OUTCOME_DECISION_REQUIRED,
            offer=offer,
            unfinalized_offer_item_ids=unfinalized_ids,
        )

    now = utc_now()
    remainder: Optional[models.Offer] = None
    try:
        po = po_writer(db=db, offer=offer, items=selected, actor=actor)
        po_id = _purchase_order_id(offer.id, po)

        if unfinalized and create_offer_for_remaining:
            remainder = create_remainder_offer(
                db=db,
                original=offer,
                quantities=_remaining_quantities(unfinalized),
                actor=actor,
                description=(
                    "New offer for items left out of finalization. "
                    f"Original offer ID: {offer.id}"
                ),
            )

        for item in selected:
            item.finalized = True

        result = atomic_transition_offer_status(
            db=db,
            offer_id=offer.id,
            to_status=to_status,
            allowed_from=allowed_from,
            updates={"finalized_at": now, "finalized_by": actor},
        )
        if not result.updated:
            raise InvalidStateTransition(
                offer_id=offer.id,
                action="finalize",
                current_status=offer.status.value,
                reason="offer changed concurrently",
            )

        record_offer_event(
            db=db,
            offer=offer,
            event_type=offer_events.OFFER_FINALIZED,
            action_by=actor,
            notes=f"{len(selected)} item(s) finalized",
            previous_status=OfferStatus.FINALIZING,
            new_status=to_status,
            payload={
                "finalized_offer_item_ids": selected_ids,
                "unfinalized_offer_item_ids": unfinalized_ids,
                "remainder_offer_id": remainder.id if remainder is not None else None,
            },
            occurred_at=now,
            correlation_id=correlation_id,
        )
        record_offer_event(
            db=db,
            offer=offer,
            event_type=offer_events.OFFER_COMPLETED,
            action_by=actor,
            notes=(
                f"Purchase order {po.po_number} created with total value: "
                f"{po.currency} {float(po.total_amount):.2f}"
            ),
            previous_status=OfferStatus.FINALIZING,
            new_status=to_status,
            payload={"purchase_order_id": po_id, "po_number": po.po_number},
            occurred_at=now,
            correlation_id=correlation_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.warning("offer_finalization_failed", extra={"offer_id": offer_id, "actor": actor})
        raise

    db.refresh(offer)
    db.refresh(po)
    if remainder is not None:
        db.refresh(remainder)

    logger.info(
        "offer_finalized",
        extra={
            "offer_id": offer.id,
            "purchase_order_id": po_id,
            "remainder_offer_id": remainder.id if remainder is not None else None,
            "actor": actor,
        },
    )
    audit_event(
        "offer.finalized",
        actor,
        {"offer_id": offer.id, "purchase_order_id": po_id, "po_number": po.po_number},
        db=db,
        offer_id=offer.id,
    )

    partial = _request_payment(db=db, offer=offer, po=po, actor=actor, client=payment_requests)
    return FinalizationResult(
        outcome=OUTCOME_PARTIAL_SUCCESS if partial is not None else OUTCOME_COMPLETED,
        offer=offer,
        purchase_order=po,
        remainder_offer=remainder,
        unfinalized_offer_item_ids=unfinalized_ids,
        partial_failure=partial,
    )


def _request_payment(
    *,
    db: Session,
    offer: models.Offer,
    po: models.PurchaseOrder,
    actor: str | None,
    client: Optional[PaymentRequestClient],
) -> Optional[FinalizationPartialFailureError]:
    client = client or default_payment_request_client()
    if client is None:
        return None

    try:
        payment = client.create(purchase_order_id=po.id, offer_id=offer.id, requested_by=actor)
    except PaymentRequestError as exc:
        logger.warning(
            "payment_request_failed",
            extra={"offer_id": offer.id, "purchase_order_id": po.id, "error": str(exc)},
        )
        return FinalizationPartialFailureError(
            offer_id=offer.id, purchase_order_id=po.id, step="payment_request", error=str(exc)
        )

    offer_id, po_id = offer.id, po.id
    try:
        po.payment_request_id = payment.id
        po.payment_request_status = payment.status
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "payment_request_not_recorded",
            extra={"offer_id": offer_id, "purchase_order_id": po_id, "payment_request_id": payment.id},
        )
        return FinalizationPartialFailureError(
            offer_id=offer_id,
            purchase_order_id=po_id,
            step="payment_request_record",
            error=str(exc),
        )
    db.refresh(po)
    return None
