"""Offer lifecycle transitions.

Every status change goes through `_apply_transition`, which checks the
transition table, then writes with a conditional UPDATE so a concurrent
change makes the losing call fail with InvalidStateTransition. Each public
operation is one transaction: the status write, item changes and timeline
event commit together or not at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy.orm import Session

from app import models
from app.core import offer_events
from app.core.clock import utc_now
from app.core.errors import (
    FinanceReviewIncompleteError,
    IncompleteOfferError,
    InvalidStateTransition,
    MissingRejectionReasonError,
    RetryAlreadyInProgressError,
)
from app.models.domain import (
    OfferFinanceStatus,
    OfferItemFinanceStatus,
    OfferStatus,
    RequestOrderStatus,
)
from app.services.audit import audit_event
from app.services.fulfillment import (
    FulfillmentClassification,
    finance_status_for,
    offered_coverage,
)
from app.services.offer_actions import (
    OfferAction,
    available_actions,
    classify_offer,
    has_finance_outcome,
)
from app.services.offer_queries import get_offer
from app.services.offer_request_items import effective_request_items_for
from app.services.offer_transitions import (
    DELETABLE_STATUSES,
    OFFER_ALLOWED_TRANSITIONS,
    atomic_transition_offer_status,
)
from app.services.retry_locks import is_retry_in_flight
from app.services.timeline_emitters import record_offer_event

logger = logging.getLogger("procurement.offers")

_FINANCE_EVENT_FOR_STATUS = {
    OfferFinanceStatus.FINANCE_ACCEPTED: offer_events.FINANCE_ACCEPTED,
    OfferFinanceStatus.FINANCE_PARTIALLY_ACCEPTED: offer_events.FINANCE_PARTIALLY_ACCEPTED,
    OfferFinanceStatus.FINANCE_REJECTED: offer_events.FINANCE_REJECTED,
}


@dataclass(frozen=True)
class FinanceDecision:
    offer_item_id: int
    status: OfferItemFinanceStatus
    rejection_reason: str | None = None


@dataclass(frozen=True)
class FinanceDecisionResult:
    offer: models.Offer
    classification: FulfillmentClassification


def _apply_transition(
    *,
    db: Session,
    offer: models.Offer,
    action: str,
    updates: dict[str, Any] | None = None,
    finance_status_in: Iterable[OfferFinanceStatus | None] | None = None,
) -> OfferStatus:
    allowed_from, to_status = OFFER_ALLOWED_TRANSITIONS[action]
    if offer.status not in allowed_from:
        raise InvalidStateTransition(
            offer_id=offer.id, action=action, current_status=offer.status.value
        )

    result = atomic_transition_offer_status(
        db=db,
        offer_id=offer.id,
        to_status=to_status,
        allowed_from=allowed_from,
        updates=updates,
        finance_status_in=finance_status_in,
    )
    if not result.updated:
        raise InvalidStateTransition(
            offer_id=offer.id,
            action=action,
            current_status=offer.status.value,
            reason="offer changed concurrently",
        )
    return to_status


def _audit(db: Session, action: str, offer_id: int, actor: str | None, **payload: Any) -> None:
    audit_event(action, actor, {"offer_id": offer_id, **payload}, db=db, offer_id=offer_id)


def create_offer(
    *,
    db: Session,
    request_order_id: int,
    actor: str | None,
    title: str | None = None,
    description: str | None = None,
) -> models.Offer:
    """First offer of a new lineage for an approved request order (status UNSTARTED)."""

    request_order = db.get(models.RequestOrder, int(request_order_id))
    if request_order is None:
        raise ValueError("request_order_not_found")
    if request_order.status != RequestOrderStatus.approved:
        raise ValueError("request_order_not_approved")

    try:
        lineage = models.OfferLineage(request_order_id=request_order.id, last_attempt_number=1)
        db.add(lineage)
        db.flush()

        offer = models.Offer(
            title=title or f"Offer for {request_order.title}",
            description=description,
            status=OfferStatus.UNSTARTED,
            request_order_id=request_order.id,
            lineage_id=lineage.id,
            retry_count=0,
            current_attempt_number=1,
            created_by=actor,
        )
        db.add(offer)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(offer)
    logger.info(
        "offer_created",
        extra={"offer_id": offer.id, "request_order_id": request_order.id, "actor": actor},
    )
    _audit(db, "offer.created", offer.id, actor, request_order_id=request_order.id)
    return offer


def start(*, db: Session, offer_id: int, actor: str | None) -> models.Offer:
    offer = get_offer(db=db, offer_id=offer_id)
    try:
        _apply_transition(db=db, offer=offer, action="start")
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(offer)
    logger.info(
        "offer_transition",
        extra={"offer_id": offer.id, "to_status": offer.status.value, "actor": actor},
    )
    _audit(db, "offer.started", offer.id, actor)
    return offer


def submit(
    *,
    db: Session,
    offer_id: int,
    actor: str | None,
    correlation_id: str | None = None,
) -> models.Offer:
    """INPROGRESS -> SUBMITTED once every effective request item is covered."""

    offer = get_offer(db=db, offer_id=offer_id)
    allowed_from, _ = OFFER_ALLOWED_TRANSITIONS["submit"]
    if offer.status not in allowed_from:
        raise InvalidStateTransition(
            offer_id=offer.id, action="submit", current_status=offer.status.value
        )

    coverage = offered_coverage(effective_request_items_for(offer), offer.offer_items)
    missing = [
        {
            "request_item_id": c.request_item_id,
            "item_type_id": c.item_type_id,
            "requested": c.requested,
            "offered": c.accepted,
        }
        for c in coverage
        if not c.fulfilled
    ]
    if missing:
        raise IncompleteOfferError(offer_id=offer.id, missing=missing)

    now = utc_now()
    try:
        previous = offer.status
        new_status = _apply_transition(
            db=db,
            offer=offer,
            action="submit",
            updates={"submitted_at": now, "submitted_by": actor},
        )
        record_offer_event(
            db=db,
            offer=offer,
            event_type=offer_events.OFFER_SUBMITTED,
            action_by=actor,
            previous_status=previous,
            new_status=new_status,
            occurred_at=now,
            correlation_id=correlation_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(offer)
    logger.info(
        "offer_transition",
        extra={"offer_id": offer.id, "to_status": offer.status.value, "actor": actor},
    )
    _audit(db, "offer.submitted", offer.id, actor)
    return offer


def manager_decide(
    *,
    db: Session,
    offer_id: int,
    accept: bool,
    actor: str | None,
    reason: str | None = None,
    correlation_id: str | None = None,
) -> models.Offer:
    offer = get_offer(db=db, offer_id=offer_id)
    action = "manager_accept" if accept else "manager_reject"
    allowed_from, _ = OFFER_ALLOWED_TRANSITIONS[action]
    if offer.status not in allowed_from:
        raise InvalidStateTransition(
            offer_id=offer.id, action=action, current_status=offer.status.value
        )

    note = (reason or "").strip() or None
    if not accept and not note:
        raise MissingRejectionReasonError(offer_id=offer.id, stage="manager")

    now = utc_now()
    updates: dict[str, Any] = {"manager_decided_at": now, "manager_decided_by": actor}
    if accept:
        updates["finance_status"] = OfferFinanceStatus.PENDING_FINANCE_REVIEW
    else:
        updates["rejection_reason"] = note

    try:
        previous = offer.status
        new_status = _apply_transition(db=db, offer=offer, action=action, updates=updates)
        record_offer_event(
            db=db,
            offer=offer,
            event_type=offer_events.MANAGER_ACCEPTED if accept else offer_events.MANAGER_REJECTED,
            action_by=actor,
            notes=note,
            previous_status=previous,
            new_status=new_status,
            occurred_at=now,
            correlation_id=correlation_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(offer)
    logger.info(
        "offer_transition",
        extra={"offer_id": offer.id, "to_status": offer.status.value, "actor": actor},
    )
    _audit(db, f"offer.{action}", offer.id, actor, reason=note)
    return offer


def finance_decide(
    *,
    db: Session,
    offer_id: int,
    decisions: list[FinanceDecision],
    actor: str | None,
    reason: str | None = None,
    correlation_id: str | None = None,
) -> FinanceDecisionResult:
    """Apply per-item finance decisions and derive the offer's finance outcome.

    Decisions must cover every item of the offer exactly. The offer stays
    MANAGERACCEPTED; the outcome lives in `finance_status`.
    """

    offer = get_offer(db=db, offer_id=offer_id)
    allowed_from, _ = OFFER_ALLOWED_TRANSITIONS["finance_decide"]
    if offer.status not in allowed_from:
        raise InvalidStateTransition(
            offer_id=offer.id, action="finance_decide", current_status=offer.status.value
        )
    if has_finance_outcome(offer):
        raise InvalidStateTransition(
            offer_id=offer.id,
            action="finance_decide",
            current_status=offer.status.value,
            reason=f"finance outcome already recorded ({offer.finance_status.value})",
        )

    items_by_id = {oi.id: oi for oi in offer.offer_items}
    decided_ids = [int(d.offer_item_id) for d in decisions]
    missing = sorted(set(items_by_id) - set(decided_ids))
    unknown = sorted(set(decided_ids) - set(items_by_id))
    if missing or unknown or len(decided_ids) != len(set(decided_ids)):
        raise FinanceReviewIncompleteError(
            offer_id=offer.id,
            missing_offer_item_ids=missing,
            unknown_offer_item_ids=unknown,
        )

    note = (reason or "").strip() or None
    now = utc_now()
    try:
        for decision in decisions:
            item = items_by_id[int(decision.offer_item_id)]
            item.finance_status = decision.status
            if decision.status == OfferItemFinanceStatus.REJECTED:
                item.rejection_reason = (decision.rejection_reason or "").strip() or None
            else:
                item.rejection_reason = None

        classification = classify_offer(offer)
        outcome = finance_status_for(classification)
        if outcome == OfferFinanceStatus.FINANCE_REJECTED and not note:
            raise MissingRejectionReasonError(offer_id=offer.id, stage="finance")

        updates: dict[str, Any] = {
            "finance_status": outcome,
            "finance_decided_at": now,
            "finance_decided_by": actor,
        }
        if outcome == OfferFinanceStatus.FINANCE_REJECTED:
            updates["rejection_reason"] = note

        _apply_transition(
            db=db,
            offer=offer,
            action="finance_decide",
            updates=updates,
            finance_status_in=[OfferFinanceStatus.PENDING_FINANCE_REVIEW, None],
        )

        accepted = sum(
            1 for d in decisions if d.status == OfferItemFinanceStatus.ACCEPTED
        )
        record_offer_event(
            db=db,
            offer=offer,
            event_type=_FINANCE_EVENT_FOR_STATUS[outcome],
            action_by=actor,
            notes=note or f"{accepted} of {len(decisions)} items accepted",
            previous_status=offer.status,
            new_status=offer.status,
            payload={
                "finance_status": outcome.value,
                "accepted_offer_item_ids": [
                    d.offer_item_id
                    for d in decisions
                    if d.status == OfferItemFinanceStatus.ACCEPTED
                ],
            },
            occurred_at=now,
            correlation_id=correlation_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(offer)
    logger.info(
        "offer_finance_decided",
        extra={
            "offer_id": offer.id,
            "finance_status": outcome.value,
            "fully_fulfilled": classification.fully_fulfilled,
            "actor": actor,
        },
    )
    _audit(db, "offer.finance_decided", offer.id, actor, finance_status=outcome.value)
    return FinanceDecisionResult(offer=offer, classification=classification)


def send_to_finalizing(
    *,
    db: Session,
    offer_id: int,
    actor: str | None,
    correlation_id: str | None = None,
) -> models.Offer:
    """Fully fulfilled finance outcome -> FINALIZING. Rejected items are dropped."""

    offer = get_offer(db=db, offer_id=offer_id)
    allowed_from, _ = OFFER_ALLOWED_TRANSITIONS["send_to_finalizing"]
    if offer.status not in allowed_from or not has_finance_outcome(offer):
        raise InvalidStateTransition(
            offer_id=offer.id,
            action="send_to_finalizing",
            current_status=offer.status.value,
            reason="a finance outcome is required",
        )

    classification = classify_offer(offer)
    if OfferAction.FINALIZE not in available_actions(offer, classification):
        raise InvalidStateTransition(
            offer_id=offer.id,
            action="send_to_finalizing",
            current_status=offer.status.value,
            reason=f"fulfillment is {classification.outcome}",
        )

    if is_retry_in_flight(db=db, offer=offer):
        raise RetryAlreadyInProgressError(offer_id=offer.id)

    try:
        for offer_item in list(offer.offer_items):
            if offer_item.finance_status != OfferItemFinanceStatus.ACCEPTED:
                offer.offer_items.remove(offer_item)

        previous = offer.status
        new_status = _apply_transition(db=db, offer=offer, action="send_to_finalizing")
        record_offer_event(
            db=db,
            offer=offer,
            event_type=offer_events.OFFER_FINALIZING,
            action_by=actor,
            previous_status=previous,
            new_status=new_status,
            correlation_id=correlation_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(offer)
    logger.info(
        "offer_transition",
        extra={"offer_id": offer.id, "to_status": offer.status.value, "actor": actor},
    )
    _audit(db, "offer.sent_to_finalizing", offer.id, actor)
    return offer


def delete_offer(*, db: Session, offer_id: int, actor: str | None) -> None:
    """Remove the offer with its items, forks and modification history.

    Timeline events stay: the log is append-only and outlives offers.
    """

    offer = get_offer(db=db, offer_id=offer_id)
    if offer.status not in DELETABLE_STATUSES:
        raise InvalidStateTransition(
            offer_id=offer.id, action="delete", current_status=offer.status.value
        )
    if is_retry_in_flight(db=db, offer=offer):
        raise RetryAlreadyInProgressError(offer_id=offer.id)

    status = offer.status.value
    try:
        db.delete(offer)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("offer_deleted", extra={"offer_id": offer_id, "status": status, "actor": actor})
    _audit(db, "offer.deleted", offer_id, actor, status=status)
