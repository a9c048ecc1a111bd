"""Retry and split (continue & return) of offers after a negative or partial outcome.

Both operations build new offers in one transaction together with the change
to the original, so callers never see half a retry or half a split.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app import models
from app.core import offer_events
from app.core.errors import (
    InvalidStateTransition,
    OfferNotFoundError,
    RetryAlreadyInProgressError,
)
from app.models.domain import OfferFinanceStatus, OfferItemFinanceStatus, OfferStatus
from app.services.offer_actions import (
    OfferAction,
    available_actions,
    classify_offer,
    has_finance_outcome,
)
from app.services.offer_request_items import fork_request_items
from app.services.offer_transitions import atomic_transition_offer_status
from app.services.retry_locks import (
    acquire_retry_lock,
    complete_retry_lock,
    find_retry_lock_by_offer_id,
    is_retry_in_flight,
    release_retry_lock,
)
from app.services.timeline_emitters import record_offer_event

logger = logging.getLogger("procurement.offer_retry")

_RETRY_SUFFIX = re.compile(r"\s*\(Retry\s*#?\d*\)\s*$")
_REMAINING_SUFFIX = re.compile(r"\s*\(Remaining\)\s*$")

RETRYABLE_FINANCE_STATUSES = frozenset(
    {OfferFinanceStatus.FINANCE_REJECTED, OfferFinanceStatus.FINANCE_PARTIALLY_ACCEPTED}
)


@dataclass(frozen=True)
class SplitResult:
    accepted_offer: models.Offer
    remainder_offer: models.Offer


def retry_title(title: str, retry_number: int) -> str:
    base = _RETRY_SUFFIX.sub("", title or "").strip()
    return f"{base} (Retry {int(retry_number)})"


def remaining_title(title: str) -> str:
    base = _RETRY_SUFFIX.sub("", title or "")
    base = _REMAINING_SUFFIX.sub("", base).strip()
    return f"{base} (Remaining)"


def is_retryable(offer: models.Offer) -> bool:
    if offer.status == OfferStatus.MANAGERREJECTED:
        return True
    return (
        offer.status == OfferStatus.MANAGERACCEPTED
        and offer.finance_status in RETRYABLE_FINANCE_STATUSES
    )


def _next_attempt_number(db: Session, lineage_id: int) -> int:
    """Bump the lineage counter; the UPDATE row lock serializes concurrent bumps."""

    (
        db.query(models.OfferLineage)
        .filter(models.OfferLineage.id == int(lineage_id))
        .update(
            {"last_attempt_number": models.OfferLineage.last_attempt_number + 1},
            synchronize_session=False,
        )
    )
    return int(
        db.query(models.OfferLineage.last_attempt_number)
        .filter(models.OfferLineage.id == int(lineage_id))
        .scalar()
    )


def create_remainder_offer(
    *,
    db: Session,
    original: models.Offer,
    quantities: dict[int, float],
    actor: str | None,
    description: str,
) -> models.Offer:
    """New INPROGRESS offer for unmet quantities, on a child lineage of `original`.

    Flushes, never commits.
    """

    lineage = models.OfferLineage(
        request_order_id=original.request_order_id,
        parent_lineage_id=original.lineage_id,
        last_attempt_number=int(original.current_attempt_number) + 1,
    )
    db.add(lineage)
    db.flush()

    remainder = models.Offer(
        title=remaining_title(original.title),
        description=description,
        status=OfferStatus.INPROGRESS,
        request_order_id=original.request_order_id,
        lineage_id=lineage.id,
        parent_offer_id=original.id,
        retry_count=int(original.retry_count) + 1,
        current_attempt_number=lineage.last_attempt_number,
        created_by=actor,
    )
    db.add(remainder)
    db.flush()

    fork_request_items(
        db=db,
        offer=remainder,
        quantities=quantities,
        comments={k: "Remaining quantity from original request item" for k in quantities},
        actor=actor,
        notes=f"Remaining quantities carried over from offer #{original.id}",
    )
    return remainder


def retry_entire_offer(
    *,
    db: Session,
    offer_id: int,
    actor: str | None,
    correlation_id: str | None = None,
) -> models.Offer:
    """Replace a rejected offer with a fresh attempt for the full quantities.

    Guarded by the per-offer retry lock: a concurrent or repeated call fails
    with RetryAlreadyInProgressError. The new offer and the deletion of the
    original commit together.
    """

    offer = db.get(models.Offer, int(offer_id))
    if offer is None:
        if find_retry_lock_by_offer_id(db=db, offer_id=offer_id) is not None:
            raise RetryAlreadyInProgressError(offer_id=offer_id)
        raise OfferNotFoundError(offer_id)

    if not is_retryable(offer):
        raise InvalidStateTransition(
            offer_id=offer.id,
            action="retry",
            current_status=offer.status.value,
            reason="only manager-rejected or finance-rejected/partially accepted offers can be retried",
        )

    lineage_id, attempt = int(offer.lineage_id), int(offer.current_attempt_number)
    acquire_retry_lock(db=db, offer=offer, actor=actor)

    try:
        # Reload under the lock; a concurrent transition may have moved it.
        offer = db.get(models.Offer, int(offer_id))
        if offer is None:
            raise OfferNotFoundError(offer_id)
        if not is_retryable(offer):
            raise InvalidStateTransition(
                offer_id=offer.id, action="retry", current_status=offer.status.value
            )

        retry_number = int(offer.retry_count) + 1
        attempt_number = _next_attempt_number(db, offer.lineage_id)

        new_offer = models.Offer(
            title=retry_title(offer.title, retry_number),
            description=offer.description,
            status=OfferStatus.INPROGRESS,
            request_order_id=offer.request_order_id,
            lineage_id=offer.lineage_id,
            parent_offer_id=offer.id,
            retry_count=retry_number,
            current_attempt_number=attempt_number,
            created_by=actor,
        )
        db.add(new_offer)
        db.flush()

        if offer.request_items_forked:
            fork_request_items(
                db=db,
                offer=new_offer,
                quantities={f.item_type_id: float(f.quantity) for f in offer.request_item_forks},
                comments={f.item_type_id: f.comment for f in offer.request_item_forks},
                originals={
                    f.item_type_id: f.original_request_order_item_id
                    for f in offer.request_item_forks
                },
                actor=actor,
                notes=f"Request items carried over from offer #{offer.id}",
            )

        record_offer_event(
            db=db,
            offer=offer,
            event_type=offer_events.OFFER_RETRIED,
            action_by=actor,
            notes=f"Offer retried as attempt #{attempt_number}",
            previous_status=offer.status,
            new_status=OfferStatus.INPROGRESS,
            payload={"new_offer_id": new_offer.id, "new_attempt_number": attempt_number},
            correlation_id=correlation_id,
        )

        complete_retry_lock(
            db=db, lineage_id=lineage_id, attempt_number=attempt, successor_offer_id=new_offer.id
        )
        db.delete(offer)
        db.commit()
    except Exception:
        db.rollback()
        release_retry_lock(db=db, lineage_id=lineage_id, attempt_number=attempt)
        raise

    db.refresh(new_offer)
    logger.info(
        "offer_retried",
        extra={
            "offer_id": offer_id,
            "new_offer_id": new_offer.id,
            "attempt_number": new_offer.current_attempt_number,
            "actor": actor,
        },
    )
    return new_offer


def continue_and_return(
    *,
    db: Session,
    offer_id: int,
    actor: str | None,
    correlation_id: str | None = None,
) -> SplitResult:
    """Keep the accepted items for finalization and spin off the unmet remainder.

    The original offer becomes the accepted branch (rejected items removed,
    status FINALIZING). A new offer on a child lineage carries one fresh
    request item per item type with ``requested - accepted``.
    """

    offer = db.get(models.Offer, int(offer_id))
    if offer is None:
        raise OfferNotFoundError(offer_id)

    if offer.status != OfferStatus.MANAGERACCEPTED or not has_finance_outcome(offer):
        raise InvalidStateTransition(
            offer_id=offer.id,
            action="continue_and_return",
            current_status=offer.status.value,
            reason="a finance outcome is required",
        )

    classification = classify_offer(offer)
    if OfferAction.CONTINUE_AND_RETURN not in available_actions(offer, classification):
        raise InvalidStateTransition(
            offer_id=offer.id,
            action="continue_and_return",
            current_status=offer.status.value,
            reason=f"fulfillment is {classification.outcome}, only partial offers can be split",
        )

    if is_retry_in_flight(db=db, offer=offer):
        raise RetryAlreadyInProgressError(offer_id=offer.id)

    remaining = classification.remaining_quantities()
    try:
        accepted_count = 0
        for offer_item in list(offer.offer_items):
            if offer_item.finance_status == OfferItemFinanceStatus.ACCEPTED:
                accepted_count += 1
            else:
                offer.offer_items.remove(offer_item)

        remainder = create_remainder_offer(
            db=db,
            original=offer,
            quantities=remaining,
            actor=actor,
            description=(
                "New offer for remaining quantities after continue & return. "
                f"Original offer ID: {offer.id}"
            ),
        )

        result = atomic_transition_offer_status(
            db=db,
            offer_id=offer.id,
            to_status=OfferStatus.FINALIZING,
            allowed_from=[OfferStatus.MANAGERACCEPTED],
        )
        if not result.updated:
            raise InvalidStateTransition(
                offer_id=offer.id,
                action="continue_and_return",
                current_status=None,
                reason="offer changed concurrently",
            )

        record_offer_event(
            db=db,
            offer=offer,
            event_type=offer_events.OFFER_SPLIT,
            action_by=actor,
            notes=(
                f"Offer split: {accepted_count} accepted items continued to finalization, "
                f"{len(remaining)} remaining items created in new offer"
            ),
            previous_status=OfferStatus.MANAGERACCEPTED,
            new_status=OfferStatus.FINALIZING,
            payload={"remainder_offer_id": remainder.id, "remaining": remaining},
            correlation_id=correlation_id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(offer)
    db.refresh(remainder)
    logger.info(
        "offer_split",
        extra={
            "offer_id": offer.id,
            "remainder_offer_id": remainder.id,
            "accepted_items": accepted_count,
            "actor": actor,
        },
    )
    return SplitResult(accepted_offer=offer, remainder_offer=remainder)
