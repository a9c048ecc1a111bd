from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app import models
from app.models.domain import OfferFinanceStatus, OfferStatus

# action -> (allowed source statuses, target status)
OFFER_ALLOWED_TRANSITIONS: dict[str, tuple[frozenset[OfferStatus], OfferStatus]] = {
    "start": (frozenset({OfferStatus.UNSTARTED}), OfferStatus.INPROGRESS),
    "submit": (frozenset({OfferStatus.INPROGRESS}), OfferStatus.SUBMITTED),
    "manager_accept": (frozenset({OfferStatus.SUBMITTED}), OfferStatus.MANAGERACCEPTED),
    "manager_reject": (frozenset({OfferStatus.SUBMITTED}), OfferStatus.MANAGERREJECTED),
    "finance_decide": (frozenset({OfferStatus.MANAGERACCEPTED}), OfferStatus.MANAGERACCEPTED),
    "send_to_finalizing": (frozenset({OfferStatus.MANAGERACCEPTED}), OfferStatus.FINALIZING),
    "continue_and_return": (frozenset({OfferStatus.MANAGERACCEPTED}), OfferStatus.FINALIZING),
    "finalize": (frozenset({OfferStatus.FINALIZING}), OfferStatus.COMPLETED),
}

# Statuses an offer may be deleted from.
DELETABLE_STATUSES: frozenset[OfferStatus] = frozenset(
    set(OfferStatus) - {OfferStatus.COMPLETED, OfferStatus.FINALIZED}
)

TERMINAL_STATUSES: frozenset[OfferStatus] = frozenset(
    {OfferStatus.FINALIZED, OfferStatus.COMPLETED}
)

# Offer items and request-item forks are editable only before submission.
EDITABLE_STATUSES: frozenset[OfferStatus] = frozenset(
    {OfferStatus.UNSTARTED, OfferStatus.INPROGRESS}
)


@dataclass(frozen=True)
class TransitionResult:
    updated: bool
    rowcount: int


def atomic_transition_offer_status(
    *,
    db: Session,
    offer_id: int,
    to_status: OfferStatus,
    allowed_from: Iterable[OfferStatus],
    updates: dict[str, Any] | None = None,
    finance_status_in: Iterable[OfferFinanceStatus | None] | None = None,
) -> TransitionResult:
    """Apply an offer status transition with an atomic DB guard.

    Issues a single conditional UPDATE:

        UPDATE offers
        SET status = :to_status, ...
        WHERE id = :offer_id AND status IN (:allowed_from)

    A concurrent writer that already moved the offer makes this a no-op
    (``updated=False``). Callers control commit/rollback and must refresh
    any loaded instance afterwards.

    `finance_status_in` additionally pins the finance sub-state (None matches
    NULL), e.g. so two finance reviews cannot both apply.
    """

    update_values: dict[str, Any] = {"status": to_status}
    if updates:
        update_values.update(updates)

    q = (
        db.query(models.Offer)
        .filter(models.Offer.id == int(offer_id))
        .filter(models.Offer.status.in_(set(allowed_from)))
    )
    if finance_status_in is not None:
        wanted = set(finance_status_in)
        clauses = []
        if None in wanted:
            wanted.discard(None)
            clauses.append(models.Offer.finance_status.is_(None))
        if wanted:
            clauses.append(models.Offer.finance_status.in_(wanted))
        q = q.filter(or_(*clauses))

    rowcount = q.update(update_values, synchronize_session=False)

    return TransitionResult(updated=rowcount > 0, rowcount=int(rowcount or 0))
