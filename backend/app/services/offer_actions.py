from __future__ import annotations

from enum import Enum as PyEnum

from app import models
from app.models.domain import OfferFinanceStatus, OfferStatus
from app.services.fulfillment import FulfillmentClassification, classify
from app.services.offer_request_items import effective_request_items_for


class OfferAction(PyEnum):
    START = "START"
    EDIT_ITEMS = "EDIT_ITEMS"
    SUBMIT = "SUBMIT"
    MANAGER_DECIDE = "MANAGER_DECIDE"
    FINANCE_DECIDE = "FINANCE_DECIDE"
    FINALIZE = "FINALIZE"
    CONTINUE_AND_RETURN = "CONTINUE_AND_RETURN"
    RETRY = "RETRY"
    DELETE = "DELETE"
    COMPLETE_FINALIZATION = "COMPLETE_FINALIZATION"


_LIFECYCLE_ACTIONS: dict[OfferStatus, frozenset[OfferAction]] = {
    OfferStatus.UNSTARTED: frozenset({OfferAction.START, OfferAction.EDIT_ITEMS, OfferAction.DELETE}),
    OfferStatus.INPROGRESS: frozenset({OfferAction.SUBMIT, OfferAction.EDIT_ITEMS, OfferAction.DELETE}),
    OfferStatus.SUBMITTED: frozenset({OfferAction.MANAGER_DECIDE, OfferAction.DELETE}),
    OfferStatus.MANAGERREJECTED: frozenset({OfferAction.RETRY, OfferAction.DELETE}),
    OfferStatus.FINALIZING: frozenset({OfferAction.COMPLETE_FINALIZATION, OfferAction.DELETE}),
    OfferStatus.FINALIZED: frozenset(),
    OfferStatus.COMPLETED: frozenset(),
}

_OUTCOME_ACTIONS: dict[str, frozenset[OfferAction]] = {
    "full": frozenset({OfferAction.FINALIZE}),
    "partial": frozenset(
        {OfferAction.CONTINUE_AND_RETURN, OfferAction.RETRY, OfferAction.DELETE}
    ),
    "none": frozenset({OfferAction.RETRY, OfferAction.DELETE}),
}


def classify_offer(offer: models.Offer) -> FulfillmentClassification:
    """Fresh classification of the offer's current rows."""

    return classify(effective_request_items_for(offer), offer.offer_items)


def has_finance_outcome(offer: models.Offer) -> bool:
    return offer.finance_status not in (None, OfferFinanceStatus.PENDING_FINANCE_REVIEW)


def available_actions(
    offer: models.Offer,
    classification: FulfillmentClassification | None = None,
) -> frozenset[OfferAction]:
    """Actions a user may take on the offer right now.

    After a finance outcome the choice is driven by fulfillment: full offers
    can only be finalized, partial ones split/retry/delete, and offers with
    nothing accepted retry/delete.
    """

    if offer.status == OfferStatus.MANAGERACCEPTED:
        if not has_finance_outcome(offer):
            return frozenset({OfferAction.FINANCE_DECIDE, OfferAction.DELETE})
        classification = classification or classify_offer(offer)
        return _OUTCOME_ACTIONS[classification.outcome]

    return _LIFECYCLE_ACTIONS.get(offer.status, frozenset())
