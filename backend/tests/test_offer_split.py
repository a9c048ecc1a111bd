import pytest

from app import models
from app.core import offer_events
from app.core.errors import InvalidStateTransition
from app.models.domain import OfferItemFinanceStatus, OfferStatus
from app.services import offer_retry
from app.services.offer_request_items import SOURCE_OFFER, effective_request_items_for
from app.services.timeline_emitters import list_lineage_events


def test_continue_and_return_splits_partial_offer(
    db_session, catalog, accepted_offer, finance_review
):
    finance_review(accepted_offer, reject_item_type_ids={catalog["cable"].id})

    result = offer_retry.continue_and_return(
        db=db_session, offer_id=accepted_offer.id, actor="buyer"
    )

    kept = result.accepted_offer
    assert kept.id == accepted_offer.id
    assert kept.status == OfferStatus.FINALIZING
    assert [i.item_type_id for i in kept.offer_items] == [catalog["steel"].id]
    assert all(i.finance_status == OfferItemFinanceStatus.ACCEPTED for i in kept.offer_items)

    remainder = result.remainder_offer
    assert remainder.status == OfferStatus.INPROGRESS
    assert remainder.title == "Offer for Plant maintenance (Remaining)"
    assert remainder.parent_offer_id == kept.id
    assert remainder.lineage_id != kept.lineage_id
    assert remainder.current_attempt_number == 2
    assert remainder.retry_count == 1
    assert remainder.offer_items == []

    remaining = effective_request_items_for(remainder)
    assert [(r.item_type_id, r.quantity, r.source) for r in remaining] == [
        (catalog["cable"].id, 5.0, SOURCE_OFFER)
    ]
    assert remaining[0].comment == "Remaining quantity from original request item"

    lineage = db_session.get(models.OfferLineage, remainder.lineage_id)
    assert lineage.parent_lineage_id == kept.lineage_id

    events = list_lineage_events(db=db_session, lineage_id=kept.lineage_id)
    assert events[-1].event_type == offer_events.OFFER_SPLIT
    assert events[-1].payload["remainder_offer_id"] == remainder.id


def test_split_needs_a_partial_outcome(db_session, accepted_offer, finance_review):
    finance_review(accepted_offer)

    with pytest.raises(InvalidStateTransition):
        offer_retry.continue_and_return(db=db_session, offer_id=accepted_offer.id, actor="buyer")

    db_session.expire_all()
    assert db_session.query(models.Offer).count() == 1


def test_split_needs_a_finance_outcome(db_session, accepted_offer):
    with pytest.raises(InvalidStateTransition):
        offer_retry.continue_and_return(db=db_session, offer_id=accepted_offer.id, actor="buyer")
