import pytest

from app import models
from app.core import offer_events
from app.core.errors import (
    FinanceReviewIncompleteError,
    IncompleteOfferError,
    InvalidStateTransition,
    MissingRejectionReasonError,
    OfferItemNotEditableError,
)
from app.models.domain import OfferFinanceStatus, OfferItemFinanceStatus, OfferStatus
from app.services import offer_items, offer_state_machine
from app.services.offer_actions import OfferAction, available_actions
from app.services.timeline_emitters import list_lineage_events


def _event_types(db, offer):
    return [e.event_type for e in list_lineage_events(db=db, lineage_id=offer.lineage_id)]


def test_create_offer_requires_approved_request_order(db_session, catalog):
    request_order = models.RequestOrder(title="Draft only")
    db_session.add(request_order)
    db_session.commit()

    with pytest.raises(ValueError, match="request_order_not_approved"):
        offer_state_machine.create_offer(
            db=db_session, request_order_id=request_order.id, actor="buyer"
        )


def test_new_offer_starts_a_lineage(db_session, approved_offer):
    assert approved_offer.status == OfferStatus.UNSTARTED
    assert approved_offer.current_attempt_number == 1
    assert approved_offer.retry_count == 0
    assert approved_offer.title == "Offer for Plant maintenance"
    lineage = db_session.get(models.OfferLineage, approved_offer.lineage_id)
    assert lineage.last_attempt_number == 1


def test_submit_from_unstarted_is_rejected(db_session, approved_offer):
    with pytest.raises(InvalidStateTransition) as exc:
        offer_state_machine.submit(db=db_session, offer_id=approved_offer.id, actor="buyer")

    assert exc.value.details["current_status"] == "UNSTARTED"
    db_session.expire_all()
    assert db_session.get(models.Offer, approved_offer.id).status == OfferStatus.UNSTARTED


def test_submit_requires_full_coverage(db_session, catalog, approved_offer):
    offer_state_machine.start(db=db_session, offer_id=approved_offer.id, actor="buyer")
    offer_items.add_offer_item(
        db=db_session,
        offer_id=approved_offer.id,
        item_type_id=catalog["steel"].id,
        merchant_id=catalog["acme"].id,
        quantity=10.0,
        unit_price=100.0,
        actor="buyer",
    )
    offer_items.add_offer_item(
        db=db_session,
        offer_id=approved_offer.id,
        item_type_id=catalog["cable"].id,
        merchant_id=catalog["nile"].id,
        quantity=3.0,
        unit_price=20.0,
        actor="buyer",
    )

    with pytest.raises(IncompleteOfferError) as exc:
        offer_state_machine.submit(db=db_session, offer_id=approved_offer.id, actor="buyer")

    missing = exc.value.details["missing"]
    assert [(m["item_type_id"], m["requested"], m["offered"]) for m in missing] == [
        (catalog["cable"].id, 5.0, 3.0)
    ]


def test_submit_records_event_and_locks_items(db_session, catalog, accepted_offer):
    assert accepted_offer.status == OfferStatus.MANAGERACCEPTED
    assert accepted_offer.submitted_by == "buyer"
    assert accepted_offer.finance_status == OfferFinanceStatus.PENDING_FINANCE_REVIEW
    assert _event_types(db_session, accepted_offer) == [
        offer_events.OFFER_SUBMITTED,
        offer_events.MANAGER_ACCEPTED,
    ]

    with pytest.raises(OfferItemNotEditableError):
        offer_items.add_offer_item(
            db=db_session,
            offer_id=accepted_offer.id,
            item_type_id=catalog["steel"].id,
            merchant_id=catalog["acme"].id,
            quantity=1.0,
            unit_price=1.0,
            actor="buyer",
        )


def _submitted(db, catalog, offer):
    offer_state_machine.start(db=db, offer_id=offer.id, actor="buyer")
    for key, merchant, qty in (("steel", "acme", 10.0), ("cable", "nile", 5.0)):
        offer_items.add_offer_item(
            db=db,
            offer_id=offer.id,
            item_type_id=catalog[key].id,
            merchant_id=catalog[merchant].id,
            quantity=qty,
            unit_price=10.0,
            actor="buyer",
        )
    return offer_state_machine.submit(db=db, offer_id=offer.id, actor="buyer")


def test_manager_rejection_needs_a_reason(db_session, catalog, approved_offer):
    offer = _submitted(db_session, catalog, approved_offer)

    with pytest.raises(MissingRejectionReasonError):
        offer_state_machine.manager_decide(
            db=db_session, offer_id=offer.id, accept=False, reason="   ", actor="boss"
        )

    rejected = offer_state_machine.manager_decide(
        db=db_session, offer_id=offer.id, accept=False, reason=" Wrong supplier ", actor="boss"
    )

    assert rejected.status == OfferStatus.MANAGERREJECTED
    assert rejected.rejection_reason == "Wrong supplier"
    events = list_lineage_events(db=db_session, lineage_id=offer.lineage_id)
    assert events[-1].event_type == offer_events.MANAGER_REJECTED
    assert events[-1].notes == "Wrong supplier"
    assert available_actions(rejected) == frozenset({OfferAction.RETRY, OfferAction.DELETE})


def test_second_manager_decision_fails(db_session, accepted_offer):
    with pytest.raises(InvalidStateTransition):
        offer_state_machine.manager_decide(
            db=db_session, offer_id=accepted_offer.id, accept=True, actor="boss"
        )


def test_finance_decision_must_cover_every_item(db_session, accepted_offer):
    first = accepted_offer.offer_items[0]

    with pytest.raises(FinanceReviewIncompleteError) as exc:
        offer_state_machine.finance_decide(
            db=db_session,
            offer_id=accepted_offer.id,
            decisions=[
                offer_state_machine.FinanceDecision(
                    offer_item_id=first.id, status=OfferItemFinanceStatus.ACCEPTED
                )
            ],
            actor="cfo",
        )

    assert exc.value.details["missing_offer_item_ids"] == [accepted_offer.offer_items[1].id]


def test_full_finance_acceptance(db_session, accepted_offer, finance_review):
    result = finance_review(accepted_offer)

    assert result.offer.status == OfferStatus.MANAGERACCEPTED
    assert result.offer.finance_status == OfferFinanceStatus.FINANCE_ACCEPTED
    assert result.classification.outcome == "full"
    assert available_actions(result.offer) == frozenset({OfferAction.FINALIZE})
    last = list_lineage_events(db=db_session, lineage_id=accepted_offer.lineage_id)[-1]
    assert last.event_type == offer_events.FINANCE_ACCEPTED
    assert last.notes == "2 of 2 items accepted"


def test_partial_finance_acceptance(db_session, catalog, accepted_offer, finance_review):
    result = finance_review(accepted_offer, reject_item_type_ids={catalog["cable"].id})

    assert result.offer.finance_status == OfferFinanceStatus.FINANCE_PARTIALLY_ACCEPTED
    assert result.classification.remaining_quantities() == {catalog["cable"].id: 5.0}
    assert available_actions(result.offer) == frozenset(
        {OfferAction.CONTINUE_AND_RETURN, OfferAction.RETRY, OfferAction.DELETE}
    )


def test_full_finance_rejection_needs_a_reason(db_session, catalog, accepted_offer, finance_review):
    everything = {catalog["steel"].id, catalog["cable"].id}

    with pytest.raises(MissingRejectionReasonError):
        finance_review(accepted_offer, reject_item_type_ids=everything)

    db_session.expire_all()
    offer = db_session.get(models.Offer, accepted_offer.id)
    assert offer.finance_status == OfferFinanceStatus.PENDING_FINANCE_REVIEW
    assert all(i.finance_status is None for i in offer.offer_items)

    result = finance_review(offer, reject_item_type_ids=everything, reason="Over budget")
    assert result.offer.finance_status == OfferFinanceStatus.FINANCE_REJECTED
    assert result.offer.rejection_reason == "Over budget"


def test_finance_outcome_is_recorded_once(db_session, accepted_offer, finance_review):
    finance_review(accepted_offer)

    with pytest.raises(InvalidStateTransition):
        finance_review(accepted_offer)


def test_send_to_finalizing_only_for_full_outcome(
    db_session, catalog, accepted_offer, finance_review
):
    finance_review(accepted_offer, reject_item_type_ids={catalog["cable"].id})

    with pytest.raises(InvalidStateTransition):
        offer_state_machine.send_to_finalizing(
            db=db_session, offer_id=accepted_offer.id, actor="buyer"
        )


def test_send_to_finalizing(db_session, accepted_offer, finance_review):
    finance_review(accepted_offer)

    offer = offer_state_machine.send_to_finalizing(
        db=db_session, offer_id=accepted_offer.id, actor="buyer"
    )

    assert offer.status == OfferStatus.FINALIZING
    assert len(offer.offer_items) == 2
    assert _event_types(db_session, offer)[-1] == offer_events.OFFER_FINALIZING


def test_delete_offer_keeps_timeline(db_session, catalog, approved_offer):
    offer = _submitted(db_session, catalog, approved_offer)
    lineage_id = offer.lineage_id

    offer_state_machine.delete_offer(db=db_session, offer_id=offer.id, actor="buyer")

    db_session.expire_all()
    assert db_session.get(models.Offer, approved_offer.id) is None
    assert len(list_lineage_events(db=db_session, lineage_id=lineage_id)) == 1


def test_workflow_changes_leave_an_audit_trail(db_session, approved_offer):
    offer_state_machine.start(db=db_session, offer_id=approved_offer.id, actor="buyer")

    rows = db_session.query(models.AuditLog).order_by(models.AuditLog.id).all()
    assert [r.action for r in rows] == [
        "request_order.approved",
        "offer.created",
        "offer.started",
    ]
    assert rows[0].request_order_id == approved_offer.request_order_id
    assert rows[-1].offer_id == approved_offer.id
    assert rows[-1].actor == "buyer"
