import threading
from datetime import timedelta

import pytest

from app import models
from app.core import offer_events
from app.core.clock import utc_now
from app.core.errors import InvalidStateTransition, RetryAlreadyInProgressError
from app.database import SessionLocal
from app.models.domain import OfferStatus, RetryLockStatus
from app.services import offer_items, offer_request_items, offer_retry, offer_state_machine
from app.services.offer_retry import remaining_title, retry_title
from app.services.retry_locks import (
    find_retry_lock_by_offer_id,
    get_retry_lock,
    is_retry_in_flight,
)
from app.services.timeline_emitters import list_lineage_events


def _reject(db, offer_id):
    return offer_state_machine.manager_decide(
        db=db, offer_id=offer_id, accept=False, reason="Find cheaper merchants", actor="boss"
    )


def _resubmit(db, offer_id):
    # A retry carries no offer items; quote every requested type again.
    offer = db.get(models.Offer, offer_id)
    for fork_or_line in offer_request_items.effective_request_items_for(offer):
        merchant = db.query(models.Merchant).first()
        offer_items.add_offer_item(
            db=db,
            offer_id=offer_id,
            item_type_id=fork_or_line.item_type_id,
            merchant_id=merchant.id,
            quantity=fork_or_line.quantity,
            unit_price=1.0,
            actor="buyer",
        )
    offer_state_machine.submit(db=db, offer_id=offer_id, actor="buyer")


def test_retry_titles():
    assert retry_title("Offer for X", 1) == "Offer for X (Retry 1)"
    assert retry_title("Offer for X (Retry 1)", 2) == "Offer for X (Retry 2)"
    assert remaining_title("Offer for X (Retry 2)") == "Offer for X (Remaining)"
    assert remaining_title("Offer for X (Remaining)") == "Offer for X (Remaining)"


def test_retry_replaces_rejected_offer(db_session, catalog, approved_offer):
    original_id = approved_offer.id
    lineage_id = approved_offer.lineage_id
    offer_state_machine.start(db=db_session, offer_id=original_id, actor="buyer")
    _resubmit(db_session, original_id)
    _reject(db_session, original_id)

    new_offer = offer_retry.retry_entire_offer(db=db_session, offer_id=original_id, actor="buyer")

    assert new_offer.status == OfferStatus.INPROGRESS
    assert new_offer.lineage_id == lineage_id
    assert new_offer.parent_offer_id == original_id
    assert new_offer.retry_count == 1
    assert new_offer.current_attempt_number == 2
    assert new_offer.title.endswith("(Retry 1)")
    assert new_offer.offer_items == []
    db_session.expire_all()
    assert db_session.get(models.Offer, original_id) is None

    lock = find_retry_lock_by_offer_id(db=db_session, offer_id=original_id)
    assert lock.status == RetryLockStatus.completed
    assert lock.successor_offer_id == new_offer.id

    events = list_lineage_events(db=db_session, lineage_id=lineage_id)
    assert events[-1].event_type == offer_events.OFFER_RETRIED
    assert events[-1].offer_id == original_id


def test_attempt_numbers_keep_increasing(db_session, catalog, approved_offer):
    offer_state_machine.start(db=db_session, offer_id=approved_offer.id, actor="buyer")
    offer_id = approved_offer.id
    attempts = []
    for _ in range(3):
        _resubmit(db_session, offer_id)
        _reject(db_session, offer_id)
        new_offer = offer_retry.retry_entire_offer(db=db_session, offer_id=offer_id, actor="buyer")
        attempts.append(new_offer.current_attempt_number)
        offer_id = new_offer.id

    assert attempts == [2, 3, 4]
    assert new_offer.retry_count == 3
    lineage = db_session.get(models.OfferLineage, new_offer.lineage_id)
    assert lineage.last_attempt_number == 4


def test_retry_carries_request_item_forks(db_session, catalog, approved_offer):
    offer_request_items.update_request_item(
        db=db_session,
        offer_id=approved_offer.id,
        request_item_id=approved_offer.request_order.items[1].id,
        quantity=7.0,
        comment="raised",
        actor="buyer",
    )
    offer_state_machine.start(db=db_session, offer_id=approved_offer.id, actor="buyer")
    _resubmit(db_session, approved_offer.id)
    _reject(db_session, approved_offer.id)

    new_offer = offer_retry.retry_entire_offer(
        db=db_session, offer_id=approved_offer.id, actor="buyer"
    )

    quantities = {
        i.item_type_id: i.quantity
        for i in offer_request_items.effective_request_items_for(new_offer)
    }
    assert quantities == {catalog["steel"].id: 10.0, catalog["cable"].id: 7.0}


def test_retry_requires_a_rejection(db_session, approved_offer):
    with pytest.raises(InvalidStateTransition):
        offer_retry.retry_entire_offer(db=db_session, offer_id=approved_offer.id, actor="buyer")

    assert get_retry_lock(db=db_session, offer=approved_offer) is None


def test_retry_is_mutually_exclusive(db_session, catalog, approved_offer):
    offer_state_machine.start(db=db_session, offer_id=approved_offer.id, actor="buyer")
    _resubmit(db_session, approved_offer.id)
    _reject(db_session, approved_offer.id)

    # Another worker holds a fresh lock on this offer.
    db_session.add(
        models.OfferRetryLock(
            offer_id=approved_offer.id,
            lineage_id=approved_offer.lineage_id,
            attempt_number=approved_offer.current_attempt_number,
            status=RetryLockStatus.in_progress,
            acquired_at=utc_now(),
            acquired_by="someone-else",
        )
    )
    db_session.commit()
    assert is_retry_in_flight(db=db_session, offer=approved_offer)

    with pytest.raises(RetryAlreadyInProgressError):
        offer_retry.retry_entire_offer(db=db_session, offer_id=approved_offer.id, actor="buyer")

    db_session.expire_all()
    assert db_session.get(models.Offer, approved_offer.id).status == OfferStatus.MANAGERREJECTED
    assert db_session.query(models.Offer).count() == 1

    with pytest.raises(RetryAlreadyInProgressError):
        offer_state_machine.delete_offer(db=db_session, offer_id=approved_offer.id, actor="buyer")


def test_stale_retry_lock_is_taken_over(db_session, catalog, approved_offer):
    offer_state_machine.start(db=db_session, offer_id=approved_offer.id, actor="buyer")
    _resubmit(db_session, approved_offer.id)
    _reject(db_session, approved_offer.id)

    db_session.add(
        models.OfferRetryLock(
            offer_id=approved_offer.id,
            lineage_id=approved_offer.lineage_id,
            attempt_number=approved_offer.current_attempt_number,
            status=RetryLockStatus.in_progress,
            acquired_at=utc_now() - timedelta(hours=1),
            acquired_by="crashed-worker",
        )
    )
    db_session.commit()

    new_offer = offer_retry.retry_entire_offer(
        db=db_session, offer_id=approved_offer.id, actor="buyer"
    )

    assert new_offer.current_attempt_number == 2


def test_repeated_retry_of_the_same_offer_fails(db_session, catalog, approved_offer):
    offer_state_machine.start(db=db_session, offer_id=approved_offer.id, actor="buyer")
    _resubmit(db_session, approved_offer.id)
    _reject(db_session, approved_offer.id)
    offer_retry.retry_entire_offer(db=db_session, offer_id=approved_offer.id, actor="buyer")

    with pytest.raises(RetryAlreadyInProgressError):
        offer_retry.retry_entire_offer(db=db_session, offer_id=approved_offer.id, actor="buyer")

    assert db_session.query(models.Offer).count() == 1


def test_retry_after_finance_rejection(db_session, catalog, accepted_offer, finance_review):
    finance_review(
        accepted_offer,
        reject_item_type_ids={catalog["steel"].id, catalog["cable"].id},
        reason="Over budget",
    )

    new_offer = offer_retry.retry_entire_offer(
        db=db_session, offer_id=accepted_offer.id, actor="buyer"
    )

    assert new_offer.finance_status is None
    assert new_offer.current_attempt_number == 2


def test_offer_created_after_deletions_gets_its_own_lock_and_events(
    db_session, catalog, approved_offer
):
    request_order_id = approved_offer.request_order_id
    first_id = approved_offer.id
    offer_state_machine.start(db=db_session, offer_id=first_id, actor="buyer")
    _resubmit(db_session, first_id)
    _reject(db_session, first_id)
    retried = offer_retry.retry_entire_offer(db=db_session, offer_id=first_id, actor="buyer")
    retried_id = retried.id
    offer_state_machine.delete_offer(db=db_session, offer_id=retried_id, actor="buyer")

    fresh = offer_state_machine.create_offer(
        db=db_session, request_order_id=request_order_id, actor="buyer"
    )
    fresh_id, fresh_lineage_id = fresh.id, fresh.lineage_id
    assert fresh_id not in (first_id, retried_id)

    offer_state_machine.start(db=db_session, offer_id=fresh_id, actor="buyer")
    _resubmit(db_session, fresh_id)
    _reject(db_session, fresh_id)

    event_types = [
        e.event_type for e in list_lineage_events(db=db_session, lineage_id=fresh_lineage_id)
    ]
    assert offer_events.OFFER_SUBMITTED in event_types
    assert offer_events.MANAGER_REJECTED in event_types

    new_offer = offer_retry.retry_entire_offer(db=db_session, offer_id=fresh_id, actor="buyer")

    assert new_offer.lineage_id == fresh_lineage_id
    assert new_offer.current_attempt_number == 2
    lock = find_retry_lock_by_offer_id(db=db_session, offer_id=fresh_id)
    assert lock.successor_offer_id == new_offer.id


def test_concurrent_retries_create_a_single_offer(db_session, catalog, approved_offer):
    offer_id = approved_offer.id
    offer_state_machine.start(db=db_session, offer_id=offer_id, actor="buyer")
    _resubmit(db_session, offer_id)
    _reject(db_session, offer_id)
    db_session.close()

    barrier = threading.Barrier(2)
    created, refused, unexpected = [], [], []

    def worker(name):
        db = SessionLocal()
        try:
            barrier.wait(timeout=10)
            new_offer = offer_retry.retry_entire_offer(db=db, offer_id=offer_id, actor=name)
            created.append(new_offer.id)
        except RetryAlreadyInProgressError:
            refused.append(name)
        except Exception as exc:  # surfaced by the assertions below
            unexpected.append(exc)
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(f"buyer-{n}",)) for n in (1, 2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert unexpected == []
    assert len(created) == 1
    assert len(refused) == 1
    offers = db_session.query(models.Offer).all()
    assert [o.id for o in offers] == created
    assert offers[0].current_attempt_number == 2
