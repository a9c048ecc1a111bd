import pytest

from app import models
from app.core.errors import (
    DuplicateRequestItemError,
    IncompleteOfferError,
    OfferItemNotEditableError,
    RequestItemNotFoundError,
)
from app.models.domain import ModificationAction
from app.services import offer_items, offer_request_items, offer_state_machine, request_orders
from app.services.offer_request_items import SOURCE_OFFER, SOURCE_REQUEST_ORDER


def _quantities(db, offer_id):
    return {
        i.item_type_id: i.quantity
        for i in offer_request_items.get_effective_request_items(db=db, offer_id=offer_id)
    }


def test_unforked_offer_reads_request_order_lines(db_session, catalog, approved_offer):
    items = offer_request_items.get_effective_request_items(db=db_session, offer_id=approved_offer.id)

    assert [i.source for i in items] == [SOURCE_REQUEST_ORDER, SOURCE_REQUEST_ORDER]
    assert items[1].item_type_name == "Copper cable"
    assert items[1].measuring_unit == "m"
    assert items[1].comment == "armoured"
    assert offer_request_items.get_modification_history(db=db_session, offer_id=approved_offer.id) == []


def test_initialize_copies_lines_once(db_session, catalog, approved_offer):
    first = offer_request_items.initialize_modified_items(
        db=db_session, offer_id=approved_offer.id, actor="buyer"
    )
    again = offer_request_items.initialize_modified_items(
        db=db_session, offer_id=approved_offer.id, actor="buyer"
    )

    assert [f.id for f in first] == [f.id for f in again]
    items = offer_request_items.get_effective_request_items(db=db_session, offer_id=approved_offer.id)
    assert {i.source for i in items} == {SOURCE_OFFER}
    history = offer_request_items.get_modification_history(db=db_session, offer_id=approved_offer.id)
    assert [h.action for h in history] == [ModificationAction.ADD]


def test_edit_forks_and_leaves_request_order_alone(db_session, catalog, approved_offer):
    line = approved_offer.request_order.items[0]

    fork = offer_request_items.update_request_item(
        db=db_session,
        offer_id=approved_offer.id,
        request_item_id=line.id,
        quantity=12.0,
        comment="extra spare",
        actor="buyer",
    )

    assert fork.original_request_order_item_id == line.id
    assert _quantities(db_session, approved_offer.id) == {
        catalog["steel"].id: 12.0,
        catalog["cable"].id: 5.0,
    }
    db_session.expire_all()
    assert db_session.get(models.RequestOrderItem, line.id).quantity == 10.0

    history = offer_request_items.get_modification_history(db=db_session, offer_id=approved_offer.id)
    edit = history[0]
    assert edit.action == ModificationAction.EDIT
    assert (edit.old_quantity, edit.new_quantity) == (10.0, 12.0)
    assert edit.item_type_name == "Steel rebar"


def test_forked_quantities_drive_submission(db_session, catalog, approved_offer):
    offer_request_items.update_request_item(
        db=db_session,
        offer_id=approved_offer.id,
        request_item_id=approved_offer.request_order.items[0].id,
        quantity=12.0,
        comment=None,
        actor="buyer",
    )
    offer_state_machine.start(db=db_session, offer_id=approved_offer.id, actor="buyer")
    for key, qty in (("steel", 10.0), ("cable", 5.0)):
        offer_items.add_offer_item(
            db=db_session,
            offer_id=approved_offer.id,
            item_type_id=catalog[key].id,
            merchant_id=catalog["acme"].id,
            quantity=qty,
            unit_price=1.0,
            actor="buyer",
        )

    with pytest.raises(IncompleteOfferError):
        offer_state_machine.submit(db=db_session, offer_id=approved_offer.id, actor="buyer")


def test_add_and_delete_request_items(db_session, catalog, approved_offer):
    bolts = models.ItemType(name="Anchor bolts", measuring_unit="pcs")
    db_session.add(bolts)
    db_session.commit()

    fork = offer_request_items.add_request_item(
        db=db_session,
        offer_id=approved_offer.id,
        item_type_id=bolts.id,
        quantity=200.0,
        comment=None,
        actor="buyer",
    )
    assert _quantities(db_session, approved_offer.id)[bolts.id] == 200.0

    with pytest.raises(DuplicateRequestItemError):
        offer_request_items.add_request_item(
            db=db_session,
            offer_id=approved_offer.id,
            item_type_id=bolts.id,
            quantity=1.0,
            comment=None,
            actor="buyer",
        )

    offer_items.add_offer_item(
        db=db_session,
        offer_id=approved_offer.id,
        item_type_id=bolts.id,
        merchant_id=catalog["acme"].id,
        quantity=200.0,
        unit_price=0.5,
        actor="buyer",
    )
    offer_request_items.delete_request_item(
        db=db_session, offer_id=approved_offer.id, request_item_id=fork.id, actor="buyer"
    )

    db_session.expire_all()
    offer = db_session.get(models.Offer, approved_offer.id)
    assert bolts.id not in _quantities(db_session, offer.id)
    assert offer.offer_items == []
    history = offer_request_items.get_modification_history(db=db_session, offer_id=offer.id)
    assert [h.action for h in history][:2] == [ModificationAction.DELETE, ModificationAction.ADD]


def test_deleting_every_fork_leaves_no_request_items(db_session, catalog, approved_offer):
    forks = offer_request_items.initialize_modified_items(
        db=db_session, offer_id=approved_offer.id, actor="buyer"
    )
    for fork_id in [f.id for f in forks]:
        offer_request_items.delete_request_item(
            db=db_session, offer_id=approved_offer.id, request_item_id=fork_id, actor="buyer"
        )

    db_session.expire_all()
    offer = db_session.get(models.Offer, approved_offer.id)
    assert offer.request_items_forked is True
    assert offer_request_items.get_effective_request_items(db=db_session, offer_id=offer.id) == []
    assert len(offer.request_order.items) == 2


def test_any_line_of_a_merged_item_type_edits_its_fork(db_session, catalog):
    steel_id = catalog["steel"].id
    request_order = request_orders.create_request_order(
        db=db_session,
        title="Two deliveries of steel",
        items=[(steel_id, 6.0, None), (steel_id, 4.0, "second batch")],
        actor="requester",
    )
    request_orders.approve_request_order(
        db=db_session, request_order_id=request_order.id, actor="approver"
    )
    offer = offer_state_machine.create_offer(
        db=db_session, request_order_id=request_order.id, actor="buyer"
    )
    second_line_id = max(i.id for i in offer.request_order.items)

    fork = offer_request_items.update_request_item(
        db=db_session,
        offer_id=offer.id,
        request_item_id=second_line_id,
        quantity=12.0,
        comment=None,
        actor="buyer",
    )

    items = offer_request_items.get_effective_request_items(db=db_session, offer_id=offer.id)
    assert [(i.id, i.item_type_id, i.quantity) for i in items] == [(fork.id, steel_id, 12.0)]

def test_unknown_request_item(db_session, approved_offer):
    with pytest.raises(RequestItemNotFoundError):
        offer_request_items.update_request_item(
            db=db_session,
            offer_id=approved_offer.id,
            request_item_id=4242,
            quantity=1.0,
            comment=None,
            actor="buyer",
        )


def test_request_items_are_frozen_after_submission(db_session, accepted_offer):
    with pytest.raises(OfferItemNotEditableError):
        offer_request_items.initialize_modified_items(
            db=db_session, offer_id=accepted_offer.id, actor="buyer"
        )
