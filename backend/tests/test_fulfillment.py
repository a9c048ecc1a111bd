from types import SimpleNamespace

from app.models.domain import OfferFinanceStatus, OfferItemFinanceStatus
from app.services.fulfillment import classify, finance_status_for, offered_coverage

A, B = 1, 2

ACCEPTED = OfferItemFinanceStatus.ACCEPTED
REJECTED = OfferItemFinanceStatus.REJECTED


def _request(id_, item_type_id, quantity):
    return SimpleNamespace(id=id_, item_type_id=item_type_id, quantity=quantity)


def _offered(item_type_id, quantity, finance_status=None):
    return SimpleNamespace(item_type_id=item_type_id, quantity=quantity, finance_status=finance_status)


REQUEST = [_request(11, A, 10.0), _request(12, B, 5.0)]


def test_partial_acceptance_is_not_fully_fulfilled():
    c = classify(REQUEST, [_offered(A, 10.0, ACCEPTED), _offered(B, 3.0, ACCEPTED)])

    assert c.fully_fulfilled is False
    assert c.has_accepted_items is True
    assert c.outcome == "partial"
    assert c.per_item[12].remaining == 2.0
    assert c.remaining_quantities() == {B: 2.0}
    assert finance_status_for(c) == OfferFinanceStatus.FINANCE_PARTIALLY_ACCEPTED


def test_rejected_items_do_not_count():
    c = classify(
        REQUEST,
        [_offered(A, 10.0, ACCEPTED), _offered(B, 5.0, REJECTED)],
    )

    assert c.outcome == "partial"
    assert c.per_item[12].accepted == 0.0


def test_accepted_quantities_sum_across_merchants_and_over_acceptance_counts():
    c = classify(
        REQUEST,
        [
            _offered(A, 6.0, ACCEPTED),
            _offered(A, 6.0, ACCEPTED),
            _offered(B, 5.0, ACCEPTED),
        ],
    )

    assert c.fully_fulfilled is True
    assert c.outcome == "full"
    assert c.per_item[11].accepted == 12.0
    assert c.remaining_quantities() == {}
    assert finance_status_for(c) == OfferFinanceStatus.FINANCE_ACCEPTED


def test_nothing_accepted_is_rejected_outcome():
    c = classify(REQUEST, [_offered(A, 10.0, REJECTED), _offered(B, 5.0, REJECTED)])

    assert c.has_accepted_items is False
    assert c.outcome == "none"
    assert c.remaining_quantities() == {A: 10.0, B: 5.0}
    assert finance_status_for(c) == OfferFinanceStatus.FINANCE_REJECTED


def test_offered_coverage_ignores_finance_status():
    coverage = offered_coverage(REQUEST, [_offered(A, 10.0), _offered(B, 4.0, REJECTED)])

    by_id = {c.request_item_id: c for c in coverage}
    assert by_id[11].fulfilled is True
    assert by_id[12].fulfilled is False
    assert by_id[12].accepted == 4.0
