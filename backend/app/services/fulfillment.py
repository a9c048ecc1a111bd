from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Protocol

from app.models.domain import OfferFinanceStatus, OfferItemFinanceStatus


class RequestItemLike(Protocol):
    id: int
    item_type_id: int
    quantity: float


class OfferItemLike(Protocol):
    item_type_id: int
    quantity: float
    finance_status: OfferItemFinanceStatus | None


@dataclass(frozen=True)
class ItemFulfillment:
    request_item_id: int
    item_type_id: int
    requested: float
    accepted: float

    @property
    def fulfilled(self) -> bool:
        return self.accepted >= self.requested

    @property
    def remaining(self) -> float:
        return max(0.0, self.requested - self.accepted)


@dataclass(frozen=True)
class FulfillmentClassification:
    fully_fulfilled: bool
    has_accepted_items: bool
    per_item: dict[int, ItemFulfillment]

    @property
    def outcome(self) -> str:
        if self.fully_fulfilled and self.has_accepted_items:
            return "full"
        if self.has_accepted_items:
            return "partial"
        return "none"

    def remaining_quantities(self) -> dict[int, float]:
        """Unmet quantity per item type (only types with something left)."""

        requested: dict[int, float] = defaultdict(float)
        accepted: dict[int, float] = {}
        for item in self.per_item.values():
            requested[item.item_type_id] += item.requested
            # Every request item of a type sees the same accepted sum.
            accepted[item.item_type_id] = item.accepted

        out: dict[int, float] = {}
        for item_type_id, qty in requested.items():
            delta = qty - accepted.get(item_type_id, 0.0)
            if delta > 0:
                out[item_type_id] = delta
        return out


def _sum_by_item_type(offer_items: Iterable[OfferItemLike], *, accepted_only: bool) -> dict[int, float]:
    totals: dict[int, float] = defaultdict(float)
    for oi in offer_items:
        if accepted_only and oi.finance_status != OfferItemFinanceStatus.ACCEPTED:
            continue
        totals[int(oi.item_type_id)] += float(oi.quantity or 0.0)
    return totals


def classify(
    request_items: Iterable[RequestItemLike],
    offer_items: Iterable[OfferItemLike],
) -> FulfillmentClassification:
    """Compare finance-accepted offer quantities against the effective request items.

    Over-acceptance counts as fulfilled. Always computed from the rows passed in.
    """

    accepted_by_type = _sum_by_item_type(offer_items, accepted_only=True)

    per_item: dict[int, ItemFulfillment] = {}
    for ri in request_items:
        per_item[int(ri.id)] = ItemFulfillment(
            request_item_id=int(ri.id),
            item_type_id=int(ri.item_type_id),
            requested=float(ri.quantity or 0.0),
            accepted=accepted_by_type.get(int(ri.item_type_id), 0.0),
        )

    return FulfillmentClassification(
        fully_fulfilled=all(item.fulfilled for item in per_item.values()),
        has_accepted_items=any(item.accepted > 0 for item in per_item.values()),
        per_item=per_item,
    )


def offered_coverage(
    request_items: Iterable[RequestItemLike],
    offer_items: Iterable[OfferItemLike],
) -> list[ItemFulfillment]:
    """Offered (not finance-filtered) quantity per request item; used by submission."""

    offered_by_type = _sum_by_item_type(offer_items, accepted_only=False)
    return [
        ItemFulfillment(
            request_item_id=int(ri.id),
            item_type_id=int(ri.item_type_id),
            requested=float(ri.quantity or 0.0),
            accepted=offered_by_type.get(int(ri.item_type_id), 0.0),
        )
        for ri in request_items
    ]


def finance_status_for(classification: FulfillmentClassification) -> OfferFinanceStatus:
    if classification.outcome == "full":
        return OfferFinanceStatus.FINANCE_ACCEPTED
    if classification.outcome == "partial":
        return OfferFinanceStatus.FINANCE_PARTIALLY_ACCEPTED
    return OfferFinanceStatus.FINANCE_REJECTED
