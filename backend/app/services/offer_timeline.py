"""Offer timeline reconstruction.

`build_timeline` is a pure function of the offer's current fields and its
persisted events. Output order is fixed:

    [request approval?] + [one step per event, input order] + [pending step?]

Events are never re-sorted or dropped. The pending step is chosen by
`_pending_step`, an ordered decision table: the first matching rule wins and
at most one pending step is ever added.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Protocol, Sequence, Union

from app.core import offer_events
from app.models.domain import OfferItemFinanceStatus, OfferStatus

STEP_ACTIVE = "active"
STEP_REJECTED = "rejected"
STEP_PARTIAL = "partial"
STEP_PENDING = "pending"

_POST_FINANCE_STATUSES = frozenset(
    {OfferStatus.FINALIZING, OfferStatus.FINALIZED, OfferStatus.COMPLETED}
)
_FINANCE_OUTCOME_VALUES = frozenset(
    {"FINANCE_ACCEPTED", "FINANCE_REJECTED", "FINANCE_PARTIALLY_ACCEPTED"}
)


class TimelineEventLike(Protocol):
    id: int
    event_type: str
    event_time: datetime
    action_by: Optional[str]
    notes: Optional[str]
    attempt_number: Optional[int]
    display_title: Optional[str]
    display_description: Optional[str]


@dataclass(frozen=True)
class TimelineStep:
    id: str
    type: str
    title: str
    status: str
    description: Optional[str] = None
    date: Union[datetime, str, None] = None
    user: Optional[str] = None
    date_label: str = ""
    user_label: str = ""
    notes: Optional[str] = None
    attempt_number: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.status == STEP_PENDING


def _status_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "value", value)


def _step_status(event_type: str) -> str:
    if event_type in offer_events.REJECTION_EVENT_TYPES:
        return STEP_REJECTED
    if event_type == offer_events.FINANCE_PARTIALLY_ACCEPTED:
        return STEP_PARTIAL
    return STEP_ACTIVE


def _event_step(event: TimelineEventLike) -> TimelineStep:
    event_type = event.event_type
    date_label, user_label = offer_events.labels_for(event_type)
    title = event.display_title or offer_events.display_title_for(event_type, event.attempt_number)
    description = None
    if event_type != offer_events.OFFER_SUBMITTED:
        description = event.display_description or offer_events.display_description_for(event_type)
    return TimelineStep(
        id=f"timeline-{event.id}",
        type=event_type,
        title=title,
        status=_step_status(event_type),
        description=description or None,
        date=event.event_time,
        user=event.action_by or "N/A",
        date_label=date_label,
        user_label=user_label,
        notes=event.notes,
        attempt_number=event.attempt_number,
    )


def _approval_step(offer: Any) -> Optional[TimelineStep]:
    request_order = getattr(offer, "request_order", None)
    if request_order is None or getattr(request_order, "approved_at", None) is None:
        return None
    return TimelineStep(
        id="request-approved",
        type=offer_events.REQUEST_APPROVED,
        title="Request Order Approved",
        status=STEP_ACTIVE,
        date=request_order.approved_at,
        user=request_order.approved_by or "N/A",
        date_label="Approved at",
        user_label="Approved by",
    )


def _pending(step_id: str, title: str, description: str, **kwargs: Any) -> TimelineStep:
    return TimelineStep(
        id=step_id,
        type=offer_events.PENDING,
        title=title,
        status=STEP_PENDING,
        description=description,
        **kwargs,
    )


def _current_attempt_types(offer: Any, events: Sequence[TimelineEventLike]) -> set[str]:
    # Events of earlier attempts must not satisfy the current attempt's checks.
    current = getattr(offer, "current_attempt_number", None)
    return {
        e.event_type
        for e in events
        if current is None or e.attempt_number is None or int(e.attempt_number) == int(current)
    }


def _pending_step(offer: Any, events: Sequence[TimelineEventLike]) -> Optional[TimelineStep]:
    status = offer.status
    seen = _current_attempt_types(offer, events)

    if status in (OfferStatus.UNSTARTED, OfferStatus.INPROGRESS):
        return _pending(
            "pending-procurement-solutions",
            "Adding Procurement Solutions",
            "Procurement team is finding and adding solutions that satisfy "
            "the required items and quantities",
        )

    if status == OfferStatus.SUBMITTED and not seen & offer_events.MANAGER_DECISION_EVENT_TYPES:
        return _pending(
            "pending-manager-review",
            "Awaiting Management Review",
            "Manager will review and either accept or reject this offer",
        )

    # A recorded finance outcome counts even when its event is missing from the log.
    finance_decided = bool(seen & offer_events.FINANCE_DECISION_EVENT_TYPES) or (
        _status_value(getattr(offer, "finance_status", None)) in _FINANCE_OUTCOME_VALUES
    )
    if status == OfferStatus.MANAGERACCEPTED and not finance_decided:
        return _pending(
            "pending-finance",
            "Finance Processing",
            "Finance team will review each item and approve or reject",
            date="Pending",
            user="Finance Department",
            date_label="Awaiting review",
            user_label="Pending review from",
        )

    if finance_decided and status not in _POST_FINANCE_STATUSES:
        items = getattr(offer, "offer_items", None) or []
        if any(i.finance_status == OfferItemFinanceStatus.ACCEPTED for i in items):
            return _pending(
                "pending-finalization",
                "Awaiting Finalization",
                "Procurement team will finalize accepted items and create purchase orders",
            )
        return None

    if status == OfferStatus.FINALIZING and not seen & offer_events.FINALIZATION_EVENT_TYPES:
        return _pending(
            "pending-completion",
            "Completing Finalization",
            "Creating purchase orders and completing the offer process",
        )

    return None


def build_timeline(offer: Any, events: Iterable[TimelineEventLike]) -> list[TimelineStep]:
    """Merge persisted events (assumed ascending by time) with inferred steps."""

    events = list(events)
    steps: list[TimelineStep] = []

    approval = _approval_step(offer)
    if approval is not None:
        steps.append(approval)

    steps.extend(_event_step(e) for e in events)

    pending = _pending_step(offer, events)
    if pending is not None:
        steps.append(pending)
    return steps


def rejection_reasons(steps: Iterable[TimelineStep]) -> list[TimelineStep]:
    return [
        s for s in steps if s.notes and s.type in offer_events.REJECTION_EVENT_TYPES
    ]


def describe_offer_progress(offer: Any) -> str:
    """Header sentence shown above the timeline."""

    status = offer.status
    finance = _status_value(getattr(offer, "finance_status", None))

    if status == OfferStatus.MANAGERACCEPTED and finance not in _FINANCE_OUTCOME_VALUES:
        text = "This offer has been accepted by the manager and is now being processed by finance."
    elif status == OfferStatus.MANAGERREJECTED:
        text = "This offer has been rejected by the manager."
    elif finance in ("FINANCE_ACCEPTED", "FINANCE_PARTIALLY_ACCEPTED") and status not in (
        OfferStatus.COMPLETED,
        OfferStatus.FINALIZED,
    ):
        text = "This offer has been processed by finance and is ready for finalization."
    elif finance == "FINANCE_REJECTED":
        text = "This offer has been rejected by finance."
    elif status in (OfferStatus.COMPLETED, OfferStatus.FINALIZED):
        text = "This offer has been completed and a purchase order has been created."
    elif status == OfferStatus.SUBMITTED:
        text = "This offer has been submitted to management for review and approval."
    else:
        text = "Track the progress of this offer through the approval process."

    attempts = int(getattr(offer, "current_attempt_number", None) or 1)
    if attempts > 1:
        noun = "rejection" if attempts == 2 else "rejections"
        text += f" This is attempt #{attempts} after {attempts - 1} previous {noun}."
    return text
