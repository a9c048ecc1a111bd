"""Offer timeline event taxonomy.

Events are written by the workflow services in the same transaction as the
state change they describe. The reconstructor tolerates types it does not
know (they render with the generic "Processed" labels).
"""

from __future__ import annotations

OFFER_SUBMITTED = "OFFER_SUBMITTED"
MANAGER_ACCEPTED = "MANAGER_ACCEPTED"
MANAGER_REJECTED = "MANAGER_REJECTED"
FINANCE_ACCEPTED = "FINANCE_ACCEPTED"
FINANCE_REJECTED = "FINANCE_REJECTED"
FINANCE_PARTIALLY_ACCEPTED = "FINANCE_PARTIALLY_ACCEPTED"
OFFER_RETRIED = "OFFER_RETRIED"
OFFER_SPLIT = "OFFER_SPLIT"
OFFER_FINALIZING = "OFFER_FINALIZING"
OFFER_FINALIZED = "OFFER_FINALIZED"
OFFER_COMPLETED = "OFFER_COMPLETED"

# Synthetic step types produced by the reconstructor only.
REQUEST_APPROVED = "REQUEST_APPROVED"
PENDING = "PENDING"

OFFER_EVENT_TYPES: frozenset[str] = frozenset(
    {
        OFFER_SUBMITTED,
        MANAGER_ACCEPTED,
        MANAGER_REJECTED,
        FINANCE_ACCEPTED,
        FINANCE_REJECTED,
        FINANCE_PARTIALLY_ACCEPTED,
        OFFER_RETRIED,
        OFFER_SPLIT,
        OFFER_FINALIZING,
        OFFER_FINALIZED,
        OFFER_COMPLETED,
    }
)

MANAGER_DECISION_EVENT_TYPES: frozenset[str] = frozenset({MANAGER_ACCEPTED, MANAGER_REJECTED})

FINANCE_DECISION_EVENT_TYPES: frozenset[str] = frozenset(
    {FINANCE_ACCEPTED, FINANCE_REJECTED, FINANCE_PARTIALLY_ACCEPTED}
)

FINALIZATION_EVENT_TYPES: frozenset[str] = frozenset({OFFER_FINALIZED, OFFER_COMPLETED})

REJECTION_EVENT_TYPES: frozenset[str] = frozenset({MANAGER_REJECTED, FINANCE_REJECTED})

# Titles that carry an "(Attempt #N)" suffix once N > 1.
ATTEMPT_NUMBERED_EVENT_TYPES: frozenset[str] = frozenset(
    {
        OFFER_SUBMITTED,
        MANAGER_ACCEPTED,
        MANAGER_REJECTED,
        FINANCE_ACCEPTED,
        FINANCE_REJECTED,
        FINANCE_PARTIALLY_ACCEPTED,
    }
)

# event_type -> (title, description)
EVENT_DISPLAY: dict[str, tuple[str, str]] = {
    OFFER_SUBMITTED: ("Offer Submitted", "Procurement submitted the offer for management review"),
    MANAGER_ACCEPTED: ("Manager Accepted", "Manager accepted the offer and sent it to finance"),
    MANAGER_REJECTED: ("Manager Rejected", "Manager rejected the offer"),
    FINANCE_ACCEPTED: ("Finance Accepted", "Finance accepted every offer item"),
    FINANCE_REJECTED: ("Finance Rejected", "Finance rejected the offer items"),
    FINANCE_PARTIALLY_ACCEPTED: (
        "Finance Partially Accepted",
        "Finance accepted some offer items; the requested quantities are not fully covered",
    ),
    OFFER_RETRIED: ("Offer Retried", "A new attempt was started for the full requested quantities"),
    OFFER_SPLIT: ("Offer Split", "Accepted items continued to finalization; a new offer covers the rest"),
    OFFER_FINALIZING: ("Sent to Finalization", "Accepted items are ready to be finalized"),
    OFFER_FINALIZED: ("Offer Finalized", "Selected items were finalized"),
    OFFER_COMPLETED: ("Offer Completed", "Purchase order created and offer completed"),
}

# event_type -> (date label, user label)
EVENT_LABELS: dict[str, tuple[str, str]] = {
    OFFER_SUBMITTED: ("Submitted at", "Submitted by"),
    MANAGER_ACCEPTED: ("Accepted at", "Accepted by"),
    MANAGER_REJECTED: ("Rejected at", "Rejected by"),
    OFFER_RETRIED: ("Retried at", "Retried by"),
    FINANCE_ACCEPTED: ("Approved at", "Approved by"),
    FINANCE_REJECTED: ("Rejected at", "Rejected by"),
    FINANCE_PARTIALLY_ACCEPTED: ("Partially approved at", "Partially approved by"),
    OFFER_FINALIZING: ("Finalized at", "Finalized by"),
    OFFER_FINALIZED: ("Finalized at", "Finalized by"),
    OFFER_COMPLETED: ("Completed at", "Completed by"),
}

DEFAULT_EVENT_LABELS: tuple[str, str] = ("Processed at", "Processed by")


def display_title_for(event_type: str, attempt_number: int | None) -> str:
    title = EVENT_DISPLAY.get(event_type, (event_type.replace("_", " ").title(), ""))[0]
    if event_type in ATTEMPT_NUMBERED_EVENT_TYPES and attempt_number and int(attempt_number) > 1:
        return f"{title} (Attempt #{int(attempt_number)})"
    return title


def display_description_for(event_type: str) -> str:
    return EVENT_DISPLAY.get(event_type, ("", ""))[1]


def labels_for(event_type: str) -> tuple[str, str]:
    return EVENT_LABELS.get(event_type, DEFAULT_EVENT_LABELS)
