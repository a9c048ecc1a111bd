from app.services import (
    offer_finalization,
    offer_items,
    offer_request_items,
    offer_retry,
    offer_state_machine,
    purchase_orders,
    request_orders,
)
from app.services.audit import audit_event

__all__ = [
    "audit_event",
    "offer_finalization",
    "offer_items",
    "offer_request_items",
    "offer_retry",
    "offer_state_machine",
    "purchase_orders",
    "request_orders",
]
