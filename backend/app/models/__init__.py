from app.models.domain import (
    AuditLog,
    DocumentMonthlySequence,
    ItemType,
    Merchant,
    ModificationAction,
    Offer,
    OfferFinanceStatus,
    OfferItem,
    OfferItemFinanceStatus,
    OfferLineage,
    OfferRequestItem,
    OfferRetryLock,
    OfferStatus,
    OfferTimelineEvent,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
    RequestItemModification,
    RequestOrder,
    RequestOrderItem,
    RequestOrderStatus,
    RetryLockStatus,
    RoleName,
)

__all__ = [
    "AuditLog",
    "DocumentMonthlySequence",
    "ItemType",
    "Merchant",
    "ModificationAction",
    "Offer",
    "OfferFinanceStatus",
    "OfferItem",
    "OfferItemFinanceStatus",
    "OfferLineage",
    "OfferRequestItem",
    "OfferRetryLock",
    "OfferStatus",
    "OfferTimelineEvent",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "PurchaseOrderStatus",
    "RequestItemModification",
    "RequestOrder",
    "RequestOrderItem",
    "RequestOrderStatus",
    "RetryLockStatus",
    "RoleName",
]
