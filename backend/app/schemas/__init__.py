from app.schemas.offers import (
    EffectiveRequestItemRead,
    FinalizeRequest,
    FinalizeResponse,
    FinanceDecisionRequest,
    FinanceDecisionResponse,
    FinanceItemDecision,
    FulfillmentRead,
    ItemFulfillmentRead,
    ManagerDecisionRequest,
    ModificationRead,
    OfferActionsRead,
    OfferCreate,
    OfferItemCreate,
    OfferItemRead,
    OfferItemUpdate,
    OfferRead,
    PartialFailureRead,
    RequestItemCreate,
    RequestItemForkRead,
    RequestItemUpdate,
    SplitResponse,
)
from app.schemas.purchase_orders import PurchaseOrderItemRead, PurchaseOrderRead
from app.schemas.request_orders import (
    RequestOrderApprovalRead,
    RequestOrderCreate,
    RequestOrderItemCreate,
    RequestOrderItemRead,
    RequestOrderRead,
)
from app.schemas.timeline import OfferTimelineRead, TimelineStepRead

__all__ = [
    "EffectiveRequestItemRead",
    "FinalizeRequest",
    "FinalizeResponse",
    "FinanceDecisionRequest",
    "FinanceDecisionResponse",
    "FinanceItemDecision",
    "FulfillmentRead",
    "ItemFulfillmentRead",
    "ManagerDecisionRequest",
    "ModificationRead",
    "OfferActionsRead",
    "OfferCreate",
    "OfferItemCreate",
    "OfferItemRead",
    "OfferItemUpdate",
    "OfferRead",
    "OfferTimelineRead",
    "PartialFailureRead",
    "PurchaseOrderItemRead",
    "PurchaseOrderRead",
    "RequestItemCreate",
    "RequestItemForkRead",
    "RequestItemUpdate",
    "RequestOrderApprovalRead",
    "RequestOrderCreate",
    "RequestOrderItemCreate",
    "RequestOrderItemRead",
    "RequestOrderRead",
    "SplitResponse",
    "TimelineStepRead",
]
