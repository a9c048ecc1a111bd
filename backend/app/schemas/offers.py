from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.domain import (
    ModificationAction,
    OfferFinanceStatus,
    OfferItemFinanceStatus,
    OfferStatus,
)


class OfferCreate(BaseModel):
    request_order_id: int = Field(..., ge=1)
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None


class OfferItemCreate(BaseModel):
    item_type_id: int = Field(..., ge=1)
    merchant_id: int = Field(..., ge=1)
    quantity: float = Field(..., gt=0)
    unit_price: float = Field(..., ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=8)
    estimated_delivery_days: Optional[int] = Field(None, ge=0)
    delivery_notes: Optional[str] = None
    comment: Optional[str] = None


class OfferItemUpdate(BaseModel):
    item_type_id: Optional[int] = Field(None, ge=1)
    merchant_id: Optional[int] = Field(None, ge=1)
    quantity: Optional[float] = Field(None, gt=0)
    unit_price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=8)
    estimated_delivery_days: Optional[int] = Field(None, ge=0)
    delivery_notes: Optional[str] = None
    comment: Optional[str] = None


class OfferItemRead(BaseModel):
    id: int
    offer_id: int
    item_type_id: int
    merchant_id: int
    quantity: float
    unit_price: float
    total_price: float
    currency: str
    finance_status: Optional[OfferItemFinanceStatus] = None
    rejection_reason: Optional[str] = None
    finalized: bool = False
    estimated_delivery_days: Optional[int] = None
    delivery_notes: Optional[str] = None
    comment: Optional[str] = None
    created_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class OfferRead(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    status: OfferStatus
    finance_status: Optional[OfferFinanceStatus] = None
    request_order_id: int
    lineage_id: int
    parent_offer_id: Optional[int] = None
    retry_count: int
    current_attempt_number: int
    request_items_forked: bool = False
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    submitted_at: Optional[datetime] = None
    submitted_by: Optional[str] = None
    manager_decided_at: Optional[datetime] = None
    manager_decided_by: Optional[str] = None
    finance_decided_at: Optional[datetime] = None
    finance_decided_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    finalized_at: Optional[datetime] = None
    finalized_by: Optional[str] = None
    offer_items: List[OfferItemRead] = []

    model_config = ConfigDict(from_attributes=True)


class ManagerDecisionRequest(BaseModel):
    accept: bool
    reason: Optional[str] = None


class FinanceItemDecision(BaseModel):
    offer_item_id: int = Field(..., ge=1)
    status: OfferItemFinanceStatus
    rejection_reason: Optional[str] = None


class FinanceDecisionRequest(BaseModel):
    decisions: List[FinanceItemDecision] = Field(..., min_length=1)
    reason: Optional[str] = None


class ItemFulfillmentRead(BaseModel):
    request_item_id: int
    item_type_id: int
    requested: float
    accepted: float
    remaining: float
    fulfilled: bool


class FulfillmentRead(BaseModel):
    offer_id: int
    outcome: Literal["full", "partial", "none"]
    fully_fulfilled: bool
    has_accepted_items: bool
    items: List[ItemFulfillmentRead]


class FinanceDecisionResponse(BaseModel):
    offer: OfferRead
    fulfillment: FulfillmentRead


class OfferActionsRead(BaseModel):
    offer_id: int
    status: OfferStatus
    finance_status: Optional[OfferFinanceStatus] = None
    actions: List[str]
    retry_in_progress: bool = False


class SplitResponse(BaseModel):
    accepted_offer: OfferRead
    remainder_offer: OfferRead


class FinalizeRequest(BaseModel):
    selected_offer_item_ids: List[int] = Field(..., min_length=1)
    # None means "not decided yet"; the server asks back when items are left over.
    create_offer_for_remaining: Optional[bool] = None

    @field_validator("selected_offer_item_ids")
    @classmethod
    def dedupe_ids(cls, v: List[int]) -> List[int]:
        return list(dict.fromkeys(int(i) for i in v))


class PartialFailureRead(BaseModel):
    code: str
    detail: str
    step: str
    error: str


class FinalizeResponse(BaseModel):
    outcome: Literal["completed", "partial_success"]
    offer: OfferRead
    purchase_order_id: int
    po_number: str
    remainder_offer: Optional[OfferRead] = None
    unfinalized_offer_item_ids: List[int] = []
    partial_failure: Optional[PartialFailureRead] = None


class EffectiveRequestItemRead(BaseModel):
    id: int
    offer_id: int
    item_type_id: int
    item_type_name: Optional[str] = None
    measuring_unit: Optional[str] = None
    quantity: float
    comment: Optional[str] = None
    original_request_order_item_id: Optional[int] = None
    source: Literal["request_order", "offer"]

    model_config = ConfigDict(from_attributes=True)


class RequestItemCreate(BaseModel):
    item_type_id: int = Field(..., ge=1)
    quantity: float = Field(..., gt=0)
    comment: Optional[str] = None


class RequestItemUpdate(BaseModel):
    quantity: float = Field(..., gt=0)
    comment: Optional[str] = None


class RequestItemForkRead(BaseModel):
    id: int
    offer_id: int
    item_type_id: int
    quantity: float
    comment: Optional[str] = None
    original_request_order_item_id: Optional[int] = None
    last_modified_at: Optional[datetime] = None
    last_modified_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ModificationRead(BaseModel):
    id: int
    offer_id: int
    action: ModificationAction
    item_type_id: Optional[int] = None
    item_type_name: Optional[str] = None
    old_quantity: Optional[float] = None
    new_quantity: Optional[float] = None
    old_comment: Optional[str] = None
    new_comment: Optional[str] = None
    action_by: Optional[str] = None
    timestamp: datetime
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
