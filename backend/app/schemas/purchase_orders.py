from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from app.models.domain import PurchaseOrderStatus


class PurchaseOrderItemRead(BaseModel):
    id: int
    offer_item_id: int
    item_type_id: int
    merchant_id: int
    quantity: float
    unit_price: float
    total_price: float
    currency: str
    estimated_delivery_days: Optional[int] = None
    comment: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderRead(BaseModel):
    id: int
    po_number: str
    offer_id: int
    request_order_id: int
    status: PurchaseOrderStatus
    currency: str
    total_amount: float
    payment_terms: Optional[str] = None
    expected_delivery_date: Optional[date] = None
    payment_request_id: Optional[str] = None
    payment_request_status: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    items: List[PurchaseOrderItemRead] = []

    model_config = ConfigDict(from_attributes=True)
