from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.domain import RequestOrderStatus
from app.schemas.offers import OfferRead


class RequestOrderItemCreate(BaseModel):
    item_type_id: int = Field(..., ge=1)
    quantity: float = Field(..., gt=0)
    comment: Optional[str] = None


class RequestOrderCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    deadline: Optional[date] = None
    items: List[RequestOrderItemCreate] = Field(..., min_length=1)


class RequestOrderItemRead(BaseModel):
    id: int
    item_type_id: int
    item_type_name: Optional[str] = None
    measuring_unit: Optional[str] = None
    quantity: float
    comment: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RequestOrderRead(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    status: RequestOrderStatus
    deadline: Optional[date] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    items: List[RequestOrderItemRead] = []

    model_config = ConfigDict(from_attributes=True)


class RequestOrderApprovalRead(BaseModel):
    request_order: RequestOrderRead
    # None when the request order already had an offer.
    offer: Optional[OfferRead] = None
