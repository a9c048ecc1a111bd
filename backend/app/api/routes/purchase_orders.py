# ruff: noqa: B008, B904

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import CurrentUser, get_db, require_roles
from app.schemas import PurchaseOrderRead
from app.services import purchase_orders

router = APIRouter(prefix="/purchase-orders", tags=["purchase_orders"])


@router.get("", response_model=List[PurchaseOrderRead])
def list_purchase_orders(
    offer_id: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles()),
):
    return purchase_orders.list_purchase_orders(db=db, offer_id=offer_id)


@router.get("/{purchase_order_id}", response_model=PurchaseOrderRead)
def get_purchase_order(
    purchase_order_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles()),
):
    try:
        return purchase_orders.get_purchase_order(db=db, purchase_order_id=purchase_order_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Purchase order not found")
