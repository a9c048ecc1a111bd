# ruff: noqa: B008, B904

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import CurrentUser, get_db, require_roles
from app.models.domain import RoleName
from app.schemas import (
    OfferRead,
    RequestOrderApprovalRead,
    RequestOrderCreate,
    RequestOrderRead,
)
from app.services import offer_state_machine, request_orders

router = APIRouter(prefix="/request-orders", tags=["request_orders"])

_DB_DEP = Depends(get_db)


def _not_found_or_bad_request(exc: ValueError) -> HTTPException:
    code = str(exc)
    if code.endswith("_not_found"):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=code)
    if code == "request_order_not_draft":
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=code)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=code)


@router.post("", response_model=RequestOrderRead, status_code=status.HTTP_201_CREATED)
def create_request_order(
    payload: RequestOrderCreate,
    db: Session = _DB_DEP,
    current_user: CurrentUser = Depends(require_roles(RoleName.procurement)),
):
    try:
        return request_orders.create_request_order(
            db=db,
            title=payload.title,
            description=payload.description,
            deadline=payload.deadline,
            items=[(i.item_type_id, i.quantity, i.comment) for i in payload.items],
            actor=current_user.username,
        )
    except ValueError as exc:
        raise _not_found_or_bad_request(exc)


@router.get("/{request_order_id}", response_model=RequestOrderRead)
def get_request_order(
    request_order_id: int,
    db: Session = _DB_DEP,
    current_user: CurrentUser = Depends(require_roles()),
):
    try:
        return request_orders.get_request_order(db=db, request_order_id=request_order_id)
    except ValueError as exc:
        raise _not_found_or_bad_request(exc)


@router.post("/{request_order_id}/approve", response_model=RequestOrderApprovalRead)
def approve_request_order(
    request_order_id: int,
    db: Session = _DB_DEP,
    current_user: CurrentUser = Depends(require_roles(RoleName.manager)),
):
    """Approve the request order and open its first offer (UNSTARTED)."""

    try:
        request_order = request_orders.approve_request_order(
            db=db, request_order_id=request_order_id, actor=current_user.username
        )
        offer = None
        if not request_order.offers:
            offer = offer_state_machine.create_offer(
                db=db, request_order_id=request_order.id, actor=current_user.username
            )
            db.refresh(request_order)
    except ValueError as exc:
        raise _not_found_or_bad_request(exc)

    return RequestOrderApprovalRead(
        request_order=RequestOrderRead.model_validate(request_order),
        offer=OfferRead.model_validate(offer) if offer is not None else None,
    )
