# ruff: noqa: B008, B904

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import CurrentUser, get_db, require_roles
from app.models.domain import OfferFinanceStatus, OfferStatus, RoleName
from app.schemas import (
    EffectiveRequestItemRead,
    FinalizeRequest,
    FinalizeResponse,
    FinanceDecisionRequest,
    FinanceDecisionResponse,
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
    OfferTimelineRead,
    PartialFailureRead,
    RequestItemCreate,
    RequestItemForkRead,
    RequestItemUpdate,
    SplitResponse,
    TimelineStepRead,
)
from app.services import (
    offer_finalization,
    offer_items,
    offer_request_items,
    offer_retry,
    offer_state_machine,
)
from app.services.fulfillment import FulfillmentClassification
from app.services.offer_actions import available_actions, classify_offer
from app.services.offer_queries import get_offer, list_offers
from app.services.offer_timeline import (
    build_timeline,
    describe_offer_progress,
    rejection_reasons,
)
from app.services.retry_locks import is_retry_in_flight
from app.services.timeline_emitters import correlation_id_from_request_id, list_lineage_events

router = APIRouter(prefix="/offers", tags=["offers"])

_DB_DEP = Depends(get_db)
_ANY_ROLE = Depends(require_roles())
_PROCUREMENT = Depends(require_roles(RoleName.procurement))
_MANAGER = Depends(require_roles(RoleName.manager))
_FINANCE = Depends(require_roles(RoleName.finance))


def _correlation_id(request: Request) -> str:
    return correlation_id_from_request_id(request.headers.get("x-request-id"))


def _value_error_to_http(exc: ValueError) -> HTTPException:
    code = str(exc)
    if code.endswith("_not_found"):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=code)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=code)


def _fulfillment_read(offer_id: int, c: FulfillmentClassification) -> FulfillmentRead:
    return FulfillmentRead(
        offer_id=offer_id,
        outcome=c.outcome,
        fully_fulfilled=c.fully_fulfilled,
        has_accepted_items=c.has_accepted_items,
        items=[
            ItemFulfillmentRead(
                request_item_id=i.request_item_id,
                item_type_id=i.item_type_id,
                requested=i.requested,
                accepted=i.accepted,
                remaining=i.remaining,
                fulfilled=i.fulfilled,
            )
            for i in c.per_item.values()
        ],
    )


@router.post("", response_model=OfferRead, status_code=status.HTTP_201_CREATED)
def create_offer(
    payload: OfferCreate,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _PROCUREMENT,
):
    try:
        return offer_state_machine.create_offer(
            db=db,
            request_order_id=payload.request_order_id,
            title=payload.title,
            description=payload.description,
            actor=current_user.username,
        )
    except ValueError as exc:
        raise _value_error_to_http(exc)


@router.get("", response_model=List[OfferRead])
def get_offers(
    status_filter: Optional[OfferStatus] = Query(None, alias="status"),
    finance_status: Optional[OfferFinanceStatus] = Query(None),
    request_order_id: Optional[int] = Query(None, ge=1),
    db: Session = _DB_DEP,
    current_user: CurrentUser = _ANY_ROLE,
):
    return list_offers(
        db=db,
        status=status_filter,
        finance_status=finance_status,
        request_order_id=request_order_id,
    )


@router.get("/{offer_id}", response_model=OfferRead)
def get_offer_detail(offer_id: int, db: Session = _DB_DEP, current_user: CurrentUser = _ANY_ROLE):
    return get_offer(db=db, offer_id=offer_id)


@router.delete("/{offer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_offer(offer_id: int, db: Session = _DB_DEP, current_user: CurrentUser = _PROCUREMENT):
    offer_state_machine.delete_offer(db=db, offer_id=offer_id, actor=current_user.username)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Offer items


@router.post(
    "/{offer_id}/items", response_model=OfferItemRead, status_code=status.HTTP_201_CREATED
)
def add_offer_item(
    offer_id: int,
    payload: OfferItemCreate,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _PROCUREMENT,
):
    try:
        return offer_items.add_offer_item(
            db=db, offer_id=offer_id, actor=current_user.username, **payload.model_dump()
        )
    except ValueError as exc:
        raise _value_error_to_http(exc)


@router.put("/{offer_id}/items/{offer_item_id}", response_model=OfferItemRead)
def update_offer_item(
    offer_id: int,
    offer_item_id: int,
    payload: OfferItemUpdate,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _PROCUREMENT,
):
    try:
        return offer_items.update_offer_item(
            db=db,
            offer_id=offer_id,
            offer_item_id=offer_item_id,
            changes=payload.model_dump(exclude_unset=True),
            actor=current_user.username,
        )
    except ValueError as exc:
        raise _value_error_to_http(exc)


@router.delete("/{offer_id}/items/{offer_item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_offer_item(
    offer_id: int,
    offer_item_id: int,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _PROCUREMENT,
):
    offer_items.delete_offer_item(
        db=db, offer_id=offer_id, offer_item_id=offer_item_id, actor=current_user.username
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Lifecycle


@router.post("/{offer_id}/start", response_model=OfferRead)
def start_offer(offer_id: int, db: Session = _DB_DEP, current_user: CurrentUser = _PROCUREMENT):
    return offer_state_machine.start(db=db, offer_id=offer_id, actor=current_user.username)


@router.post("/{offer_id}/submit", response_model=OfferRead)
def submit_offer(
    offer_id: int,
    request: Request,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _PROCUREMENT,
):
    return offer_state_machine.submit(
        db=db,
        offer_id=offer_id,
        actor=current_user.username,
        correlation_id=_correlation_id(request),
    )


@router.post("/{offer_id}/manager-decision", response_model=OfferRead)
def manager_decision(
    offer_id: int,
    payload: ManagerDecisionRequest,
    request: Request,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _MANAGER,
):
    return offer_state_machine.manager_decide(
        db=db,
        offer_id=offer_id,
        accept=payload.accept,
        reason=payload.reason,
        actor=current_user.username,
        correlation_id=_correlation_id(request),
    )


@router.post("/{offer_id}/finance-decision", response_model=FinanceDecisionResponse)
def finance_decision(
    offer_id: int,
    payload: FinanceDecisionRequest,
    request: Request,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _FINANCE,
):
    result = offer_state_machine.finance_decide(
        db=db,
        offer_id=offer_id,
        decisions=[
            offer_state_machine.FinanceDecision(
                offer_item_id=d.offer_item_id,
                status=d.status,
                rejection_reason=d.rejection_reason,
            )
            for d in payload.decisions
        ],
        reason=payload.reason,
        actor=current_user.username,
        correlation_id=_correlation_id(request),
    )
    return FinanceDecisionResponse(
        offer=OfferRead.model_validate(result.offer),
        fulfillment=_fulfillment_read(result.offer.id, result.classification),
    )


@router.get("/{offer_id}/fulfillment", response_model=FulfillmentRead)
def get_fulfillment(offer_id: int, db: Session = _DB_DEP, current_user: CurrentUser = _ANY_ROLE):
    offer = get_offer(db=db, offer_id=offer_id)
    return _fulfillment_read(offer.id, classify_offer(offer))


@router.get("/{offer_id}/actions", response_model=OfferActionsRead)
def get_actions(offer_id: int, db: Session = _DB_DEP, current_user: CurrentUser = _ANY_ROLE):
    offer = get_offer(db=db, offer_id=offer_id)
    return OfferActionsRead(
        offer_id=offer.id,
        status=offer.status,
        finance_status=offer.finance_status,
        actions=sorted(a.value for a in available_actions(offer)),
        retry_in_progress=is_retry_in_flight(db=db, offer=offer),
    )


@router.post("/{offer_id}/send-to-finalizing", response_model=OfferRead)
def send_to_finalizing(
    offer_id: int,
    request: Request,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _PROCUREMENT,
):
    return offer_state_machine.send_to_finalizing(
        db=db,
        offer_id=offer_id,
        actor=current_user.username,
        correlation_id=_correlation_id(request),
    )


@router.post("/{offer_id}/retry", response_model=OfferRead, status_code=status.HTTP_201_CREATED)
def retry_offer(
    offer_id: int,
    request: Request,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _PROCUREMENT,
):
    return offer_retry.retry_entire_offer(
        db=db,
        offer_id=offer_id,
        actor=current_user.username,
        correlation_id=_correlation_id(request),
    )


@router.post("/{offer_id}/continue-and-return", response_model=SplitResponse)
def continue_and_return(
    offer_id: int,
    request: Request,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _PROCUREMENT,
):
    result = offer_retry.continue_and_return(
        db=db,
        offer_id=offer_id,
        actor=current_user.username,
        correlation_id=_correlation_id(request),
    )
    return SplitResponse(
        accepted_offer=OfferRead.model_validate(result.accepted_offer),
        remainder_offer=OfferRead.model_validate(result.remainder_offer),
    )


@router.post("/{offer_id}/finalize", response_model=FinalizeResponse)
def finalize_offer(
    offer_id: int,
    payload: FinalizeRequest,
    request: Request,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _PROCUREMENT,
):
    result = offer_finalization.finalize_offer(
        db=db,
        offer_id=offer_id,
        selected_offer_item_ids=payload.selected_offer_item_ids,
        create_offer_for_remaining=payload.create_offer_for_remaining,
        actor=current_user.username,
        correlation_id=_correlation_id(request),
    )

    if result.outcome == offer_finalization.OUTCOME_DECISION_REQUIRED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "finalization_decision_required",
                "message": "Some offer items were not selected. "
                "Set create_offer_for_remaining to true or false.",
                "unfinalized_offer_item_ids": result.unfinalized_offer_item_ids,
            },
        )

    partial = None
    if result.partial_failure is not None:
        partial = PartialFailureRead(
            code=result.partial_failure.code,
            detail=result.partial_failure.message,
            step=result.partial_failure.details.get("step", ""),
            error=result.partial_failure.details.get("error", ""),
        )

    return FinalizeResponse(
        outcome=result.outcome,
        offer=OfferRead.model_validate(result.offer),
        purchase_order_id=result.purchase_order.id,
        po_number=result.purchase_order.po_number,
        remainder_offer=(
            OfferRead.model_validate(result.remainder_offer)
            if result.remainder_offer is not None
            else None
        ),
        unfinalized_offer_item_ids=result.unfinalized_offer_item_ids,
        partial_failure=partial,
    )


# Timeline


@router.get("/{offer_id}/timeline", response_model=OfferTimelineRead)
def get_timeline(
    offer_id: int,
    attempt: Optional[int] = Query(None, ge=1),
    db: Session = _DB_DEP,
    current_user: CurrentUser = _ANY_ROLE,
):
    offer = get_offer(db=db, offer_id=offer_id)
    events = list_lineage_events(db=db, lineage_id=offer.lineage_id, attempt_number=attempt)
    steps = build_timeline(offer, events)
    return OfferTimelineRead(
        offer_id=offer.id,
        lineage_id=offer.lineage_id,
        current_attempt_number=offer.current_attempt_number,
        description=describe_offer_progress(offer),
        steps=[TimelineStepRead.model_validate(s) for s in steps],
        rejection_reasons=[TimelineStepRead.model_validate(s) for s in rejection_reasons(steps)],
    )


# Effective request items


@router.get("/{offer_id}/request-items", response_model=List[EffectiveRequestItemRead])
def get_request_items(offer_id: int, db: Session = _DB_DEP, current_user: CurrentUser = _ANY_ROLE):
    return offer_request_items.get_effective_request_items(db=db, offer_id=offer_id)


@router.get("/{offer_id}/request-items/history", response_model=List[ModificationRead])
def get_request_item_history(
    offer_id: int, db: Session = _DB_DEP, current_user: CurrentUser = _ANY_ROLE
):
    return offer_request_items.get_modification_history(db=db, offer_id=offer_id)


@router.post("/{offer_id}/request-items/initialize", response_model=List[RequestItemForkRead])
def initialize_request_items(
    offer_id: int, db: Session = _DB_DEP, current_user: CurrentUser = _PROCUREMENT
):
    return offer_request_items.initialize_modified_items(
        db=db, offer_id=offer_id, actor=current_user.username
    )


@router.post(
    "/{offer_id}/request-items",
    response_model=RequestItemForkRead,
    status_code=status.HTTP_201_CREATED,
)
def add_request_item(
    offer_id: int,
    payload: RequestItemCreate,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _PROCUREMENT,
):
    try:
        return offer_request_items.add_request_item(
            db=db,
            offer_id=offer_id,
            item_type_id=payload.item_type_id,
            quantity=payload.quantity,
            comment=payload.comment,
            actor=current_user.username,
        )
    except ValueError as exc:
        raise _value_error_to_http(exc)


@router.put("/{offer_id}/request-items/{request_item_id}", response_model=RequestItemForkRead)
def update_request_item(
    offer_id: int,
    request_item_id: int,
    payload: RequestItemUpdate,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _PROCUREMENT,
):
    return offer_request_items.update_request_item(
        db=db,
        offer_id=offer_id,
        request_item_id=request_item_id,
        quantity=payload.quantity,
        comment=payload.comment,
        actor=current_user.username,
    )


@router.delete(
    "/{offer_id}/request-items/{request_item_id}", status_code=status.HTTP_204_NO_CONTENT
)
def delete_request_item(
    offer_id: int,
    request_item_id: int,
    db: Session = _DB_DEP,
    current_user: CurrentUser = _PROCUREMENT,
):
    offer_request_items.delete_request_item(
        db=db, offer_id=offer_id, request_item_id=request_item_id, actor=current_user.username
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
