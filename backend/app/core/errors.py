"""Typed errors raised by the offer workflow services.

Routes never translate these by hand: `offer_workflow_error_handler` renders
them as ``{"detail": message, "code": code, ...details}`` with the class's
HTTP status.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class OfferWorkflowError(Exception):
    status_code: int = 400
    code: str = "offer_workflow_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.details}


class OfferNotFoundError(OfferWorkflowError):
    status_code = 404
    code = "offer_not_found"

    def __init__(self, offer_id: int) -> None:
        super().__init__(f"Offer {offer_id} not found", offer_id=int(offer_id))


class OfferItemNotFoundError(OfferWorkflowError):
    status_code = 404
    code = "offer_item_not_found"

    def __init__(self, *, offer_id: int, offer_item_id: int) -> None:
        super().__init__(
            f"Offer item {offer_item_id} not found on offer {offer_id}",
            offer_id=int(offer_id),
            offer_item_id=int(offer_item_id),
        )


class RequestItemNotFoundError(OfferWorkflowError):
    status_code = 404
    code = "request_item_not_found"

    def __init__(self, *, offer_id: int, request_item_id: int) -> None:
        super().__init__(
            f"Request item {request_item_id} not found on offer {offer_id}",
            offer_id=int(offer_id),
            request_item_id=int(request_item_id),
        )


class DuplicateRequestItemError(OfferWorkflowError):
    status_code = 409
    code = "duplicate_request_item"

    def __init__(self, *, offer_id: int, item_type_id: int) -> None:
        super().__init__(
            f"Offer {offer_id} already requests item type {item_type_id}",
            offer_id=int(offer_id),
            item_type_id=int(item_type_id),
        )


class InvalidStateTransition(OfferWorkflowError):
    status_code = 409
    code = "invalid_state_transition"

    def __init__(
        self,
        *,
        offer_id: int,
        action: str,
        current_status: str | None,
        reason: str | None = None,
    ) -> None:
        message = f"Cannot {action} offer {offer_id} in status {current_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            offer_id=int(offer_id),
            action=action,
            current_status=current_status,
        )


class IncompleteOfferError(OfferWorkflowError):
    status_code = 422
    code = "incomplete_offer"

    def __init__(self, *, offer_id: int, missing: list[dict[str, Any]]) -> None:
        super().__init__(
            "Offer does not cover every requested item quantity",
            offer_id=int(offer_id),
            missing=missing,
        )


class MissingRejectionReasonError(OfferWorkflowError):
    status_code = 422
    code = "missing_rejection_reason"

    def __init__(self, *, offer_id: int, stage: str) -> None:
        super().__init__(
            f"A rejection reason is required for the {stage} decision",
            offer_id=int(offer_id),
            stage=stage,
        )


class FinanceReviewIncompleteError(OfferWorkflowError):
    status_code = 422
    code = "finance_review_incomplete"

    def __init__(
        self,
        *,
        offer_id: int,
        missing_offer_item_ids: list[int],
        unknown_offer_item_ids: list[int],
    ) -> None:
        super().__init__(
            "Finance decisions must cover exactly the offer's items",
            offer_id=int(offer_id),
            missing_offer_item_ids=missing_offer_item_ids,
            unknown_offer_item_ids=unknown_offer_item_ids,
        )


class InvalidFinalizationSelectionError(OfferWorkflowError):
    status_code = 422
    code = "invalid_finalization_selection"

    def __init__(self, *, offer_id: int, reason: str, offer_item_ids: list[int] | None = None):
        super().__init__(reason, offer_id=int(offer_id), offer_item_ids=offer_item_ids or [])


class OfferItemNotEditableError(OfferWorkflowError):
    status_code = 409
    code = "offer_item_not_editable"

    def __init__(self, *, offer_id: int, current_status: str) -> None:
        super().__init__(
            f"Offer items can only change before submission (status {current_status})",
            offer_id=int(offer_id),
            current_status=current_status,
        )


class RetryAlreadyInProgressError(OfferWorkflowError):
    status_code = 409
    code = "retry_already_in_progress"

    def __init__(self, *, offer_id: int) -> None:
        super().__init__("A retry for this offer is already in progress.", offer_id=int(offer_id))


class PurchaseOrderContractError(OfferWorkflowError):
    status_code = 502
    code = "purchase_order_contract_violation"

    def __init__(self, *, offer_id: int, received: str) -> None:
        super().__init__(
            "Purchase order writer did not return a persisted purchase order id",
            offer_id=int(offer_id),
            received=received,
        )


class FinalizationPartialFailureError(OfferWorkflowError):
    """Degraded success: the PO and offer completion stand, a downstream step failed.

    Returned inside a finalization result, never raised to the client.
    """

    code = "finalization_partial_failure"

    def __init__(self, *, offer_id: int, purchase_order_id: int, step: str, error: str) -> None:
        super().__init__(
            f"Purchase order {purchase_order_id} was created but {step} failed",
            offer_id=int(offer_id),
            purchase_order_id=int(purchase_order_id),
            step=step,
            error=error,
        )


async def offer_workflow_error_handler(request: Request, exc: OfferWorkflowError) -> JSONResponse:
    headers = {}
    request_id = request.headers.get("x-request-id")
    if request_id:
        headers["X-Request-ID"] = request_id
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)
