from __future__ import annotations

from sqlalchemy.orm import Session

from app import models
from app.core.errors import OfferNotFoundError


def get_offer(*, db: Session, offer_id: int) -> models.Offer:
    offer = db.get(models.Offer, int(offer_id))
    if offer is None:
        raise OfferNotFoundError(offer_id)
    return offer


def list_offers(
    *,
    db: Session,
    status: models.OfferStatus | None = None,
    finance_status: models.OfferFinanceStatus | None = None,
    request_order_id: int | None = None,
) -> list[models.Offer]:
    q = db.query(models.Offer)
    if status is not None:
        q = q.filter(models.Offer.status == status)
    if finance_status is not None:
        q = q.filter(models.Offer.finance_status == finance_status)
    if request_order_id is not None:
        q = q.filter(models.Offer.request_order_id == int(request_order_id))
    return q.order_by(models.Offer.created_at.desc(), models.Offer.id.desc()).all()
