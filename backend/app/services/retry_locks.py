from __future__ import annotations

import logging
from datetime import timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import models
from app.config import settings
from app.core.clock import utc_now
from app.core.errors import RetryAlreadyInProgressError
from app.models.domain import RetryLockStatus

logger = logging.getLogger("procurement.retry_locks")


def _stale_cutoff():
    return utc_now() - timedelta(seconds=int(settings.retry_lock_ttl_seconds))


def _lock_query(db: Session, *, lineage_id: int, attempt_number: int):
    return (
        db.query(models.OfferRetryLock)
        .filter(models.OfferRetryLock.lineage_id == int(lineage_id))
        .filter(models.OfferRetryLock.attempt_number == int(attempt_number))
    )


def acquire_retry_lock(
    *,
    db: Session,
    offer: models.Offer,
    actor: str | None,
) -> models.OfferRetryLock:
    """Take the retry lock of the offer's attempt, committing it before any retry work starts.

    The lock is unique per (lineage_id, attempt_number), so a second insert for
    the same attempt fails and two callers racing for one offer cannot both
    proceed. A lock left ``in_progress`` for longer than RETRY_LOCK_TTL_SECONDS
    (crashed worker) may be taken over. Completed locks are never reused.
    """

    offer_id = int(offer.id)
    lineage_id = int(offer.lineage_id)
    attempt_number = int(offer.current_attempt_number)
    log_extra = {"offer_id": offer_id, "attempt_number": attempt_number, "actor": actor}

    now = utc_now()
    lock = models.OfferRetryLock(
        lineage_id=lineage_id,
        attempt_number=attempt_number,
        offer_id=offer_id,
        status=RetryLockStatus.in_progress,
        acquired_at=now,
        acquired_by=actor,
    )
    db.add(lock)
    try:
        db.commit()
        logger.info("retry_lock_acquired", extra=log_extra)
        return lock
    except IntegrityError:
        db.rollback()

    taken = (
        _lock_query(db, lineage_id=lineage_id, attempt_number=attempt_number)
        .filter(models.OfferRetryLock.status == RetryLockStatus.in_progress)
        .filter(models.OfferRetryLock.acquired_at < _stale_cutoff())
        .update(
            {"acquired_at": now, "acquired_by": actor, "offer_id": offer_id},
            synchronize_session=False,
        )
    )
    if taken:
        db.commit()
        logger.warning("retry_lock_stale_takeover", extra=log_extra)
        return _lock_query(db, lineage_id=lineage_id, attempt_number=attempt_number).one()

    db.rollback()
    logger.info("retry_lock_busy", extra=log_extra)
    raise RetryAlreadyInProgressError(offer_id=offer_id)


def complete_retry_lock(
    *,
    db: Session,
    lineage_id: int,
    attempt_number: int,
    successor_offer_id: int | None,
) -> None:
    """Mark the lock resolved inside the retry's own transaction."""

    _lock_query(db, lineage_id=lineage_id, attempt_number=attempt_number).update(
        {
            "status": RetryLockStatus.completed,
            "resolved_at": utc_now(),
            "successor_offer_id": successor_offer_id,
        },
        synchronize_session=False,
    )


def release_retry_lock(*, db: Session, lineage_id: int, attempt_number: int) -> None:
    """Drop an unresolved lock after a failed retry so the user can try again."""

    (
        _lock_query(db, lineage_id=lineage_id, attempt_number=attempt_number)
        .filter(models.OfferRetryLock.status == RetryLockStatus.in_progress)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info(
        "retry_lock_released",
        extra={"lineage_id": lineage_id, "attempt_number": attempt_number},
    )


def get_retry_lock(*, db: Session, offer: models.Offer) -> models.OfferRetryLock | None:
    return _lock_query(
        db, lineage_id=offer.lineage_id, attempt_number=offer.current_attempt_number
    ).first()


def find_retry_lock_by_offer_id(*, db: Session, offer_id: int) -> models.OfferRetryLock | None:
    """Latest lock taken for `offer_id`; answers for offers a retry already deleted."""

    return (
        db.query(models.OfferRetryLock)
        .filter(models.OfferRetryLock.offer_id == int(offer_id))
        .order_by(models.OfferRetryLock.id.desc())
        .first()
    )


def is_retry_in_flight(*, db: Session, offer: models.Offer) -> bool:
    lock = get_retry_lock(db=db, offer=offer)
    if lock is None or lock.status != RetryLockStatus.in_progress:
        return False
    acquired_at = lock.acquired_at
    if acquired_at.tzinfo is not None:
        acquired_at = acquired_at.astimezone(timezone.utc).replace(tzinfo=None)
    return acquired_at >= _stale_cutoff()
