import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app import models

logger = logging.getLogger("procurement.audit")


def audit_event(
    action: str,
    actor: Optional[str],
    payload: Dict[str, Any],
    *,
    db: Session,
    offer_id: int | None = None,
    request_order_id: int | None = None,
) -> Optional[int]:
    """Append a row to the audit trail.

    Runs after the workflow change it describes has been committed, in its own
    small transaction on the same session. A failed write is logged and
    swallowed: the workflow outcome already stands and must not be reported
    as an error because its audit copy could not be stored.
    """
    entry = models.AuditLog(
        action=action,
        actor=actor,
        offer_id=offer_id,
        request_order_id=request_order_id,
        payload_json=json.dumps(payload or {}, default=str, sort_keys=True),
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "audit_write_failed",
            extra={"action": action, "actor": actor, "offer_id": offer_id},
        )
        return None
    return entry.id
