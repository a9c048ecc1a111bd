"""Outbound payment-request client used after an offer is finalized.

The endpoint is optional (PAYMENT_REQUESTS_URL). The reply must carry an
``id``; anything else counts as a failed request.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from app.config import settings

logger = logging.getLogger("procurement.payment_requests")


class PaymentRequestError(RuntimeError):
    pass


@dataclass(frozen=True)
class PaymentRequestResult:
    id: str
    status: Optional[str]
    raw: dict[str, Any]


class PaymentRequestClient:
    def __init__(self, url: str, *, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = float(timeout)

    def create(self, *, purchase_order_id: int, offer_id: int, requested_by: str | None) -> PaymentRequestResult:
        body = json.dumps(
            {
                "purchase_order_id": int(purchase_order_id),
                "offer_id": int(offer_id),
                "requested_by": requested_by,
            }
        ).encode("utf-8")
        req = Request(
            self.url,
            data=body,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8", "ignore")
        except (URLError, TimeoutError, OSError) as exc:
            raise PaymentRequestError(f"payment request failed: {exc}") from exc

        try:
            data = json.loads(raw or "{}")
        except ValueError as exc:
            raise PaymentRequestError("payment request returned invalid JSON") from exc

        if not isinstance(data, dict) or not data.get("id"):
            raise PaymentRequestError("payment request response has no id")

        return PaymentRequestResult(id=str(data["id"]), status=data.get("status"), raw=data)


def default_payment_request_client() -> Optional[PaymentRequestClient]:
    if not settings.payment_requests_url:
        return None
    return PaymentRequestClient(
        settings.payment_requests_url,
        timeout=settings.payment_requests_timeout_seconds,
    )
