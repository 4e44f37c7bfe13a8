from __future__ import annotations
import base64
import hashlib
import hmac
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Tuple, TypedDict

import httpx
import orjson

from .errors import GatewayError
from .helpers import ct_equal, is_row_id, now_ms

logger = logging.getLogger(__name__)

SUCCESS = "SUCCESS"

_ORDER_ID_RE = re.compile(r"^order_([0-9]+)_")


class InvalidSignature(Exception):
    pass


class CustomerDetails(TypedDict):
    customer_id: str
    customer_name: str
    customer_phone: str


class OrderRequest(TypedDict):
    order_id: str
    order_amount: float
    order_currency: str
    customer_details: CustomerDetails
    order_meta: dict


def make_order_id(contribution_id: str, ts_ms: Optional[int] = None) -> str:
    return f"order_{contribution_id}_{now_ms() if ts_ms is None else ts_ms}"


def parse_contribution_id(order_id: str) -> Optional[int]:
    """Recover the ledger row id from a gateway order id.

    Only ``order_<digits>_...`` is accepted, and the digits must be a
    usable row id (positive, fits in 64 bits).
    """
    m = _ORDER_ID_RE.match(order_id)
    if not m:
        return None
    digits = m.group(1)
    if len(digits) > 19:
        return None
    cid = int(digits)
    if not is_row_id(cid):
        return None
    return cid


def build_order(
    *,
    contribution_id: str,
    contributor: str,
    amount: float,
    currency: str,
    return_url: str,
    phone: str,
    ts_ms: Optional[int] = None,
) -> OrderRequest:
    return {
        "order_id": make_order_id(contribution_id, ts_ms),
        "order_amount": amount,
        "order_currency": currency,
        "customer_details": {
            "customer_id": f"user_{contribution_id}",
            "customer_name": contributor,
            # required by the gateway; this flow collects no phone number
            "customer_phone": phone,
        },
        "order_meta": {"return_url": return_url},
    }


# ----------------------------
# Payment Gateway Interface
# ----------------------------
class PaymentGateway(ABC):
    @abstractmethod
    async def create_order(self, order: OrderRequest) -> bytes:
        """Create the order upstream and return the raw response body."""

    @abstractmethod
    def verify_webhook(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> None:
        ...

    @abstractmethod
    def is_test_event(self, event: Any) -> bool:
        ...

    # (order_id, payment_status)
    @abstractmethod
    def event_ids(self, event: Any) -> Tuple[Optional[str], Optional[str]]:
        ...


# ----------------------------
# Cashfree implementation
# ----------------------------
class Cashfree(PaymentGateway):

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        app_id: Optional[str],
        secret_key: Optional[str],
        api_url: Optional[str],
        api_version: str,
    ) -> None:
        self.http = http
        self.app_id = app_id
        self.secret_key = secret_key
        self.api_url = api_url
        self.api_version = api_version

    async def create_order(self, order: OrderRequest) -> bytes:
        # single attempt; transport failures go back to the caller as 502
        try:
            resp = await self.http.post(
                self.api_url,
                content=orjson.dumps(order),
                headers={
                    "content-type": "application/json",
                    "x-client-id": self.app_id or "",
                    "x-client-secret": self.secret_key or "",
                    "x-api-version": self.api_version,
                },
            )
        except httpx.HTTPError as e:
            logger.error("Cashfree API unreachable: %r", e)
            raise GatewayError("Payment gateway error: gateway unreachable.")

        try:
            data = orjson.loads(resp.content)
        except orjson.JSONDecodeError:
            data = None

        if not resp.is_success:
            logger.error("Cashfree API Error: %s %s",
                         resp.status_code, data if data is not None
                         else resp.text[:500])
            message = data.get("message") if isinstance(data, dict) else None
            if not message:
                message = f"Cashfree API returned status {resp.status_code}"
            raise GatewayError(f"Payment gateway error: {message}")

        if data is None:
            logger.error("Cashfree API returned a non-JSON body")
            raise GatewayError(
                "Payment gateway error: invalid response from gateway."
            )
        return resp.content

    def sign(self, payload: bytes, timestamp: str) -> str:
        mac = hmac.new(
            (self.secret_key or "").encode(),
            timestamp.encode() + payload,
            hashlib.sha256,
        ).digest()
        return base64.b64encode(mac).decode()

    def verify_webhook(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> None:
        sig = headers.get("x-webhook-signature")
        ts = headers.get("x-webhook-timestamp")
        if not sig or not ts:
            raise InvalidSignature("missing signature headers")
        expected = self.sign(payload, ts)
        if not ct_equal(expected, sig):
            raise InvalidSignature("signature mismatch")

    def is_test_event(self, event: Any) -> bool:
        if not isinstance(event, dict):
            return False
        data = event.get("data")
        return (
            event.get("type") == "WEBHOOK"
            and isinstance(data, dict)
            and bool(data.get("test_object"))
        )

    def event_ids(self, event: Any) -> Tuple[Optional[str], Optional[str]]:
        def dig(*path: str) -> Any:
            cur = event
            for key in path:
                if not isinstance(cur, dict):
                    return None
                cur = cur.get(key)
            return cur

        order_id = dig("data", "order", "order_id")
        status = dig("data", "payment", "payment_status")
        return (
            order_id if isinstance(order_id, str) and order_id else None,
            status if isinstance(status, str) and status else None,
        )
