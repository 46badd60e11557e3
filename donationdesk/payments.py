from abc import ABC, abstractmethod
from typing import Optional, TypedDict
import hashlib
import hmac
import logging
import os
import uuid

import httpx

from .helpers import ct_equal, now_ts

MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")
RAZORPAY_API_BASE = os.environ.get(
    "RAZORPAY_API_BASE", "https://api.razorpay.com/v1"
)

logger = logging.getLogger(__name__)


class PaymentProviderError(Exception):
    """The provider could not create an order."""


class CreateOrderResult(TypedDict):
    order_id: str
    key_id: str
    amount: int  # paise
    currency: str


# ----------------------------
# Signature check
# ----------------------------
def payment_signature(secret: str, order_id: str, payment_id: str) -> str:
    msg = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), msg, hashlib.sha256).hexdigest()


def verify_signature(
    secret: Optional[str],
    order_id: Optional[str],
    payment_id: Optional[str],
    signature: Optional[str],
) -> bool:
    """True only if `signature` is exactly the hex HMAC-SHA256 of
    "order_id|payment_id" under `secret`. Anything missing is a mismatch."""
    for v in (secret, order_id, payment_id, signature):
        if not isinstance(v, str) or not v:
            return False
    expected = payment_signature(secret, order_id, payment_id)
    return ct_equal(expected, signature)


def new_receipt() -> str:
    return f"receipt_order_{int(now_ts() * 1000)}"


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentAdapter(ABC):
    name: str = ""

    def __init__(self, key_id: str, key_secret: str,
                 currency: str = "INR") -> None:
        self.key_id = key_id
        self.key_secret = key_secret
        self.currency = currency

    @abstractmethod
    async def create_order(
            self, amount: int, receipt: str
    ) -> CreateOrderResult: ...

    def verify_payment(
            self, order_id: Optional[str], payment_id: Optional[str],
            signature: Optional[str]
    ) -> bool:
        return verify_signature(
            self.key_secret, order_id, payment_id, signature
        )


# ----------------------------
# Razorpay implementation
# ----------------------------
class RazorpayAdapter(PaymentAdapter):
    name = "razorpay"

    def __init__(self, http: httpx.AsyncClient, key_id: str,
                 key_secret: str, currency: str = "INR",
                 api_base: str = RAZORPAY_API_BASE) -> None:
        super().__init__(key_id, key_secret, currency)
        self.http = http
        self.api_base = api_base.rstrip("/")

    async def create_order(
            self, amount: int, receipt: str
    ) -> CreateOrderResult:
        try:
            r = await self.http.post(
                f"{self.api_base}/orders",
                auth=(self.key_id, self.key_secret),
                json={
                    "amount": amount,
                    "currency": self.currency,
                    "receipt": receipt,
                },
            )
            r.raise_for_status()
            order = r.json()
            order_id = order["id"]
        except httpx.HTTPError as e:
            raise PaymentProviderError(f"order request failed: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            raise PaymentProviderError(f"malformed order response: {e}") from e

        if not isinstance(order_id, str) or not order_id:
            raise PaymentProviderError("order response without id")
        return {
            "order_id": order_id,
            "key_id": self.key_id,
            "amount": amount,
            "currency": self.currency,
        }


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    """Local stand-in for the provider: orders never leave the process and
    the /mockpay page signs completions the way the provider would."""
    name = "mock"

    def __init__(self, key_secret: str = MOCK_SECRET,
                 currency: str = "INR") -> None:
        super().__init__("mock_key", key_secret, currency)

    async def create_order(
            self, amount: int, receipt: str
    ) -> CreateOrderResult:
        order_id = f"order_mock_{uuid.uuid4().hex[:14]}"
        logger.info("mock order %s for %d (%s)", order_id, amount, receipt)
        return {
            "order_id": order_id,
            "key_id": self.key_id,
            "amount": amount,
            "currency": self.currency,
        }

    def complete(self, order_id: str) -> tuple[str, str]:
        # (payment_id, signature) as the checkout widget would hand back
        payment_id = f"pay_mock_{uuid.uuid4().hex[:14]}"
        return payment_id, payment_signature(
            self.key_secret, order_id, payment_id
        )
