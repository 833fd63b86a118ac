"""
Razorpay client: order creation over the REST API and HMAC signature checks.
Amounts are sent to the gateway in currency sub-units (paise for INR).
"""

import hashlib
import hmac
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional

import httpx
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)


class GatewayOrder(BaseModel):
    order_id: str
    amount_subunits: int
    currency: str


def to_subunits(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _hmac_sha256(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class RazorpayGateway:
    def __init__(
        self,
        key_id: Optional[str],
        key_secret: Optional[str],
        webhook_secret: Optional[str] = None,
        api_base: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
    ) -> None:
        self.key_id = key_id
        self._key_secret = key_secret
        self._webhook_secret = webhook_secret
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout

    async def create_order(
        self,
        amount_subunits: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        """Create a gateway order. Any transport or API failure raises UpstreamUnavailable."""
        if not self.key_id or not self._key_secret:
            raise UpstreamUnavailable("Payment gateway is not configured")
        body = {
            "amount": amount_subunits,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            async with httpx.AsyncClient(
                base_url=self._api_base,
                auth=(self.key_id, self._key_secret),
                timeout=self._timeout,
            ) as client:
                response = await client.post("/orders", json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Gateway rejected order %s: %s %s", receipt, e.response.status_code, e.response.text)
            raise UpstreamUnavailable("Payment gateway rejected the order request") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Gateway order %s failed: %s", receipt, e)
            raise UpstreamUnavailable("Payment gateway is unavailable") from e

        if not data.get("id"):
            logger.error("Gateway order %s returned no id: %s", receipt, data)
            raise UpstreamUnavailable("Payment gateway returned an invalid order")
        return GatewayOrder(
            order_id=data["id"],
            amount_subunits=int(data.get("amount", amount_subunits)),
            currency=data.get("currency", currency),
        )

    def payment_signature(self, order_id: str, payment_id: str) -> str:
        """Expected checkout signature: HMAC-SHA256(key_secret, "order_id|payment_id")."""
        return _hmac_sha256(self._key_secret or "", f"{order_id}|{payment_id}".encode("utf-8"))

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self._key_secret or not signature:
            return False
        return hmac.compare_digest(self.payment_signature(order_id, payment_id), signature)

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        if not self._webhook_secret or not signature:
            return False
        return hmac.compare_digest(_hmac_sha256(self._webhook_secret, body), signature)


def get_payment_gateway() -> RazorpayGateway:
    return RazorpayGateway(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        webhook_secret=settings.razorpay_webhook_secret,
        api_base=settings.razorpay_api_base,
        timeout=settings.gateway_timeout_seconds,
    )
