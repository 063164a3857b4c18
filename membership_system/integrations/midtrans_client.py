"""
Midtrans Snap API client and notification signature helpers.

Implements:
- Hosted checkout (Snap) transaction creation
- Notification signature computation and verification

No retries: a failed checkout is retried by creating a new payment with a
new order id, never by replaying the old one.
"""
import base64
import hashlib
import hmac
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import httpx
import structlog

from membership_system.config import Settings, get_settings
from membership_system.core.exceptions import ExternalServiceError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SnapTransaction:
    """Token and hosted payment page returned by Snap."""

    token: str
    redirect_url: str


def to_gross_amount(amount: Decimal | float | int) -> int:
    """
    Round an amount to the whole-rupiah integer Snap accepts.

    Lossy by contract: 150000.50 is charged as 150001.
    """
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """SHA-512 hex digest of order_id + status_code + gross_amount + server_key."""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_signature(
    order_id: str, status_code: str, gross_amount: str, signature_key: str, server_key: str
) -> bool:
    """Exact match of the supplied signature against the recomputed one."""
    expected = compute_signature(order_id, status_code, gross_amount, server_key)
    return hmac.compare_digest(expected.encode("utf-8"), signature_key.encode("utf-8"))


class MidtransClient:
    """
    Thin async wrapper around the Snap transactions endpoint.

    One blocking call with a fixed timeout per checkout.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Midtrans client.

        Args:
            settings: Settings holding the server key and environment
            http_client: Optional shared httpx client (one per call otherwise)
        """
        self.settings = settings or get_settings()
        self.http_client = http_client

    def _auth_header(self, server_key: str) -> str:
        credentials = base64.b64encode(f"{server_key}:".encode("utf-8")).decode("ascii")
        return f"Basic {credentials}"

    async def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.post(url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self.settings.gateway_timeout_seconds) as client:
            return await client.post(url, json=payload, headers=headers)

    async def create_transaction(
        self,
        order_id: str,
        amount: Decimal | float,
        customer_email: str,
        customer_name: str,
        customer_phone: str,
        item_name: str,
    ) -> SnapTransaction:
        """
        Create a hosted checkout session.

        Args:
            order_id: Locally minted order identifier
            amount: Amount in rupiah, rounded to an integer for Snap
            customer_email: Payer email
            customer_name: Payer first name
            customer_phone: Payer phone
            item_name: Line item label

        Returns:
            SnapTransaction: Token and redirect URL

        Raises:
            ExternalServiceError: Missing server key, transport failure or non-2xx
        """
        server_key = self.settings.midtrans_server_key
        if not server_key:
            logger.error("midtrans_server_key_missing", order_id=order_id)
            raise ExternalServiceError("Midtrans server key not configured")

        gross_amount = to_gross_amount(amount)
        payload = {
            "transaction_details": {"order_id": order_id, "gross_amount": gross_amount},
            "customer_details": {
                "email": customer_email,
                "first_name": customer_name,
                "phone": customer_phone,
            },
            "item_details": [
                {"id": "membership", "price": gross_amount, "quantity": 1, "name": item_name}
            ],
        }
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": self._auth_header(server_key),
        }

        logger.info(
            "creating_snap_transaction",
            order_id=order_id,
            gross_amount=gross_amount,
            environment=self.settings.midtrans_environment,
        )

        try:
            response = await self._post(self.settings.midtrans_snap_url, payload, headers)
        except httpx.HTTPError as e:
            logger.error("midtrans_transport_error", order_id=order_id, error=str(e))
            raise ExternalServiceError(f"Midtrans API unreachable: {e}")

        if not response.is_success:
            logger.error(
                "midtrans_api_error",
                order_id=order_id,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ExternalServiceError(
                f"Midtrans API error: {response.status_code} {response.reason_phrase}"
            )

        try:
            data = response.json()
            transaction = SnapTransaction(token=data["token"], redirect_url=data["redirect_url"])
        except (ValueError, KeyError) as e:
            logger.error("midtrans_malformed_response", order_id=order_id, error=str(e))
            raise ExternalServiceError("Midtrans API returned an unexpected response")

        logger.info("snap_transaction_created", order_id=order_id)
        return transaction
