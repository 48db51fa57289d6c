import asyncio
import logging
from decimal import Decimal

from config.constants import PAYMENT_AMOUNT_TOLERANCE
from config.env import GATEWAY_TIMEOUT_SECONDS, RAZORPAY_KEY_SECRET
from utils.errors import (
    Internal,
    InvalidPaymentReference,
    PaymentAmountMismatch,
    PaymentVerificationFailed,
    ValidationError,
)
from utils.razorpay import fetch_razorpay_order, paise_to_amount, verify_checkout_signature

logger = logging.getLogger(__name__)


class PaymentVerifier:
    """
    Verifies a client-side payment assertion before anything is settled.

    The signature check is local HMAC work; the paid amount always comes
    from the gateway, never from the client.
    """

    def __init__(
        self,
        *,
        key_secret: str | None,
        fetch_order=fetch_razorpay_order,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
    ):
        self._key_secret = key_secret
        self._fetch_order = fetch_order
        self._timeout = timeout

    def verify(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        if not self._key_secret:
            raise Internal("Payment verification secret is not configured")
        return verify_checkout_signature(
            razorpay_order_id=gateway_order_id,
            razorpay_payment_id=gateway_payment_id,
            razorpay_signature=signature,
            key_secret=self._key_secret,
        )

    async def fetch_order(self, gateway_order_id: str) -> dict:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._fetch_order, gateway_order_id),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            raise InvalidPaymentReference("Payment gateway did not respond in time")

    async def confirm_payment(self, payment_details, expected_total: Decimal) -> Decimal:
        """Verify the signature and cross-check the gateway's paid amount. Returns the paid amount."""
        if (
            payment_details is None
            or not payment_details.gateway_order_id
            or not payment_details.gateway_payment_id
            or not payment_details.signature
        ):
            raise ValidationError("Payment details (gatewayOrderId, gatewayPaymentId, signature) are required")

        if not self.verify(
            payment_details.gateway_order_id,
            payment_details.gateway_payment_id,
            payment_details.signature,
        ):
            raise PaymentVerificationFailed("Payment signature verification failed")

        gateway_order = await self.fetch_order(payment_details.gateway_order_id)
        paid = paise_to_amount(gateway_order["amount_paise"])

        if abs(paid - expected_total) > PAYMENT_AMOUNT_TOLERANCE:
            logger.warning(
                "PAYMENT_AMOUNT_MISMATCH gateway_order=%s paid=%s expected=%s",
                payment_details.gateway_order_id,
                paid,
                expected_total,
            )
            raise PaymentAmountMismatch(paid, expected_total)

        return paid


def get_payment_verifier() -> PaymentVerifier:
    return PaymentVerifier(key_secret=RAZORPAY_KEY_SECRET)
