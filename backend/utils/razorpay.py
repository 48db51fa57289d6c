import base64
import hashlib
import hmac
import json
from decimal import Decimal, ROUND_HALF_UP
from urllib import request, error

from config.env import (
    GATEWAY_TIMEOUT_SECONDS,
    RAZORPAY_CURRENCY,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET,
    RAZORPAY_WEBHOOK_SECRET,
)
from utils.errors import GatewayError, Internal, InvalidPaymentReference

RAZORPAY_API_BASE = "https://api.razorpay.com/v1"


def _require_razorpay_config() -> tuple[str, str]:
    if not RAZORPAY_KEY_ID or not RAZORPAY_KEY_SECRET:
        raise Internal("Razorpay keys are not configured")
    return RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET


def _basic_auth_header(key_id: str, key_secret: str) -> str:
    token = f"{key_id}:{key_secret}".encode("utf-8")
    return "Basic " + base64.b64encode(token).decode("utf-8")


def amount_to_paise(amount) -> int:
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def paise_to_amount(amount_paise: int) -> Decimal:
    return Decimal(int(amount_paise)) / 100


def create_razorpay_order(
    *,
    amount_paise: int,
    receipt: str,
    currency: str | None = None,
    notes: dict | None = None,
) -> dict:
    key_id, key_secret = _require_razorpay_config()

    payload = {
        "amount": amount_paise,
        "currency": currency or RAZORPAY_CURRENCY,
        "receipt": receipt,
        "notes": notes or {},
    }

    req = request.Request(
        url=f"{RAZORPAY_API_BASE}/orders",
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "Content-Type": "application/json",
            "Authorization": _basic_auth_header(key_id, key_secret),
        },
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=GATEWAY_TIMEOUT_SECONDS) as resp:
            body = resp.read().decode("utf-8")
            return json.loads(body)
    except error.HTTPError as e:
        details = e.read().decode("utf-8", errors="ignore")
        raise GatewayError(f"Razorpay order create failed: {details}")
    except (error.URLError, TimeoutError, ValueError):
        raise GatewayError("Razorpay order create failed")


def fetch_razorpay_order(gateway_order_id: str) -> dict:
    """
    Authoritative amount/currency for a gateway order.
    Returns {"amount_paise": int, "currency": str}.
    """
    key_id, key_secret = _require_razorpay_config()

    req = request.Request(
        url=f"{RAZORPAY_API_BASE}/orders/{gateway_order_id}",
        headers={"Authorization": _basic_auth_header(key_id, key_secret)},
        method="GET",
    )

    try:
        with request.urlopen(req, timeout=GATEWAY_TIMEOUT_SECONDS) as resp:
            body = json.loads(resp.read().decode("utf-8"))
    except error.HTTPError as e:
        details = e.read().decode("utf-8", errors="ignore")
        raise InvalidPaymentReference(f"Razorpay order lookup failed: {details}")
    except (error.URLError, TimeoutError, ValueError):
        raise InvalidPaymentReference("Razorpay order lookup failed")

    amount_paid = body.get("amount_paid")
    if amount_paid is None:
        amount_paid = body.get("amount")
    if amount_paid is None:
        raise InvalidPaymentReference("Razorpay order has no amount")

    return {
        "amount_paise": int(amount_paid),
        "currency": body.get("currency", RAZORPAY_CURRENCY),
    }


def verify_checkout_signature(
    *,
    razorpay_order_id: str,
    razorpay_payment_id: str,
    razorpay_signature: str,
    key_secret: str | None = None,
) -> bool:
    if key_secret is None:
        _, key_secret = _require_razorpay_config()
    message = f"{razorpay_order_id}|{razorpay_payment_id}".encode("utf-8")
    expected = hmac.new(key_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, razorpay_signature or "")


def verify_webhook_signature(*, raw_body: bytes, received_signature: str, secret: str | None = None) -> bool:
    secret = secret or RAZORPAY_WEBHOOK_SECRET
    if not secret:
        raise Internal("Razorpay webhook secret is not configured")
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received_signature or "")
