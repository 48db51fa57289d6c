from fastapi import APIRouter, Depends, HTTPException, Request
import json
import logging

from database import get_store
from utils.payment_events import (
    EVENT_ORDER_PAID,
    EVENT_PAYMENT_CAPTURED,
    EVENT_PAYMENT_FAILED,
    handle_payment_captured,
    handle_payment_failed,
)
from utils.razorpay import verify_webhook_signature

router = APIRouter(prefix="/order", tags=["Webhooks"])

logger = logging.getLogger(__name__)


def _gateway_order_id(payload: dict) -> str | None:
    body = payload.get("payload", {})
    payment_entity = body.get("payment", {}).get("entity", {})
    order_entity = body.get("order", {}).get("entity", {})
    return payment_entity.get("order_id") or order_entity.get("id")


# =========================================================
# PAYMENT WEBHOOK (SIGNED, IDEMPOTENT)
# =========================================================

@router.post("/payment-webhook")
async def payment_webhook(request: Request, store=Depends(get_store)):
    """
    Razorpay event delivery.

    - payment.captured / order.paid: pending payment records -> completed
    - payment.failed: orders -> payment_failed, stock restored
    - anything else: acknowledged and ignored
    """
    signature = request.headers.get("X-Razorpay-Signature")
    if not signature:
        raise HTTPException(401, "Missing Razorpay signature")

    raw_body = await request.body()
    if not verify_webhook_signature(raw_body=raw_body, received_signature=signature):
        raise HTTPException(401, "Invalid Razorpay signature")

    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise HTTPException(400, "Invalid JSON payload")

    event = payload.get("event")
    gateway_order_id = _gateway_order_id(payload)

    if not gateway_order_id:
        return {"success": True, "message": "ignored"}

    if event == EVENT_PAYMENT_FAILED:
        count = await handle_payment_failed(store, gateway_order_id)
        logger.info("PAYMENT_WEBHOOK event=%s gateway_order=%s compensated=%s", event, gateway_order_id, count)
    elif event in {EVENT_PAYMENT_CAPTURED, EVENT_ORDER_PAID}:
        count = await handle_payment_captured(store, gateway_order_id)
        logger.info("PAYMENT_WEBHOOK event=%s gateway_order=%s completed=%s", event, gateway_order_id, count)
    else:
        return {"success": True, "message": "ignored"}

    return {"success": True, "message": "processed"}
